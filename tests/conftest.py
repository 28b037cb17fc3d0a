# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path

# Add project root and this directory to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))

from lotbot.core.access import AccessChecker  # noqa: E402
from lotbot.core.lifecycle import LifecycleEngine  # noqa: E402
from lotbot.core.routing import RoutingConfig  # noqa: E402
from lotbot.core.use_cases import LotBotService  # noqa: E402
from lotbot.infra.metrics import get_metrics_collector  # noqa: E402
from fakes import (  # noqa: E402
    MockDeliveryRepository,
    MockLeadRepository,
    MockLotStore,
    MockMessenger,
    MockQuestionRepository,
    sample_questions,
    ticking_clock,
)

OPERATORS = ("100", "101")
NOTIFY = ("200", "100")
TARGET_STATUSES = {"LIVE_GRATUITA": "ANSWERED", "DESPERTOS": "PREMIUM"}


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield


@pytest.fixture
def lot_store():
    return MockLotStore()


@pytest.fixture
def question_repo():
    return MockQuestionRepository(sample_questions())


@pytest.fixture
def messenger():
    return MockMessenger()


@pytest.fixture
def deliveries():
    return MockDeliveryRepository()


@pytest.fixture
def leads():
    return MockLeadRepository()


@pytest.fixture
def routing():
    return RoutingConfig(operators=OPERATORS, notify=NOTIFY)


@pytest.fixture
def engine(lot_store, question_repo):
    return LifecycleEngine(
        lots=lot_store,
        questions=question_repo,
        target_statuses=TARGET_STATUSES,
        clock=ticking_clock(),
    )


@pytest.fixture
def service(engine, deliveries, messenger, routing, leads):
    return LotBotService(
        engine=engine,
        deliveries=deliveries,
        messenger=messenger,
        routing=routing,
        access=AccessChecker(leads=leads, allow_list={"vip@example.com"}),
    )
