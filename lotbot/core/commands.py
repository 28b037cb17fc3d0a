# lotbot/core/commands.py
"""
Operator command parsing.

``parse_command`` is total: every input text maps to exactly one of the
command types below, and the bot service dispatches on the type
alone.  Nothing downstream inspects raw text.

Grammar (case-insensitive):
    /live <url>, /gratuita <url>       apply to latest pending Live Gratuita lot
    /despertos <url>, /premium <url>   apply to latest pending Despertos lot
    /link <lotCode> <url>              apply to an explicit lot
    /undo latest <destination>         revert latest applied lot of destination
    <url>                              apply to the default destination
    anything else                      help
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from lotbot.core.domain import Destination, normalize_lot_code

# Video host URL shapes accepted as lot resources
_VIDEO_URL_RE = re.compile(
    r"^(?:https?://)?"
    r"(?:(?:www\.|m\.)?youtube\.com/(?:watch\?(?:[^#\s]*&)?v=|live/|shorts/|embed/)|youtu\.be/)"
    r"[A-Za-z0-9_-]{11}"
    r"(?:[?&#][^\s]*)?$",
    re.IGNORECASE,
)

_TRAILING_PUNCTUATION = ".,;:!?)]}>\"'"

_DESTINATION_COMMANDS = {
    "/live": Destination.LIVE_GRATUITA,
    "/gratuita": Destination.LIVE_GRATUITA,
    "/despertos": Destination.DESPERTOS,
    "/premium": Destination.DESPERTOS,
}


# ============================================================================
# COMMAND TYPES
# ============================================================================

@dataclass(frozen=True)
class ApplyToDestination:
    """Apply ``url`` to the latest pending lot of ``destination``.

    ``explicit`` is False for the bare-link shorthand, where the
    destination is the configured default.
    """
    url: str
    destination: Destination
    explicit: bool = True


@dataclass(frozen=True)
class ApplyToLot:
    lot_code: str
    url: str


@dataclass(frozen=True)
class UndoLatest:
    destination: Destination


@dataclass(frozen=True)
class Help:
    reason: str = "unrecognized"  # unrecognized | bad_link | undo_destination | link_usage


Command = Union[ApplyToDestination, ApplyToLot, UndoLatest, Help]


def command_kind(command: Command) -> str:
    """Short name used for metrics and logs."""
    return {
        ApplyToDestination: "apply_destination",
        ApplyToLot: "apply_lot",
        UndoLatest: "undo_latest",
        Help: "help",
    }[type(command)]


# ============================================================================
# LINKS
# ============================================================================

def clean_url(raw: str) -> str:
    """Strip sentence punctuation glued to a pasted link (``"...abc)."``)."""
    return raw.strip().rstrip(_TRAILING_PUNCTUATION)


def extract_video_url(raw: str) -> str | None:
    """Return the cleaned URL if it is a recognized video link, else None."""
    candidate = clean_url(raw)
    if not candidate or not _VIDEO_URL_RE.match(candidate):
        return None
    if not candidate.lower().startswith(("http://", "https://")):
        candidate = f"https://{candidate}"
    return candidate


# ============================================================================
# PARSER
# ============================================================================

def parse_command(text: str | None, default_destination: Destination = Destination.LIVE_GRATUITA) -> Command:
    tokens = (text or "").split()
    if not tokens:
        return Help()

    head = tokens[0].split("@")[0].lower()  # "/live@MyBot" -> "/live"
    args = tokens[1:]

    if not head.startswith("/"):
        if len(tokens) == 1:
            url = extract_video_url(tokens[0])
            if url:
                return ApplyToDestination(url=url, destination=default_destination, explicit=False)
        return Help()

    if head in _DESTINATION_COMMANDS:
        if len(args) != 1:
            return Help("bad_link")
        url = extract_video_url(args[0])
        if not url:
            return Help("bad_link")
        return ApplyToDestination(url=url, destination=_DESTINATION_COMMANDS[head])

    if head == "/link":
        if len(args) != 2:
            return Help("link_usage")
        lot_code = normalize_lot_code(args[0])
        url = extract_video_url(args[1])
        if not lot_code or not url:
            return Help("link_usage")
        return ApplyToLot(lot_code=lot_code, url=url)

    if head == "/undo":
        # Destination must always be named; never guessed
        if len(args) != 2 or args[0].lower() != "latest":
            return Help("undo_destination")
        destination = Destination.parse(args[1])
        if destination is None:
            return Help("undo_destination")
        return UndoLatest(destination=destination)

    return Help()
