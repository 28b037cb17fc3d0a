# tests/test_commands.py
"""Tests for operator command parsing"""
import pytest

from lotbot.core.commands import (
    ApplyToDestination,
    ApplyToLot,
    Help,
    UndoLatest,
    clean_url,
    command_kind,
    extract_video_url,
    parse_command,
)
from lotbot.core.domain import Destination

URL = "https://youtu.be/abc12345678"


class TestVideoLinks:
    @pytest.mark.parametrize("raw, expected", [
        ("https://youtu.be/abc12345678", "https://youtu.be/abc12345678"),
        ("youtu.be/abc12345678", "https://youtu.be/abc12345678"),
        ("https://www.youtube.com/watch?v=abc12345678", "https://www.youtube.com/watch?v=abc12345678"),
        ("https://youtube.com/watch?feature=share&v=abc12345678", "https://youtube.com/watch?feature=share&v=abc12345678"),
        ("https://m.youtube.com/live/abc12345678?si=xyz", "https://m.youtube.com/live/abc12345678?si=xyz"),
        ("https://youtube.com/shorts/abc12345678", "https://youtube.com/shorts/abc12345678"),
        ("https://www.youtube.com/embed/abc12345678", "https://www.youtube.com/embed/abc12345678"),
        ("https://youtu.be/abc12345678?t=30", "https://youtu.be/abc12345678?t=30"),
    ])
    def test_recognized(self, raw, expected):
        assert extract_video_url(raw) == expected

    @pytest.mark.parametrize("raw", [
        "https://vimeo.com/123456",
        "https://youtu.be/abc",
        "https://www.youtube.com/channel/UC1234567890",
        "youtube",
        "",
    ])
    def test_rejected(self, raw):
        assert extract_video_url(raw) is None

    @pytest.mark.parametrize("raw", [URL + ".", URL + "),", URL + '"', URL + "!?"])
    def test_trailing_punctuation_stripped(self, raw):
        assert clean_url(raw) == URL
        assert extract_video_url(raw) == URL


class TestParseCommand:
    @pytest.mark.parametrize("text, destination", [
        (f"/live {URL}", Destination.LIVE_GRATUITA),
        (f"/gratuita {URL}", Destination.LIVE_GRATUITA),
        (f"/despertos {URL}", Destination.DESPERTOS),
        (f"/PREMIUM {URL}", Destination.DESPERTOS),
        (f"/despertos@LotBot {URL}.", Destination.DESPERTOS),
    ])
    def test_destination_commands(self, text, destination):
        assert parse_command(text) == ApplyToDestination(url=URL, destination=destination)

    def test_bare_link_uses_default_destination(self):
        assert parse_command(URL) == ApplyToDestination(
            url=URL, destination=Destination.LIVE_GRATUITA, explicit=False
        )
        assert parse_command(URL, Destination.DESPERTOS).destination is Destination.DESPERTOS

    def test_link_with_explicit_lot(self):
        command = parse_command(f"/link l261018-1432-k7qx {URL}")

        assert command == ApplyToLot(lot_code="L261018-1432-K7QX", url=URL)

    @pytest.mark.parametrize("text, destination", [
        ("/undo latest public", Destination.LIVE_GRATUITA),
        ("/undo LATEST live", Destination.LIVE_GRATUITA),
        ("/undo latest despertos", Destination.DESPERTOS),
        ("/undo@LotBot latest premium", Destination.DESPERTOS),
    ])
    def test_undo(self, text, destination):
        assert parse_command(text) == UndoLatest(destination=destination)

    @pytest.mark.parametrize("text", ["/undo", "/undo latest", "/undo latest vip", "/undo last live"])
    def test_undo_requires_destination(self, text):
        assert parse_command(text) == Help("undo_destination")

    @pytest.mark.parametrize("text", ["/live", "/live not-a-link", f"/live {URL} extra", "/despertos https://vimeo.com/1"])
    def test_bad_link(self, text):
        assert parse_command(text) == Help("bad_link")

    @pytest.mark.parametrize("text", [
        "/link L261018-1432-K7QX",
        f"/link nope {URL}",
        "/link L261018-1432-K7QX https://vimeo.com/1",
    ])
    def test_link_usage(self, text):
        assert parse_command(text) == Help("link_usage")

    @pytest.mark.parametrize("text", [None, "", "   ", "hello", "/start", "/help", f"veja {URL}", "https://vimeo.com/1"])
    def test_anything_else_is_help(self, text):
        assert parse_command(text) == Help()

    def test_command_kind(self):
        assert command_kind(parse_command(URL)) == "apply_destination"
        assert command_kind(parse_command(f"/link L261018-1432-K7QX {URL}")) == "apply_lot"
        assert command_kind(parse_command("/undo latest live")) == "undo_latest"
        assert command_kind(parse_command("oi")) == "help"
