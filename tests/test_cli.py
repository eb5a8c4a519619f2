import pytest

from aiosyncroom.cli import RelayBrowser, _relay_url, parse_args
from aiosyncroom.server import DEFAULT_PORT


@pytest.mark.parametrize(
    ("host", "properties", "expected"),
    [
        ("192.168.1.20", {b"path": b"/store"}, "ws://192.168.1.20:8937/store"),
        ("192.168.1.20", {b"path": b"rooms"}, "ws://192.168.1.20:8937/rooms"),
        ("192.168.1.20", {}, "ws://192.168.1.20:8937/store"),
        ("192.168.1.20", {b"path": None}, "ws://192.168.1.20:8937/store"),
        ("fe80::1", {b"path": b" "}, "ws://[fe80::1]:8937/store"),
    ],
)
def test_relay_url_from_advertisement(
    host: str, properties: dict[bytes, bytes | None], expected: str
) -> None:
    assert _relay_url(host, 8937, properties) == expected


@pytest.mark.asyncio
async def test_browser_must_be_entered_before_waiting() -> None:
    with pytest.raises(RuntimeError):
        await RelayBrowser().first()


def test_relay_arguments() -> None:
    args = parse_args(["relay", "--advertise", "--log-level", "DEBUG"])

    assert args.command == "relay"
    assert args.port == DEFAULT_PORT
    assert args.advertise
    assert args.log_level == "DEBUG"


def test_join_arguments() -> None:
    args = parse_args(["join", "--room", "movie-night", "--create", "--item", "intro"])

    assert args.command == "join"
    assert args.room == "movie-night"
    assert args.create
    assert args.item == "intro"
    assert args.url is None
    assert args.duration is None


def test_join_requires_a_room() -> None:
    with pytest.raises(SystemExit):
        parse_args(["join"])
