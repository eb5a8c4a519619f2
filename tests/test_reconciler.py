import pytest
from conftest import ManualClock, RecordingPlayer

from aiosyncroom.client.echo import EchoGuard
from aiosyncroom.client.player import PlayerNotReadyError
from aiosyncroom.client.reconciler import ReconciliationEngine
from aiosyncroom.models.room import RoomState
from aiosyncroom.models.types import PlayerStatus


def _engine(player: RecordingPlayer, clock: ManualClock) -> ReconciliationEngine:
    return ReconciliationEngine(player, EchoGuard("me", clock), clock)


def _state(clock: ManualClock, **kwargs: object) -> RoomState:
    values: dict[str, object] = {
        "item_id": "x",
        "position": 0.0,
        "is_playing": False,
        "updated_at": clock.now_ms(),
        "updated_by": "other",
        "update_seq": 1,
    }
    values.update(kwargs)
    return RoomState(**values)  # type: ignore[arg-type]


def test_apply_loads_starts_and_positions_the_player(
    player: RecordingPlayer, clock: ManualClock
) -> None:
    engine = _engine(player, clock)
    state = _state(clock, is_playing=True, updated_at=clock.now_ms() - 3_000)

    assert engine.apply(state)

    assert player.current_item() == "x"
    assert player.status() is PlayerStatus.PLAYING
    assert player.current_time() == pytest.approx(3.0)
    assert engine.room_state == state


def test_apply_is_idempotent(player: RecordingPlayer, clock: ManualClock) -> None:
    engine = _engine(player, clock)
    state = _state(clock, position=0.0)
    engine.apply(state)
    calls = list(player.calls)

    engine.apply(state)
    engine.apply(state)

    assert player.calls == calls == [("load_item", "x")]


def test_paused_room_pauses_a_playing_player(player: RecordingPlayer, clock: ManualClock) -> None:
    engine = _engine(player, clock)
    player.load_item("x")
    player.play()
    clock.advance(1.0)

    engine.apply(_state(clock, position=0.8, is_playing=False))

    assert player.status() is PlayerStatus.PAUSED
    # 0.2s of drift is tolerated
    assert player.current_time() == pytest.approx(1.0)


def test_drift_check_converges_within_threshold(
    player: RecordingPlayer, clock: ManualClock
) -> None:
    engine = _engine(player, clock)
    engine.apply(_state(clock, position=10.0, is_playing=True))
    player.seek(12.0)
    clock.advance(1.0)

    assert engine.check_drift()

    assert abs(player.current_time() - 11.0) <= 0.5
    assert not engine.check_drift()


def test_small_drift_is_left_alone(player: RecordingPlayer, clock: ManualClock) -> None:
    engine = _engine(player, clock)
    engine.apply(_state(clock, position=10.0, is_playing=True))
    player.seek(10.4)
    player.calls.clear()

    assert not engine.check_drift()
    assert player.calls == []


def test_two_clients_converge_three_seconds_after_a_publish(clock: ManualClock) -> None:
    late_player = RecordingPlayer(clock)
    late_player.load_item("x")
    late_player.seek(0.1)
    late_player.play()
    published = _state(clock, position=0.0, is_playing=True)

    clock.advance(3.0)
    late_player.seek(0.1)
    _engine(late_player, clock).apply(published)

    assert ("seek", pytest.approx(3.0)) in late_player.calls
    assert late_player.current_time() == pytest.approx(3.0)


def test_own_echo_matching_the_player_makes_no_calls(
    player: RecordingPlayer, clock: ManualClock
) -> None:
    guard = EchoGuard("me", clock)
    engine = ReconciliationEngine(player, guard, clock)
    player.load_item("mine")
    player.play()
    player.calls.clear()
    seq = guard.begin()
    guard.complete(seq, True)
    echo = _state(clock, item_id="mine", updated_by="me", update_seq=seq, is_playing=True)

    engine.apply(echo)

    assert player.calls == []
    assert engine.room_state == echo
    assert not guard.suppressing


def test_own_echo_carrying_another_clients_fields_is_applied(
    player: RecordingPlayer, clock: ManualClock
) -> None:
    guard = EchoGuard("me", clock)
    engine = ReconciliationEngine(player, guard, clock)
    player.load_item("old")
    seq = guard.begin()
    # Another client switched the item while our seek was in flight
    assert not engine.apply(_state(clock, item_id="new", updated_by="other"))
    guard.complete(seq, True)
    echo = _state(clock, item_id="new", position=10.0, updated_by="me", update_seq=seq)

    assert engine.apply(echo)

    assert player.current_item() == "new"
    assert player.current_time() == pytest.approx(10.0)


def test_stale_own_echo_is_not_applied(player: RecordingPlayer, clock: ManualClock) -> None:
    guard = EchoGuard("me", clock)
    engine = ReconciliationEngine(player, guard, clock)
    player.load_item("x")
    first = guard.begin()
    guard.complete(first, True)
    second = guard.begin()
    guard.complete(second, True)
    player.calls.clear()

    assert not engine.apply(_state(clock, position=40.0, updated_by="me", update_seq=first))

    assert player.calls == []
    assert guard.suppressing


def test_snapshots_during_a_write_are_not_recorded(
    player: RecordingPlayer, clock: ManualClock
) -> None:
    guard = EchoGuard("me", clock)
    engine = ReconciliationEngine(player, guard, clock)
    guard.begin()

    assert not engine.apply(_state(clock))

    assert engine.room_state is None
    assert player.calls == []
    assert not engine.check_drift()


def test_quiescence_skips_but_records(player: RecordingPlayer, clock: ManualClock) -> None:
    engine = _engine(player, clock)
    engine.apply(_state(clock, position=30.0))
    assert player.current_time() == pytest.approx(30.0)

    clock.advance(0.2)
    newer = _state(clock, position=50.0, update_seq=2)
    assert not engine.apply(newer)
    assert player.current_time() == pytest.approx(30.0)
    assert engine.room_state == newer

    clock.advance(0.4)
    assert engine.check_drift()
    assert player.current_time() == pytest.approx(50.0)


def test_room_without_item_leaves_the_player_alone(
    player: RecordingPlayer, clock: ManualClock
) -> None:
    engine = _engine(player, clock)

    engine.apply(_state(clock, item_id="", is_playing=True))

    assert player.calls == []


def test_player_errors_are_contained(clock: ManualClock) -> None:
    class LoadingPlayer(RecordingPlayer):
        def play(self) -> None:
            raise PlayerNotReadyError("still loading")

    class BrokenPlayer(RecordingPlayer):
        def load_item(self, item_id: str) -> None:
            raise RuntimeError("decoder crashed")

    for player in (LoadingPlayer(clock), BrokenPlayer(clock)):
        engine = _engine(player, clock)
        engine.apply(_state(clock, is_playing=True))
        assert engine.room_state is not None


def test_reconciling_does_not_mark_player_events_as_user_intent(
    player: RecordingPlayer, clock: ManualClock
) -> None:
    guard = EchoGuard("me", clock)
    engine = ReconciliationEngine(player, guard, clock)
    seen: list[bool] = []
    player.add_status_listener(lambda _status: seen.append(guard.applying))

    engine.apply(_state(clock, is_playing=True))

    assert seen == [True]


def test_drift_check_loads_an_item_skipped_during_quiescence(
    player: RecordingPlayer, clock: ManualClock
) -> None:
    engine = _engine(player, clock)
    engine.apply(_state(clock, position=30.0))
    clock.advance(0.2)
    assert not engine.apply(_state(clock, item_id="y", position=5.0, update_seq=2))
    assert player.current_item() == "x"

    clock.advance(2.0)
    engine.check_drift()

    assert player.current_item() == "y"
    assert player.current_time() == pytest.approx(5.0)
