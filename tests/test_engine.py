import itertools
import logging
import random

from heartsock.commands import (
    OK,
    PONG,
    TRACKER_CONFLICT,
    UNKNOWN_INPUT,
    UNKNOWN_KEY,
    GetVal,
    Ping,
    Reject,
    SetVal,
)
from heartsock.engine import BroadcastEngine, Connected, Disconnected
from heartsock.registry import NO_SESSION
from heartsock.values import TrackedKey

from .helpers import connect

SNAPSHOT_ZERO = ["tracker: 0", "bpm: 0", "battery: 0"]


async def test_connect_receives_snapshot(engine):
    sid, inbox = await connect(engine)
    assert sid == 1
    assert inbox == SNAPSHOT_ZERO


async def test_ping_and_get_reply_to_sender_only(engine):
    a, a_inbox = await connect(engine)
    b, b_inbox = await connect(engine)
    a_inbox.clear()
    b_inbox.clear()

    engine.submit(Ping(a))
    engine.submit(GetVal(a, "bpm"))
    engine.submit(GetVal(a, "tracker"))
    engine.submit(GetVal(a, "temperature"))
    engine.submit(Reject(a, UNKNOWN_INPUT))
    await engine.join()

    assert a_inbox == [PONG, "bpm: 0", "tracker: 0", UNKNOWN_KEY, UNKNOWN_INPUT]
    assert b_inbox == []


async def test_first_set_claims_tracker(engine):
    a, a_inbox = await connect(engine)
    b, b_inbox = await connect(engine)
    a_inbox.clear()
    b_inbox.clear()

    engine.submit(SetVal(a, TrackedKey.BPM, 72))
    await engine.join()

    assert engine.registry.tracker_id == a
    assert a_inbox == [OK]
    assert b_inbox == ["tracker: 1", "bpm: 72"]


async def test_other_session_cannot_write(engine):
    a, a_inbox = await connect(engine)
    b, b_inbox = await connect(engine)
    engine.submit(SetVal(a, TrackedKey.BPM, 72))
    await engine.join()
    a_inbox.clear()
    b_inbox.clear()

    engine.submit(SetVal(b, TrackedKey.BPM, 90))
    engine.submit(SetVal(b, TrackedKey.BATTERY, 50))
    await engine.join()

    assert b_inbox == [TRACKER_CONFLICT, TRACKER_CONFLICT]
    assert a_inbox == []
    assert engine.store.as_dict() == {"tracker": 1, "bpm": 72, "battery": 0}
    assert engine.registry.tracker_id == a


async def test_unchanged_write_is_acknowledged_but_silent(engine):
    a, a_inbox = await connect(engine)
    b, b_inbox = await connect(engine)
    engine.submit(SetVal(a, TrackedKey.BPM, 72))
    await engine.join()
    a_inbox.clear()
    b_inbox.clear()

    engine.submit(SetVal(a, TrackedKey.BPM, 72))
    await engine.join()

    assert a_inbox == [OK]
    assert b_inbox == []


async def test_claim_with_value_equal_to_current(engine):
    a, a_inbox = await connect(engine)
    b, b_inbox = await connect(engine)
    a_inbox.clear()
    b_inbox.clear()

    engine.submit(SetVal(a, TrackedKey.BATTERY, 0))
    await engine.join()

    assert a_inbox == [OK]
    assert b_inbox == ["tracker: 1"]


async def test_tracker_never_receives_own_changes(engine):
    a, a_inbox = await connect(engine)
    a_inbox.clear()
    for bpm in (60, 61, 62):
        engine.submit(SetVal(a, TrackedKey.BPM, bpm))
    await engine.join()
    assert a_inbox == [OK, OK, OK]


async def test_tracker_disconnect_releases_claim(engine):
    a, _ = await connect(engine)
    b, b_inbox = await connect(engine)
    c, c_inbox = await connect(engine)
    engine.submit(SetVal(a, TrackedKey.BPM, 72))
    await engine.join()
    b_inbox.clear()
    c_inbox.clear()

    engine.close_session(a)
    await engine.join()

    assert engine.registry.tracker_id == NO_SESSION
    assert engine.store.get("tracker") == 0
    assert b_inbox == ["tracker: 0"]
    assert c_inbox == ["tracker: 0"]

    # the slot is free again: first come wins
    engine.submit(SetVal(c, TrackedKey.BPM, 75))
    engine.submit(SetVal(b, TrackedKey.BPM, 76))
    await engine.join()
    assert engine.registry.tracker_id == c
    assert b_inbox == ["tracker: 0", "tracker: 1", "bpm: 75", TRACKER_CONFLICT]


async def test_non_tracker_disconnect_is_silent(engine):
    a, a_inbox = await connect(engine)
    b, b_inbox = await connect(engine)
    engine.submit(SetVal(a, TrackedKey.BPM, 72))
    await engine.join()
    a_inbox.clear()

    engine.close_session(b)
    await engine.join()

    assert a_inbox == []
    assert engine.registry.tracker_id == a


async def test_late_joiner_sees_committed_values(engine):
    a, _ = await connect(engine)
    engine.submit(SetVal(a, TrackedKey.BPM, 72))
    engine.submit(SetVal(a, TrackedKey.BATTERY, 88))
    # queued behind the writes, so its snapshot must include them
    late_inbox = []
    engine.open_session(late_inbox.append)
    engine.submit(SetVal(a, TrackedKey.BPM, 73))
    await engine.join()

    assert late_inbox == ["tracker: 1", "bpm: 72", "battery: 88", "bpm: 73"]


async def test_commands_from_departed_session_are_dropped(engine):
    a, a_inbox = await connect(engine)
    b, b_inbox = await connect(engine)
    engine.close_session(a)
    engine.submit(Ping(a))
    engine.submit(SetVal(a, TrackedKey.BPM, 99))
    await engine.join()

    assert engine.registry.tracker_id == NO_SESSION
    assert engine.store.get("bpm") == 0
    assert a_inbox == SNAPSHOT_ZERO
    assert b_inbox == SNAPSHOT_ZERO


async def test_unknown_disconnect_is_tolerated(engine, caplog):
    _, inbox = await connect(engine)
    engine.close_session(42)
    await engine.join()
    assert "unknown session 42" in caplog.text
    engine.submit(Ping(1))
    await engine.join()
    assert inbox[-1] == PONG


async def test_failing_send_does_not_stop_broadcast(engine):
    a, _ = await connect(engine)

    def broken(text):
        raise RuntimeError("socket gone")

    engine.open_session(broken)
    c, c_inbox = await connect(engine)
    engine.submit(SetVal(a, TrackedKey.BPM, 70))
    await engine.join()
    assert c_inbox[-2:] == ["tracker: 1", "bpm: 70"]


async def test_on_change_hook_sees_committed_changes(engine):
    changes = []
    engine.on_change = lambda key, value: changes.append((key, value))
    a, _ = await connect(engine)
    engine.submit(SetVal(a, TrackedKey.BPM, 70))
    engine.submit(SetVal(a, TrackedKey.BPM, 70))
    engine.submit(SetVal(a, TrackedKey.BATTERY, 9))
    engine.close_session(a)
    await engine.join()
    assert changes == [
        (TrackedKey.TRACKER, 1),
        (TrackedKey.BPM, 70),
        (TrackedKey.BATTERY, 9),
        (TrackedKey.TRACKER, 0),
    ]


def test_status():
    engine = BroadcastEngine()
    engine.process(Connected(1, lambda text: None))
    engine.process(Connected(2, lambda text: None))
    engine.process(SetVal(2, TrackedKey.BPM, 64))
    assert engine.status() == {
        "sessions": [1, 2],
        "tracker": 2,
        "values": {"tracker": 1, "bpm": 64, "battery": 0},
    }


def test_random_connect_disconnect_sequences_keep_tracker_valid():
    rng = random.Random(1234)
    engine = BroadcastEngine()
    inboxes = {}
    ids = itertools.count(1)
    for _ in range(2000):
        live = engine.registry.ids()
        roll = rng.random()
        if roll < 0.3 or not live:
            sid = next(ids)
            inboxes[sid] = []
            engine.process(Connected(sid, inboxes[sid].append))
        elif roll < 0.55:
            sid = rng.choice(live)
            engine.process(Disconnected(sid))
        else:
            sid = rng.choice(live)
            key = rng.choice([TrackedKey.BPM, TrackedKey.BATTERY])
            engine.process(SetVal(sid, key, rng.randrange(256)))

        tracker = engine.registry.tracker_id
        assert tracker == NO_SESSION or tracker in engine.registry
        assert engine.store.get("tracker") == (1 if tracker else 0)


async def test_scenario_from_protocol_walkthrough(engine):
    s1, in1 = await connect(engine)
    assert sorted(in1) == sorted(SNAPSHOT_ZERO)
    in1.clear()

    engine.submit(SetVal(s1, TrackedKey.BPM, 72))
    await engine.join()
    assert in1 == [OK]

    s2, in2 = await connect(engine)
    assert sorted(in2) == sorted(["tracker: 1", "bpm: 72", "battery: 0"])
    in2.clear()

    engine.submit(SetVal(s2, TrackedKey.BPM, 80))
    await engine.join()
    assert in2 == [TRACKER_CONFLICT]
    assert engine.store.get("bpm") == 72
    in2.clear()

    engine.submit(SetVal(s1, TrackedKey.BPM, 80))
    await engine.join()
    assert in1 == [OK, OK]
    assert in2 == ["bpm: 80"]

    engine.close_session(s1)
    await engine.join()
    assert in2 == ["bpm: 80", "tracker: 0"]


async def test_engine_assigns_increasing_nonzero_ids(engine):
    ids = [engine.open_session(lambda text: None) for _ in range(5)]
    assert ids == [1, 2, 3, 4, 5]
    assert NO_SESSION not in ids
    # registration happens on the serialized path, not at allocation
    assert len(engine.registry) == 0
    await engine.join()
    assert engine.registry.ids() == ids


async def test_each_command_is_logged_at_debug(engine, caplog):
    caplog.set_level(logging.DEBUG, logger="heartsock.engine")
    a, _ = await connect(engine)
    engine.submit(Ping(a))
    engine.submit(SetVal(a, TrackedKey.BPM, 70))
    await engine.join()
    messages = [r.getMessage() for r in caplog.records if r.levelno == logging.DEBUG]
    assert f"Session {a}: Ping(session_id={a})" in messages
    assert any(m.startswith(f"Session {a}: SetVal(") for m in messages)
