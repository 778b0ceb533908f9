import json

from chugware_core import ClockSource, ContestRunner, HeatState, LatestValue, ParticipantStore, ResultStore
from chugware_core.contest import compute_eligible
from chugware_core.validation import Participant


class _FakeNow:
    def __init__(self, start=50.0):
        self.value = start

    def __call__(self):
        return self.value

    def advance(self, seconds):
        self.value += seconds


class _FakeFeed:
    def __init__(self, connected=True):
        self.connected = connected
        self.mailbox = LatestValue()

    def is_connected(self):
        return self.connected


def _roster():
    return [
        Participant(name="Alex", program="Eng", team="Red", bottle="1", half_tankard="2", full_tankard="0"),
        Participant(name="Bea", program="Law", team="Blue", bottle="3", half_tankard="1", full_tankard="1"),
        Participant(name="Cleo", program="Med", team="Blue", bottle="3", half_tankard="0", full_tankard="1"),
        Participant(name="Dan", program="Art", team="Red", bottle="0", half_tankard="0", full_tankard="0"),
    ]


def _runner(tmp_path, clock=None, discipline="Bottle", persist=True):
    participants = ParticipantStore(tmp_path / "participants.json" if persist else None)
    for p in _roster():
        participants.add(p)
    results = ResultStore(tmp_path / "results.json" if persist else None)
    now = _FakeNow()
    if clock is None:
        clock = ClockSource(tick_interval=60.0, now=now)
    return ContestRunner(participants, results, clock, discipline=discipline), now


def _saved_participant(tmp_path, name):
    rows = json.loads((tmp_path / "participants.json").read_text(encoding="utf-8"))
    return next(row for row in rows if row["name"] == name)


def _timed_heat(runner, now, seconds):
    assert runner.load_next().ok
    assert runner.ready_check().ok
    assert runner.start().ok
    now.advance(seconds)
    return runner.stop()


def test_eligible_ordered_by_tries_then_name():
    eligible = compute_eligible(_roster(), "Bottle")
    assert [p.name for p in eligible] == ["Bea", "Cleo", "Alex"]
    assert [p.name for p in compute_eligible(_roster(), "Half Tankard")] == ["Alex", "Bea"]
    assert compute_eligible(_roster(), "Team Clash") == []


def test_full_heat_stores_result_and_uses_one_try(tmp_path):
    runner, now = _runner(tmp_path)
    out = _timed_heat(runner, now, 5)
    assert out.ok
    assert out.state["state"] == "stopped"
    assert out.state["form"]["base_time"] == "00:00:05.0000"
    assert out.state["triesConsumed"] is True
    # The try is persisted as soon as the timer stops.
    assert _saved_participant(tmp_path, "Bea")["bottle"] == "2"

    out = runner.commit("Pass")
    assert out.ok
    assert out.cmd_payload["result"]["time"] == "00:00:05.0000"
    assert out.state["state"] == "idle"
    assert out.state["currentChugger"] is None
    assert _saved_participant(tmp_path, "Bea")["bottle"] == "2"

    saved = json.loads((tmp_path / "results.json").read_text(encoding="utf-8"))
    assert saved == [
        {
            "name": "Bea",
            "discipline": "Bottle",
            "time": "00:00:05.0000",
            "base_time": "00:00:05.0000",
            "additional_time": "",
            "status": "Pass",
            "comment": "",
        }
    ]
    assert [p["name"] for p in out.state["eligible"]] == ["Cleo", "Bea", "Alex"]


def test_start_requires_ready_check(tmp_path):
    runner, _ = _runner(tmp_path)
    out = runner.start()
    assert out.error is not None and out.error.message == "no participant loaded"
    runner.load_next()
    out = runner.start()
    assert out.error is not None and out.error.message == "ready check required before start"
    assert runner.state is HeatState.LOADED


def test_commit_rejected_while_timer_runs(tmp_path):
    runner, now = _runner(tmp_path)
    runner.load_next()
    runner.ready_check()
    runner.start()
    out = runner.commit("Pass")
    assert out.error is not None
    assert not out.snapshot_required
    assert runner.state is HeatState.RUNNING
    assert len(runner.results) == 0


def test_second_stop_is_a_no_op(tmp_path):
    runner, now = _runner(tmp_path)
    _timed_heat(runner, now, 2)
    out = runner.stop()
    assert out.ok
    assert not out.snapshot_required
    assert runner.participants.get("Bea").bottle == "2"


def test_zero_time_stop_does_not_use_a_try_until_commit(tmp_path):
    runner, now = _runner(tmp_path)
    out = _timed_heat(runner, now, 0)
    assert out.state["form"]["base_time"] == "00:00:00.0000"
    assert out.state["triesConsumed"] is False
    assert runner.participants.get("Bea").bottle == "3"

    assert runner.commit("Fail").ok
    assert runner.participants.get("Bea").bottle == "2"


def test_manual_result_without_timer_uses_a_try(tmp_path):
    runner, _ = _runner(tmp_path)
    runner.load_selected("Cleo")
    runner.set_form(base_time="6", additional_time="1.5")
    out = runner.commit("Pass", comment="manual entry")
    assert out.ok
    assert out.cmd_payload["result"]["time"] == "00:00:07.5000"
    assert out.cmd_payload["result"]["comment"] == "manual entry"
    assert _saved_participant(tmp_path, "Cleo")["bottle"] == "2"


def test_commit_pass_requires_a_time(tmp_path):
    runner, _ = _runner(tmp_path)
    runner.load_next()
    out = runner.commit("Pass")
    assert out.error is not None
    assert out.error.message == "time is required: fill in Time or Base Time + Additional Time"
    assert runner.current.name == "Bea"

    out = runner.commit("Fail")
    assert out.ok
    assert out.cmd_payload["result"]["status"] == "Fail"


def test_commit_rejects_bad_time_text(tmp_path):
    runner, _ = _runner(tmp_path)
    runner.load_next()
    runner.set_form(base_time="quick")
    out = runner.commit("Pass")
    assert out.error is not None and out.error.message == "invalid base time format: quick"
    assert len(runner.results) == 0


def test_nan_time_forces_disqualified(tmp_path):
    runner, _ = _runner(tmp_path)
    runner.load_next()
    runner.set_form(base_time="NaN")
    out = runner.commit("Pass")
    assert out.ok
    assert out.cmd_payload["result"]["status"] == "Disqualified"
    assert out.cmd_payload["result"]["time"] == "NaN"


def test_explicit_time_overrides_measured_parts(tmp_path):
    runner, now = _runner(tmp_path)
    _timed_heat(runner, now, 5)
    runner.set_form(time="9")
    out = runner.commit("Pass")
    row = out.cmd_payload["result"]
    assert row["time"] == "00:00:09.0000"
    assert row["base_time"] == "00:00:09.0000"
    assert row["additional_time"] == ""


def test_explicit_time_matching_parts_keeps_them(tmp_path):
    runner, now = _runner(tmp_path)
    _timed_heat(runner, now, 5)
    runner.set_form(additional_time="2")
    assert runner.calculate_final_time().ok
    out = runner.commit("Pass")
    row = out.cmd_payload["result"]
    assert row["time"] == "00:00:07.0000"
    assert row["base_time"] == "00:00:05.0000"
    assert row["additional_time"] == "00:00:02.0000"


def test_calculate_final_time_validates_and_locks(tmp_path):
    runner, _ = _runner(tmp_path)
    runner.load_next()
    runner.set_form(base_time="00:00:05.0000")
    out = runner.calculate_final_time()
    assert out.error is not None
    assert out.error.message == "the following fields are required: Additional Time"

    runner.set_form(additional_time="nan")
    out = runner.calculate_final_time()
    assert out.error is not None and out.error.message == "NaN is not accepted in: Additional Time"

    runner.set_form(additional_time="2")
    out = runner.calculate_final_time()
    assert out.ok
    assert out.state["form"]["time"] == "00:00:07.0000"
    assert out.state["form"]["locked_time"] == "00:00:07.0000"

    out = runner.set_form(time="00:00:01.0000")
    assert out.error is not None
    assert runner.form()["time"] == "00:00:07.0000"


def test_commit_bottle_choices(tmp_path):
    runner, now = _runner(tmp_path)
    _timed_heat(runner, now, 5)
    out = runner.commit_bottle("penalty", additional_time="3")
    assert out.cmd_payload["result"]["time"] == "00:00:08.0000"
    assert out.cmd_payload["result"]["status"] == "Pass"

    _timed_heat(runner, now, 4)
    out = runner.commit_bottle("clean", additional_time="10")
    assert out.cmd_payload["result"]["time"] == "00:00:04.0000"
    assert out.cmd_payload["result"]["additional_time"] == "00:00:00.0000"

    _timed_heat(runner, now, 6)
    out = runner.commit_bottle("overflow")
    row = out.cmd_payload["result"]
    assert row["status"] == "Disqualified"
    assert row["comment"] == "Overflow"
    assert row["time"] == "NaN"
    assert len(runner.results) == 3


def test_commit_bottle_penalty_keeps_requested_status(tmp_path):
    runner, now = _runner(tmp_path)
    _timed_heat(runner, now, 5)
    out = runner.commit_bottle("penalty", additional_time="1", requested_status="Fail")
    assert out.cmd_payload["result"]["status"] == "Fail"
    assert out.cmd_payload["result"]["comment"] == ""


def test_commit_bottle_only_for_bottle(tmp_path):
    runner, _ = _runner(tmp_path, discipline="Half Tankard")
    runner.load_next()
    runner.set_form(base_time="5")
    out = runner.commit_bottle("clean")
    assert out.error is not None
    assert len(runner.results) == 0


def test_skip_moves_on_to_participants_not_yet_skipped(tmp_path):
    runner, _ = _runner(tmp_path)
    assert runner.load_next().cmd_payload["name"] == "Bea"
    out = runner.skip()
    assert out.state["skipped"] == ["Bea"]
    assert out.state["state"] == "idle"
    assert runner.load_next().cmd_payload["name"] == "Cleo"
    runner.skip()
    assert runner.load_next().cmd_payload["name"] == "Alex"
    runner.skip()
    # Everybody skipped once: back to the top of the list.
    assert runner.load_next().cmd_payload["name"] == "Bea"
    # Skipping never costs a try.
    assert runner.participants.get("Cleo").bottle == "3"

    out = runner.clear_skipped()
    assert out.state["skipped"] == []


def test_queue_takes_priority_over_eligible_order(tmp_path):
    runner, _ = _runner(tmp_path)
    assert runner.enqueue("Alex").ok
    dup = runner.enqueue("Alex")
    assert dup.error is not None
    missing = runner.enqueue("Zed")
    assert missing.error is not None and missing.error.kind == "invariant"
    assert runner.queue() == ["Alex"]
    assert runner.load_next().cmd_payload["name"] == "Alex"
    assert runner.queue() == []


def test_load_rules(tmp_path):
    runner, _ = _runner(tmp_path)
    out = runner.load_selected("Dan")
    assert out.error is not None
    assert runner.load_selected("Cleo").ok
    out = runner.load_next()
    assert out.error is not None
    assert runner.current.name == "Cleo"


def test_no_participants_available(tmp_path):
    runner, _ = _runner(tmp_path, discipline="Team Clash")
    out = runner.load_next()
    assert out.error is not None and out.error.message == "no participants available"


def test_reset_clears_heat_but_keeps_persisted_data(tmp_path):
    runner, now = _runner(tmp_path)
    _timed_heat(runner, now, 3)
    out = runner.reset()
    assert out.state["state"] == "idle"
    assert out.state["currentChugger"] is None
    assert out.state["form"]["base_time"] == ""
    assert out.state["timerDisplay"] == "00:00:00.0000"
    assert len(runner.results) == 0
    assert _saved_participant(tmp_path, "Bea")["bottle"] == "2"


def test_set_discipline(tmp_path):
    runner, _ = _runner(tmp_path)
    out = runner.set_discipline("Half Tankard")
    assert out.ok
    assert [p["name"] for p in out.state["eligible"]] == ["Alex", "Bea"]
    runner.load_next()
    out = runner.set_discipline("Bottle")
    assert out.error is not None
    assert runner.discipline == "Half Tankard"


def test_snapshot_is_a_copy(tmp_path):
    runner, _ = _runner(tmp_path)
    out = runner.load_next()
    out.state["currentChugger"]["bottle"] = "99"
    out.state["eligible"].clear()
    assert runner.current.bottle == "3"
    assert len(runner.eligible()) == 3


def test_external_clock_heat(tmp_path):
    feed = _FakeFeed()
    runner, _ = _runner(tmp_path, clock=ClockSource(mode="external", feed=feed))
    runner.load_next()
    runner.ready_check()
    assert runner.start().ok
    feed.mailbox.put("0:00:06.5")
    feed.mailbox.put("0:00:07.123")
    out = runner.stop()
    assert out.ok
    assert out.state["form"]["base_time"] == "00:00:07.1230"
    assert runner.participants.get("Bea").bottle == "2"


def test_external_clock_without_data_keeps_the_try(tmp_path):
    feed = _FakeFeed()
    runner, _ = _runner(tmp_path, clock=ClockSource(mode="external", feed=feed))
    runner.load_next()
    runner.ready_check()
    runner.start()
    out = runner.stop()
    assert out.error is not None and out.error.kind == "device"
    assert out.state["state"] == "stopped"
    assert out.state["form"]["base_time"] == ""
    assert runner.participants.get("Bea").bottle == "3"


def test_external_clock_not_connected_blocks_start(tmp_path):
    runner, _ = _runner(tmp_path, clock=ClockSource(mode="external", feed=_FakeFeed(connected=False)))
    runner.load_next()
    runner.ready_check()
    out = runner.start()
    assert out.error is not None and out.error.kind == "device"
    assert runner.state is HeatState.READY


def test_save_failures_are_reported_but_result_is_kept(tmp_path):
    runner, now = _runner(tmp_path, persist=False)
    out = _timed_heat(runner, now, 2)
    assert out.error is not None and out.error.kind == "io"
    assert runner.participants.get("Bea").bottle == "2"

    out = runner.commit("Pass")
    assert out.error is not None and out.error.kind == "io"
    assert out.state["state"] == "idle"
    assert len(runner.results) == 1


def test_apply_command_full_flow(tmp_path):
    runner, now = _runner(tmp_path)
    for cmd in ({"type": "LOAD_NEXT"}, {"type": "READY_CHECK"}, {"type": "START_TIMER"}):
        assert runner.apply_command(cmd).ok
    now.advance(4.5)
    out = runner.apply_command({"type": "STOP_TIMER"})
    assert out.state["form"]["base_time"] == "00:00:04.5000"
    out = runner.apply_command({"type": "COMMIT", "status": "Pass", "comment": " fast "})
    assert out.ok
    assert out.cmd_payload["type"] == "COMMIT"
    assert out.cmd_payload["result"]["comment"] == "fast"
    assert out.cmd_payload["result"]["time"] == "00:00:04.5000"


def test_apply_command_rejects_invalid_commands(tmp_path):
    runner, _ = _runner(tmp_path)
    out = runner.apply_command({"type": "DANCE"})
    assert out.error is not None and out.error.kind == "validation"
    assert not out.snapshot_required
    assert out.cmd_payload["type"] == "DANCE"

    out = runner.apply_command({"type": "COMMIT"})
    assert out.error is not None and "COMMIT requires status" in out.error.message

    out = runner.apply_command({"type": "SET_DISCIPLINE", "discipline": "Keg Stand"})
    assert out.error is not None
    assert runner.discipline == "Bottle"

    out = runner.apply_command({"type": "COMMIT_BOTTLE", "choice": "spill"})
    assert out.error is not None


def test_apply_command_set_clock_mode(tmp_path):
    runner, _ = _runner(tmp_path)
    out = runner.apply_command({"type": "SET_CLOCK_MODE", "mode": "external"})
    assert out.ok
    assert out.state["clockMode"] == "external"


def test_skip_not_allowed_once_timer_started(tmp_path):
    runner, now = _runner(tmp_path)
    runner.load_next()
    runner.ready_check()
    runner.start()
    out = runner.skip()
    assert out.error is not None
    assert runner.skipped() == []
    assert runner.state is HeatState.RUNNING


def test_queue_skips_removed_and_exhausted_participants(tmp_path):
    runner, _ = _runner(tmp_path)
    assert runner.enqueue("Dan").ok  # no Bottle tries left
    assert runner.enqueue("Alex").ok
    assert runner.enqueue("Cleo").ok
    runner.participants.remove("Alex")

    out = runner.load_next()
    assert out.cmd_payload["name"] == "Cleo"
    assert runner.queue() == []

    runner.reset()
    out = runner.load_next()
    assert out.cmd_payload["name"] == "Bea"
    assert [p["name"] for p in out.state["eligible"]] == ["Bea", "Cleo"]
