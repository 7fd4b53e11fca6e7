"""TimerEngine is driven entirely by the `now_ms` passed to each call."""

import pytest

from StudyBackEnd.core.errors import InvalidTimerTransition
from StudyBackEnd.core.models import TimerSettings, TimerSnapshot
from StudyBackEnd.services.timer_engine import (
    IDLE,
    PAUSED,
    RUNNING,
    TimerEngine,
    next_pomodoro_phase,
)

T0 = 1_700_000_000_000
MIN = 60_000


def pomodoro_engine():
    return TimerEngine(TimerSnapshot(mode="pomodoro"))


class TestStopwatch:
    def test_pause_resume_scenario(self):
        engine = TimerEngine()
        engine.start(T0, "math")
        engine.pause(T0 + 300000)
        engine.resume(T0 + 360000)
        draft = engine.stop(T0 + 420000)
        assert draft.duration_ms == 360000
        assert draft.subject_id == "math"
        assert draft.ended_at_ms == T0 + 420000
        assert draft.started_at_ms == T0 + 60000
        assert engine.state == IDLE

    def test_states(self):
        engine = TimerEngine()
        assert engine.state == IDLE
        engine.start(T0, "math")
        assert engine.state == RUNNING
        engine.pause(T0 + 1000)
        assert engine.state == PAUSED

    def test_display_elapsed_is_pure(self):
        engine = TimerEngine()
        engine.start(T0, "math")
        assert engine.display_elapsed(T0 + 5000) == 5000
        assert engine.display_elapsed(T0 + 5000) == 5000
        assert engine.snapshot.accumulated_ms == 0

    def test_pause_at_zero_is_paused(self):
        engine = TimerEngine()
        engine.start(T0, "math")
        engine.pause(T0)
        assert engine.state == PAUSED
        engine.resume(T0 + 1000)
        assert engine.stop(T0 + 4000).duration_ms == 3000

    def test_snapshot_without_open_flag_derives_it(self):
        raw = TimerSnapshot(accumulated_ms=5000).to_dict()
        del raw["sessionOpen"]
        assert TimerEngine(TimerSnapshot.from_dict(raw)).state == PAUSED

    def test_restored_snapshot_gives_same_elapsed(self):
        engine = TimerEngine()
        engine.start(T0, "math")
        engine.pause(T0 + 1000)
        engine.resume(T0 + 2000)
        restored = TimerEngine(TimerSnapshot.from_dict(engine.snapshot.to_dict()))
        assert restored.display_elapsed(T0 + 9000) == engine.display_elapsed(T0 + 9000) == 8000

    def test_seeded_start(self):
        engine = TimerEngine()
        engine.start(T0, "math", "task", initial_elapsed_ms=90000)
        assert engine.stop(T0 + 10000).duration_ms == 100000

    def test_stop_keeps_selection_and_zeroes(self):
        engine = TimerEngine()
        engine.start(T0, "math", "task")
        engine.stop(T0 + 1000)
        s = engine.snapshot
        assert (s.subject_id, s.task_id, s.accumulated_ms, s.started_at_ms) == ("math", "task", 0, None)

    def test_cancel_drops_task_link(self):
        engine = TimerEngine()
        engine.start(T0, "math", "task")
        engine.cancel()
        assert engine.state == IDLE
        assert engine.snapshot.task_id is None


class TestInvalidTransitions:
    def test_start_needs_subject(self):
        with pytest.raises(InvalidTimerTransition):
            TimerEngine().start(T0, None)

    def test_start_twice(self):
        engine = TimerEngine()
        engine.start(T0, "math")
        with pytest.raises(InvalidTimerTransition):
            engine.start(T0 + 1, "math")

    def test_pause_idle(self):
        with pytest.raises(InvalidTimerTransition):
            TimerEngine().pause(T0)

    def test_resume_running(self):
        engine = TimerEngine()
        engine.start(T0, "math")
        with pytest.raises(InvalidTimerTransition):
            engine.resume(T0 + 1)

    def test_stop_idle(self):
        with pytest.raises(InvalidTimerTransition):
            TimerEngine().stop(T0)

    def test_mode_change_while_running(self):
        engine = TimerEngine()
        engine.start(T0, "math")
        with pytest.raises(InvalidTimerTransition):
            engine.set_mode("pomodoro")


class TestSwitchTask:
    def test_running_switch_closes_segment(self):
        engine = TimerEngine()
        engine.start(T0, "math", "a")
        draft = engine.switch_task("b", T0 + 1000)
        assert (draft.task_id, draft.duration_ms) == ("a", 1000)
        assert engine.state == RUNNING
        assert engine.stop(T0 + 3000).duration_ms == 2000
        assert engine.snapshot.task_id == "b"

    def test_paused_switch_stays_paused(self):
        engine = TimerEngine()
        engine.start(T0, "math", "a")
        engine.pause(T0 + 1000)
        draft = engine.switch_task("b", T0 + 2000)
        assert (draft.task_id, draft.duration_ms) == ("a", 1000)
        assert engine.state == PAUSED
        engine.resume(T0 + 3000)
        assert engine.stop(T0 + 5000).duration_ms == 2000

    def test_idle_switch_has_no_draft(self):
        engine = TimerEngine()
        assert engine.switch_task("b", T0) is None
        assert engine.snapshot.task_id == "b"

    def test_same_task_is_noop(self):
        engine = TimerEngine()
        engine.start(T0, "math", "a")
        assert engine.switch_task("a", T0 + 1000) is None
        assert engine.display_elapsed(T0 + 1000) == 1000


class TestPomodoro:
    def test_phase_order(self):
        assert next_pomodoro_phase("focus", 0, 4) == ("shortBreak", 1)
        assert next_pomodoro_phase("focus", 3, 4) == ("longBreak", 4)
        assert next_pomodoro_phase("shortBreak", 1, 4) == ("focus", 1)
        assert next_pomodoro_phase("longBreak", 4, 4) == ("focus", 4)

    def test_not_due_yet(self):
        engine = pomodoro_engine()
        engine.start(T0, "math")
        assert engine.complete_phase_if_due(T0 + 24 * MIN, TimerSettings()) is None
        assert engine.phase_remaining(T0 + 24 * MIN, TimerSettings()) == MIN

    def test_focus_completion_at_due_instant(self):
        engine = pomodoro_engine()
        engine.start(T0, "math")
        completion = engine.complete_phase_if_due(T0 + 26 * MIN, TimerSettings())
        assert completion.finished_phase == "focus"
        assert completion.next_phase == "shortBreak"
        assert completion.ended_at_ms == T0 + 25 * MIN
        assert completion.draft.duration_ms == 25 * MIN
        assert completion.draft.is_study_time
        assert engine.state == IDLE
        assert engine.snapshot.phase == "shortBreak"
        assert engine.snapshot.cycle_count == 1

    def test_auto_start_runs_from_due_instant(self):
        engine = pomodoro_engine()
        settings = TimerSettings(auto_start_next_phase=True)
        engine.start(T0, "math")
        engine.complete_phase_if_due(T0 + 26 * MIN, settings)
        assert engine.state == RUNNING
        assert engine.display_phase_elapsed(T0 + 26 * MIN) == MIN
        completion = engine.complete_phase_if_due(T0 + 31 * MIN, settings)
        assert completion.finished_phase == "shortBreak"
        assert completion.draft is None

    def test_paused_time_does_not_count_toward_phase(self):
        engine = pomodoro_engine()
        engine.start(T0, "math")
        engine.pause(T0 + 10 * MIN)
        engine.resume(T0 + 20 * MIN)
        assert engine.complete_phase_if_due(T0 + 30 * MIN, TimerSettings()) is None
        assert engine.complete_phase_if_due(T0 + 35 * MIN, TimerSettings()) is not None

    def test_break_stop_is_not_study_time(self):
        engine = pomodoro_engine()
        engine.start(T0, "math")
        engine.complete_phase_if_due(T0 + 25 * MIN, TimerSettings())
        engine.start(T0 + 25 * MIN, "math")
        draft = engine.stop(T0 + 27 * MIN)
        assert draft.phase == "shortBreak"
        assert not draft.is_study_time
