import json

import pytest

from StudyBackEnd.core import config
from StudyBackEnd.core.errors import ReferentialGap, StorageUnavailable
from StudyBackEnd.services.app_store import AppStore
from StudyBackEnd.services.timer_engine import IDLE, PAUSED, RUNNING

MIN = 60_000


def reopen(storage, clock):
    return AppStore(storage, clock=clock)


class TestStopwatchFlow:
    def test_pause_resume_scenario(self, store, clock, math_id):
        assert store.start_timer(math_id)
        clock.advance(300000)
        store.pause_timer()
        clock.advance(60000)
        store.resume_timer()
        clock.advance(60000)
        session = store.stop_timer()
        assert session.duration_ms == 360000
        assert session.subject_id == math_id
        assert store.data.sessions == [session]
        assert store.pending_reflection.session_id == session.id
        assert store.timer_state == IDLE

    def test_zero_length_stop_records_nothing(self, store, math_id):
        store.start_timer(math_id)
        assert store.stop_timer() is None
        assert store.data.sessions == []

    def test_invalid_transitions_are_noops(self, store, math_id):
        assert store.pause_timer() is False
        assert store.resume_timer() is False
        assert store.stop_timer() is None
        store.start_timer(math_id)
        assert store.start_timer(math_id) is False
        assert store.timer_state == RUNNING

    def test_task_switch_while_paused_keeps_session_open(self, store, clock, math_id):
        first = store.add_task("A", subject_id=math_id)
        second = store.add_task("B", subject_id=math_id)
        store.start_timer(math_id, first.id)
        clock.advance(MIN)
        store.pause_timer()
        closed = store.select_task(second.id)
        assert (closed.task_id, closed.duration_ms) == (first.id, MIN)
        assert store.timer_state == PAUSED
        assert store.resume_timer() is True
        clock.advance(2 * MIN)
        assert store.stop_timer().task_id == second.id
        assert [s.duration_ms for s in store.data.sessions] == [MIN, 2 * MIN]

    def test_pause_at_zero_can_resume(self, store, math_id):
        store.start_timer(math_id)
        store.pause_timer()
        assert store.timer_state == PAUSED
        assert store.resume_timer() is True

    def test_overlong_session_is_clamped(self, store, clock, math_id):
        store.start_timer(math_id)
        clock.advance(8 * 24 * 60 * MIN)
        session = store.stop_timer()
        assert session.duration_ms == config.MAX_SESSION_SECONDS * 1000
        exported = store.export_profile_data()
        imported = store.import_profile_data(exported)
        assert imported.sessions == store.data.sessions == [session]

    def test_start_without_subject_is_noop(self, store):
        assert store.start_timer() is False
        assert store.timer_state == IDLE

    def test_cancel_guard(self, store, clock, math_id):
        store.start_timer(math_id)
        clock.advance(MIN)
        assert store.cancel_timer() is False
        assert store.timer_state == RUNNING
        assert store.cancel_timer(force=True) is True
        assert store.timer_state == IDLE
        assert store.data.sessions == []

    def test_cancel_without_guard(self, store, clock, math_id):
        store.update_timer_settings(prevent_accidental_reset=False)
        store.start_timer(math_id)
        clock.advance(MIN)
        assert store.cancel_timer() is True

    def test_data_is_a_copy(self, store):
        snapshot = store.data
        snapshot.sessions.append("junk")
        assert store.data.sessions == []


class TestPersistence:
    def test_running_timer_survives_reload(self, store, storage, clock, math_id):
        store.start_timer(math_id)
        clock.advance(5 * MIN)
        store.pause_timer()
        clock.advance(MIN)
        store.resume_timer()
        clock.advance(2 * MIN)
        before = store.display_elapsed()
        reloaded = reopen(storage, clock)
        assert reloaded.display_elapsed() == before == 7 * MIN
        assert reloaded.timer_state == RUNNING

    def test_paused_timer_survives_reload(self, store, storage, clock, math_id):
        store.start_timer(math_id)
        clock.advance(MIN)
        store.pause_timer()
        reloaded = reopen(storage, clock)
        assert reloaded.timer_state == PAUSED
        clock.advance(10 * MIN)
        assert reloaded.display_elapsed() == MIN

    def test_reload_gives_equal_data(self, store, storage, clock, math_id):
        store.start_timer(math_id)
        clock.advance(MIN)
        store.stop_timer()
        assert reopen(storage, clock).data == store.data

    def test_storage_failure_propagates(self, store, storage, math_id):
        storage.fail_writes = True
        with pytest.raises(StorageUnavailable):
            store.start_timer(math_id)

    def test_corrupt_profile_data(self, store, storage, clock):
        profile = store.active_profile()
        storage.set(config.profile_data_key(profile.id), "not json at all")
        reloaded = reopen(storage, clock)
        assert reloaded.active_profile().id == profile.id
        assert reloaded.data.version == config.APP_SCHEMA_VERSION
        assert reloaded.data.sessions == []

    def test_no_profile(self, storage, clock):
        store = AppStore(storage, clock=clock)
        assert store.data is None
        assert store.start_timer("x") is False
        assert store.display_elapsed() == 0
        assert store.complete_phase_if_due() == []


class TestProfiles:
    def test_switching_isolates_data(self, store, clock, math_id):
        alice = store.active_profile()
        store.start_timer(math_id)
        clock.advance(MIN)
        store.stop_timer()
        store.create_profile("Bob")
        assert store.data.sessions == []
        assert store.data.subjects == []
        store.switch_profile(alice.id)
        assert len(store.data.sessions) == 1

    def test_failed_switch_leaves_store_consistent(self, store, storage, math_id):
        alice = store.active_profile()
        store.create_profile("Bob")
        storage.fail_writes = True
        with pytest.raises(StorageUnavailable):
            store.switch_profile(alice.id)
        assert store.active_profile().name == "Bob"
        assert store.active_profile().id == store.data.profile_id

    def test_reset_current_profile(self, store, clock, math_id):
        store.start_timer(math_id)
        clock.advance(MIN)
        store.stop_timer()
        store.reset_current_profile_data()
        assert store.data.sessions == []
        assert store.pending_reflection is None


class TestPomodoro:
    def test_focus_completion_records_session(self, store, clock, math_id):
        store.set_timer_mode("pomodoro")
        store.start_timer(math_id)
        clock.advance(26 * MIN)
        completions = store.complete_phase_if_due()
        assert [c.finished_phase for c in completions] == ["focus"]
        (session,) = store.data.sessions
        assert session.duration_ms == 25 * MIN
        assert session.phase == "focus"
        assert store.timer_state == IDLE
        assert store.data.timer.phase == "shortBreak"

    def test_catch_up_after_absence(self, store, clock, math_id):
        store.set_timer_mode("pomodoro")
        store.update_timer_settings(auto_start_next_phase=True)
        store.start_timer(math_id)
        clock.advance(60 * MIN)
        completions = store.complete_phase_if_due()
        assert [c.finished_phase for c in completions] == ["focus", "shortBreak", "focus", "shortBreak"]
        assert [s.duration_ms for s in store.data.sessions] == [25 * MIN, 25 * MIN]
        recorded = [c.session.id for c in completions if c.session is not None]
        assert recorded == [s.id for s in store.data.sessions]
        assert store.timer_state == RUNNING
        assert store.data.timer.cycle_count == 2

    def test_break_stop_records_nothing(self, store, clock, math_id):
        store.set_timer_mode("pomodoro")
        store.start_timer(math_id)
        clock.advance(25 * MIN)
        store.complete_phase_if_due()
        store.start_timer()
        clock.advance(2 * MIN)
        assert store.stop_timer() is None
        assert len(store.data.sessions) == 1

    def test_mode_change_needs_idle(self, store, math_id):
        store.start_timer(math_id)
        assert store.set_timer_mode("pomodoro") is False
        assert store.data.timer.mode == "stopwatch"


class TestSessionsAndTasks:
    def test_reflection(self, store, clock, math_id):
        store.start_timer(math_id)
        clock.advance(MIN)
        session = store.stop_timer()
        updated = store.save_session_reflection(session.id, "productive", "good run")
        assert updated.reflection_rating == "productive"
        assert store.pending_reflection is None

    def test_skipped_reflection_stays_unrated(self, store, clock, math_id):
        store.start_timer(math_id)
        clock.advance(MIN)
        store.stop_timer()
        store.dismiss_pending_reflection()
        assert store.data.sessions[0].reflection_rating is None

    def test_task_totals_follow_ledger(self, store, clock, math_id):
        task = store.add_task("Chapter 3", subject_id=math_id)
        store.start_timer(math_id, task.id)
        clock.advance(10 * MIN)
        session = store.stop_timer()
        assert store.data.find_task(task.id).total_time_seconds == 600
        store.update_session_duration(session.id, 5 * MIN)
        assert store.data.find_task(task.id).total_time_seconds == 300
        removed = store.delete_session(session.id)
        assert removed.task_id == task.id
        assert store.data.find_task(task.id).total_time_seconds == 0

    def test_switching_task_while_running(self, store, clock, math_id):
        first = store.add_task("A", subject_id=math_id)
        second = store.add_task("B", subject_id=math_id)
        store.start_timer(math_id, first.id)
        clock.advance(4 * MIN)
        closed = store.select_task(second.id)
        assert (closed.task_id, closed.duration_ms) == (first.id, 4 * MIN)
        clock.advance(6 * MIN)
        store.stop_timer()
        totals = {t.title: t.total_time_seconds for t in store.data.tasks}
        assert totals == {"A": 240, "B": 360}
        assert sum(s.duration_ms for s in store.data.sessions) == 10 * MIN

    def test_selecting_task_selects_its_subject(self, store, math_id):
        task = store.add_task("A", subject_id=math_id)
        store.select_task(task.id)
        assert store.start_timer() is True
        assert store.data.timer.subject_id == math_id

    def test_backlog_task_category(self, store):
        task = store.add_task("Someday", bucket="backlog")
        assert store.data.find_category(task.category_id).name == "Backlog"


class TestContinuation:
    def finished_session(self, store, clock, math_id, task_id=None):
        store.start_timer(math_id, task_id)
        clock.advance(10 * MIN)
        return store.stop_timer()

    def test_handoff_is_read_once(self, store, storage, clock, math_id):
        session = self.finished_session(store, clock, math_id)
        request = store.request_continuation(session.id)
        assert json.loads(storage.get(config.CONTINUE_SESSION_KEY))["sessionId"] == session.id
        assert store.take_continuation() == request
        assert store.take_continuation() is None
        assert storage.get(config.CONTINUE_SESSION_KEY) is None

    def test_missing_subject(self, store, clock, math_id):
        session = self.finished_session(store, clock, math_id)
        store.delete_subject(math_id)
        with pytest.raises(ReferentialGap) as excinfo:
            store.request_continuation(session.id)
        assert excinfo.value.kind == "subject"

    def test_missing_task(self, store, clock, math_id):
        task = store.add_task("A", subject_id=math_id)
        session = self.finished_session(store, clock, math_id, task.id)
        store.delete_task(task.id)
        with pytest.raises(ReferentialGap) as excinfo:
            store.request_continuation(session.id)
        assert excinfo.value.kind == "task"

    def test_continue_counts_time_once(self, store, clock, math_id):
        session = self.finished_session(store, clock, math_id)
        store.request_continuation(session.id)
        assert store.continue_session() is True
        assert store.data.sessions == []
        assert store.display_elapsed() == 10 * MIN
        clock.advance(5 * MIN)
        merged = store.stop_timer()
        assert merged.duration_ms == 15 * MIN
        assert [s.duration_ms for s in store.data.sessions] == [15 * MIN]

    def test_new_task_mode_only_preselects_subject(self, store, clock, math_id):
        session = self.finished_session(store, clock, math_id)
        store.select_subject(None)
        store.request_continuation(session.id, mode="new-task")
        assert store.continue_session() is True
        assert store.data.sessions == [session]
        assert store.timer_state == IDLE
        assert store.display_elapsed() == 0
        assert store.data.timer.subject_id == math_id

    def test_garbled_handoff_is_dropped(self, store, storage):
        storage.set(config.CONTINUE_SESSION_KEY, "{oops")
        assert store.take_continuation() is None
        assert storage.get(config.CONTINUE_SESSION_KEY) is None


class TestImportExport:
    def test_full_export_round_trip(self, store, clock, math_id):
        store.start_timer(math_id)
        clock.advance(MIN)
        store.stop_timer()
        exported = store.export_profile_data()
        document = json.loads(exported)
        assert document["schemaVersion"] == 1
        assert document["profile"]["name"] == "Alice"

        original = store.data
        store.create_profile("Copy")
        imported = store.import_profile_data(exported)
        assert imported.sessions == original.sessions
        assert imported.subjects == original.subjects
        assert imported.profile_id == store.active_profile().id

    def test_garbage_import_is_rejected(self, store):
        assert store.import_profile_data("not json") is None
        assert store.import_profile_data(json.dumps({"hello": "world"})) is None

    def test_analytics(self, store, clock, math_id):
        store.start_timer(math_id)
        clock.advance(30 * MIN)
        store.stop_timer()
        assert store.analytics().today_ms == 30 * MIN
