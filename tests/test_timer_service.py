"""TimerService ticks are driven by calling _on_tick directly; no event loop runs."""

from StudyBackEnd.services.timer_service import TimerService

MIN = 60_000


def record(signal):
    seen = []
    signal.connect(lambda *args: seen.append(args if len(args) > 1 else args[0]))
    return seen


class TestTimerService:
    def test_start_pause_stop_signals(self, qapp, store, clock, math_id):
        service = TimerService(store)
        states = record(service.state_changed)
        recorded = record(service.session_recorded)

        service.start(math_id)
        assert service.ticking
        clock.advance(MIN)
        service.pause_resume()
        assert not service.ticking
        service.pause_resume()
        clock.advance(MIN)
        session = service.stop()

        assert states == ["running", "paused", "running", "idle"]
        assert recorded == [session.id]
        assert session.duration_ms == 2 * MIN

    def test_tick_emits_elapsed_without_writing(self, qapp, store, storage, clock, math_id):
        service = TimerService(store)
        service.start(math_id)
        before = dict((k, storage.get(k)) for k in storage.keys())
        ticks = record(service.tick)
        clock.advance(3000)
        service._on_tick()
        assert ticks == [3000]
        assert dict((k, storage.get(k)) for k in storage.keys()) == before

    def test_tick_completes_pomodoro_phase(self, qapp, store, clock, math_id):
        store.set_timer_mode("pomodoro")
        service = TimerService(store)
        phases = record(service.phase_completed)
        recorded = record(service.session_recorded)
        service.start(math_id)
        clock.advance(25 * MIN)
        service._on_tick()
        assert phases == [("focus", "shortBreak")]
        assert recorded == [store.data.sessions[0].id]
        assert not service.ticking

    def test_catch_up_emits_each_session_id(self, qapp, store, clock, math_id):
        store.set_timer_mode("pomodoro")
        store.update_timer_settings(auto_start_next_phase=True)
        service = TimerService(store)
        recorded = record(service.session_recorded)
        service.start(math_id)
        clock.advance(60 * MIN)
        service._on_tick()
        assert recorded == [s.id for s in store.data.sessions]
        assert len(set(recorded)) == 2
        assert service.ticking

    def test_restores_running_timer(self, qapp, store, clock, math_id):
        store.start_timer(math_id)
        clock.advance(MIN)
        service = TimerService(store)
        ticks = record(service.tick)
        service.resume_active_session()
        assert service.ticking
        assert ticks == [MIN]

    def test_cancel_respects_guard(self, qapp, store, clock, math_id):
        service = TimerService(store)
        service.start(math_id)
        clock.advance(MIN)
        assert service.cancel() is False
        assert service.cancel(force=True) is True
        assert not service.ticking
