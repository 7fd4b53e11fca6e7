from app import status_lines

MIN = 60_000


class TestStatusLines:
    def test_no_profile(self, storage, clock):
        from StudyBackEnd.services.app_store import AppStore

        assert status_lines(AppStore(storage, clock=clock)) == ["No active profile."]

    def test_summary(self, store, clock, math_id):
        store.start_timer(math_id)
        clock.advance(90 * MIN)
        store.stop_timer()
        lines = status_lines(store)
        assert lines[0] == "Profile: Alice"
        assert lines[1] == "Timer: idle (stopwatch) 00:00:00"
        assert lines[2] == "Today: 01:30:00  (10% productive)"
        assert lines[3] == "Streak: 1 day(s)"
        assert lines[4] == "Best day: 2024-03-13 (90 min)"
