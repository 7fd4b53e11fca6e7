from reset_stats import reset_active_profile

MIN = 60_000


def with_session(store, clock, math_id):
    store.start_timer(math_id)
    clock.advance(MIN)
    store.stop_timer()
    return store


class TestResetActiveProfile:
    def test_confirmed(self, store, clock, math_id):
        with_session(store, clock, math_id)
        assert reset_active_profile(store, ask=lambda _: "yes") is True
        assert store.data.sessions == []
        assert store.active_profile().name == "Alice"

    def test_declined(self, store, clock, math_id):
        with_session(store, clock, math_id)
        assert reset_active_profile(store, ask=lambda _: "n") is False
        assert len(store.data.sessions) == 1

    def test_no_database(self):
        assert reset_active_profile(ask=lambda _: "yes") is False
