from intakegenie.session_store import SessionStore


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestSessionStore:
    def test_get_or_create_returns_same_session(self):
        store = SessionStore()
        a = store.get_or_create("CA1")
        b = store.get_or_create("CA1")
        assert a is b
        assert len(store) == 1

    def test_defaults_applied_on_create(self):
        store = SessionStore()
        s = store.get_or_create("CA1", firm_name="Smith Jones Law")
        assert s.firm_name == "Smith Jones Law"

    def test_calls_are_independent(self):
        store = SessionStore()
        store.get_or_create("CA1").snapshot["full_name"] = "Jane"
        assert store.get_or_create("CA2").snapshot == {}

    def test_delete(self):
        store = SessionStore()
        store.get_or_create("CA1")
        store.delete("CA1")
        assert "CA1" not in store
        store.delete("CA1")  # idempotent

    def test_sweep_evicts_idle_sessions(self):
        clock = FakeClock()
        store = SessionStore(ttl_seconds=60, clock=clock)
        store.get_or_create("CA_old")
        clock.now = 50
        store.get_or_create("CA_new")
        clock.now = 61
        assert store.sweep() == ["CA_old"]
        assert "CA_new" in store

    def test_update_refreshes_activity(self):
        clock = FakeClock()
        store = SessionStore(ttl_seconds=60, clock=clock)
        s = store.get_or_create("CA1")
        clock.now = 50
        store.update("CA1", s)
        clock.now = 100
        assert store.sweep() == []
        assert store.get("CA1") is s
