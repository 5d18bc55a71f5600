from unittest.mock import Mock

from chapterbot.services.conversation_state_service import (
    FlowAction,
    FlowStep,
    clear_state,
    get_state,
    set_state,
)
from chapterbot.services.kv_store import MemoryKVStore, RedisKVStore, make_key


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestMemoryKVStore:
    def test_expires_on_read(self):
        clock = FakeClock()
        store = MemoryKVStore(clock=clock)
        store.set("k", {"a": 1}, ttl_seconds=10)
        assert store.get("k") == {"a": 1}
        clock.now += 10
        assert store.get("k") is None

    def test_delete_reports_removal(self):
        store = MemoryKVStore()
        store.set("k", {"a": 1}, ttl_seconds=10)
        assert store.delete("k") is True
        assert store.delete("k") is False

    def test_returns_copies(self):
        store = MemoryKVStore()
        store.set("k", {"a": 1}, ttl_seconds=10)
        store.get("k")["a"] = 2
        assert store.get("k") == {"a": 1}


class TestRedisKVStore:
    def test_set_uses_expiry(self):
        client = Mock()
        RedisKVStore(client).set("k", {"step": "awaiting_phone"}, ttl_seconds=300)
        client.set.assert_called_once()
        assert client.set.call_args.kwargs["ex"] == 300

    def test_get_decodes_json(self):
        client = Mock()
        client.get.return_value = '{"step": "awaiting_phone"}'
        assert RedisKVStore(client).get("k") == {"step": "awaiting_phone"}

    def test_get_drops_garbage(self):
        client = Mock()
        client.get.return_value = "not json"
        assert RedisKVStore(client).get("k") is None
        client.delete.assert_called_once_with("k")


class TestConversationState:
    def test_set_and_get(self, tenant_id):
        set_state(tenant_id, "Uuser", FlowStep.AWAITING_PHONE, FlowAction.LINK_LINE)
        state = get_state(tenant_id, "Uuser")
        assert state.step == FlowStep.AWAITING_PHONE
        assert state.action == FlowAction.LINK_LINE
        assert state.payload == {}

    def test_new_flow_overwrites_previous(self, tenant_id):
        set_state(tenant_id, "Uuser", FlowStep.AWAITING_PHONE, FlowAction.LINK_LINE)
        set_state(tenant_id, "Uuser", FlowStep.AWAITING_LEAVE_REASON, FlowAction.RSVP_LEAVE, {"meeting_id": "m1"})
        state = get_state(tenant_id, "Uuser")
        assert state.step == FlowStep.AWAITING_LEAVE_REASON
        assert state.payload == {"meeting_id": "m1"}

    def test_scoped_per_tenant_and_user(self, tenant_id):
        set_state(tenant_id, "Uuser", FlowStep.AWAITING_PHONE, FlowAction.LINK_LINE)
        assert get_state(tenant_id, "Uother") is None
        assert get_state("another-tenant", "Uuser") is None

    def test_expires(self, tenant_id):
        clock = FakeClock()
        store = MemoryKVStore(clock=clock)
        set_state(tenant_id, "Uuser", FlowStep.AWAITING_PHONE, FlowAction.LINK_LINE, store=store)
        clock.now += 299
        assert get_state(tenant_id, "Uuser", store=store) is not None
        clock.now += 1
        assert get_state(tenant_id, "Uuser", store=store) is None

    def test_clear(self, tenant_id):
        set_state(tenant_id, "Uuser", FlowStep.AWAITING_PHONE, FlowAction.LINK_LINE)
        assert clear_state(tenant_id, "Uuser") is True
        assert get_state(tenant_id, "Uuser") is None
        assert clear_state(tenant_id, "Uuser") is False

    def test_malformed_state_is_discarded(self, tenant_id, kv_store):
        key = make_key("flow", tenant_id, "Uuser")
        kv_store.set(key, {"step": "unknown_step"}, 300)
        assert get_state(tenant_id, "Uuser") is None
        assert kv_store.get(key) is None
