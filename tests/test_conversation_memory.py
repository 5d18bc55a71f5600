import uuid
from datetime import datetime, timedelta, timezone

import pytest

from chapterbot.models import AIConversation
from chapterbot.services import conversation_memory

T0 = datetime(2026, 10, 17, 3, 0, tzinfo=timezone.utc)


class TestConversationMemory:
    def test_keeps_newest_ten_oldest_first(self, db, tenant_id):
        for i in range(15):
            conversation_memory.append_message(db, tenant_id, "Uuser", "user", f"m{i}", now=T0 + timedelta(seconds=i))

        history = conversation_memory.get_history(db, tenant_id, "Uuser", now=T0 + timedelta(minutes=1))
        assert [m["content"] for m in history] == [f"m{i}" for i in range(5, 15)]
        assert db.query(AIConversation).count() == 10

    def test_same_timestamp_ordered_by_insertion(self, db, tenant_id):
        for i in range(3):
            conversation_memory.append_message(db, tenant_id, "Uuser", "user", f"m{i}", now=T0)
        history = conversation_memory.get_history(db, tenant_id, "Uuser", now=T0)
        assert [m["content"] for m in history] == ["m0", "m1", "m2"]

    def test_expired_rows_are_swept_for_everyone(self, db, tenant_id):
        other_tenant = str(uuid.uuid4())
        conversation_memory.append_message(db, tenant_id, "Uuser", "user", "old", now=T0)
        conversation_memory.append_message(db, other_tenant, "Uother", "user", "stale", now=T0)
        conversation_memory.append_message(
            db, tenant_id, "Uuser", "assistant", "fresh", now=T0 + timedelta(minutes=20)
        )

        history = conversation_memory.get_history(db, tenant_id, "Uuser", now=T0 + timedelta(minutes=31))
        assert history == [{"role": "assistant", "content": "fresh"}]
        assert db.query(AIConversation).count() == 1

    def test_scoped_by_tenant_and_user(self, db, tenant_id):
        conversation_memory.append_message(db, tenant_id, "Uuser", "user", "mine", now=T0)
        conversation_memory.append_message(db, tenant_id, "Uother", "user", "theirs", now=T0)
        history = conversation_memory.get_history(db, tenant_id, "Uuser", now=T0)
        assert [m["content"] for m in history] == ["mine"]

    def test_refresh_expiry(self, db, tenant_id):
        conversation_memory.append_message(db, tenant_id, "Uuser", "user", "hello", now=T0)
        conversation_memory.refresh_expiry(db, tenant_id, "Uuser", now=T0 + timedelta(minutes=25))
        history = conversation_memory.get_history(db, tenant_id, "Uuser", now=T0 + timedelta(minutes=40))
        assert [m["content"] for m in history] == ["hello"]

    def test_clear_conversation(self, db, tenant_id):
        conversation_memory.append_message(db, tenant_id, "Uuser", "user", "hello", now=T0)
        assert conversation_memory.clear_conversation(db, tenant_id, "Uuser") == 1
        assert conversation_memory.get_history(db, tenant_id, "Uuser", now=T0) == []

    def test_rejects_unknown_role(self, db, tenant_id):
        with pytest.raises(ValueError):
            conversation_memory.append_message(db, tenant_id, "Uuser", "system", "nope")

    def test_build_messages(self):
        messages = conversation_memory.build_messages(
            "system prompt", [{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}], "c"
        )
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[-1]["content"] == "c"
