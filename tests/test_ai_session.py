from chapterbot.services import ai_session_service


class TestAISession:
    def test_start_and_active(self, tenant_id):
        ai_session_service.start_session(tenant_id, "Uuser", now=1000.0)
        assert ai_session_service.is_session_active(tenant_id, "Uuser", now=1001.0) is True

    def test_idle_timeout(self, tenant_id):
        ai_session_service.start_session(tenant_id, "Uuser", now=1000.0)
        assert ai_session_service.is_session_active(tenant_id, "Uuser", now=1599.0) is True
        assert ai_session_service.is_session_active(tenant_id, "Uuser", now=1600.0) is False
        assert ai_session_service.get_active_session(tenant_id, "Uuser", now=1000.0) is None

    def test_touch_extends_idle_timer(self, tenant_id):
        ai_session_service.start_session(tenant_id, "Uuser", now=1000.0)
        assert ai_session_service.touch_session(tenant_id, "Uuser", now=1500.0) is True
        assert ai_session_service.is_session_active(tenant_id, "Uuser", now=2000.0) is True

    def test_touch_without_session(self, tenant_id):
        assert ai_session_service.touch_session(tenant_id, "Uuser") is False

    def test_end_session(self, tenant_id):
        ai_session_service.start_session(tenant_id, "Uuser")
        assert ai_session_service.end_session(tenant_id, "Uuser") is True
        assert ai_session_service.is_session_active(tenant_id, "Uuser") is False

    def test_end_without_session_is_noop(self, tenant_id):
        assert ai_session_service.end_session(tenant_id, "Uuser") is False

    def test_sessions_isolated_per_user(self, tenant_id):
        ai_session_service.start_session(tenant_id, "Uuser")
        assert ai_session_service.is_session_active(tenant_id, "Uother") is False
