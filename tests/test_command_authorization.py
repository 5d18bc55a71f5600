import uuid

from chapterbot.models import LineCommandPermission
from chapterbot.services.command_authorization import (
    AUTHORIZATION_MESSAGES,
    DEFAULT_DENIAL_MESSAGE,
    AccessLevel,
    authorization_error_message,
    check_command_authorization,
    get_command_permissions,
    save_command_permission,
)


class TestDefaults:
    def test_defaults_without_overrides(self, db, tenant_id):
        permissions = get_command_permissions(db, tenant_id)
        assert permissions["checkin"].access_level == AccessLevel.PUBLIC
        assert permissions["link_phone"].allow_group is False
        assert permissions["goals_summary"].access_level == AccessLevel.MEMBER

    def test_unknown_command(self, db, tenant_id):
        result = check_command_authorization(db, tenant_id, "launch_rockets", "Uuser", False)
        assert result.authorized is False
        assert result.reason == "unknown_command"


class TestCheck:
    def test_public_command_needs_no_lookup(self, db, tenant_id):
        assert check_command_authorization(db, tenant_id, "checkin", "Ustranger", False).authorized is True

    def test_group_restriction(self, db, tenant_id):
        result = check_command_authorization(db, tenant_id, "link_phone", "Uuser", True)
        assert result.reason == "group_not_allowed"

    def test_member_required(self, db, tenant_id, make_participant):
        make_participant(line_user_id="Uvisitor", status="visitor")
        make_participant(line_user_id="Umember")
        assert check_command_authorization(db, tenant_id, "goals_summary", "Uvisitor", False).reason == "member_required"
        assert check_command_authorization(db, tenant_id, "goals_summary", "Umember", False).authorized is True

    def test_admin_passes_member_check(self, db, tenant_id, make_participant):
        make_participant(line_user_id="Uadmin", status="prospect", roles=("chapter_admin",))
        result = check_command_authorization(db, tenant_id, "goals_summary", "Uadmin", True)
        assert result.authorized is True

    def test_admin_level_override(self, db, tenant_id, make_participant):
        make_participant(line_user_id="Umember")
        save_command_permission(db, tenant_id, "goals_summary", AccessLevel.ADMIN, allow_group=True)
        result = check_command_authorization(db, tenant_id, "goals_summary", "Umember", False)
        assert result.reason == "admin_required"


class TestOverrides:
    def test_save_invalidates_cache(self, db, tenant_id):
        assert get_command_permissions(db, tenant_id)["checkin"].allow_group is True
        save_command_permission(db, tenant_id, "checkin", AccessLevel.MEMBER, allow_group=False)
        permission = get_command_permissions(db, tenant_id)["checkin"]
        assert permission.access_level == AccessLevel.MEMBER
        assert permission.allow_group is False
        assert permission.command_name == "เช็คอิน"

    def test_save_is_upsert(self, db, tenant_id):
        save_command_permission(db, tenant_id, "checkin", AccessLevel.MEMBER, allow_group=False)
        save_command_permission(db, tenant_id, "checkin", AccessLevel.PUBLIC, allow_group=True)
        assert db.query(LineCommandPermission).count() == 1

    def test_overrides_are_per_tenant(self, db, tenant_id):
        save_command_permission(db, tenant_id, "checkin", AccessLevel.ADMIN, allow_group=False)
        other = get_command_permissions(db, "00000000-0000-0000-0000-0000000000cc")
        assert other["checkin"].access_level == AccessLevel.PUBLIC

    def test_unknown_level_row_is_ignored(self, db, tenant_id):
        db.add(LineCommandPermission(tenant_id=uuid.UUID(tenant_id), command_key="checkin", access_level="root"))
        db.commit()
        assert get_command_permissions(db, tenant_id)["checkin"].access_level == AccessLevel.PUBLIC


def test_error_messages():
    assert authorization_error_message("admin_required") == AUTHORIZATION_MESSAGES["admin_required"]
    assert authorization_error_message(None) == DEFAULT_DENIAL_MESSAGE
