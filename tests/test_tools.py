import uuid
from datetime import date
from unittest.mock import Mock

import pytest

from chapterbot.services.agent.prompts import PRIVACY_NOTICE
from chapterbot.services.agent.tools import (
    TOOL_REGISTRY,
    ToolContext,
    ToolName,
    execute_tool,
    tool_definitions,
)
from chapterbot.services.roles import Role

TODAY = date(2026, 10, 15)


@pytest.fixture
def attendance(make_participant, make_meeting, make_checkin):
    meeting = make_meeting(TODAY, theme="Networking")
    cat = make_participant(full_name_th="แคทลียา ใจดี", nickname_th="แคท")
    oh = make_participant(full_name_th="โอฬาร ทองดี", nickname_th="โอ๋")
    make_participant(full_name_th="บอย สุขใจ", nickname_th="บอย")
    make_participant(full_name_th="วิว ผู้มาเยือน", nickname_th="วิว", status="visitor")
    make_checkin(meeting, cat)
    make_checkin(meeting, oh, is_late=True)
    return meeting


def _ctx(db, tenant_id, role):
    return ToolContext(db=db, tenant_id=tenant_id, line_user_id="Uuser", role=role, today=TODAY)


class TestRegistry:
    def test_registry_covers_every_tool(self):
        assert set(TOOL_REGISTRY) == set(ToolName)

    def test_definitions(self):
        definitions = {d["function"]["name"]: d["function"] for d in tool_definitions()}
        assert set(definitions) == {name.value for name in ToolName}
        unpaid = definitions["get_unpaid_visitor_fee"]["parameters"]
        assert unpaid["type"] == "object"
        assert unpaid["required"] == ["meeting_id"]
        assert definitions["get_member_count"]["parameters"]["properties"] == {}


class TestExecuteTool:
    def test_missing_required_argument(self, db, tenant_id):
        record = execute_tool(_ctx(db, tenant_id, Role.ADMIN), "get_unpaid_visitor_fee", "{}")
        assert record.result["error"] == "invalid_arguments"
        assert record.result["missing_required"] == ["meeting_id"]

    def test_invalid_enum_argument(self, db, tenant_id):
        record = execute_tool(_ctx(db, tenant_id, Role.ADMIN), "get_visitor_fee_total", '{"range": "forever"}')
        assert record.result["error"] == "invalid_arguments"
        assert record.result["invalid"][0]["field"] == "range"

    def test_unparseable_arguments(self, db, tenant_id):
        record = execute_tool(_ctx(db, tenant_id, Role.ADMIN), "get_member_count", "{not json")
        assert record.result["error"] == "invalid_arguments"

    def test_unknown_tool(self, db, tenant_id):
        record = execute_tool(_ctx(db, tenant_id, Role.ADMIN), "drop_tables", "{}")
        assert record.result == {"error": "unknown_tool", "tool": "drop_tables"}

    def test_failure_is_fail_soft_and_rolls_back(self, tenant_id):
        db = Mock()
        db.query.side_effect = RuntimeError("connection reset")
        record = execute_tool(_ctx(db, tenant_id, Role.MEMBER), "get_member_count", "{}")
        assert record.result["error"] == "no_data"
        db.rollback.assert_called_once()

    def test_malformed_meeting_id_is_no_data(self, db, tenant_id):
        record = execute_tool(_ctx(db, tenant_id, Role.ADMIN), "get_meeting_stats", '{"meeting_id": "abc"}')
        assert record.result["error"] == "no_data"

    def test_arguments_as_dict(self, db, tenant_id, attendance):
        record = execute_tool(_ctx(db, tenant_id, Role.ADMIN), "get_member_count", {})
        assert record.result == {"total_members": 3, "total_visitors": 1}


class TestAttendanceInsights:
    def test_admin_sees_names(self, db, tenant_id, attendance):
        record = execute_tool(_ctx(db, tenant_id, Role.ADMIN), "get_attendance_insights", "{}")
        result = record.result
        assert result["total_members"] == 3
        assert result["present"] == {"count": 1, "names": ["แคท"]}
        assert result["late"] == {"count": 1, "names": ["โอ๋"]}
        assert result["absent"] == {"count": 1, "names": ["บอย"]}

    @pytest.mark.parametrize("role", [Role.MEMBER, Role.VISITOR, Role.UNKNOWN])
    def test_non_admin_sees_counts_only(self, db, tenant_id, attendance, role):
        record = execute_tool(_ctx(db, tenant_id, role), "get_attendance_insights", '{"focus": "absent"}')
        result = record.result
        assert result["absent"] == {"count": 1, "message": PRIVACY_NOTICE}
        assert "present" not in result
        assert "names" not in str(result)

    def test_no_meeting(self, db, tenant_id):
        record = execute_tool(_ctx(db, tenant_id, Role.ADMIN), "get_attendance_insights", "{}")
        assert record.result["found"] is False


class TestOtherTools:
    def test_meeting_context_falls_back_to_latest(self, db, tenant_id, attendance):
        record = execute_tool(_ctx(db, tenant_id, Role.MEMBER), "get_meeting_context", '{"date": "2026-10-16"}')
        assert record.result["found"] is True
        assert record.result["is_exact_date"] is False
        assert record.result["meeting_id"] == str(attendance.meeting_id)

    def test_meeting_stats(self, db, tenant_id, attendance):
        record = execute_tool(_ctx(db, tenant_id, Role.MEMBER), "get_meeting_stats", "{}")
        result = record.result
        assert result["total_members"] == 3
        assert result["members_checked_in"] == 2
        assert result["members_late"] == 1
        assert result["members_absent"] == 1

    def test_check_member_attendance_strips_prefix(self, db, tenant_id, attendance):
        record = execute_tool(
            _ctx(db, tenant_id, Role.MEMBER), "check_member_attendance", '{"member_name": "คุณแคท"}'
        )
        assert record.result["found"] is True
        assert record.result["members"][0]["name"] == "แคท"
        assert record.result["members"][0]["attended"] is True

    def test_find_member_hides_phone_from_members(self, db, tenant_id, make_participant):
        make_participant(full_name_th="แคทลียา ใจดี", nickname_th="แคท", phone="0812345678")
        member_view = execute_tool(_ctx(db, tenant_id, Role.MEMBER), "find_member_by_name", '{"query": "แคท"}')
        admin_view = execute_tool(_ctx(db, tenant_id, Role.ADMIN), "find_member_by_name", '{"query": "แคท"}')
        assert "phone" not in member_view.result["candidates"][0]
        assert admin_view.result["candidates"][0]["phone"] == "0812345678"

    def test_other_tenant_meeting_is_not_visible(self, db, tenant_id, attendance, make_meeting):
        foreign = make_meeting(TODAY, tenant=str(uuid.uuid4()))
        record = execute_tool(
            _ctx(db, tenant_id, Role.ADMIN), "get_meeting_stats", f'{{"meeting_id": "{foreign.meeting_id}"}}'
        )
        assert record.result["found"] is False

    def test_user_role(self, db, tenant_id):
        record = execute_tool(_ctx(db, tenant_id, Role.VISITOR), "get_user_role", "{}")
        assert record.result == {"role": "visitor"}
