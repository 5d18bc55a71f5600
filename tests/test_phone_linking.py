import pytest

from chapterbot.services.phone_linking_service import activation_link, link_phone, normalize_phone


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw,expected",
        [("081-234-5678", "0812345678"), ("081 234 5678", "0812345678"), ("+66 81 234 5678", "66812345678")],
    )
    def test_strips_non_digits(self, raw, expected):
        assert normalize_phone(raw) == expected


class TestLinkPhone:
    def test_links_unlinked_participant(self, db, tenant_id, make_participant):
        participant = make_participant(phone="0812345678", status="visitor")
        result = link_phone(db, tenant_id, "Unew", "081-234-5678")
        assert result.ok
        assert result.value.newly_linked is True
        assert result.value.needs_activation is True
        db.refresh(participant)
        assert participant.line_user_id == "Unew"

    def test_already_linked_to_same_user(self, db, tenant_id, make_participant):
        make_participant(phone="0812345678", line_user_id="Uuser")
        result = link_phone(db, tenant_id, "Uuser", "0812345678")
        assert result.ok
        assert result.value.newly_linked is False

    def test_linked_to_someone_else(self, db, tenant_id, make_participant):
        make_participant(phone="0812345678", line_user_id="Uowner")
        result = link_phone(db, tenant_id, "Uintruder", "0812345678")
        assert result.error_code == "linked_elsewhere"

    def test_invalid_phone(self, db, tenant_id):
        assert link_phone(db, tenant_id, "Uuser", "12345").error_code == "invalid_phone"
        assert link_phone(db, tenant_id, "Uuser", "สวัสดี").error_code == "invalid_phone"

    def test_unknown_phone(self, db, tenant_id):
        assert link_phone(db, tenant_id, "Uuser", "0899999999").error_code == "not_found"

    def test_other_tenant_phone_not_found(self, db, tenant_id, make_participant):
        make_participant(phone="0812345678", tenant="00000000-0000-0000-0000-0000000000dd")
        assert link_phone(db, tenant_id, "Uuser", "0812345678").error_code == "not_found"


def test_activation_link(make_participant, tenant_id):
    participant = make_participant(phone="0812345678")
    link = activation_link(participant)
    assert link.endswith(f"/activate?participant_id={participant.participant_id}&tenant_id={tenant_id}")
