"""Tests for MemberService."""

from core.services.member_service import MemberService


class TestGetById:

    def test_found(self, db, member):
        db.execute_single.return_value = member.model_dump()

        assert MemberService(db).get_by_id(member.id) == member
        assert db.execute_single.call_args[0][1] == (member.id,)

    def test_missing_returns_none(self, db, member):
        assert MemberService(db).get_by_id(member.id) is None
