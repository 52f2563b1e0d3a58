"""
Member service.

Members are managed elsewhere; billing only reads them to snapshot the name
and phone onto each invoice.
"""

import logging
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.models import Member

logger = logging.getLogger(__name__)


class MemberService:
    """Service for member lookups."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get_by_id(self, member_id: UUID) -> Member | None:
        """
        Get member by ID.

        Returns:
            Member if found, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM members WHERE id = %s",
            (member_id,)
        )

        if row is None:
            return None

        return Member.model_validate(row)
