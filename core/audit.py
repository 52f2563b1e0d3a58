"""
Audit trail for billing mutations.

Every invoice, plan repair and arrear change is logged here. The audit log is:
- Append-only (entries never modified or deleted)
- Actor-attributed (which operator made the change, NULL for scheduled jobs)
- Detailed (captures old and new values)
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from utils.actor_context import get_actor_id
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    REPAIR = "repair"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Audit trail for billing entity changes.

    Always pass JSON-compatible values (model_dump(mode="json")) in changes.

    Usage:
        audit = AuditLogger(postgres)

        audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json")}
        )

        # Inside a transaction, so the entry commits with the change
        with postgres.transaction() as tx:
            ...
            audit.log_change(..., tx=tx)
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        actor_id: UUID | None = None,
        tx: Transaction | None = None,
    ) -> None:
        """
        Log an entity change.

        Args:
            entity_type: Type of entity ("invoice", "plan", "enrollment")
            entity_id: ID of the entity
            action: The action performed
            changes: The changes made (format depends on action)
            actor_id: Operator who made the change (defaults to current context)
            tx: Transaction to write in; a standalone statement otherwise

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE / REPAIR: {"field": {"old": old_val, "new": new_val}, ...}
        """
        if actor_id is None:
            actor_id = get_actor_id()

        runner = tx if tx is not None else self.postgres
        runner.execute(
            """
            INSERT INTO audit_log (id, actor_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                actor_id,
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc()
            )
        )

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity.

        Returns:
            List of audit entries, newest first.
        """
        return self.postgres.execute(
            """
            SELECT id, actor_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )
