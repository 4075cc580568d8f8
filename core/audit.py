"""
Append-only audit trail for workflow transitions and scheduler actions.
"""

import logging
from typing import Any, Optional

from database.adapter import DatabaseAdapter
from errors.exceptions import DatabaseError
from logging_config.logger import AuditLogger
from models.subscription import AuditEntry
from models.timestamps import utcnow

logger = logging.getLogger(__name__)


class AuditTrail:
    """
    Records every transition in the ``logs`` table and the JSON audit log.

    Recording is a side effect: failures are logged and never propagate to
    the operation being audited.
    """

    def __init__(self, database: DatabaseAdapter, audit_logger: Optional[AuditLogger] = None):
        self.database = database
        self.audit_logger = audit_logger

    async def record(self, guild_id: int, action: str, actor_id: Optional[int] = None,
                     target_id: Optional[int] = None, **details: Any) -> Optional[AuditEntry]:
        """
        Append one audit entry.

        Args:
            guild_id: Guild the action happened in
            action: Lower-case action name, e.g. ``payment_confirmed``
            actor_id: User performing the action (None for the scheduler)
            target_id: User the action applies to
            **details: Extra JSON-serialisable context

        Returns:
            Optional[AuditEntry]: The stored entry, or None if storing failed
        """
        entry = AuditEntry(
            guild_id=guild_id,
            action=action,
            actor_id=actor_id,
            target_id=target_id,
            details=details,
            created_at=utcnow()
        )

        if self.audit_logger is not None:
            extra = dict(details)
            self.audit_logger.log_event(
                event_type=action.upper(),
                guild_id=guild_id,
                user_id=actor_id,
                target_id=target_id,
                channel_id=extra.pop('channel_id', None),
                ticket_id=extra.pop('ticket_id', None),
                subscription_id=extra.pop('subscription_id', None),
                details=extra
            )

        try:
            entry.log_id = await self.database.create_log(entry)
        except DatabaseError as e:
            logger.error(f"Failed to store audit entry '{action}' for guild {guild_id}: {e}")
            return None

        return entry
