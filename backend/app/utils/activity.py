"""Helper for appending UCP audit trail entries.

Usage:
    await record_history(
        db, ucp, UcpAction.MOVED, performed_by=principal.id,
        description="Moved from A01 to B02",
        from_position_id=old_id, to_position_id=new_id,
    )

The row is added to the current session and committed with the
enclosing transaction.  History rows are never updated or deleted.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.warehouse.ucp import Ucp, UcpAction, UcpHistory

logger = logging.getLogger(__name__)


async def record_history(
    db: AsyncSession,
    ucp: Ucp,
    action: UcpAction,
    *,
    performed_by: str,
    description: str,
    old_value: dict | None = None,
    new_value: dict | None = None,
    item_id: int | None = None,
    from_position_id: int | None = None,
    to_position_id: int | None = None,
) -> UcpHistory:
    """Append a history entry for ``ucp`` to the current DB session."""
    entry = UcpHistory(
        ucp_id=ucp.id,
        action=action.value,
        description=description,
        old_value=old_value,
        new_value=new_value,
        item_id=item_id,
        from_position_id=from_position_id,
        to_position_id=to_position_id,
        performed_by=performed_by,
    )
    db.add(entry)
    logger.info(
        f"UCP {ucp.code}: {action.value}",
        extra={"ucp_id": ucp.id, "action": action.value, "performed_by": performed_by},
    )
    return entry
