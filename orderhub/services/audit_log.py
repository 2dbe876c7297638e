"""
Append-only audit log of order mutations.

Entries are written once, inside the mutation's transaction, and outlive the
order they describe. Nothing in this module updates or deletes them.
"""
import logging
from typing import Any, List, Optional
from uuid import UUID

from orderhub.models.history import HistoryAction, OrderHistory
from orderhub.schemas.history import AuditEntry, AuditEntryResponse, audit_details_adapter

log = logging.getLogger(__name__)


async def write(entry: AuditEntry, conn: Any) -> OrderHistory:
    """Stores one entry on the caller's transaction connection."""
    return await OrderHistory.create(
        order_id=entry.order_id,
        tenant_id=entry.tenant_id,
        action=HistoryAction(entry.details.action),
        details=entry.details.model_dump(mode="json"),
        changed_by=entry.changed_by,
        using_db=conn,
    )


def _to_response(row: OrderHistory) -> AuditEntryResponse:
    return AuditEntryResponse(
        history_id=row.id,
        order_id=row.order_id,
        tenant_id=row.tenant_id,
        changed_by=row.changed_by,
        details=audit_details_adapter.validate_python({**row.details, "action": row.action.value}),
        change_timestamp=row.change_timestamp,
    )


async def list_entries(tenant_id: UUID, order_id: Optional[UUID] = None) -> List[AuditEntryResponse]:
    """Entries for a tenant (optionally one order), newest first."""
    query = OrderHistory.filter(tenant_id=tenant_id)
    if order_id is not None:
        query = query.filter(order_id=order_id)
    rows = await query.order_by("-change_timestamp")
    log.info(f"Order history fetched for tenant {tenant_id}: {len(rows)} entries")
    return [_to_response(row) for row in rows]
