"""
Live order channels.

Staff connect per tenant with a bearer token in the query string; customers
connect per order and prove ownership with the phone number on the order. A
rejected handshake is closed with 1008 before the channel is registered.
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from orderhub.core.config import WS_POLICY_VIOLATION
from orderhub.core.security import resolve_actor
from orderhub.services.exceptions import OrderServiceError
from orderhub.services.notifications import ConnectionRegistry
from orderhub.services.order_service import verify_customer_channel

log = logging.getLogger(__name__)

router = APIRouter()


def _registry(websocket: WebSocket) -> ConnectionRegistry:
    return websocket.app.state.fanout.registry


async def _hold_open(websocket: WebSocket) -> None:
    """Keeps the channel open until the client goes away. Answers heartbeats."""
    while True:
        data = await websocket.receive_text()
        if data == "ping":
            await websocket.send_text("pong")


@router.websocket("/staff")
async def staff_channel(websocket: WebSocket, tenant_id: UUID, token: Optional[str] = Query(None)):
    try:
        actor = resolve_actor(token, tenant_id)
    except (HTTPException, OrderServiceError) as e:
        log.warning(f"Staff channel rejected for tenant {tenant_id}: {getattr(e, 'detail', e)}")
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    registry = _registry(websocket)
    await websocket.accept()
    await registry.add_staff(tenant_id, websocket)
    log.info(f"Staff channel opened for {actor.audit_name} in tenant {tenant_id}")
    try:
        await _hold_open(websocket)
    except WebSocketDisconnect:
        log.info(f"Staff channel closed for {actor.audit_name} in tenant {tenant_id}")
    finally:
        await registry.remove_staff(tenant_id, websocket)


@router.websocket("/orders/{order_id}")
async def customer_channel(
    websocket: WebSocket,
    tenant_id: UUID,
    order_id: UUID,
    customer_phone: Optional[str] = Query(None),
):
    try:
        verified = await verify_customer_channel(tenant_id, order_id, customer_phone)
    except Exception as e:
        log.error(f"Customer channel verification failed for order {order_id}: {e}")
        verified = False
    if not verified:
        log.warning(f"Customer channel rejected for order {order_id} in tenant {tenant_id}")
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    registry = _registry(websocket)
    await websocket.accept()
    await registry.add_customer(order_id, websocket)
    log.info(f"Customer channel opened for order {order_id}")
    try:
        await _hold_open(websocket)
    except WebSocketDisconnect:
        log.info(f"Customer channel closed for order {order_id}")
    finally:
        await registry.remove_customer(order_id, websocket)
