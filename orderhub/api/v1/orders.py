import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from orderhub.schemas.response import SuccessResponse
from orderhub.schemas.order import CustomerOrderRequest, OrderPlacementResponse, OrderRequest, OrderUpdateRequest
from orderhub.services import audit_log, rider_policy
from orderhub.services.actors import Actor, customer
from orderhub.services.exceptions import OrderServiceError
from orderhub.services.order_service import (
    build_snapshot,
    cancel_order,
    create_order,
    get_order_status,
    list_orders,
    update_order,
)
from orderhub.core.security import get_current_actor, require_history, require_rider_dispatch, require_updater
from typing import Optional
from uuid import UUID

router = APIRouter()
log = logging.getLogger(__name__)


def _placement(order, message: str) -> dict:
    return OrderPlacementResponse(
        order_id=order.id,
        status=order.status,
        total_price=float(order.total_price),
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        message=message,
    ).model_dump(mode="json")


@router.post("/orders", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_order_endpoint(
    tenant_id: UUID,
    request_data: OrderRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
):
    """Places an order on behalf of a staff member."""
    try:
        order = await create_order(
            tenant_id=tenant_id,
            actor=actor,
            items=[item.model_dump() for item in request_data.items],
            status=request_data.status,
            customer_name=request_data.customer_name,
            customer_phone=request_data.customer_phone,
            is_delivery=request_data.is_delivery,
            customer_location=request_data.customer_location,
            rider_id=request_data.rider_id,
            fanout=request.app.state.fanout,
        )
        return SuccessResponse(data=_placement(order, "Order created successfully"))
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error creating order: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to create order.")


@router.post("/public/orders", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_public_order_endpoint(tenant_id: UUID, request_data: CustomerOrderRequest, request: Request):
    """Places an order from the customer-facing menu. No credential; name and phone are required."""
    try:
        order = await create_order(
            tenant_id=tenant_id,
            actor=customer(tenant_id),
            items=[item.model_dump() for item in request_data.items],
            customer_name=request_data.customer_name,
            customer_phone=request_data.customer_phone,
            is_delivery=request_data.is_delivery,
            customer_location=request_data.customer_location,
            fanout=request.app.state.fanout,
        )
        return SuccessResponse(data=_placement(order, "Order placed successfully"))
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error placing customer order: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to place order.")


@router.get("/public/orders/{order_id}/status", response_model=SuccessResponse)
async def get_order_status_endpoint(tenant_id: UUID, order_id: UUID, customer_phone: Optional[str] = Query(None)):
    """Lets a customer follow their order. The phone number must match the one on the order."""
    try:
        snapshot = await get_order_status(tenant_id, order_id, customer_phone)
        return SuccessResponse(data=snapshot.model_dump(mode="json"))
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error fetching order status {order_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to fetch order status.")


@router.put("/orders/{order_id}", response_model=SuccessResponse)
async def update_order_endpoint(
    tenant_id: UUID,
    order_id: UUID,
    payload: OrderUpdateRequest,
    request: Request,
    actor: Actor = Depends(require_updater),
):
    """
    Replaces the order's items and moves its status (e.g. 'preparing', 'enroute').
    Omitted customer and delivery fields keep their stored values.
    """
    try:
        order = await update_order(
            tenant_id=tenant_id,
            order_id=order_id,
            actor=actor,
            items=[item.model_dump() for item in payload.items],
            status=payload.status,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            is_delivery=payload.is_delivery,
            customer_location=payload.customer_location,
            rider_id=payload.rider_id,
            fanout=request.app.state.fanout,
        )
        await order.fetch_related("items")
        return SuccessResponse(data=build_snapshot(order, list(order.items)).model_dump(mode="json"))
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error updating order {order_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to update order.")


@router.post("/orders/{order_id}/cancel", response_model=SuccessResponse)
async def cancel_order_endpoint(
    tenant_id: UUID,
    order_id: UUID,
    request: Request,
    actor: Actor = Depends(get_current_actor),
):
    """Cancels the order and returns its stock. The order is archived in the history."""
    try:
        snapshot = await cancel_order(tenant_id, order_id, actor, fanout=request.app.state.fanout)
        return SuccessResponse(data={
            "order_id": str(snapshot.order_id),
            "status": snapshot.status.value,
            "message": "Order canceled successfully",
        })
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error canceling order {order_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to cancel order.")


@router.get("/orders", response_model=SuccessResponse)
async def list_orders_endpoint(
    tenant_id: UUID,
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc"),
    actor: Actor = Depends(get_current_actor),
):
    """Lists the tenant's orders with optional status filter and name/phone search."""
    try:
        orders = await list_orders(tenant_id, status=status, search=search, sort_by=sort_by, sort_order=sort_order)
        return SuccessResponse(data=[o.model_dump(mode="json") for o in orders])
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error fetching orders: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to fetch orders.")


@router.get("/order-history", response_model=SuccessResponse)
async def order_history_endpoint(
    tenant_id: UUID,
    order_id: Optional[UUID] = Query(None),
    actor: Actor = Depends(require_history),
):
    """Audit trail of order mutations, newest first. Canceled orders remain visible here."""
    try:
        entries = await audit_log.list_entries(tenant_id, order_id=order_id)
        return SuccessResponse(data=[e.model_dump(mode="json") for e in entries])
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error fetching order history: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to fetch order history.")


@router.get("/riders", response_model=SuccessResponse)
async def list_riders_endpoint(tenant_id: UUID, actor: Actor = Depends(require_rider_dispatch)):
    """Riders of the tenant with their current availability."""
    try:
        riders = await rider_policy.list_riders(tenant_id)
        return SuccessResponse(data=[rider.model_dump(mode="json") for rider in riders])
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error fetching riders: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to fetch riders.")
