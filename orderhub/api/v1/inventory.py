import logging
from fastapi import APIRouter, Depends, HTTPException
from orderhub.core.security import get_current_actor, require_manager
from orderhub.models.menu import MenuItem
from orderhub.schemas.inventory import RestockRequest, StockResponse
from orderhub.schemas.response import SuccessResponse
from orderhub.services import inventory_ledger
from orderhub.services.actors import Actor
from orderhub.services.exceptions import OrderServiceError
from uuid import UUID

log = logging.getLogger(__name__)

router = APIRouter()


def _stock(item: MenuItem) -> dict:
    return StockResponse(
        item_id=item.id,
        name=item.name,
        stock_quantity=item.stock_quantity,
        low_stock_threshold=item.low_stock_threshold,
        is_low_stock=item.is_low_stock,
    ).model_dump(mode="json")


@router.get("/menu-items/low-stock", response_model=SuccessResponse)
async def low_stock_endpoint(tenant_id: UUID, actor: Actor = Depends(require_manager)):
    """Menu items at or below their low stock threshold, lowest stock first."""
    try:
        items = await inventory_ledger.low_stock_items(tenant_id)
        return SuccessResponse(data=[_stock(item) for item in items])
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error fetching low stock items: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to fetch low stock items.")


@router.get("/menu-items/{item_id}/stock", response_model=SuccessResponse)
async def get_stock_endpoint(tenant_id: UUID, item_id: UUID, actor: Actor = Depends(get_current_actor)):
    """Fetches the available stock for a specific menu item."""
    try:
        item = await inventory_ledger.get_stock(tenant_id, item_id)
        return SuccessResponse(data=_stock(item))
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error fetching stock for item {item_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to fetch stock.")


@router.patch("/menu-items/{item_id}/restock", response_model=SuccessResponse)
async def restock_endpoint(
    tenant_id: UUID,
    item_id: UUID,
    payload: RestockRequest,
    actor: Actor = Depends(require_manager),
):
    """Adds a positive quantity to the item's current stock."""
    try:
        item = await inventory_ledger.restock(tenant_id, item_id, payload.quantity)
        log.info(f"Restock of {item_id} by {actor.audit_name} accepted")
        return SuccessResponse(data=_stock(item))
    except (OrderServiceError, HTTPException):
        raise
    except Exception as e:
        log.error(f"Error restocking item {item_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server failed to restock item.")
