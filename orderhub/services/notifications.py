"""
Live order notifications.

Two audiences receive the same message after every committed order mutation:
staff channels, keyed by tenant, and customer channels, keyed by order. The
registry only looks channels up; the websocket endpoints own them and remove
them on disconnect.

Delivery is best effort. `publish` schedules the broadcast and returns at once,
and nothing raised while sending reaches the mutation that triggered it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Set
from uuid import UUID

from starlette.websockets import WebSocketState

from orderhub.core.config import WS_SEND_TIMEOUT
from orderhub.models.menu import MenuItem
from orderhub.schemas.order import OrderLine, OrderSnapshot, PushKind, PushMessage

log = logging.getLogger(__name__)


class Channel(Protocol):
    """The part of a Starlette WebSocket the fanout relies on."""

    client_state: WebSocketState
    application_state: WebSocketState

    async def send_text(self, data: str) -> None: ...


def is_channel_open(channel: Channel) -> bool:
    """
    Check if a channel is connected before sending.

    Starlette does not expose transitional states, so a channel may look
    connected briefly after a disconnect started; sends then fail and the
    channel is pruned.
    """
    return (
        channel.client_state == WebSocketState.CONNECTED
        and channel.application_state == WebSocketState.CONNECTED
    )


class ConnectionRegistry:
    """
    Staff channels by tenant id and customer channels by order id.

    All mutations go through one lock. Lookups return copies so a broadcast
    never iterates a set that a disconnect is changing.
    """

    def __init__(self) -> None:
        self._staff: Dict[UUID, Set[Channel]] = {}
        self._customers: Dict[UUID, Set[Channel]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _add(index: Dict[UUID, Set[Channel]], key: UUID, channel: Channel) -> None:
        index.setdefault(key, set()).add(channel)

    @staticmethod
    def _remove(index: Dict[UUID, Set[Channel]], key: UUID, channel: Channel) -> None:
        channels = index.get(key)
        if channels is None:
            return
        channels.discard(channel)
        if not channels:
            del index[key]

    async def add_staff(self, tenant_id: UUID, channel: Channel) -> None:
        async with self._lock:
            self._add(self._staff, tenant_id, channel)

    async def remove_staff(self, tenant_id: UUID, channel: Channel) -> None:
        async with self._lock:
            self._remove(self._staff, tenant_id, channel)

    async def add_customer(self, order_id: UUID, channel: Channel) -> None:
        async with self._lock:
            self._add(self._customers, order_id, channel)

    async def remove_customer(self, order_id: UUID, channel: Channel) -> None:
        async with self._lock:
            self._remove(self._customers, order_id, channel)

    async def staff_channels(self, tenant_id: UUID) -> List[Channel]:
        async with self._lock:
            return list(self._staff.get(tenant_id, ()))

    async def customer_channels(self, order_id: UUID) -> List[Channel]:
        async with self._lock:
            return list(self._customers.get(order_id, ()))

    def staff_count(self, tenant_id: UUID) -> int:
        return len(self._staff.get(tenant_id, ()))

    def customer_count(self, order_id: UUID) -> int:
        return len(self._customers.get(order_id, ()))

    def has_staff_entry(self, tenant_id: UUID) -> bool:
        return tenant_id in self._staff

    def has_customer_entry(self, order_id: UUID) -> bool:
        return order_id in self._customers


class NotificationFanout:
    """Builds the push message for an order and sends it to both audiences."""

    def __init__(self, registry: Optional[ConnectionRegistry] = None, send_timeout: float = WS_SEND_TIMEOUT) -> None:
        self.registry = registry or ConnectionRegistry()
        self._send_timeout = send_timeout
        self._tasks: Set[asyncio.Task] = set()

    def publish(self, tenant_id: UUID, snapshot: OrderSnapshot, kind: PushKind) -> Optional[asyncio.Task]:
        """Schedules a broadcast without waiting for it."""
        try:
            task = asyncio.get_running_loop().create_task(
                self.broadcast(tenant_id, snapshot, kind),
                name=f"broadcast_{snapshot.order_id}",
            )
        except RuntimeError:
            log.warning(f"No running event loop, notification for order {snapshot.order_id} dropped")
            return None
        # Keep a reference until done, the loop only holds weak ones
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def broadcast(self, tenant_id: UUID, snapshot: OrderSnapshot, kind: PushKind) -> int:
        """Sends one message to every open channel. Returns the number of successful sends."""
        log.info(f"Broadcasting {kind.value} for order {snapshot.order_id} in tenant {tenant_id}")
        try:
            message = await self.build_message(tenant_id, snapshot, kind)
            payload = message.model_dump_json()

            staff = await self.registry.staff_channels(tenant_id)
            customers = await self.registry.customer_channels(snapshot.order_id)
            if not staff:
                log.debug(f"No staff channels for tenant {tenant_id}")
            if not customers:
                log.debug(f"No customer channels for order {snapshot.order_id}")

            results = await asyncio.gather(
                *(self._send(channel, payload) for channel in staff),
                *(self._send(channel, payload) for channel in customers),
            )
            staff_results, customer_results = results[:len(staff)], results[len(staff):]

            for channel, sent in zip(staff, staff_results):
                if not sent:
                    await self.registry.remove_staff(tenant_id, channel)
            for channel, sent in zip(customers, customer_results):
                if not sent:
                    await self.registry.remove_customer(snapshot.order_id, channel)
            return sum(results)
        except Exception as e:
            log.error(f"Error broadcasting order notification for order {snapshot.order_id}: {e}")
            return 0

    async def build_message(self, tenant_id: UUID, snapshot: OrderSnapshot, kind: PushKind) -> PushMessage:
        """
        Re-resolves item names and prices from the current menu so live views
        show catalog values even after an item was renamed or repriced.
        """
        item_ids = [line.item_id for line in snapshot.items]
        menu = {
            item.id: item
            for item in await MenuItem.filter(tenant_id=tenant_id, id__in=item_ids)
        }
        lines = []
        for line in snapshot.items:
            current = menu.get(line.item_id)
            if current is None:
                # Removed from the menu since; keep the order's own snapshot
                lines.append(line)
                continue
            lines.append(OrderLine(
                item_id=line.item_id,
                name=current.name,
                quantity=line.quantity,
                price=float(current.price),
            ))
        return PushMessage(type=kind, order=snapshot.model_copy(update={"items": lines}))

    async def _send(self, channel: Channel, payload: str) -> bool:
        if not is_channel_open(channel):
            return False
        try:
            await asyncio.wait_for(channel.send_text(payload), timeout=self._send_timeout)
            return True
        except Exception as e:
            log.warning(f"Dropping live channel after failed send: {e!r}")
            return False

    async def drain(self) -> None:
        """Waits for every scheduled broadcast to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancels in-flight broadcasts on shutdown."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
