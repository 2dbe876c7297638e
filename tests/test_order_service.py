import asyncio
import pytest
from decimal import Decimal
from uuid import uuid4

from orderhub.models import MenuItem, Order, OrderHistory, OrderItem, OrderStatus
from orderhub.services import audit_log
from orderhub.services.actors import customer
from orderhub.services.exceptions import (
    EmptyOrder,
    InsufficientStock,
    InvalidItem,
    InvalidQuantity,
    InvalidRiderAssignment,
    InvalidStatus,
    InvalidTransition,
    MenuItemNotFound,
    MissingCustomerDetails,
    MissingLocation,
    OrderLocked,
    OrderNotFound,
    PermissionDenied,
    RiderBusy,
    RiderNotAuthorized,
    RiderNotFound,
    RiderRequired,
    TenantNotFound,
)
from orderhub.services.order_service import (
    cancel_order,
    create_order,
    get_order_status,
    list_orders,
    normalize_items,
    update_order,
    verify_customer_channel,
)

LOCATION = "12 Harbour Road"


def lines(*pairs):
    return [{"item_id": item.id, "quantity": qty} for item, qty in pairs]


async def stock_of(item):
    return (await MenuItem.get(id=item.id)).stock_quantity


async def current_lines(order_id):
    rows = await OrderItem.filter(order_id=order_id)
    return [{"item_id": row.item_id, "quantity": row.quantity} for row in rows]


async def assert_total_matches_items(order_id):
    order = await Order.get(id=order_id)
    rows = await OrderItem.filter(order_id=order_id)
    assert order.total_price == sum((row.price * row.quantity for row in rows), Decimal("0"))


async def completed_delivery_order(tenant, manager, item, qty=1):
    return await create_order(
        tenant.id, manager, lines((item, qty)),
        status=OrderStatus.COMPLETED, is_delivery=True, customer_location=LOCATION,
    )


# --- INPUT VALIDATION ---

class TestNormalizeItems:
    def test_merges_repeated_items(self):
        item_id = uuid4()
        assert normalize_items([
            {"item_id": item_id, "quantity": 2},
            {"item_id": str(item_id), "quantity": 3},
        ]) == {item_id: 5}

    @pytest.mark.parametrize("items", [[], None, "A"])
    def test_empty_items(self, items):
        with pytest.raises(EmptyOrder):
            normalize_items(items)

    @pytest.mark.parametrize("item_id", [None, "not-a-uuid", 42])
    def test_invalid_item_id(self, item_id):
        with pytest.raises(InvalidItem):
            normalize_items([{"item_id": item_id, "quantity": 1}])

    @pytest.mark.parametrize("qty", [0, -3, 1.5, "2", True, None])
    def test_invalid_quantity(self, qty):
        with pytest.raises(InvalidQuantity):
            normalize_items([{"item_id": uuid4(), "quantity": qty}])


# --- CONCRETE SCENARIOS ---

@pytest.mark.asyncio
async def test_full_stock_order_then_conflict_then_cancel_restores(tenant, menu, manager):
    """Stock 5: order 5 succeeds, order 1 more conflicts, cancel returns all 5."""
    first = await create_order(tenant.id, manager, lines((menu["A"], 5)))
    assert await stock_of(menu["A"]) == 0

    with pytest.raises(InsufficientStock) as exc_info:
        await create_order(tenant.id, manager, lines((menu["A"], 1)))
    assert str(exc_info.value) == "Insufficient stock for A. Available: 0"
    assert await Order.filter(tenant_id=tenant.id).count() == 1

    snapshot = await cancel_order(tenant.id, first.id, manager)
    assert snapshot.status == OrderStatus.CANCELED
    assert await stock_of(menu["A"]) == 5
    assert await Order.get_or_none(id=first.id) is None
    assert await OrderItem.filter(order_id=first.id).count() == 0

    entries = await audit_log.list_entries(tenant.id, order_id=first.id)
    assert sorted(e.details.action for e in entries) == ["canceled", "created"]
    canceled = next(e for e in entries if e.details.action == "canceled")
    assert canceled.changed_by == "manager"
    assert [(line.item_id, line.quantity) for line in canceled.details.items] == [(menu["A"].id, 5)]


@pytest.mark.asyncio
async def test_rider_picks_up_completed_delivery_order(tenant, menu, manager, rider):
    order = await completed_delivery_order(tenant, manager, menu["B"])

    await update_order(tenant.id, order.id, rider, await current_lines(order.id), OrderStatus.ENROUTE)

    stored = await Order.get(id=order.id)
    assert stored.status == OrderStatus.ENROUTE
    assert stored.rider_id == rider.user_id
    assert stored.delivery_start_time is not None


@pytest.mark.asyncio
async def test_rider_busy_until_first_order_delivered(tenant, menu, manager, rider):
    first = await completed_delivery_order(tenant, manager, menu["B"])
    second = await completed_delivery_order(tenant, manager, menu["B"])
    await update_order(tenant.id, first.id, rider, await current_lines(first.id), OrderStatus.ENROUTE)

    with pytest.raises(RiderBusy) as exc_info:
        await update_order(tenant.id, second.id, rider, await current_lines(second.id), OrderStatus.ENROUTE)
    assert exc_info.value.reason == "rider_busy"
    assert (await Order.get(id=second.id)).status == OrderStatus.COMPLETED

    await update_order(tenant.id, first.id, rider, await current_lines(first.id), OrderStatus.DELIVERED)
    await update_order(tenant.id, second.id, rider, await current_lines(second.id), OrderStatus.ENROUTE)

    enroute = await Order.filter(tenant_id=tenant.id, rider_id=rider.user_id, status=OrderStatus.ENROUTE)
    assert [o.id for o in enroute] == [second.id]


@pytest.mark.asyncio
async def test_delivered_order_rejects_every_mutation(tenant, menu, manager, kitchen, rider):
    order = await completed_delivery_order(tenant, manager, menu["B"], qty=2)
    await update_order(tenant.id, order.id, rider, await current_lines(order.id), OrderStatus.ENROUTE)
    await update_order(tenant.id, order.id, rider, await current_lines(order.id), OrderStatus.DELIVERED)
    stored = await Order.get(id=order.id)
    assert stored.delivery_end_time is not None

    for actor in (manager, kitchen, rider):
        with pytest.raises(OrderLocked) as exc_info:
            await update_order(tenant.id, order.id, actor, lines((menu["B"], 2)), OrderStatus.DELIVERED)
        assert exc_info.value.reason == "order_delivered"

    # The lock wins over validation of the requested changes
    with pytest.raises(OrderLocked):
        await update_order(
            tenant.id, order.id, manager, lines((menu["B"], 2)), OrderStatus.DELIVERED,
            is_delivery=True, customer_location="",
        )

    with pytest.raises(OrderLocked):
        await cancel_order(tenant.id, order.id, manager)
    assert await stock_of(menu["B"]) == 18
    assert await OrderHistory.filter(order_id=order.id).count() == 3


# --- STOCK AND TOTALS ---

@pytest.mark.asyncio
async def test_create_prices_from_menu_and_reserves_stock(tenant, menu, kitchen):
    order = await create_order(tenant.id, kitchen, lines((menu["A"], 2), (menu["B"], 3)))

    assert order.status == OrderStatus.PENDING
    assert order.total_price == Decimal("33.50")
    assert await stock_of(menu["A"]) == 3
    assert await stock_of(menu["B"]) == 17
    await assert_total_matches_items(order.id)

    rows = {row.item_id: row for row in await OrderItem.filter(order_id=order.id)}
    assert rows[menu["B"].id].name == "B"
    assert rows[menu["B"].id].price == Decimal("4.50")


@pytest.mark.asyncio
async def test_repeated_items_are_merged(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["A"], 1), (menu["A"], 2)))
    rows = await OrderItem.filter(order_id=order.id)
    assert [(row.item_id, row.quantity) for row in rows] == [(menu["A"].id, 3)]
    assert await stock_of(menu["A"]) == 2


@pytest.mark.asyncio
async def test_unknown_item_rejected_without_side_effect(tenant, menu, manager):
    with pytest.raises(MenuItemNotFound):
        await create_order(tenant.id, manager, [{"item_id": menu["A"].id, "quantity": 1}, {"item_id": uuid4(), "quantity": 1}])
    assert await stock_of(menu["A"]) == 5
    assert await Order.all().count() == 0
    assert await OrderHistory.all().count() == 0


@pytest.mark.asyncio
async def test_unknown_tenant(menu, manager):
    with pytest.raises(TenantNotFound):
        await create_order(uuid4(), manager, lines((menu["A"], 1)))


@pytest.mark.asyncio
async def test_update_applies_signed_deltas(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["A"], 2), (menu["B"], 3)))

    await update_order(tenant.id, order.id, manager, lines((menu["A"], 4)), OrderStatus.PENDING)

    assert await stock_of(menu["A"]) == 1
    assert await stock_of(menu["B"]) == 20
    assert await current_lines(order.id) == [{"item_id": menu["A"].id, "quantity": 4}]
    await assert_total_matches_items(order.id)


@pytest.mark.asyncio
async def test_update_with_same_items_has_zero_net_delta(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["A"], 2), (menu["B"], 3)))
    await update_order(tenant.id, order.id, manager, lines((menu["A"], 2), (menu["B"], 3)), OrderStatus.PREPARING)
    assert await stock_of(menu["A"]) == 3
    assert await stock_of(menu["B"]) == 17


@pytest.mark.asyncio
async def test_update_re_resolves_menu_prices(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["B"], 2)))
    await MenuItem.filter(id=menu["B"].id).update(price=Decimal("5.00"), name="B Large")

    updated = await update_order(tenant.id, order.id, manager, lines((menu["B"], 2)), OrderStatus.PENDING)

    assert updated.total_price == Decimal("10.00")
    row = await OrderItem.get(order_id=order.id)
    assert (row.name, row.price) == ("B Large", Decimal("5.00"))
    await assert_total_matches_items(order.id)


@pytest.mark.asyncio
async def test_failed_update_rolls_back_everything(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["A"], 2), (menu["B"], 3)))

    with pytest.raises(InsufficientStock):
        await update_order(tenant.id, order.id, manager, lines((menu["A"], 9), (menu["B"], 1)), OrderStatus.PREPARING)

    stored = await Order.get(id=order.id)
    assert stored.status == OrderStatus.PENDING
    assert stored.preparation_start_time is None
    assert await stock_of(menu["A"]) == 3
    assert await stock_of(menu["B"]) == 17
    assert sorted(l["quantity"] for l in await current_lines(order.id)) == [2, 3]
    assert await OrderHistory.filter(order_id=order.id).count() == 1


@pytest.mark.asyncio
async def test_cancel_restores_exact_reserved_stock(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["A"], 1), (menu["B"], 4)))
    await update_order(tenant.id, order.id, manager, lines((menu["A"], 3), (menu["B"], 2)), OrderStatus.PREPARING)
    await cancel_order(tenant.id, order.id, manager)
    assert await stock_of(menu["A"]) == 5
    assert await stock_of(menu["B"]) == 20


@pytest.mark.asyncio
async def test_two_orders_racing_for_last_unit(tenant, menu, manager, kitchen):
    await create_order(tenant.id, manager, lines((menu["A"], 4)))

    results = await asyncio.gather(
        create_order(tenant.id, manager, lines((menu["A"], 1))),
        create_order(tenant.id, kitchen, lines((menu["A"], 1))),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientStock)
    assert await stock_of(menu["A"]) == 0
    assert await Order.filter(tenant_id=tenant.id).count() == 2


# --- STATE MACHINE ---

@pytest.mark.asyncio
async def test_status_timestamps_set_on_first_entry_only(tenant, menu, kitchen):
    order = await create_order(tenant.id, kitchen, lines((menu["B"], 1)))
    await update_order(tenant.id, order.id, kitchen, lines((menu["B"], 1)), OrderStatus.PREPARING)
    first_stamp = (await Order.get(id=order.id)).preparation_start_time
    assert first_stamp is not None

    await update_order(tenant.id, order.id, kitchen, lines((menu["B"], 2)), OrderStatus.PREPARING)
    await update_order(tenant.id, order.id, kitchen, lines((menu["B"], 2)), OrderStatus.COMPLETED)

    stored = await Order.get(id=order.id)
    assert stored.preparation_start_time == first_stamp
    assert stored.preparation_end_time is not None
    assert stored.delivery_start_time is None


@pytest.mark.asyncio
async def test_kitchen_states_can_be_reentered(tenant, menu, kitchen):
    order = await create_order(tenant.id, kitchen, lines((menu["B"], 1)))
    await update_order(tenant.id, order.id, kitchen, lines((menu["B"], 1)), OrderStatus.PREPARING)
    await update_order(tenant.id, order.id, kitchen, lines((menu["B"], 1)), OrderStatus.COMPLETED)
    before = await Order.get(id=order.id)

    await update_order(tenant.id, order.id, kitchen, lines((menu["B"], 1)), OrderStatus.PREPARING)
    stored = await Order.get(id=order.id)
    assert stored.status == OrderStatus.PREPARING
    assert stored.preparation_start_time == before.preparation_start_time
    assert stored.preparation_end_time == before.preparation_end_time

    await update_order(tenant.id, order.id, kitchen, lines((menu["B"], 1)), OrderStatus.PENDING)
    assert (await Order.get(id=order.id)).status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_delivery_order_cannot_be_created_delivered(tenant, menu, manager):
    with pytest.raises(InvalidTransition):
        await create_order(
            tenant.id, manager, lines((menu["B"], 1)),
            status=OrderStatus.DELIVERED, is_delivery=True, customer_location=LOCATION,
        )
    assert await stock_of(menu["B"]) == 20

    pickup = await create_order(tenant.id, manager, lines((menu["B"], 1)), status=OrderStatus.DELIVERED)
    assert pickup.delivery_end_time is not None


@pytest.mark.asyncio
async def test_pickup_order_goes_completed_to_delivered(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["B"], 1)), status=OrderStatus.COMPLETED)
    with pytest.raises(InvalidTransition):
        await update_order(tenant.id, order.id, manager, lines((menu["B"], 1)), OrderStatus.ENROUTE)
    await update_order(tenant.id, order.id, manager, lines((menu["B"], 1)), OrderStatus.DELIVERED)
    assert (await Order.get(id=order.id)).status == OrderStatus.DELIVERED


@pytest.mark.asyncio
async def test_update_cannot_cancel(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["B"], 1)))
    with pytest.raises(InvalidStatus):
        await update_order(tenant.id, order.id, manager, lines((menu["B"], 1)), OrderStatus.CANCELED)
    with pytest.raises(InvalidStatus):
        await update_order(tenant.id, order.id, manager, lines((menu["B"], 1)), "archived")


@pytest.mark.asyncio
async def test_create_as_canceled_rejected(tenant, menu, manager):
    with pytest.raises(InvalidStatus):
        await create_order(tenant.id, manager, lines((menu["B"], 1)), status=OrderStatus.CANCELED)


@pytest.mark.asyncio
async def test_update_unknown_order(tenant, menu, manager):
    with pytest.raises(OrderNotFound):
        await update_order(tenant.id, uuid4(), manager, lines((menu["B"], 1)), OrderStatus.PENDING)


@pytest.mark.asyncio
async def test_update_keeps_fields_left_out(tenant, menu, manager):
    order = await create_order(
        tenant.id, manager, lines((menu["B"], 1)),
        customer_name="Ada", customer_phone="555-0100", is_delivery=True, customer_location=LOCATION,
    )
    await update_order(tenant.id, order.id, manager, lines((menu["B"], 1)), OrderStatus.PREPARING, customer_name="Ada L.")

    stored = await Order.get(id=order.id)
    assert stored.customer_name == "Ada L."
    assert stored.customer_phone == "555-0100"
    assert stored.is_delivery is True
    assert stored.customer_location == LOCATION


@pytest.mark.asyncio
async def test_delivery_requires_location(tenant, menu, manager):
    with pytest.raises(MissingLocation):
        await create_order(tenant.id, manager, lines((menu["B"], 1)), is_delivery=True)
    order = await create_order(tenant.id, manager, lines((menu["B"], 1)))
    with pytest.raises(MissingLocation):
        await update_order(tenant.id, order.id, manager, lines((menu["B"], 1)), OrderStatus.PENDING, is_delivery=True)
    assert await stock_of(menu["B"]) == 19


# --- ROLES AND RIDERS ---

@pytest.mark.asyncio
async def test_customer_order_needs_name_and_phone(tenant, menu):
    with pytest.raises(MissingCustomerDetails):
        await create_order(tenant.id, customer(tenant.id), lines((menu["B"], 1)), customer_name="Ada")

    order = await create_order(
        tenant.id, customer(tenant.id), lines((menu["B"], 1)), customer_name="Ada", customer_phone="555-0100"
    )
    entry = (await audit_log.list_entries(tenant.id, order_id=order.id))[0]
    assert entry.changed_by == "customer"


@pytest.mark.asyncio
async def test_customer_cannot_choose_status(tenant, menu):
    with pytest.raises(PermissionDenied):
        await create_order(
            tenant.id, customer(tenant.id), lines((menu["B"], 1)),
            status=OrderStatus.PREPARING, customer_name="Ada", customer_phone="555-0100",
        )


@pytest.mark.asyncio
async def test_only_manager_cancels(tenant, menu, manager, kitchen):
    order = await create_order(tenant.id, manager, lines((menu["B"], 1)))
    with pytest.raises(PermissionDenied):
        await cancel_order(tenant.id, order.id, kitchen)
    assert await Order.get_or_none(id=order.id) is not None


@pytest.mark.asyncio
async def test_customer_cannot_update(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["B"], 1)))
    with pytest.raises(PermissionDenied):
        await update_order(tenant.id, order.id, customer(tenant.id), lines((menu["B"], 1)), OrderStatus.PREPARING)


@pytest.mark.asyncio
async def test_rider_cannot_move_kitchen_states(tenant, menu, manager, rider):
    order = await create_order(tenant.id, manager, lines((menu["B"], 1)), is_delivery=True, customer_location=LOCATION)
    with pytest.raises(RiderNotAuthorized) as exc_info:
        await update_order(tenant.id, order.id, rider, lines((menu["B"], 1)), OrderStatus.PREPARING)
    assert exc_info.value.reason == "rider_not_authorized_for_transition"


@pytest.mark.asyncio
async def test_rider_cannot_deliver_someone_elses_order(tenant, menu, manager, rider, rider2):
    order = await completed_delivery_order(tenant, manager, menu["B"])
    await update_order(tenant.id, order.id, rider, await current_lines(order.id), OrderStatus.ENROUTE)
    with pytest.raises(RiderNotAuthorized):
        await update_order(tenant.id, order.id, rider2, await current_lines(order.id), OrderStatus.DELIVERED)


@pytest.mark.asyncio
async def test_staff_prebinds_rider(tenant, menu, manager, users):
    order = await create_order(
        tenant.id, manager, lines((menu["B"], 1)),
        is_delivery=True, customer_location=LOCATION, rider_id=users["rider"].id,
    )
    assert (await Order.get(id=order.id)).rider_id == users["rider"].id


@pytest.mark.asyncio
async def test_staff_rider_binding_rules(tenant, menu, manager, users):
    with pytest.raises(InvalidRiderAssignment):
        await create_order(tenant.id, manager, lines((menu["B"], 1)), rider_id=users["rider"].id)
    with pytest.raises(RiderNotFound):
        await create_order(
            tenant.id, manager, lines((menu["B"], 1)),
            is_delivery=True, customer_location=LOCATION, rider_id=users["kitchen"].id,
        )
    with pytest.raises(RiderNotFound):
        await create_order(
            tenant.id, manager, lines((menu["B"], 1)),
            is_delivery=True, customer_location=LOCATION, rider_id=uuid4(),
        )
    assert await stock_of(menu["B"]) == 20


@pytest.mark.asyncio
async def test_staff_cannot_send_busy_rider(tenant, menu, manager, kitchen, rider, users):
    first = await completed_delivery_order(tenant, manager, menu["B"])
    await update_order(tenant.id, first.id, rider, await current_lines(first.id), OrderStatus.ENROUTE)

    second = await completed_delivery_order(tenant, manager, menu["B"])
    with pytest.raises(RiderBusy):
        await update_order(
            tenant.id, second.id, kitchen, await current_lines(second.id),
            OrderStatus.ENROUTE, rider_id=users["rider"].id,
        )


@pytest.mark.asyncio
async def test_enroute_needs_a_rider(tenant, menu, manager):
    order = await completed_delivery_order(tenant, manager, menu["B"])
    with pytest.raises(RiderRequired):
        await update_order(tenant.id, order.id, manager, await current_lines(order.id), OrderStatus.ENROUTE)


# --- AUDIT, QUERIES, CUSTOMER ACCESS ---

@pytest.mark.asyncio
async def test_one_audit_entry_per_accepted_mutation(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["B"], 1)))
    await update_order(tenant.id, order.id, manager, lines((menu["B"], 2)), OrderStatus.PREPARING)
    with pytest.raises(InvalidTransition):
        await update_order(tenant.id, order.id, manager, lines((menu["B"], 2)), OrderStatus.ENROUTE)
    await cancel_order(tenant.id, order.id, manager)

    entries = await audit_log.list_entries(tenant.id)
    assert sorted(e.details.action for e in entries) == ["canceled", "created", "updated"]
    updated = next(e for e in entries if e.details.action == "updated")
    assert updated.details.status == OrderStatus.PREPARING
    assert updated.details.total_price == 9.0


@pytest.mark.asyncio
async def test_list_orders_filters_and_sorts(tenant, other_tenant, menu, manager):
    cheap = await create_order(tenant.id, manager, lines((menu["B"], 1)), customer_name="Grace", customer_phone="555-0199")
    pricey = await create_order(
        tenant.id, manager, lines((menu["B"], 2)), status=OrderStatus.PREPARING, customer_name="Alan"
    )

    by_price = await list_orders(tenant.id, sort_by="total_price", sort_order="asc")
    assert [o.order_id for o in by_price] == [cheap.id, pricey.id]

    assert [o.order_id for o in await list_orders(tenant.id, status="preparing")] == [pricey.id]
    assert [o.order_id for o in await list_orders(tenant.id, search="grac")] == [cheap.id]
    assert [o.order_id for o in await list_orders(tenant.id, search="0199")] == [cheap.id]
    assert await list_orders(other_tenant.id) == []


@pytest.mark.asyncio
async def test_order_status_lookup_is_phone_gated(tenant, menu, manager):
    order = await create_order(tenant.id, manager, lines((menu["B"], 2)), customer_name="Ada", customer_phone="555-0100")

    snapshot = await get_order_status(tenant.id, order.id, "555-0100")
    assert snapshot.order_id == order.id
    assert snapshot.total_price == 9.0
    assert snapshot.items[0].quantity == 2

    with pytest.raises(OrderNotFound):
        await get_order_status(tenant.id, order.id, "555-9999")
    with pytest.raises(MissingCustomerDetails):
        await get_order_status(tenant.id, order.id, None)

    assert await verify_customer_channel(tenant.id, order.id, "555-0100") is True
    assert await verify_customer_channel(tenant.id, order.id, "555-9999") is False
    assert await verify_customer_channel(uuid4(), order.id, "555-0100") is False
