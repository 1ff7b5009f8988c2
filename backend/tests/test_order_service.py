import asyncio
import json

import pytest

from conftest import RecordingHandle, line
from core.exceptions import InvalidTransition, NothingToPrint, PaymentRequired, StoreConflict
from models.order import OrderStatus, PaymentStatus, PaymentType
from models.schemas import Actor
from services import state_machine as sm

S = OrderStatus


def run(coro):
    return asyncio.run(coro)


def kinds(handle):
    return [json.loads(m)["eventKind"] for m in handle.sent]


def test_pay_later_dine_in_becomes_visible_after_payment(service, hub, make_draft):
    outlet_screen = RecordingHandle("outlet")
    customer = RecordingHandle("customer")

    async def scenario():
        await hub.subscribe("outlet:outlet-1", outlet_screen)
        await hub.subscribe("user:user-1", customer)
        order = await service.create_order(make_draft())
        hidden = service.list_outlet_orders("outlet-1")
        paid = await service.mark_paid(order.id)
        visible = service.list_outlet_orders("outlet-1")
        return order, hidden, paid, visible

    order, hidden, paid, visible = run(scenario())
    assert order.status == S.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert hidden == []
    assert [o.id for o in visible] == [order.id]
    assert visible[0].status == S.PENDING
    assert paid.payment_status == PaymentStatus.PAID

    # The outlet only ever hears about the order once it is paid
    assert kinds(outlet_screen) == ["payment_updated"]
    assert kinds(customer) == ["order_created", "payment_updated"]


def test_mark_paid_twice_is_noop(service, hub, make_draft):
    outlet_screen = RecordingHandle()

    async def scenario():
        order = await service.create_order(make_draft())
        first = await service.mark_paid(order.id)
        await hub.subscribe("outlet:outlet-1", outlet_screen)
        second = await service.mark_paid(order.id)
        return first, second

    first, second = run(scenario())
    assert second == first
    assert outlet_screen.sent == []


def test_staff_cannot_touch_unpaid_order(service, make_draft):
    async def scenario():
        order = await service.create_order(make_draft())
        with pytest.raises(PaymentRequired):
            await service.advance_status(order.id, S.CONFIRMED)
        with pytest.raises(PaymentRequired):
            await service.generate_ticket(order.id)
        await service.confirm_payment(order.id)
        return await service.advance_status(order.id, S.CONFIRMED, Actor(role="staff", id="s1"))

    assert run(scenario()).status == S.CONFIRMED


def test_ticket_scenario_with_added_item(service, make_draft):
    async def scenario():
        order = await service.create_order(make_draft(
            items=[line("idly"), line("dosa"), line("vada")],
            payment_type=PaymentType.PAY_NOW,
        ))
        order, first = await service.generate_ticket(order.id)
        with pytest.raises(NothingToPrint):
            await service.generate_ticket(order.id)
        await service.add_items(order.id, [line("coffee")])
        order, second = await service.generate_ticket(order.id)
        return order, first, second

    order, first, second = run(scenario())
    assert len(first.items) == 3
    assert [i.item_id for i in second.items] == ["coffee"]
    assert all(ref.kot_generated for ref in order.kot_items)


def test_delivered_order_stays_delivered(service, make_draft):
    async def scenario():
        order = await service.create_order(make_draft(payment_type=PaymentType.PAY_NOW))
        for status in (S.CONFIRMED, S.PREPARING, S.READY, S.DELIVERED):
            order = await service.advance_status(order.id, status)
        with pytest.raises(InvalidTransition):
            await service.advance_status(order.id, S.PREPARING)
        return order

    order = run(scenario())
    reloaded = service.get_order(order.id)
    assert reloaded.status == S.DELIVERED
    assert reloaded.revision == order.revision


def test_concurrent_writer_gets_store_conflict(service, store, make_draft):
    async def scenario():
        order = await service.create_order(make_draft(payment_type=PaymentType.PAY_NOW))
        stale = store.load_order(order.id)
        await service.advance_status(order.id, S.CONFIRMED)
        # A second terminal still holding the old snapshot
        with pytest.raises(StoreConflict):
            store.save_order(sm.transition(stale, S.CANCELLED).order, expected=stale)

    run(scenario())


def test_published_snapshot_carries_stored_revision(service, hub, make_draft):
    customer = RecordingHandle()

    async def scenario():
        await hub.subscribe("user:user-1", customer)
        order = await service.create_order(make_draft(payment_type=PaymentType.PAY_NOW))
        return await service.advance_status(order.id, S.CONFIRMED)

    order = run(scenario())
    last = json.loads(customer.sent[-1])
    assert last["order"]["revision"] == order.revision == 1
    assert last["order"]["status"] == "confirmed"
