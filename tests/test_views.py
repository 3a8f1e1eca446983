from database import ORDERS, get_documents
from order_status import OrderStatus
from views import (
    customer_orders_filter,
    fulfillment_queue_filter,
    in_fulfillment_queue,
    in_payment_queue,
    order_card,
    payment_queue_filter,
    tracking_view,
)

from tests.conftest import insert_order


def test_queues_partition_the_order_set(db):
    for status in OrderStatus:
        insert_order(db, status=status.value)
        insert_order(db, status=status.value)

    everything = {o["id"] for o in get_documents(db, ORDERS)}
    payments = {o["id"] for o in get_documents(db, ORDERS, payment_queue_filter())}
    fulfillment = {o["id"] for o in get_documents(db, ORDERS, fulfillment_queue_filter())}

    assert len(payments) == 4
    assert len(fulfillment) == 10
    assert payments | fulfillment == everything
    assert not payments & fulfillment


def test_queue_predicates_agree_with_filters():
    for status in OrderStatus:
        assert in_payment_queue(status.value) != in_fulfillment_queue(status.value)
    assert in_payment_queue("payment_rejected")
    assert in_fulfillment_queue("delivered")


def test_customer_filter_is_not_status_filtered(db):
    insert_order(db, status="awaiting_payment_verification", user_id="u1")
    insert_order(db, status="delivered", user_id="u1")
    insert_order(db, status="pending", user_id="u2")

    mine = get_documents(db, ORDERS, customer_orders_filter("u1"))
    assert sorted(o["status"] for o in mine) == ["awaiting_payment_verification", "delivered"]


def test_order_card_lists_actions_for_status():
    card = order_card({"id": "o1", "status": "pending", "order_items": [{"quantity": 2}, {"quantity": 1}]})

    assert card["status_label"] == "Pending"
    assert card["item_count"] == 3
    assert [a["status"] for a in card["actions"]] == ["approved", "rejected"]


def test_order_card_terminal_status_has_no_actions():
    assert order_card({"id": "o1", "status": "delivered"})["actions"] == []


def test_tracking_view_shows_courier_only_out_for_delivery():
    order = {
        "id": "o1",
        "status": "approved",
        "location": {"lat": 9.9, "lng": 78.1},
        "delivery_location": {"lat": 9.8, "lng": 78.0},
    }
    hidden = tracking_view(order)
    assert hidden["show_live_map"] is False
    assert hidden["courier"] is None
    assert hidden["destination"] == {"lat": 9.9, "lng": 78.1}

    live = tracking_view({**order, "status": "out_for_delivery"})
    assert live["show_live_map"] is True
    assert live["courier"] == {"lat": 9.8, "lng": 78.0}


def test_tracking_view_without_destination_has_no_map():
    view = tracking_view({"id": "o1", "status": "out_for_delivery", "location": None})
    assert view["show_live_map"] is False
