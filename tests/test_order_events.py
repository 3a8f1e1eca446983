"""Customer's live tracking stream (Server-Sent Events)."""

import json

from bson.objectid import ObjectId

import main
from database import get_order

from tests.conftest import insert_order


def next_view(frames):
    for frame in frames:
        if frame.startswith("data: "):
            view = json.loads(frame[len("data: "):])
            return view["status"], view["show_live_map"], view["courier"]
    raise AssertionError("stream ended")


def test_stream_follows_location_and_dispatch(client, db, feed, admin, user_id):
    order_id = insert_order(db, status="approved", user_id=user_id)
    frames = main.tracking_events(get_order(db, ObjectId(order_id)), feed.subscribe(order_id))

    assert next_view(frames) == ("approved", False, None)

    client.put(f"/delivery/{order_id}/location", json={"lat": 1.0, "lng": 2.0})
    assert next_view(frames) == ("approved", False, None)

    client.post(f"/admin/orders/{order_id}/status", json={"status": "out_for_delivery"}, headers=admin)
    assert next_view(frames) == ("out_for_delivery", True, {"lat": 1.0, "lng": 2.0})

    frames.close()
    assert feed.subscriber_count(order_id) == 0


def test_idle_stream_sends_keep_alive(db, feed):
    order_id = insert_order(db, status="pending")
    frames = main.tracking_events(get_order(db, ObjectId(order_id)), feed.subscribe(order_id))

    assert next(frames).startswith("data: ")
    assert next(frames) == ": keep-alive\n\n"

    frames.close()
    assert feed.subscriber_count(order_id) == 0


def test_stream_is_only_for_the_owner(client, db, customer, feed):
    order_id = insert_order(db, status="approved", user_id="someone-else")

    resp = client.get(f"/orders/{order_id}/events", headers=customer)

    assert resp.status_code == 404
    assert feed.subscriber_count(order_id) == 0
