"""Feedback API tests: sentiment is stored, negative verdicts alert staff."""

from decimal import Decimal

import pytest

from snapserve.ai.sentiment import SentimentAnalysis
from snapserve.events.types import NEGATIVE_FEEDBACK


@pytest.mark.asyncio
async def test_negative_feedback_alerts_staff_and_admin(client, analyzer, connect_socket):
    analyzer.verdict = SentimentAnalysis(
        sentiment="negative", score=-0.8, confidence=0.9, issues=["cold food", "slow service"],
    )
    staff = connect_socket(role="staff")
    admin = connect_socket(role="admin")
    customer = connect_socket(role="customer")
    anon = connect_socket()

    r = await client.post("/api/v1/feedback", json={
        "rating": 1,
        "comment": "Food was cold and we waited an hour",
    })
    assert r.status_code == 201
    stored = r.json()
    assert stored["sentiment"] == "negative"
    assert Decimal(stored["sentiment_score"]) == Decimal("-0.80")
    assert analyzer.seen == ["Food was cold and we waited an hour"]

    for socket in (staff, admin):
        (message,) = socket.messages
        assert message["type"] == NEGATIVE_FEEDBACK
        feedback = message["feedback"]
        assert feedback["id"] == stored["id"]
        assert feedback["rating"] == 1
        assert feedback["sentiment"] == "negative"
        assert feedback["score"] == -0.8
        assert feedback["confidence"] == 0.9
        assert feedback["issues"] == ["cold food", "slow service"]
    assert customer.sent == []
    assert anon.sent == []


@pytest.mark.asyncio
async def test_positive_feedback_is_stored_silently(client, analyzer, connect_socket):
    analyzer.verdict = SentimentAnalysis(sentiment="positive", score=0.9, confidence=0.95)
    staff = connect_socket(role="staff")

    r = await client.post("/api/v1/feedback", json={"rating": 5, "comment": "Lovely!"})

    assert r.status_code == 201
    assert r.json()["sentiment"] == "positive"
    assert staff.sent == []


@pytest.mark.asyncio
async def test_feedback_without_comment_is_neutral(client, connect_socket):
    staff = connect_socket(role="staff")

    r = await client.post("/api/v1/feedback", json={"rating": 3})

    assert r.status_code == 201
    assert r.json()["sentiment"] == "neutral"
    assert staff.sent == []


@pytest.mark.asyncio
async def test_feedback_links_customer_and_order(client, menu, customer_headers):
    r = await client.post("/api/v1/orders", json={
        "items": [{"menu_item_id": menu["fries"].id, "quantity": 1}],
    })
    order_id = r.json()["id"]

    r = await client.post(
        "/api/v1/feedback",
        json={"rating": 4, "comment": "good", "order_id": order_id},
        headers=customer_headers,
    )
    assert r.status_code == 201
    assert r.json()["order_id"] == order_id
    assert r.json()["customer_id"] == 30


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6])
async def test_rating_out_of_range(client, rating):
    r = await client.post("/api/v1/feedback", json={"rating": rating})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_list_feedback_is_staff_only(client, staff_headers, customer_headers):
    await client.post("/api/v1/feedback", json={"rating": 2, "comment": "meh"})
    await client.post("/api/v1/feedback", json={"rating": 5, "comment": "great"})

    r = await client.get("/api/v1/feedback")
    assert r.status_code == 401
    r = await client.get("/api/v1/feedback", headers=customer_headers)
    assert r.status_code == 403

    r = await client.get("/api/v1/feedback", headers=staff_headers)
    assert r.status_code == 200
    assert sorted(f["rating"] for f in r.json()) == [2, 5]
