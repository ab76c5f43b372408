import pytest

from marketchat.domain.chat import service
from marketchat.domain.chat.exceptions import ChatStorageFailure
from marketchat.settings import settings


async def _send(api_client, text, *, sender_side="REQUESTER", context_id=42, requester_id=1, counterparty_id=10):
    response = await api_client.post(
        "/chat/send",
        json={
            "requester_id": requester_id,
            "counterparty_id": counterparty_id,
            "context_id": context_id,
            "sender_side": sender_side,
            "text": text,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_send_and_history_flow(api_client, broadcasts):
    sent = await _send(api_client, "Is this in stock?")

    response = await api_client.get(
        "/chat/history",
        params={"requester_id": 1, "counterparty_id": 10, "viewer_side": "COUNTERPARTY"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["next_before_id"] is None
    assert [item["id"] for item in body["items"]] == [sent["id"]]
    item = body["items"][0]
    assert item["conversation_id"] == "market:1:10"
    assert item["context_name"] == "Desk lamp"
    assert item["read_by_requester"] is True
    assert item["read_by_counterparty"] is False
    assert response.headers.get("X-Request-Id")


@pytest.mark.asyncio
async def test_send_accepts_storefront_field_names(api_client, broadcasts):
    response = await api_client.post(
        "/chat/send",
        json={"userId": 1, "sellerId": 10, "productId": 7, "senderType": "SELLER", "message": "Yes, in stock"},
    )

    assert response.status_code == 201
    assert response.json()["sender_side"] == "COUNTERPARTY"
    assert response.json()["context_name"] == "Bike helmet"


@pytest.mark.asyncio
async def test_history_pages_with_cursor(api_client, broadcasts):
    sent = [await _send(api_client, f"m{i}") for i in range(5)]

    response = await api_client.get(
        "/chat/history",
        params={
            "requester_id": 1,
            "counterparty_id": 10,
            "viewer_side": "REQUESTER",
            "before_id": sent[4]["id"],
            "limit": 2,
        },
    )

    body = response.json()
    assert [item["text"] for item in body["items"]] == ["m2", "m3"]
    assert body["next_before_id"] == sent[2]["id"]


@pytest.mark.asyncio
async def test_conversation_list_and_mark_read(api_client, broadcasts):
    await _send(api_client, "About the lamp")
    await _send(api_client, "And the helmet", context_id=7)

    listing = await api_client.get("/chat/conversations/COUNTERPARTY/10")
    assert listing.status_code == 200
    body = listing.json()
    assert body["total_unread"] == 2
    assert len(body["items"]) == 1
    summary = body["items"][0]
    assert summary["requester_name"] == "Una Buyer"
    assert summary["context_id"] == 7
    assert summary["last_message"] == "And the helmet"

    marked = await api_client.post(
        "/chat/mark-read",
        json={"requester_id": 1, "counterparty_id": 10, "side": "counterparty"},
    )
    assert marked.status_code == 200
    assert marked.json() == {"ok": True, "conversation_id": "market:1:10", "updated": 2}

    after = await api_client.get("/chat/conversations/seller/10")
    assert after.json()["total_unread"] == 0


@pytest.mark.asyncio
async def test_delete_hides_message_for_one_side(api_client, broadcasts):
    first = await _send(api_client, "one")
    await _send(api_client, "two")

    deleted = await api_client.delete(f"/chat/messages/{first['id']}", params={"side": "REQUESTER"})

    assert deleted.status_code == 200
    assert deleted.json() == {"ok": True, "message_id": first["id"]}
    buyer = await api_client.get(
        "/chat/history", params={"requester_id": 1, "counterparty_id": 10, "viewer_side": "REQUESTER"}
    )
    vendor = await api_client.get(
        "/chat/history", params={"requester_id": 1, "counterparty_id": 10, "viewer_side": "COUNTERPARTY"}
    )
    assert [item["text"] for item in buyer.json()["items"]] == ["two"]
    assert len(vendor.json()["items"]) == 2


@pytest.mark.asyncio
async def test_delete_unknown_message_is_404(api_client):
    response = await api_client.delete("/chat/messages/777", params={"side": "COUNTERPARTY"})

    assert response.status_code == 404
    assert response.json()["detail"] == "message_not_found"
    assert response.json()["request_id"]


@pytest.mark.asyncio
async def test_send_to_unknown_counterparty_is_404(api_client):
    response = await api_client.post(
        "/chat/send",
        json={"requester_id": 1, "counterparty_id": 404, "context_id": 42, "sender_side": "REQUESTER", "text": "hi"},
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "counterparty_not_found"


@pytest.mark.asyncio
async def test_blank_body_is_400(api_client):
    response = await api_client.post(
        "/chat/send",
        json={"requester_id": 1, "counterparty_id": 10, "context_id": 42, "sender_side": "REQUESTER", "text": "   "},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "empty_body"


@pytest.mark.asyncio
async def test_empty_body_is_400_like_blank(api_client):
    response = await api_client.post(
        "/chat/send",
        json={"requester_id": 1, "counterparty_id": 10, "context_id": 42, "sender_side": "REQUESTER", "text": ""},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "empty_body"


@pytest.mark.asyncio
async def test_invalid_side_is_400(api_client):
    response = await api_client.get("/chat/conversations/moderator/10")

    assert response.status_code == 400
    assert response.json()["detail"] == "invalid_side"


@pytest.mark.asyncio
async def test_missing_fields_is_422_with_request_id(api_client):
    response = await api_client.post(
        "/chat/send",
        json={"requester_id": 1},
        headers={"X-Request-Id": "req-123"},
    )

    assert response.status_code == 422
    body = response.json()
    assert body["detail"] == "validation_error"
    assert body["request_id"] == "req-123"
    assert body["errors"]


@pytest.mark.asyncio
async def test_storage_failure_is_503(monkeypatch, api_client):
    async def unavailable(party_id, as_side):
        raise ChatStorageFailure()

    monkeypatch.setattr(service, "list_conversations", unavailable)

    response = await api_client.get("/chat/conversations/REQUESTER/1")

    assert response.status_code == 503
    assert response.json()["detail"] == "storage_unavailable"


@pytest.mark.asyncio
async def test_health_live(api_client):
    response = await api_client.get("/health/live")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_metrics_require_admin_token(api_client, monkeypatch):
    monkeypatch.setattr(settings, "obs_metrics_public", False)
    monkeypatch.setattr(settings, "obs_admin_token", "secret")

    denied = await api_client.get("/metrics")
    allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "secret"})

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert "marketchat_http_requests_total" in allowed.text
