"""
End-to-end tests for the widget API routes against in-memory collaborators.
"""

import base64
from datetime import timedelta

import pytest

from backend.src.core.config import settings
from backend.src.core.rate_limit import RateLimitPolicies, RateLimitPolicy
from backend.src.models.base import utcnow
from backend.src.models.widget_session import SessionStatus, WidgetSession
from backend.src.services.tryon_provider import TryOnResult
from backend.tests.mocks import PNG_BYTES, RESULT_DATA_URI, make_account

PRODUCT_IMAGE = "https://example.com/shirt.jpg"
PHOTO_URL = "https://example.com/me.jpg"


def create_session(client, headers, **product):
    product = {"image": PRODUCT_IMAGE, "name": "Blue Shirt", "id": "sku-1", "category": "top", **product}
    response = client.post("/v1/widget/session", headers=headers, json={"product": product})
    assert response.status_code == 201, response.text
    return response.json()["session"]["id"]


def foreign_session(store, **overrides):
    other = store.add_account(make_account(live_key="mk_live_other"))
    values = {
        "id": "ses_foreign",
        "account_id": other.id,
        "product_image": PRODUCT_IMAGE,
        "expires_at": utcnow() + timedelta(hours=1),
    }
    values.update(overrides)
    return store.add_session(WidgetSession(**values))


def completed_session(store, account, result_image=RESULT_DATA_URI, **overrides):
    values = {
        "id": "ses_done1234",
        "account_id": account.id,
        "product_image": PRODUCT_IMAGE,
        "product_name": "Blue Shirt",
        "status": SessionStatus.COMPLETED,
        "result_image": result_image,
        "expires_at": utcnow() + timedelta(hours=1),
    }
    values.update(overrides)
    return store.add_session(WidgetSession(**values))


class TestSessionLifecycle:
    def test_create_session(self, client, account, live_headers, store, dispatcher):
        response = client.post(
            "/v1/widget/session",
            headers=live_headers,
            json={
                "product": {"image": PRODUCT_IMAGE, "name": "Blue Shirt", "price": 29.99, "currency": "USD"},
                "user": {"id": "shopper-1"},
            },
        )

        assert response.status_code == 201
        session = response.json()["session"]
        assert session["id"].startswith("ses_")
        assert session["status"] == "pending"
        assert session["product"]["price"] == "29.99"
        assert session["iframeUrl"] == f"{settings.BASE_URL}/widget/embed?session={session['id']}"

        stored = store.sessions[session["id"]]
        assert stored.origin_domain == "example.com"
        assert stored.api_key_id == "legacy"
        assert stored.external_user_id == "shopper-1"
        assert (stored.expires_at - stored.created_at) == timedelta(seconds=settings.WIDGET_SESSION_TTL_SECONDS)

        assert store.event_types() == ["impression"]
        assert store.events[0].event_data == {
            "productId": None,
            "productCategory": None,
            "hasUserImage": False,
        }
        assert dispatcher.event_names() == ["session.created"]
        assert dispatcher.events[0]["user"].id == "shopper-1"

    def test_invalid_product_image_url(self, client, account, live_headers):
        response = client.post(
            "/v1/widget/session",
            headers=live_headers,
            json={"product": {"image": "ftp://example.com/shirt.jpg"}},
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["errors"][0]["field"] == "product.image"

    def test_missing_product(self, client, account, live_headers):
        response = client.post("/v1/widget/session", headers=live_headers, json={})
        assert response.status_code == 400
        assert response.json()["error"]["details"]["errors"][0]["field"] == "product"

    def test_get_session(self, client, account, live_headers):
        session_id = create_session(client, live_headers)

        response = client.get(f"/v1/widget/session/{session_id}", headers=live_headers)

        assert response.status_code == 200
        session = response.json()["session"]
        assert session["id"] == session_id
        assert session["product"]["name"] == "Blue Shirt"
        assert "result" not in session
        assert "error" not in session

    def test_get_unknown_session(self, client, account, live_headers):
        response = client.get("/v1/widget/session/ses_missing", headers=live_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "SESSION_NOT_FOUND"

    def test_get_foreign_session(self, client, account, live_headers, store):
        foreign_session(store)
        response = client.get("/v1/widget/session/ses_foreign", headers=live_headers)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ACCESS_DENIED"

    def test_get_expired_session(self, client, account, live_headers, store):
        store.add_session(
            WidgetSession(
                id="ses_old",
                account_id=account.id,
                product_image=PRODUCT_IMAGE,
                expires_at=utcnow() - timedelta(minutes=1),
            )
        )
        response = client.get("/v1/widget/session/ses_old", headers=live_headers)
        assert response.status_code == 410
        assert response.json()["error"]["code"] == "SESSION_EXPIRED"

    def test_cancel_session(self, client, account, live_headers, store):
        session_id = create_session(client, live_headers)

        response = client.delete(f"/v1/widget/session/{session_id}", headers=live_headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Session cancelled successfully"}
        assert store.sessions[session_id].status == SessionStatus.EXPIRED

    def test_cancel_foreign_session(self, client, account, live_headers, store):
        foreign_session(store)
        response = client.delete("/v1/widget/session/ses_foreign", headers=live_headers)
        assert response.status_code == 403
        assert store.sessions["ses_foreign"].status == SessionStatus.PENDING


class TestTryOn:
    def test_try_on_with_photo_url(self, client, account, live_headers, store, dispatcher, generator, image_fetcher):
        session_id = create_session(client, live_headers)

        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id, "photoUrl": PHOTO_URL},
        )

        assert response.status_code == 200, response.text
        result = response.json()["result"]
        assert result["sessionId"] == session_id
        assert result["status"] == "completed"
        assert result["imageUrl"] == RESULT_DATA_URI
        assert result["downloadUrl"] == f"{settings.BASE_URL}/v1/widget/download/{session_id}"
        assert result["processingTime"] >= 0

        assert image_fetcher.fetched == [PHOTO_URL, PRODUCT_IMAGE]
        request = generator.requests[0]
        assert request.fashion_item_name == "Blue Shirt"
        assert request.fashion_category == "top"
        assert request.requester_id == f"widget_{account.id}"

        stored = store.sessions[session_id]
        assert stored.status == SessionStatus.COMPLETED
        assert stored.completed_at is not None
        assert store.accounts[account.id].quota_used == 1
        assert store.accounts[account.id].widget_quota_used == 1

        assert store.event_types() == ["impression", "processing_start", "completed"]
        assert store.events[1].event_data == {"photoSource": "url"}
        assert dispatcher.event_names() == ["session.created", "try-on.processing", "try-on.completed"]

    def test_try_on_with_upload(self, client, account, live_headers, generator, store):
        session_id = create_session(client, live_headers)

        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id},
            files={"photo": ("me.png", PNG_BYTES, "image/png")},
        )

        assert response.status_code == 200, response.text
        assert generator.requests[0].model_image_base64 == base64.b64encode(PNG_BYTES).decode("ascii")
        assert store.events[1].event_data == {"photoSource": "upload"}

    def test_missing_session_id(self, client, account, live_headers):
        response = client.post("/v1/widget/try-on", headers=live_headers, data={"photoUrl": PHOTO_URL})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_SESSION_ID"

    def test_missing_photo(self, client, account, live_headers):
        response = client.post("/v1/widget/try-on", headers=live_headers, data={"sessionId": "ses_x"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_PHOTO"

    def test_upload_must_be_an_image(self, client, account, live_headers):
        session_id = create_session(client, live_headers)
        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id},
            files={"photo": ("notes.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_IMAGE_TYPE"

    def test_upload_size_limit(self, client, account, live_headers, monkeypatch):
        monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 4)
        session_id = create_session(client, live_headers)
        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id},
            files={"photo": ("me.png", PNG_BYTES, "image/png")},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "IMAGE_TOO_LARGE"

    def test_completed_session_cannot_be_resubmitted(self, client, account, live_headers, store):
        completed_session(store, account)
        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": "ses_done1234", "photoUrl": PHOTO_URL},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "SESSION_ALREADY_COMPLETED"

    def test_processing_session_cannot_be_resubmitted(self, client, account, live_headers, store, generator):
        session_id = create_session(client, live_headers)
        store.sessions[session_id] = store.sessions[session_id].model_copy(
            update={"status": SessionStatus.PROCESSING}
        )

        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id, "photoUrl": PHOTO_URL},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "SESSION_PROCESSING"
        assert generator.requests == []

    def test_lost_claim_is_reported_as_processing(self, client, account, live_headers, store, generator, monkeypatch):
        session_id = create_session(client, live_headers)

        async def lost_claim(session_id):
            return False

        monkeypatch.setattr(store, "claim_session_for_processing", lost_claim)
        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id, "photoUrl": PHOTO_URL},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "SESSION_PROCESSING"
        assert generator.requests == []

    def test_generator_failure_marks_session_failed(self, client, account, live_headers, store, dispatcher, generator):
        generator.result = TryOnResult(success=False, error="Model overloaded")
        session_id = create_session(client, live_headers)

        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id, "photoUrl": PHOTO_URL},
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "PROCESSING_FAILED"
        stored = store.sessions[session_id]
        assert stored.status == SessionStatus.FAILED
        assert stored.error_code == "PROCESSING_FAILED"
        assert stored.error_message == "Model overloaded"
        assert store.accounts[account.id].quota_used == 0
        assert "error" in store.event_types()
        assert dispatcher.event_names()[-1] == "try-on.failed"

    def test_failed_session_can_be_retried(self, client, account, live_headers, store, generator):
        generator.error = RuntimeError("provider down")
        session_id = create_session(client, live_headers)
        form = {"sessionId": session_id, "photoUrl": PHOTO_URL}

        first = client.post("/v1/widget/try-on", headers=live_headers, data=form)
        assert first.status_code == 500
        assert store.sessions[session_id].error_message == "provider down"

        generator.error = None
        second = client.post("/v1/widget/try-on", headers=live_headers, data=form)

        assert second.status_code == 200
        stored = store.sessions[session_id]
        assert stored.status == SessionStatus.COMPLETED
        assert stored.error_code is None

    def test_unreachable_user_photo(self, client, account, live_headers, store, image_fetcher, generator):
        image_fetcher.failing_urls.add(PHOTO_URL)
        session_id = create_session(client, live_headers)

        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id, "photoUrl": PHOTO_URL},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_USER_IMAGE"
        assert store.sessions[session_id].error_code == "INVALID_USER_IMAGE"
        assert generator.requests == []

    def test_unreachable_product_image(self, client, account, live_headers, store, image_fetcher):
        image_fetcher.failing_urls.add(PRODUCT_IMAGE)
        session_id = create_session(client, live_headers)

        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id, "photoUrl": PHOTO_URL},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PRODUCT_IMAGE"
        assert store.sessions[session_id].status == SessionStatus.FAILED

    def test_session_reports_result_after_try_on(self, client, account, live_headers):
        session_id = create_session(client, live_headers)
        client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": session_id, "photoUrl": PHOTO_URL},
        )

        session = client.get(f"/v1/widget/session/{session_id}", headers=live_headers).json()["session"]

        assert session["status"] == "completed"
        assert session["result"]["imageUrl"] == RESULT_DATA_URI
        assert "completedAt" in session


class TestResultImages:
    def test_result_from_data_uri(self, client, account, store):
        completed_session(store, account)

        response = client.get("/v1/widget/result/ses_done1234")

        assert response.status_code == 200
        assert response.content == PNG_BYTES
        assert response.headers["Content-Type"] == "image/png"
        assert response.headers["Cache-Control"] == "public, max-age=3600"
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    def test_result_from_media_file(self, client, account, store, tmp_path):
        (tmp_path / "results").mkdir()
        (tmp_path / "results" / "ses_done1234.jpg").write_bytes(b"jpeg-bytes")
        completed_session(store, account, result_image="/media/results/ses_done1234.jpg")

        response = client.get("/v1/widget/result/ses_done1234")

        assert response.status_code == 200
        assert response.content == b"jpeg-bytes"
        assert response.headers["Content-Type"] == "image/jpeg"

    def test_media_paths_cannot_escape_the_media_root(self, client, account, store, tmp_path):
        completed_session(store, account, result_image="/media/../../etc/passwd")

        response = client.get("/v1/widget/result/ses_done1234")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RESULT_NOT_FOUND"

    def test_remote_result(self, client, account, store, image_fetcher):
        completed_session(store, account, result_image="https://cdn.example.com/result.png")

        response = client.get("/v1/widget/result/ses_done1234")

        assert response.status_code == 200
        assert image_fetcher.fetched == ["https://cdn.example.com/result.png"]

    def test_remote_result_fetch_failure(self, client, account, store, image_fetcher):
        image_fetcher.failing_urls.add("https://cdn.example.com/result.png")
        completed_session(store, account, result_image="https://cdn.example.com/result.png")

        assert client.get("/v1/widget/result/ses_done1234").json()["error"]["code"] == "FETCH_FAILED"
        assert client.get("/v1/widget/download/ses_done1234").json()["error"]["code"] == "DOWNLOAD_FAILED"

    def test_unrecognized_result_format(self, client, account, store):
        completed_session(store, account, result_image="s3://bucket/result.png")
        response = client.get("/v1/widget/result/ses_done1234")
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Result format not recognized"

    def test_pending_session_has_no_result(self, client, account, live_headers):
        session_id = create_session(client, live_headers)
        response = client.get(f"/v1/widget/result/{session_id}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RESULT_NOT_FOUND"

    def test_expired_result(self, client, account, store):
        completed_session(store, account, expires_at=utcnow() - timedelta(seconds=1))
        assert client.get("/v1/widget/result/ses_done1234").status_code == 410

    def test_download_is_an_attachment_and_tracked(self, client, account, store):
        completed_session(store, account)

        response = client.get("/v1/widget/download/ses_done1234")

        assert response.status_code == 200
        assert response.content == PNG_BYTES
        assert response.headers["Content-Disposition"] == (
            'attachment; filename="mirror-me-Blue_Shirt-ses_done.jpg"'
        )
        assert store.event_types() == ["download"]
        assert store.events[0].session_id == "ses_done1234"

    def test_result_endpoints_are_rate_limited_per_ip(self, client, account, store, rate_limiter):
        rate_limiter.policies = RateLimitPolicies(widget_ip=RateLimitPolicy("widget_ip", 1, 60))
        completed_session(store, account)

        assert client.get("/v1/widget/result/ses_done1234").status_code == 200
        response = client.get("/v1/widget/result/ses_done1234")
        assert response.status_code == 429
        assert "Retry-After" in response.headers


class TestAnalytics:
    def test_track_event(self, client, account, live_headers, store):
        session_id = create_session(client, live_headers)

        response = client.post(
            "/v1/widget/analytics",
            headers=live_headers,
            json={"sessionId": session_id, "eventType": "open", "eventData": {"source": "button"}},
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Event tracked successfully"
        event = store.events[-1]
        assert event.event_type.value == "open"
        assert event.session_id == session_id
        assert event.event_data == {"source": "button"}

    def test_event_without_session(self, client, account, live_headers, store):
        response = client.post("/v1/widget/analytics", headers=live_headers, json={"eventType": "share"})
        assert response.status_code == 200
        assert store.events[-1].session_id is None

    def test_unknown_session_is_recorded_unlinked(self, client, account, live_headers, store):
        client.post(
            "/v1/widget/analytics",
            headers=live_headers,
            json={"sessionId": "ses_gone", "eventType": "open"},
        )

        event = store.events[-1]
        assert event.session_id is None
        assert event.event_data == {"sessionId": "ses_gone"}

    def test_foreign_session_is_rejected(self, client, account, live_headers, store):
        foreign_session(store)
        response = client.post(
            "/v1/widget/analytics",
            headers=live_headers,
            json={"sessionId": "ses_foreign", "eventType": "open"},
        )
        assert response.status_code == 403
        assert store.events == []

    @pytest.mark.parametrize("event_type", ["clicked", ""])
    def test_unknown_event_type(self, client, account, live_headers, event_type):
        response = client.post("/v1/widget/analytics", headers=live_headers, json={"eventType": event_type})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
