"""
Tests for the API key gate in front of the widget and account APIs.

Covers the ordered checks (key, format, lookup, verification, status,
origin, rate limits, quota rollover, key resolution) and the quota gate.
"""

import logging
from datetime import timedelta

import pytest
from fastapi import Depends

from backend.src.api.main import create_application
from backend.src.core.auth import AuthenticatedAccount, optional_widget_auth
from backend.src.core.rate_limit import RateLimiter, RateLimitPolicies, RateLimitPolicy
from backend.src.models.account import AccountStatus, StoredApiKey
from backend.src.models.base import utcnow
from backend.tests.mocks import LIVE_KEY, TEST_KEY, make_account

VERIFY = "/v1/widget/verify"


class TestKeyChecks:
    def test_missing_key_is_rejected(self, client, account):
        """Scenario A: no X-Merchant-Key on a gated endpoint."""
        response = client.post(VERIFY)

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "MISSING_API_KEY"
        assert body["error"]["userMessage"]
        assert body["error"]["requestId"] == response.headers["X-Request-ID"]

    def test_rejection_is_logged_with_error_details(self, client, account, caplog):
        caplog.set_level(logging.WARNING, logger="backend.src.api.main")

        assert client.post(VERIFY).status_code == 401

        record = next(r for r in caplog.records if r.getMessage() == "API exception occurred")
        assert record.error_code == "MISSING_API_KEY"
        assert record.status_code == 401
        assert record.error_message

    def test_malformed_key_is_rejected(self, client, account):
        response = client.post(VERIFY, headers={"X-Merchant-Key": "sk_live_whatever"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_API_KEY_FORMAT"

    def test_unknown_key_is_rejected(self, client, account):
        response = client.post(VERIFY, headers={"X-Merchant-Key": "mk_live_unknown"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_API_KEY"

    def test_merchant_variant_uses_its_own_code(self, client, account):
        response = client.get("/v1/account/profile", headers={"X-Merchant-Key": "mk_live_unknown"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_MERCHANT_KEY"

    def test_unverified_account(self, client, store):
        store.add_account(make_account(live_key=LIVE_KEY, is_verified=False))
        response = client.post(VERIFY, headers={"X-Merchant-Key": LIVE_KEY})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ACCOUNT_NOT_VERIFIED"

    def test_suspended_account(self, client, store):
        store.add_account(make_account(live_key=LIVE_KEY, status=AccountStatus.SUSPENDED))
        response = client.post(VERIFY, headers={"X-Merchant-Key": LIVE_KEY})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "MERCHANT_SUSPENDED"

    def test_store_failure_is_an_internal_error(self, client, store, account):
        store.fail_lookups = True
        response = client.post(VERIFY, headers={"X-Merchant-Key": LIVE_KEY})

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert "database unavailable" not in response.text


class TestOriginCheck:
    def test_test_key_from_localhost_reaches_handler(self, client, account, test_headers):
        """Scenario B: test key from http://localhost:3000."""
        response = client.post(VERIFY, headers=test_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["isTestMode"] is True
        assert body["account"]["id"] == account.id

    def test_live_key_from_foreign_origin_is_rejected(self, client, account):
        """Scenario C: live key, allowedDomains=["example.com"], Origin https://evil.com."""
        response = client.post(
            VERIFY, headers={"X-Merchant-Key": LIVE_KEY, "Origin": "https://evil.com"}
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "DOMAIN_NOT_ALLOWED"

    def test_live_key_from_allowed_origin(self, client, account, live_headers):
        response = client.post(VERIFY, headers=live_headers)
        assert response.status_code == 200
        assert response.json()["isTestMode"] is False

    def test_live_key_from_localhost_is_rejected(self, client, account):
        response = client.post(
            VERIFY, headers={"X-Merchant-Key": LIVE_KEY, "Origin": "http://localhost:3000"}
        )
        assert response.status_code == 403

    def test_referer_is_used_without_origin(self, client, account):
        response = client.post(
            VERIFY, headers={"X-Merchant-Key": LIVE_KEY, "Referer": "https://evil.com/product/1"}
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "DOMAIN_NOT_ALLOWED"

    def test_missing_origin_is_treated_as_server_to_server(self, client, store):
        store.add_account(make_account(live_key=LIVE_KEY, allowed_domains=[]))
        response = client.post(VERIFY, headers={"X-Merchant-Key": LIVE_KEY})
        assert response.status_code == 200

    def test_unparsable_origin_is_rejected(self, client, account):
        response = client.post(VERIFY, headers={"X-Merchant-Key": LIVE_KEY, "Origin": "null"})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "DOMAIN_NOT_ALLOWED"


class TestRateLimits:
    def test_injected_collaborators_are_used(self, app, store, rate_limiter, dispatcher):
        assert len(rate_limiter) == 0
        assert app.state.rate_limiter is rate_limiter
        assert app.state.account_store is store
        assert app.state.webhook_dispatcher is dispatcher

    def test_empty_limiter_is_not_replaced(self, store, dispatcher, generator, image_fetcher):
        limiter = RateLimiter()
        app = create_application(
            account_store=store,
            rate_limiter=limiter,
            webhook_dispatcher=dispatcher,
            tryon_generator=generator,
            image_fetcher=image_fetcher,
        )
        assert app.state.rate_limiter is limiter

    def test_rate_limit_headers_on_success(self, client, account, live_headers):
        response = client.post(VERIFY, headers=live_headers)

        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "99"
        assert "X-RateLimit-Reset" in response.headers
        assert "Retry-After" not in response.headers

    def test_account_limit_exceeded(self, client, account, live_headers, rate_limiter):
        rate_limiter.policies = RateLimitPolicies(merchant=RateLimitPolicy("merchant", 2, 60))

        assert client.post(VERIFY, headers=live_headers).status_code == 200
        assert client.post(VERIFY, headers=live_headers).status_code == 200
        response = client.post(VERIFY, headers=live_headers)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        error = response.json()["error"]
        assert error["code"] == "RATE_LIMIT_EXCEEDED"
        assert error["details"]["retryAfter"] == 60

    def test_ip_limit_applies_across_accounts(self, client, store, rate_limiter):
        rate_limiter.policies = RateLimitPolicies(widget_ip=RateLimitPolicy("widget_ip", 1, 60))
        store.add_account(make_account(live_key=LIVE_KEY))
        store.add_account(make_account(live_key="mk_live_second"))

        assert client.post(VERIFY, headers={"X-Merchant-Key": LIVE_KEY}).status_code == 200
        response = client.post(VERIFY, headers={"X-Merchant-Key": "mk_live_second"})
        assert response.status_code == 429

    def test_ip_limit_rejection_reports_account_window(self, client, account, rate_limiter):
        rate_limiter.policies = RateLimitPolicies(widget_ip=RateLimitPolicy("widget_ip", 1, 30))
        headers = {"X-Merchant-Key": LIVE_KEY}

        assert client.post(VERIFY, headers=headers).status_code == 200
        response = client.post(VERIFY, headers=headers)

        assert response.status_code == 429
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "98"
        assert response.headers["Retry-After"] == "30"

    def test_rate_limit_headers_on_handler_error(self, client, account, live_headers):
        response = client.get("/v1/widget/session/ses_missing", headers=live_headers)

        assert response.status_code == 404
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "99"
        assert "X-RateLimit-Reset" in response.headers

    def test_merchant_variant_skips_ip_limit(self, client, account, rate_limiter):
        rate_limiter.policies = RateLimitPolicies(widget_ip=RateLimitPolicy("widget_ip", 1, 60))
        headers = {"X-Merchant-Key": LIVE_KEY}

        for _ in range(3):
            assert client.get("/v1/account/profile", headers=headers).status_code == 200

    def test_window_rolls_over(self, client, account, live_headers, rate_limiter, fake_time):
        rate_limiter.policies = RateLimitPolicies(merchant=RateLimitPolicy("merchant", 1, 60))

        assert client.post(VERIFY, headers=live_headers).status_code == 200
        assert client.post(VERIFY, headers=live_headers).status_code == 429
        fake_time.advance(61)
        assert client.post(VERIFY, headers=live_headers).status_code == 200


class TestQuota:
    def test_monthly_quota_exhausted_blocks_try_on(self, client, store, live_headers):
        """Scenario D: quotaUsed == monthlyQuota on the try-on endpoint."""
        store.add_account(
            make_account(
                live_key=LIVE_KEY,
                allowed_domains=["example.com"],
                monthly_quota=500,
                quota_used=500,
                quota_reset_at=utcnow() + timedelta(days=10),
            )
        )
        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": "ses_any", "photoUrl": "https://example.com/me.jpg"},
        )

        assert response.status_code == 402
        error = response.json()["error"]
        assert error["code"] == "QUOTA_EXCEEDED"
        assert error["details"]["isLifetime"] is False
        assert "Monthly" in error["message"]
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "99"
        assert "Retry-After" not in response.headers

    def test_lifetime_quota_message(self, client, store, live_headers):
        store.add_account(make_account(live_key=LIVE_KEY, allowed_domains=["example.com"], quota_used=100))
        response = client.post(
            "/v1/widget/try-on",
            headers=live_headers,
            data={"sessionId": "ses_any", "photoUrl": "https://example.com/me.jpg"},
        )

        assert response.status_code == 402
        error = response.json()["error"]
        assert error["details"]["isLifetime"] is True
        assert "upgrade" in error["message"].lower()

    def test_quota_gate_does_not_apply_to_other_endpoints(self, client, store, live_headers):
        store.add_account(make_account(live_key=LIVE_KEY, allowed_domains=["example.com"], quota_used=100))
        assert client.post(VERIFY, headers=live_headers).status_code == 200

    def test_due_monthly_quota_is_reset_before_the_request(self, client, store, live_headers):
        account = store.add_account(
            make_account(
                live_key=LIVE_KEY,
                allowed_domains=["example.com"],
                monthly_quota=500,
                quota_used=500,
                widget_quota_used=500,
                quota_reset_at=utcnow() - timedelta(minutes=1),
            )
        )
        response = client.post(VERIFY, headers=live_headers)

        assert response.status_code == 200
        assert response.json()["account"]["quotaUsed"] == 0
        assert len(store.reset_calls) == 1
        reset_account, next_reset_at = store.reset_calls[0]
        assert reset_account == account.id
        assert next_reset_at.day == 1
        assert store.accounts[account.id].quota_used == 0


class TestKeyResolution:
    def test_named_key_is_recorded_on_sessions(self, client, store):
        named = StoredApiKey(id="key_1", key="mk_live_named", name="Storefront")
        account = store.add_account(
            make_account(live_key=LIVE_KEY, api_keys=[named], allowed_domains=["example.com"])
        )
        response = client.post(
            "/v1/widget/session",
            headers={"X-Merchant-Key": "mk_live_named", "Origin": "https://example.com"},
            json={"product": {"image": "https://example.com/shirt.jpg"}},
        )

        assert response.status_code == 201
        session = store.sessions[response.json()["session"]["id"]]
        assert session.account_id == account.id
        assert session.api_key_id == "key_1"

    def test_legacy_live_key_resolves_to_default_key(self, store):
        account = store.add_account(make_account(live_key=LIVE_KEY))
        assert account.resolve_key(LIVE_KEY) == ("legacy", "Default Key")
        assert account.resolve_key(TEST_KEY) == (None, None)


class TestOptionalAuth:
    @pytest.fixture
    def optional_client(self, app, client):
        @app.get("/v1/widget/whoami")
        async def whoami(auth: AuthenticatedAccount = Depends(optional_widget_auth)):
            return {"accountId": auth.account_id if auth else None}

        return client

    def test_anonymous_request_passes(self, optional_client, account):
        response = optional_client.get("/v1/widget/whoami")
        assert response.status_code == 200
        assert response.json() == {"accountId": None}

    def test_supplied_key_is_still_checked(self, optional_client, account, live_headers):
        assert optional_client.get("/v1/widget/whoami", headers=live_headers).json() == {
            "accountId": account.id
        }
        bad = optional_client.get("/v1/widget/whoami", headers={"X-Merchant-Key": "bogus"})
        assert bad.status_code == 401
