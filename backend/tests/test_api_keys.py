"""Tests for API key, webhook secret and session id generation."""

from backend.src.core.api_keys import (
    LIVE_KEY_PREFIX,
    TEST_KEY_PREFIX,
    generate_account_keys,
    generate_key,
    generate_session_id,
    generate_webhook_secret,
    is_live_key,
    is_test_key,
    is_valid_format,
)


class TestKeyGeneration:
    def test_keys_carry_prefix_and_192_bits_of_randomness(self):
        key = generate_key(LIVE_KEY_PREFIX)
        assert key.startswith(LIVE_KEY_PREFIX)
        # 24 random bytes encode to 32 URL-safe base64 characters
        assert len(key) == len(LIVE_KEY_PREFIX) + 32

    def test_keys_are_unique_over_many_calls(self):
        keys = {generate_key(TEST_KEY_PREFIX) for _ in range(5000)}
        assert len(keys) == 5000

    def test_account_keys_are_independent(self):
        keys = generate_account_keys()
        assert keys.live_key.startswith("mk_live_")
        assert keys.test_key.startswith("mk_test_")
        assert keys.live_key[8:] != keys.test_key[8:]

    def test_webhook_secret_prefix(self):
        assert generate_webhook_secret().startswith("whsec_")


class TestSessionIds:
    def test_session_id_embeds_base36_timestamp(self):
        # 36**4 == 1679616 -> "10000" in base36
        session_id = generate_session_id(now_ms=1679616)
        assert session_id.startswith("ses_10000")
        assert len(session_id) == len("ses_10000") + 16

    def test_session_ids_sort_by_creation_time(self):
        earlier = generate_session_id(now_ms=1_700_000_000_000)
        later = generate_session_id(now_ms=1_700_000_999_999)
        assert earlier[:12] < later[:12]


class TestKeyClassification:
    def test_prefix_checks(self):
        assert is_test_key("mk_test_abc")
        assert not is_test_key("mk_live_abc")
        assert is_live_key("mk_live_abc")
        assert not is_live_key("sk_live_abc")

    def test_valid_format_requires_known_prefix(self):
        assert is_valid_format("mk_live_abc")
        assert is_valid_format("mk_test_abc")
        assert not is_valid_format("pk_live_abc")
        assert not is_valid_format("")
