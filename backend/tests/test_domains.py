"""Tests for origin domain extraction and allow-list matching."""

import pytest

from backend.src.core.domains import (
    extract_domain,
    is_domain_allowed,
    matches_pattern,
    normalize_domain_pattern,
)


class TestExtractDomain:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("https://shop.example.com", "shop.example.com"),
            ("https://Shop.Example.com:8443/cart?x=1", "shop.example.com"),
            ("http://localhost:3000/", "localhost"),
        ],
    )
    def test_extracts_hostname(self, value, expected):
        assert extract_domain(value) == expected

    @pytest.mark.parametrize("value", [None, "", "not a url", "example.com/path"])
    def test_unparsable_values_return_none(self, value):
        assert extract_domain(value) is None


class TestDomainAllowList:
    def test_wildcard_matches_subdomains_and_apex(self):
        assert is_domain_allowed("shop.myshop.com", ["*.myshop.com"], False)
        assert is_domain_allowed("myshop.com", ["*.myshop.com"], False)
        assert not is_domain_allowed("evil.com", ["*.myshop.com"], False)

    def test_wildcard_does_not_match_suffix_lookalikes(self):
        assert not matches_pattern("evilmyshop.com", "*.myshop.com")

    def test_exact_pattern_requires_equality(self):
        assert matches_pattern("example.com", "example.com")
        assert not matches_pattern("www.example.com", "example.com")

    def test_test_mode_allows_local_development_hosts(self):
        assert is_domain_allowed("localhost:3000", [], True)
        assert is_domain_allowed("localhost", [], True)
        assert is_domain_allowed("127.0.0.1", [], True)
        assert is_domain_allowed("app.localhost", [], True)
        assert is_domain_allowed("shop.local", [], True)

    def test_live_mode_does_not_allow_localhost(self):
        assert not is_domain_allowed("localhost", [], False)

    def test_test_mode_still_honours_allow_list(self):
        assert is_domain_allowed("example.com", ["example.com"], True)
        assert not is_domain_allowed("evil.com", ["example.com"], True)


class TestNormalizeDomainPattern:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Example.com", "example.com"),
            ("https://shop.example.com/path?q=1", "shop.example.com"),
            ("example.com.", "example.com"),
            ("*.example.com", "*.example.com"),
            ("example.com:8080", "example.com"),
        ],
    )
    def test_normalizes(self, value, expected):
        assert normalize_domain_pattern(value) == expected

    @pytest.mark.parametrize("value", ["", "   ", "exa mple.com", "*example.com", "-bad.com", "a..b"])
    def test_rejects_invalid(self, value):
        assert normalize_domain_pattern(value) is None
