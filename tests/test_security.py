"""Tests for API key helpers."""

from apirelay.api.security import extract_api_key_from_headers, generate_api_key, verify_api_key


def test_generated_keys_are_unique_and_prefixed():
    first, second = generate_api_key(), generate_api_key()

    assert first.startswith("relay_")
    assert first != second
    assert verify_api_key(first, [second, first]) is True


def test_verify_rejects_unknown_and_empty():
    assert verify_api_key("nope", ["relay_abc"]) is False
    assert verify_api_key(None, ["relay_abc"]) is False
    assert verify_api_key("relay_abc", []) is False


def test_extract_from_headers():
    assert extract_api_key_from_headers({"X-API-Key": "k1"}) == "k1"
    assert extract_api_key_from_headers({"Authorization": "Bearer k2"}) == "k2"
    assert extract_api_key_from_headers({"Authorization": "Basic k3"}) is None
    assert extract_api_key_from_headers({}) is None
