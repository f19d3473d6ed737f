import hashlib
import hmac

from payments import parse_order, read_signature, verify_signature


def test_parse_order_prefers_custom_field():
    order = parse_order({"id": "o1", "discordUserId": "top", "customFields": {"discordUserId": "custom"}})
    assert order.order_id == "o1"
    assert order.discord_id == "custom"


def test_parse_order_tolerates_garbage():
    for payload in (None, [], {"customFields": "x"}):
        order = parse_order(payload)
        assert order.order_id == ""
        assert order.discord_id == ""
        assert order.session_id == ""


def test_parse_order_numeric_ids():
    order = parse_order({"id": 42, "discordUserId": 123456789012345678})
    assert order.order_id == "42"
    assert order.discord_id == "123456789012345678"


def test_verify_signature():
    body = b'{"id":"o1"}'
    mac = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert verify_signature(b"s3cret", body, mac)
    assert verify_signature(b"s3cret", body, "sha256=" + mac.upper())
    assert not verify_signature(b"s3cret", body, "")
    assert not verify_signature(b"s3cret", body + b" ", mac)
    assert not verify_signature(b"other", body, mac)


def test_verify_signature_without_secret_accepts():
    assert verify_signature(b"", b"anything", "")


def test_read_signature_fallback_header():
    assert read_signature({"X-Signature": " abc "}) == "abc"
    assert read_signature({"X-Wix-Signature": "wix", "X-Signature": "other"}) == "wix"
    assert read_signature({}) == ""
