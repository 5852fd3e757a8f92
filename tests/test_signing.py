import base64

import pytest
import requests
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.hmac import HMAC

from smarttour.payment.ledger import VaultGatewayClient
from smarttour.security.signing import _derive_key, canonical_json, mask_address, sign_payload

SECRET = "authority-secret"


def _verify(payload, signature, secret=SECRET):
    h = HMAC(_derive_key(secret), hashes.SHA256())
    h.update(canonical_json(payload))
    h.verify(base64.urlsafe_b64decode(signature))


def test_signature_is_stable_and_key_order_independent():
    a = sign_payload({"amount": "1.000000", "address": "0x1"}, SECRET)
    b = sign_payload({"address": "0x1", "amount": "1.000000"}, SECRET)
    assert a == b
    _verify({"address": "0x1", "amount": "1.000000"}, a)


def test_signature_rejects_tampering_and_wrong_secret():
    sig = sign_payload({"address": "0x1", "amount": "1.000000"}, SECRET)
    with pytest.raises(InvalidSignature):
        _verify({"address": "0x1", "amount": "2.000000"}, sig)
    with pytest.raises(InvalidSignature):
        _verify({"address": "0x1", "amount": "1.000000"}, sig, "other-secret")


def test_mask_address():
    assert mask_address("0x5a1e0000000000000000000000000000000000aa") == "0x5a...00aa"
    assert mask_address("0x1234") == "0x1234"


class _RecordingHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response


class _Response:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


def test_gateway_debit_is_signed():
    http = _RecordingHttp(_Response({"status": "success", "tx_hash": "0xfeed"}))
    client = VaultGatewayClient("https://vault.local/", SECRET, http=http)

    result = client.debit("0xabc", 0.1234567, "CRYPTO-1")

    assert result.success and result.tx_hash == "0xfeed"
    method, url, kwargs = http.calls[0]
    assert (method, url) == ("POST", "https://vault.local/debits")
    assert kwargs["json"]["amount"] == "0.123457"
    _verify(kwargs["json"], kwargs["headers"]["X-Authority-Signature"])


def test_gateway_debit_failure_is_reported_not_raised():
    http = _RecordingHttp(error=requests.ConnectionError("down"))
    result = VaultGatewayClient("https://vault.local", SECRET, http=http).debit("0xabc", 1.0, "CRYPTO-2")
    assert not result.success
    assert result.error


def test_gateway_refund_is_signed():
    http = _RecordingHttp(_Response({"status": "success", "tx_hash": "0xback"}))
    client = VaultGatewayClient("https://vault.local", SECRET, http=http)

    result = client.refund("0xabc", 0.5, "CRYPTO-3")

    assert result.success and result.tx_hash == "0xback"
    method, url, kwargs = http.calls[0]
    assert (method, url) == ("POST", "https://vault.local/refunds")
    assert kwargs["json"]["reference"] == "CRYPTO-3"
    _verify(kwargs["json"], kwargs["headers"]["X-Authority-Signature"])
