"""
Attestation fetch wrapper tests (requests.get is mocked).
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from oyster_attestation import config
from oyster_attestation.errors import InvalidSignatureError, TransportError, VerificationError
from oyster_attestation.fetch import ENCODING_HEX, fetch_and_verify, fetch_attestation
from oyster_attestation.nitro import AttestationVerifier

from conftest import FIXED_PUBLIC_KEY


def _response(status_code=200, content=b""):
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    return response


@patch("oyster_attestation.fetch.requests.get")
def test_fetch_raw(mock_get):
    mock_get.return_value = _response(content=b"\x84\x40\xa0\x40\x40")

    assert fetch_attestation("http://enclave:1300/attestation/raw", timeout=2) == b"\x84\x40\xa0\x40\x40"
    mock_get.assert_called_once_with("http://enclave:1300/attestation/raw", timeout=2)


@patch("oyster_attestation.fetch.requests.get")
def test_fetch_hex(mock_get):
    mock_get.return_value = _response(content=b"8440a04040\n")
    assert fetch_attestation("http://enclave:1300/attestation/hex", encoding=ENCODING_HEX) == b"\x84\x40\xa0\x40\x40"


@patch("oyster_attestation.fetch.requests.get")
def test_fetch_uses_configured_defaults(mock_get, monkeypatch):
    monkeypatch.setattr(config, "ATTESTATION_ENDPOINT", "http://configured:1300/attestation/raw")
    monkeypatch.setattr(config, "ATTESTATION_FETCH_TIMEOUT_SECONDS", 7.5)
    mock_get.return_value = _response(content=b"\x01")

    fetch_attestation()
    mock_get.assert_called_once_with("http://configured:1300/attestation/raw", timeout=7.5)


@patch("oyster_attestation.fetch.requests.get")
def test_invalid_hex_body(mock_get):
    mock_get.return_value = _response(content=b"not-hex")
    with pytest.raises(TransportError, match="hex"):
        fetch_attestation("http://enclave/attestation/hex", encoding=ENCODING_HEX)


@patch("oyster_attestation.fetch.requests.get")
def test_non_200_status(mock_get):
    mock_get.return_value = _response(status_code=503, content=b"unavailable")

    with pytest.raises(TransportError) as exc_info:
        fetch_attestation("http://enclave/attestation/raw")

    assert exc_info.value.status_code == 503
    assert not isinstance(exc_info.value, VerificationError)


@patch("oyster_attestation.fetch.requests.get")
def test_empty_body(mock_get):
    mock_get.return_value = _response(content=b"")
    with pytest.raises(TransportError, match="empty"):
        fetch_attestation("http://enclave/attestation/raw")


@pytest.mark.parametrize("exception", [
    requests.exceptions.ConnectionError("refused"),
    requests.exceptions.Timeout("slow"),
    requests.exceptions.InvalidURL("bad"),
])
def test_request_failures_become_transport_errors(exception):
    with patch("oyster_attestation.fetch.requests.get", side_effect=exception):
        with pytest.raises(TransportError) as exc_info:
            fetch_attestation("http://enclave/attestation/raw")
    assert exc_info.value.stage == "transport"
    assert exc_info.value.status_code is None


def test_unknown_encoding():
    with pytest.raises(ValueError):
        fetch_attestation("http://enclave/attestation/raw", encoding="base64")


def test_fetch_and_verify(make_document, make_policy):
    verifier = AttestationVerifier(make_policy())
    with patch("oyster_attestation.fetch.requests.get", return_value=_response(content=make_document())):
        assert fetch_and_verify(verifier, "http://enclave/attestation/raw") == FIXED_PUBLIC_KEY


def test_fetch_and_verify_propagates_verification_errors(make_document, make_policy):
    verifier = AttestationVerifier(make_policy())
    data = bytearray(make_document())
    data[-1] ^= 0x01

    with patch("oyster_attestation.fetch.requests.get", return_value=_response(content=bytes(data))):
        with pytest.raises(InvalidSignatureError):
            fetch_and_verify(verifier, "http://enclave/attestation/raw")


def test_fetch_and_verify_transport_failure_skips_verification(make_policy):
    verifier = MagicMock(spec=AttestationVerifier)
    with patch("oyster_attestation.fetch.requests.get", side_effect=requests.exceptions.ConnectionError()):
        with pytest.raises(TransportError):
            fetch_and_verify(verifier, "http://enclave/attestation/raw")
    verifier.verify.assert_not_called()
