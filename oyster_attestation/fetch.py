"""
Attestation Document Fetching

Thin I/O wrapper around the enclave-resident attestation service:

    GET /attestation/raw  -> application/octet-stream (COSE_Sign1 bytes)
    GET /attestation/hex  -> text/plain (hex of the same bytes)

No verification logic lives here. Transport failures raise TransportError,
which is distinct from every VerificationError.
"""

import binascii
import logging
from typing import Optional

import requests

from oyster_attestation import config
from oyster_attestation.errors import TransportError
from oyster_attestation.nitro import AttestationVerifier

logger = logging.getLogger(__name__)

ENCODING_RAW = "raw"
ENCODING_HEX = "hex"


def fetch_attestation(
    endpoint: Optional[str] = None,
    timeout: Optional[float] = None,
    encoding: str = ENCODING_RAW,
) -> bytes:
    """
    Fetch an attestation document from the enclave attestation service.

    Args:
        endpoint: Service URL (defaults to ATTESTATION_ENDPOINT)
        timeout: Request timeout in seconds (defaults to ATTESTATION_FETCH_TIMEOUT_SECONDS)
        encoding: "raw" for a binary body, "hex" for a hex text body

    Returns:
        Raw attestation document bytes

    Raises:
        TransportError: On connection failure, timeout, non-200 status,
            empty body, or a hex body that does not decode.
    """
    if encoding not in (ENCODING_RAW, ENCODING_HEX):
        raise ValueError(f"Unknown attestation encoding: {encoding}")

    url = endpoint or config.ATTESTATION_ENDPOINT
    timeout = timeout if timeout is not None else config.ATTESTATION_FETCH_TIMEOUT_SECONDS

    try:
        response = requests.get(url, timeout=timeout)
    except requests.exceptions.Timeout as e:
        raise TransportError(f"Timed out fetching attestation from {url} after {timeout}s") from e
    except requests.exceptions.RequestException as e:
        raise TransportError(f"Failed to fetch attestation from {url}: {e}") from e

    if response.status_code != 200:
        raise TransportError(
            f"Attestation service at {url} returned HTTP {response.status_code}",
            status_code=response.status_code,
        )

    body = response.content
    if not body:
        raise TransportError(f"Attestation service at {url} returned an empty body", status_code=200)

    if encoding == ENCODING_HEX:
        try:
            body = binascii.unhexlify(body.strip())
        except (binascii.Error, ValueError) as e:
            raise TransportError(f"Attestation from {url} is not valid hex: {e}", status_code=200) from e

    logger.info(f"Fetched attestation document ({len(body)} bytes) from {url}")
    return body


def fetch_and_verify(
    verifier: AttestationVerifier,
    endpoint: Optional[str] = None,
    timeout: Optional[float] = None,
    encoding: str = ENCODING_RAW,
) -> Optional[bytes]:
    """
    Fetch a fresh attestation document and verify it.

    Raises:
        TransportError: If fetching fails (nothing was verified).
        VerificationError: If the fetched document fails verification.
    """
    document_bytes = fetch_attestation(endpoint=endpoint, timeout=timeout, encoding=encoding)
    return verifier.verify(document_bytes)
