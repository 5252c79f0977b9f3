"""
COSE_Sign1 Envelope Decoding

An attestation document is a CBOR-encoded COSE_Sign1 structure:

    COSE_Sign1 = [protected, unprotected, payload, signature]

optionally wrapped in CBOR tag 18. The protected header is kept as opaque
bytes here; it is interpreted only when verifying the signature.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import cbor2

from oyster_attestation.constants import (
    COSE_ALGORITHM_IDS,
    COSE_HEADER_ALG,
    COSE_SIGN1_CONTEXT,
    COSE_SIGN1_TAG,
)
from oyster_attestation.errors import MalformedEnvelopeError, UnsupportedAlgorithmError


@dataclass(frozen=True)
class SignedEnvelope:
    """Decoded COSE_Sign1 structure. Fields are kept in wire order."""

    protected_header: bytes
    unprotected_header: Dict[Any, Any]
    payload: bytes
    signature: bytes


def decode_envelope(data: bytes) -> SignedEnvelope:
    """
    Decode raw attestation bytes into a SignedEnvelope.

    Raises:
        MalformedEnvelopeError: If the bytes are not CBOR, the structure is
            not a 4-element array (tagged 18 or untagged), or any field has
            the wrong type.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise MalformedEnvelopeError(f"Attestation must be bytes, got {type(data).__name__}")

    try:
        cose_sign1 = cbor2.loads(bytes(data))
    except Exception as e:
        raise MalformedEnvelopeError(f"Failed to parse COSE_Sign1: {e}") from e

    # Handle CBOR tagged value (tag 18 = COSE_Sign1)
    if isinstance(cose_sign1, cbor2.CBORTag):
        if cose_sign1.tag != COSE_SIGN1_TAG:
            raise MalformedEnvelopeError(f"Unexpected CBOR tag {cose_sign1.tag}, expected {COSE_SIGN1_TAG}")
        cose_array = cose_sign1.value
    else:
        cose_array = cose_sign1

    # cbor2 >= 5.5 decodes tagged contents as immutable tuple / FrozenDict
    if not isinstance(cose_array, (list, tuple)):
        raise MalformedEnvelopeError(f"Unexpected COSE structure type: {type(cose_array).__name__}")

    if len(cose_array) != 4:
        raise MalformedEnvelopeError(f"Invalid COSE_Sign1: expected 4 elements, got {len(cose_array)}")

    protected, unprotected, payload, signature = cose_array

    if not isinstance(protected, bytes):
        raise MalformedEnvelopeError("COSE_Sign1 protected header must be a byte string")
    if not isinstance(unprotected, Mapping):
        raise MalformedEnvelopeError("COSE_Sign1 unprotected header must be a map")
    if not isinstance(payload, bytes):
        raise MalformedEnvelopeError("COSE_Sign1 payload must be a byte string")
    if not isinstance(signature, bytes):
        raise MalformedEnvelopeError("COSE_Sign1 signature must be a byte string")

    return SignedEnvelope(
        protected_header=protected,
        unprotected_header=dict(unprotected),
        payload=payload,
        signature=signature,
    )


def sig_structure(envelope: SignedEnvelope, external_aad: bytes = b"") -> bytes:
    """
    Build the canonical to-be-signed bytes for a COSE_Sign1 envelope.

    Sig_structure = ["Signature1", protected, external_aad, payload]
    """
    return cbor2.dumps([COSE_SIGN1_CONTEXT, envelope.protected_header, external_aad, envelope.payload])


def protected_algorithm(protected_header: bytes) -> int:
    """
    Extract the COSE algorithm identifier from the protected header.

    Raises:
        UnsupportedAlgorithmError: If the header is empty, not a CBOR map, or
            carries no recognizable algorithm identifier.
    """
    if not protected_header:
        raise UnsupportedAlgorithmError("Protected header is empty, no signature algorithm")

    try:
        header = cbor2.loads(protected_header)
    except Exception as e:
        raise UnsupportedAlgorithmError(f"Protected header is not valid CBOR: {e}") from e

    if not isinstance(header, Mapping):
        raise UnsupportedAlgorithmError("Protected header is not a CBOR map")

    alg: Optional[Union[int, str]] = header.get(COSE_HEADER_ALG)
    if isinstance(alg, str):
        # Text identifiers are permitted by COSE; map the ones we know
        alg = COSE_ALGORITHM_IDS.get(alg)
    if isinstance(alg, bool) or not isinstance(alg, int):
        raise UnsupportedAlgorithmError(f"Protected header has no usable algorithm: {header.get(COSE_HEADER_ALG)!r}")

    return alg


def encode_protected_header(alg: int) -> bytes:
    """Serialize a protected header carrying only the algorithm identifier."""
    return cbor2.dumps({COSE_HEADER_ALG: alg})
