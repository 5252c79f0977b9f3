"""
Oyster Attestation
==================

Verifies AWS Nitro Enclave attestation documents before trusting the
enclave behind them:

- COSE_Sign1 / CBOR decoding of the attestation document
- COSE signature verification with the leaf certificate key
- Certificate path validation to a pinned root
- PCR, enclave-size and freshness policy checks

On success the enclave's bound public key is returned for setting up a
secure channel. Every failure raises a VerificationError subclass naming
the stage and check that failed.

Usage:
    from oyster_attestation import verify

    public_key = verify(
        document_bytes,
        expected_measurements={0: "5fec1b...", 1: "bcdf05..."},
        trusted_root=root_pem,
        min_cpus=2,
        min_memory=4096,
        max_age=timedelta(minutes=5),
    )
"""

__version__ = "0.3.0"

from oyster_attestation.document import AttestationDocument, ResourceClaim
from oyster_attestation.errors import (
    AttestationError,
    ChainError,
    DecodeError,
    PolicyError,
    SignatureError,
    TransportError,
    VerificationError,
)
from oyster_attestation.nitro import (
    AttestationVerifier,
    decode_attestation,
    verify,
    verify_attestation_full,
    verify_document,
)
from oyster_attestation.policy import VerificationPolicy, parse_measurements

__all__ = [
    "AttestationDocument",
    "AttestationError",
    "AttestationVerifier",
    "ChainError",
    "DecodeError",
    "PolicyError",
    "ResourceClaim",
    "SignatureError",
    "TransportError",
    "VerificationError",
    "VerificationPolicy",
    "decode_attestation",
    "parse_measurements",
    "verify",
    "verify_attestation_full",
    "verify_document",
]
