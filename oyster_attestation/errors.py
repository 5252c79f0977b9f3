"""
Oyster Attestation Error Taxonomy
=================================

Every failure raised by the verifier derives from AttestationError.

VerificationError subclasses identify the pipeline stage that failed
(decode, signature, chain, policy, public_key). TransportError is raised
only by the fetch wrapper and is deliberately NOT a VerificationError.

Messages carry structural/comparison facts only (indices, lengths, hex of
document values). They never carry secrets.
"""

from typing import Optional


class AttestationError(Exception):
    """Base exception for all attestation errors."""

    stage: str = "unknown"
    code: str = "ATTESTATION_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class VerificationError(AttestationError):
    """Raised when an attestation document fails verification."""

    code = "VERIFICATION_FAILED"


# ============================================================================
# Decode
# ============================================================================

class DecodeError(VerificationError):
    """Envelope or document structure could not be decoded."""

    stage = "decode"
    code = "DECODE_FAILED"


class MalformedEnvelopeError(DecodeError):
    code = "MALFORMED_ENVELOPE"


class MalformedDocumentError(DecodeError):
    code = "MALFORMED_DOCUMENT"


# ============================================================================
# Signature
# ============================================================================

class SignatureError(VerificationError):
    """COSE_Sign1 signature could not be verified."""

    stage = "signature"
    code = "SIGNATURE_FAILED"


class UnsupportedKeyTypeError(SignatureError):
    code = "UNSUPPORTED_KEY_TYPE"


class UnsupportedAlgorithmError(SignatureError):
    code = "UNSUPPORTED_ALGORITHM"


class AlgorithmKeyMismatchError(SignatureError):
    code = "ALGORITHM_KEY_MISMATCH"


class InvalidSignatureError(SignatureError):
    code = "INVALID_SIGNATURE"


# ============================================================================
# Certificate chain
# ============================================================================

class ChainError(VerificationError):
    """Certificate chain could not be parsed or validated."""

    stage = "chain"
    code = "CHAIN_FAILED"


class MalformedChainError(ChainError):
    code = "MALFORMED_CHAIN"


class ChainValidationError(ChainError):
    code = "CHAIN_VALIDATION_FAILED"


# ============================================================================
# Policy
# ============================================================================

class PolicyError(VerificationError):
    """Document is authentic but does not satisfy the caller's policy."""

    stage = "policy"
    code = "POLICY_FAILED"


class MeasurementMissingError(PolicyError):
    code = "MEASUREMENT_MISSING"

    def __init__(self, index: int, message: Optional[str] = None):
        self.index = index
        super().__init__(message or f"PCR{index} not found in attestation")


class MeasurementMismatchError(PolicyError):
    code = "MEASUREMENT_MISMATCH"

    def __init__(self, index: int, message: Optional[str] = None):
        self.index = index
        super().__init__(message or f"PCR{index} does not match expected value")


class ResourceClaimMalformedError(PolicyError):
    code = "RESOURCE_CLAIM_MALFORMED"


class InsufficientResourcesError(PolicyError):
    code = "INSUFFICIENT_RESOURCES"


class AttestationExpiredError(PolicyError):
    code = "EXPIRED"


# ============================================================================
# Public key / transport
# ============================================================================

class NoPublicKeyError(VerificationError):
    stage = "public_key"
    code = "NO_PUBLIC_KEY"


class TransportError(AttestationError):
    """Fetching the attestation document from the enclave failed."""

    stage = "transport"
    code = "TRANSPORT_FAILED"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
