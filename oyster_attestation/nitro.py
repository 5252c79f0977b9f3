"""
Oyster AWS Nitro Attestation Verification

Decides whether a blob claimed to be a Nitro Enclave attestation document
was produced by genuine enclave firmware running known code, with enough
resources, recently enough - and if so returns the enclave's public key.

VERIFICATION ORDER (MANDATORY, FAIL-FAST):
1. Decode COSE_Sign1 envelope (CBOR)
2. Decode attestation document from the payload
3. Verify COSE signature using the key in the leaf certificate
4. Verify certificate chain to the PINNED trusted root
5. Evaluate policy: PCRs, then resources (user_data), then freshness
6. ONLY THEN release the embedded public_key

FAIL-CLOSED: any failure at any stage discards every extracted claim,
including public_key. Nothing is retried; re-fetching a fresh document is
the caller's decision.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from cryptography import x509

from oyster_attestation.chain import load_certificate, verify_chain
from oyster_attestation.constants import (
    COSE_ALGORITHM_NAMES,
    TRUST_LEVEL_FULL_NITRO,
    TRUST_LEVEL_UNTRUSTED_ROOT,
)
from oyster_attestation.cose import decode_envelope
from oyster_attestation.document import AttestationDocument, decode_document
from oyster_attestation.errors import (
    AttestationError,
    ChainValidationError,
    MalformedChainError,
    NoPublicKeyError,
)
from oyster_attestation.policy import VerificationPolicy, evaluate_policy, parse_measurements
from oyster_attestation.signature import verify_signature

logger = logging.getLogger(__name__)


def decode_attestation(document_bytes: bytes) -> AttestationDocument:
    """
    Decode an attestation document WITHOUT verifying it.

    ⚠️ Nothing returned here is trustworthy. Use for inspection only.

    Raises:
        MalformedEnvelopeError, MalformedDocumentError
    """
    envelope = decode_envelope(document_bytes)
    return decode_document(envelope.payload)


class AttestationVerifier:
    """
    Verifier bound to one policy.

    The trusted root is parsed once at construction and is read-only for
    the lifetime of the verifier. Build a new verifier to change it. A
    verifier holds no mutable state, so one instance may be shared across
    threads.
    """

    def __init__(self, policy: VerificationPolicy):
        self.policy = policy
        self._trusted_root: Optional[x509.Certificate] = None
        if policy.trusted_root is not None:
            try:
                self._trusted_root = load_certificate(policy.trusted_root)
            except Exception as e:
                raise ValueError(f"Trusted root certificate could not be parsed: {e}") from e

    @property
    def trusted_root(self) -> Optional[x509.Certificate]:
        return self._trusted_root

    @property
    def trust_level(self) -> str:
        if self._trusted_root is None:
            return TRUST_LEVEL_UNTRUSTED_ROOT
        return TRUST_LEVEL_FULL_NITRO

    def verify(self, document_bytes: bytes) -> Optional[bytes]:
        """
        Run the full pipeline and return the embedded public key.

        Returns None only when the document has no public_key and the
        policy sets require_public_key=False.

        Raises:
            VerificationError: Subclass identifying the failing stage/check.
        """
        return self._run(document_bytes, steps=None)

    def _run(self, document_bytes: bytes, steps: Optional[list]) -> Optional[bytes]:
        def passed(step: str) -> None:
            if steps is not None:
                steps.append(f"✓ {step}")

        # Steps 1-2: decode
        envelope = decode_envelope(document_bytes)
        passed("COSE_Sign1 structure parsed")
        document = decode_document(envelope.payload)
        passed("Attestation document parsed")

        # Step 3: signature (nothing in the payload is trusted before this)
        alg = verify_signature(envelope, document.leaf_certificate)
        passed(f"COSE signature verified ({COSE_ALGORITHM_NAMES.get(alg, alg)})")

        # Step 4: certificate chain
        if self._trusted_root is None:
            if self.policy.require_chain_validation:
                raise ChainValidationError("No trusted root configured; refusing to skip chain validation")
            verify_chain(document.leaf_certificate, document.ca_chain, None)
            passed("Certificate chain parsed (NOT validated - untrusted mode)")
        else:
            verify_chain(document.leaf_certificate, document.ca_chain, self._trusted_root)
            passed("Certificate chain verified to trusted root")

        # Step 5: policy
        evaluate_policy(document, self.policy)
        passed("PCRs, resources and freshness satisfy policy")

        # Step 6: public key
        if document.embedded_public_key is None:
            if self.policy.require_public_key:
                raise NoPublicKeyError("Attestation carries no public_key")
            passed("No public_key in attestation (not required)")
            return None

        passed("Public key extracted")
        logger.info(
            f"✅ Attestation verified: module={document.module_id}, "
            f"pubkey={document.embedded_public_key.hex()[:16]}..."
        )
        return document.embedded_public_key

    def verify_full(self, document_bytes: bytes) -> Tuple[bool, Dict[str, Any]]:
        """
        Report-style verification. Never raises for verification failures.

        Returns:
            Tuple of (success, result)
            - result["verification_steps"]: steps that passed, in order
            - on success: result["public_key"] (hex or None)
            - on failure: result["error"], result["stage"], result["code"]
        """
        result: Dict[str, Any] = {
            "trust_level": self.trust_level,
            "verification_steps": [],
        }

        try:
            public_key = self._run(document_bytes, steps=result["verification_steps"])
        except AttestationError as e:
            logger.error(f"❌ Attestation verification failed at {e.stage}: {e}")
            result.update({
                "verified": False,
                "error": str(e),
                "stage": e.stage,
                "code": e.code,
            })
            if hasattr(e, "index"):
                result["index"] = e.index
            return False, result

        result["verified"] = True
        result["public_key"] = public_key.hex() if public_key is not None else None
        result["verification_steps"].append("✅ ALL VERIFICATION STEPS PASSED")
        return True, result


def verify_document(document_bytes: bytes, policy: VerificationPolicy) -> Optional[bytes]:
    """Verify document_bytes against policy; see AttestationVerifier.verify."""
    try:
        verifier = AttestationVerifier(policy)
    except ValueError as e:
        raise MalformedChainError(str(e)) from e
    return verifier.verify(document_bytes)


def verify_attestation_full(document_bytes: bytes, policy: VerificationPolicy) -> Tuple[bool, Dict[str, Any]]:
    """Report-style verification; see AttestationVerifier.verify_full."""
    try:
        verifier = AttestationVerifier(policy)
    except ValueError as e:
        return False, {"verified": False, "error": str(e), "stage": "chain", "code": MalformedChainError.code}
    return verifier.verify_full(document_bytes)


def verify(
    document_bytes: bytes,
    expected_measurements: Mapping[Union[int, str], Union[bytes, str]],
    trusted_root: Optional[Union[bytes, x509.Certificate]],
    min_cpus: int,
    min_memory: int,
    max_age: timedelta,
    require_public_key: bool = True,
    require_chain_validation: bool = True,
) -> Optional[bytes]:
    """
    Verify an attestation document and return the enclave public key.

    Args:
        document_bytes: Raw COSE_Sign1 attestation document
        expected_measurements: PCR index -> expected value (bytes or hex str);
                               only the listed indices are checked
        trusted_root: Pinned root certificate (DER or PEM), or None
        min_cpus: Minimum total_cpus claimed in user_data
        min_memory: Minimum total_memory claimed in user_data
        max_age: Maximum document age
        require_public_key: Fail with NoPublicKeyError when public_key is absent
        require_chain_validation: Fail when trusted_root is None instead of
                                  falling back to structural parsing

    Raises:
        VerificationError: Subclass identifying the failing stage/check.
        ValueError: If expected_measurements cannot be converted to bytes.
    """
    policy = VerificationPolicy(
        expected_measurements=parse_measurements(expected_measurements),
        trusted_root=trusted_root,
        min_cpus=min_cpus,
        min_memory=min_memory,
        max_age=max_age,
        require_public_key=require_public_key,
        require_chain_validation=require_chain_validation,
    )
    return verify_document(document_bytes, policy)

