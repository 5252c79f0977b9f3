"""
End-to-end verification pipeline tests.

Documents are built with genuine signatures from a generated
root -> intermediate -> leaf chain (see conftest.py).
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import cbor2
import pytest

from oyster_attestation import (
    AttestationVerifier,
    ChainError,
    DecodeError,
    SignatureError,
    VerificationError,
    verify,
    verify_attestation_full,
    verify_document,
)
from oyster_attestation.constants import TRUST_LEVEL_FULL_NITRO, TRUST_LEVEL_UNTRUSTED_ROOT
from oyster_attestation.cose import decode_envelope
from oyster_attestation.errors import (
    AttestationExpiredError,
    ChainValidationError,
    InsufficientResourcesError,
    MalformedChainError,
    MeasurementMismatchError,
    NoPublicKeyError,
    ResourceClaimMalformedError,
)
from oyster_attestation.mock import resource_user_data

from conftest import (
    FIXED_PUBLIC_KEY,
    PCR0_ZEROS,
    der,
    generate_key,
    issue_ca_with_broken_basic_constraints,
    issue_certificate,
)


def test_end_to_end_returns_public_key(make_document, make_policy):
    public_key = verify_document(make_document(), make_policy())

    assert public_key == FIXED_PUBLIC_KEY
    assert len(public_key) == 32


def test_top_level_verify_with_hex_measurements(make_document, p384_chain):
    public_key = verify(
        make_document(),
        expected_measurements={"0": PCR0_ZEROS.hex()},
        trusted_root=p384_chain.root_der,
        min_cpus=4,
        min_memory=8192,
        max_age=timedelta(minutes=5),
    )
    assert public_key == FIXED_PUBLIC_KEY


@pytest.mark.parametrize("key_type", ["p256", "ed25519", "rsa"])
def test_end_to_end_other_key_types(chain_factory, make_document, make_policy, key_type):
    chain = chain_factory(key_type)
    policy = make_policy(trusted_root=chain.root_der)
    assert verify_document(make_document(chain=chain), policy) == FIXED_PUBLIC_KEY


def test_untagged_envelope_verifies(make_document, make_policy):
    assert verify_document(make_document(tagged=False), make_policy()) == FIXED_PUBLIC_KEY


# ============================================================
# Each corruption fails at its own stage
# ============================================================

def _corrupt_signature(make_document, chain_factory):
    data = make_document()
    envelope = decode_envelope(data)
    signature = bytes([envelope.signature[0] ^ 0x01]) + envelope.signature[1:]
    return cbor2.dumps(cbor2.CBORTag(18, [envelope.protected_header, {}, envelope.payload, signature]))


def _corrupt_chain(make_document, chain_factory):
    chain = chain_factory("p256")
    return make_document(chain=chain)


def _corrupt_measurement(make_document, chain_factory):
    return make_document(pcrs={0: b"\x01" + PCR0_ZEROS[1:]})


def _corrupt_resources(make_document, chain_factory):
    return make_document(user_data=resource_user_data(total_cpus=2, total_memory=8192))


def _corrupt_timestamp(make_document, chain_factory):
    return make_document(timestamp_ms=1_600_000_000_000)


@pytest.mark.parametrize("corrupt,expected_error,stage", [
    (_corrupt_signature, SignatureError, "signature"),
    (_corrupt_chain, ChainValidationError, "chain"),
    (_corrupt_measurement, MeasurementMismatchError, "policy"),
    (_corrupt_resources, InsufficientResourcesError, "policy"),
    (_corrupt_timestamp, AttestationExpiredError, "policy"),
])
def test_each_corruption_fails_distinctly(make_document, make_policy, chain_factory, corrupt, expected_error, stage):
    with pytest.raises(expected_error) as exc_info:
        verify_document(corrupt(make_document, chain_factory), make_policy())
    assert exc_info.value.stage == stage


def test_corruption_error_types_are_distinct(make_document, make_policy, chain_factory):
    corruptions = [_corrupt_signature, _corrupt_chain, _corrupt_measurement, _corrupt_resources, _corrupt_timestamp]
    raised = set()
    for corrupt in corruptions:
        with pytest.raises(VerificationError) as exc_info:
            verify_document(corrupt(make_document, chain_factory), make_policy())
        raised.add(type(exc_info.value))
    assert len(raised) == len(corruptions)


def test_signature_checked_before_chain(make_document, make_policy, other_chain):
    """A forged signature under an untrusted chain is reported as a signature failure."""
    data = make_document(chain=other_chain)
    envelope = decode_envelope(data)
    forged = cbor2.dumps([envelope.protected_header, {}, envelope.payload, b"\x00" * len(envelope.signature)])

    with pytest.raises(SignatureError):
        verify_document(forged, make_policy())


def test_chain_checked_before_policy(make_document, make_policy, other_chain):
    data = make_document(chain=other_chain, pcrs={0: b"\xff" * 32})
    with pytest.raises(ChainError):
        verify_document(data, make_policy())


def test_garbage_fails_at_decode(make_policy):
    with pytest.raises(DecodeError):
        verify_document(b"\x84\x40\xa0\x40", make_policy())


def test_malformed_resource_claim(make_document, make_policy):
    with pytest.raises(ResourceClaimMalformedError):
        verify_document(make_document(user_data=b"not a claim"), make_policy())


def test_no_measurements_pinned_accepts_any_pcrs(make_document, make_policy):
    data = make_document(pcrs={i: bytes([i]) * 48 for i in range(16)})
    assert verify_document(data, make_policy(expected_measurements={})) == FIXED_PUBLIC_KEY


# ============================================================
# Public key and trust configuration
# ============================================================

def test_missing_public_key_rejected_by_default(make_document, make_policy):
    with pytest.raises(NoPublicKeyError):
        verify_document(make_document(public_key=None), make_policy())


def test_missing_public_key_allowed(make_document, make_policy):
    assert verify_document(make_document(public_key=None), make_policy(require_public_key=False)) is None


def test_missing_root_refused_when_chain_validation_required(make_document, make_policy):
    with pytest.raises(ChainValidationError):
        verify_document(make_document(), make_policy(trusted_root=None))


def test_untrusted_mode_when_explicitly_allowed(make_document, make_policy, other_chain):
    verifier = AttestationVerifier(make_policy(trusted_root=None, require_chain_validation=False))

    assert verifier.trust_level == TRUST_LEVEL_UNTRUSTED_ROOT
    assert verifier.verify(make_document(chain=other_chain)) == FIXED_PUBLIC_KEY


def test_unparseable_root_rejected(make_document, make_policy):
    with pytest.raises(MalformedChainError):
        verify_document(make_document(), make_policy(trusted_root=b"not a certificate"))


def test_verifier_rejects_unparseable_root(make_policy):
    with pytest.raises(ValueError):
        AttestationVerifier(make_policy(trusted_root=b"not a certificate"))


def test_verifier_is_reusable_across_threads(make_document, make_policy):
    verifier = AttestationVerifier(make_policy())
    documents = [make_document() for _ in range(4)]

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(verifier.verify, documents * 4))

    assert results == [FIXED_PUBLIC_KEY] * 16
    assert verifier.trust_level == TRUST_LEVEL_FULL_NITRO


# ============================================================
# Report-style verification
# ============================================================

def test_full_report_success(make_document, make_policy):
    success, result = verify_attestation_full(make_document(), make_policy())

    assert success is True
    assert result["verified"] is True
    assert result["trust_level"] == TRUST_LEVEL_FULL_NITRO
    assert result["public_key"] == FIXED_PUBLIC_KEY.hex()
    assert result["verification_steps"][-1] == "✅ ALL VERIFICATION STEPS PASSED"
    assert any("ES384" in step for step in result["verification_steps"])


def test_full_report_failure(make_document, make_policy):
    data = make_document(pcrs={0: b"\x07" * 32})
    success, result = verify_attestation_full(data, make_policy())

    assert success is False
    assert result["verified"] is False
    assert result["stage"] == "policy"
    assert result["code"] == "MEASUREMENT_MISMATCH"
    assert result["index"] == 0
    assert "public_key" not in result
    assert len(result["verification_steps"]) == 4


def test_full_report_bad_root(make_document, make_policy):
    success, result = verify_attestation_full(make_document(), make_policy(trusted_root=b"junk"))
    assert success is False
    assert result["code"] == "MALFORMED_CHAIN"


@pytest.mark.parametrize("key_type", ["p384", "p256", "ed25519", "rsa"])
def test_signature_bit_flip_fails_pipeline(chain_factory, make_document, make_policy, key_type):
    chain = chain_factory(key_type)
    envelope = decode_envelope(make_document(chain=chain))
    signature = envelope.signature[:-1] + bytes([envelope.signature[-1] ^ 0x80])
    tampered = cbor2.dumps(cbor2.CBORTag(18, [envelope.protected_header, {}, envelope.payload, signature]))

    with pytest.raises(SignatureError):
        verify_document(tampered, make_policy(trusted_root=chain.root_der))


def test_malformed_bundle_extension_is_a_chain_failure(make_document, make_policy, p384_chain):
    ca_key, ca = issue_ca_with_broken_basic_constraints(p384_chain)
    leaf_key = generate_key("p384")
    leaf = issue_certificate("leaf", leaf_key, "broken-ca", ca_key, is_ca=False)
    data = make_document(signing_key=leaf_key, leaf_cert_der=der(leaf), ca_bundle=[p384_chain.root_der, der(ca)])

    with pytest.raises(ChainError):
        verify_document(data, make_policy())

    success, result = verify_attestation_full(data, make_policy())
    assert success is False
    assert result["stage"] == "chain"
