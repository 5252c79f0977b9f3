"""
Mock Attestation Document Builder
=================================

Produces genuinely signed COSE_Sign1 attestation documents from a caller
supplied signing key and certificate chain, for testing verifiers outside
a Nitro Enclave.

⚠️ A document built here is only as trustworthy as the key that signed it.
Real attestations MUST come from the Nitro Secure Module (/dev/nsm).

Document layout matches the NSM output:
    {module_id, digest, timestamp, pcrs, certificate, cabundle,
     public_key, user_data, nonce}
"""

import json
import time
from typing import Dict, Optional, Sequence, Union

import cbor2
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from oyster_attestation.constants import (
    COSE_ALG_EDDSA,
    COSE_ALG_ES256,
    COSE_ALG_ES384,
    COSE_ALG_PS384,
    COSE_ALGORITHM_IDS,
    COSE_SIGN1_TAG,
)
from oyster_attestation.cose import SignedEnvelope, encode_protected_header, sig_structure
from oyster_attestation.signature import ECDSA_ALGORITHMS, RSA_PKCS1_ALGORITHMS, RSA_PSS_ALGORITHMS

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey]

MOCK_MODULE_ID = "i-0d69bec447a037a2a-enc01939aab191aadd2"


def mock_pcrs(count: int = 16, length: int = 48) -> Dict[int, bytes]:
    """PCR i = bytes([i]) * length, as served by the mock attestation server."""
    return {i: bytes([i]) * length for i in range(count)}


def resource_user_data(total_cpus: int, total_memory: int) -> bytes:
    """Encode the enclave resource descriptor the way the enclave does (JSON)."""
    return json.dumps({"total_memory": total_memory, "total_cpus": total_cpus}).encode("utf-8")


def default_algorithm(signing_key: PrivateKey) -> int:
    """Pick the COSE algorithm matching a private key."""
    if isinstance(signing_key, ec.EllipticCurvePrivateKey):
        if isinstance(signing_key.curve, ec.SECP256R1):
            return COSE_ALG_ES256
        return COSE_ALG_ES384
    if isinstance(signing_key, ed25519.Ed25519PrivateKey):
        return COSE_ALG_EDDSA
    if isinstance(signing_key, rsa.RSAPrivateKey):
        return COSE_ALG_PS384
    raise ValueError(f"Unsupported signing key type: {type(signing_key).__name__}")


def sign_message(signing_key: PrivateKey, alg: int, message: bytes) -> bytes:
    """Sign message with alg, returning the COSE wire form of the signature."""
    if alg in ECDSA_ALGORITHMS:
        _, hash_cls = ECDSA_ALGORITHMS[alg]
        der_signature = signing_key.sign(message, ec.ECDSA(hash_cls()))
        # COSE wants raw (r || s), each padded to the coordinate size
        r, s = decode_dss_signature(der_signature)
        coordinate_len = (signing_key.curve.key_size + 7) // 8
        return r.to_bytes(coordinate_len, "big") + s.to_bytes(coordinate_len, "big")
    if alg == COSE_ALG_EDDSA:
        return signing_key.sign(message)
    if alg in RSA_PSS_ALGORITHMS:
        hash_cls = RSA_PSS_ALGORITHMS[alg]
        return signing_key.sign(
            message,
            padding.PSS(mgf=padding.MGF1(hash_cls()), salt_length=hash_cls.digest_size),
            hash_cls(),
        )
    if alg in RSA_PKCS1_ALGORITHMS:
        return signing_key.sign(message, padding.PKCS1v15(), RSA_PKCS1_ALGORITHMS[alg]())
    raise ValueError(f"Unsupported COSE algorithm: {alg}")


def build_attestation_document(
    signing_key: PrivateKey,
    leaf_cert_der: bytes,
    ca_bundle: Sequence[bytes] = (),
    pcrs: Optional[Dict[int, bytes]] = None,
    module_id: str = MOCK_MODULE_ID,
    timestamp_ms: Optional[int] = None,
    user_data: Optional[bytes] = None,
    public_key: Optional[bytes] = None,
    nonce: Optional[bytes] = None,
    digest: str = "SHA384",
    algorithm: Optional[Union[int, str]] = None,
    tagged: bool = True,
) -> bytes:
    """
    Build and sign a CBOR-encoded COSE_Sign1 attestation document.

    Args:
        signing_key: Private key matching leaf_cert_der
        leaf_cert_der: Leaf (signing) certificate, DER
        ca_bundle: CA certificates, DER, in the order to embed them
        pcrs: PCR index -> value (defaults to mock_pcrs())
        module_id: Enclave module id
        timestamp_ms: Issuance time in ms since epoch (defaults to now)
        user_data: Optional user data (see resource_user_data())
        public_key: Optional enclave public key to bind
        nonce: Optional nonce
        digest: Digest algorithm name
        algorithm: COSE algorithm id or name (defaults to the key's natural one)
        tagged: Wrap the array in CBOR tag 18

    Returns:
        Attestation document bytes
    """
    if algorithm is None:
        alg = default_algorithm(signing_key)
    elif isinstance(algorithm, str):
        alg = COSE_ALGORITHM_IDS[algorithm]
    else:
        alg = algorithm

    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000

    payload = cbor2.dumps({
        "module_id": module_id,
        "digest": digest,
        "timestamp": timestamp_ms,
        "pcrs": pcrs if pcrs is not None else mock_pcrs(),
        "certificate": leaf_cert_der,
        "cabundle": list(ca_bundle),
        "public_key": public_key,
        "user_data": user_data,
        "nonce": nonce,
    })

    unsigned = SignedEnvelope(
        protected_header=encode_protected_header(alg),
        unprotected_header={},
        payload=payload,
        signature=b"",
    )
    signature = sign_message(signing_key, alg, sig_structure(unsigned))

    cose_array = [unsigned.protected_header, {}, payload, signature]
    if tagged:
        return cbor2.dumps(cbor2.CBORTag(COSE_SIGN1_TAG, cose_array))
    return cbor2.dumps(cose_array)
