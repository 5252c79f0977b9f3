"""
COSE_Sign1 Signature Verification

The signing key comes from the leaf certificate of the attestation
document; the algorithm comes from the protected header. Both must agree
before any cryptographic check runs:

    ES256 / ES384      -> ECDSA on P-256 / P-384, raw (r || s) signature
    EdDSA              -> Ed25519
    PS256/384/512      -> RSASSA-PSS, MGF1 with the same hash, salt = hash length
    RS256/384/512      -> RSASSA-PKCS1-v1_5

This check runs before any other claim in the document is trusted, since
an unverified payload is attacker-controlled.
"""

import logging
from typing import Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from oyster_attestation.constants import (
    COSE_ALG_EDDSA,
    COSE_ALG_ES256,
    COSE_ALG_ES384,
    COSE_ALG_PS256,
    COSE_ALG_PS384,
    COSE_ALG_PS512,
    COSE_ALG_RS256,
    COSE_ALG_RS384,
    COSE_ALG_RS512,
    COSE_ALGORITHM_NAMES,
)
from oyster_attestation.cose import SignedEnvelope, protected_algorithm, sig_structure
from oyster_attestation.errors import (
    AlgorithmKeyMismatchError,
    InvalidSignatureError,
    UnsupportedAlgorithmError,
    UnsupportedKeyTypeError,
)

logger = logging.getLogger(__name__)

SigningKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey]

# ECDSA algorithms: alg -> (curve class, hash class)
ECDSA_ALGORITHMS = {
    COSE_ALG_ES256: (ec.SECP256R1, hashes.SHA256),
    COSE_ALG_ES384: (ec.SECP384R1, hashes.SHA384),
}

RSA_PSS_ALGORITHMS = {
    COSE_ALG_PS256: hashes.SHA256,
    COSE_ALG_PS384: hashes.SHA384,
    COSE_ALG_PS512: hashes.SHA512,
}

RSA_PKCS1_ALGORITHMS = {
    COSE_ALG_RS256: hashes.SHA256,
    COSE_ALG_RS384: hashes.SHA384,
    COSE_ALG_RS512: hashes.SHA512,
}

_SUPPORTED_CURVES = (ec.SECP256R1, ec.SECP384R1)


def _alg_name(alg: int) -> str:
    return COSE_ALGORITHM_NAMES.get(alg, str(alg))


def signing_key_from_certificate(leaf_cert: Union[bytes, x509.Certificate]) -> SigningKey:
    """
    Extract the envelope signing key from the leaf certificate.

    Raises:
        InvalidSignatureError: If the certificate cannot be parsed.
        UnsupportedKeyTypeError: If the key is not RSA, ECDSA P-256/P-384,
            or Ed25519.
    """
    if isinstance(leaf_cert, x509.Certificate):
        cert = leaf_cert
    else:
        try:
            cert = x509.load_der_x509_certificate(leaf_cert)
        except Exception as e:
            raise InvalidSignatureError(f"Leaf certificate could not be parsed: {e}") from e

    try:
        public_key = cert.public_key()
    except Exception as e:
        raise UnsupportedKeyTypeError(f"Leaf certificate public key is not usable: {e}") from e

    if isinstance(public_key, ec.EllipticCurvePublicKey):
        if not isinstance(public_key.curve, _SUPPORTED_CURVES):
            raise UnsupportedKeyTypeError(f"Unsupported ECDSA curve: {public_key.curve.name}")
        return public_key
    if isinstance(public_key, (rsa.RSAPublicKey, ed25519.Ed25519PublicKey)):
        return public_key

    raise UnsupportedKeyTypeError(f"Unsupported leaf key type: {type(public_key).__name__}")


def _check_compatible(alg: int, public_key: SigningKey) -> None:
    if alg in ECDSA_ALGORITHMS:
        curve_cls, _ = ECDSA_ALGORITHMS[alg]
        if not isinstance(public_key, ec.EllipticCurvePublicKey) or not isinstance(public_key.curve, curve_cls):
            raise AlgorithmKeyMismatchError(
                f"Algorithm {_alg_name(alg)} requires an ECDSA {curve_cls.name} key, "
                f"leaf certificate has {_describe_key(public_key)}"
            )
    elif alg == COSE_ALG_EDDSA:
        if not isinstance(public_key, ed25519.Ed25519PublicKey):
            raise AlgorithmKeyMismatchError(
                f"Algorithm EdDSA requires an Ed25519 key, leaf certificate has {_describe_key(public_key)}"
            )
    elif alg in RSA_PSS_ALGORITHMS or alg in RSA_PKCS1_ALGORITHMS:
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise AlgorithmKeyMismatchError(
                f"Algorithm {_alg_name(alg)} requires an RSA key, leaf certificate has {_describe_key(public_key)}"
            )
    else:
        raise UnsupportedAlgorithmError(f"Unsupported COSE algorithm: {alg}")


def _describe_key(public_key: SigningKey) -> str:
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return f"ECDSA {public_key.curve.name}"
    if isinstance(public_key, rsa.RSAPublicKey):
        return f"RSA-{public_key.key_size}"
    return "Ed25519"


def _verify_ecdsa(public_key: ec.EllipticCurvePublicKey, alg: int, signature: bytes, message: bytes) -> None:
    _, hash_cls = ECDSA_ALGORITHMS[alg]
    coordinate_len = (public_key.curve.key_size + 7) // 8

    # COSE signatures are in raw (r || s) format, but cryptography library
    # requires DER-encoded signatures for ECDSA. Convert:
    if len(signature) != 2 * coordinate_len:
        raise InvalidSignatureError(
            f"ECDSA signature must be {2 * coordinate_len} bytes for {public_key.curve.name}, got {len(signature)}"
        )
    r = int.from_bytes(signature[:coordinate_len], "big")
    s = int.from_bytes(signature[coordinate_len:], "big")
    der_signature = encode_dss_signature(r, s)

    public_key.verify(der_signature, message, ec.ECDSA(hash_cls()))


def verify_signature(envelope: SignedEnvelope, leaf_cert: Union[bytes, x509.Certificate]) -> int:
    """
    Verify the COSE_Sign1 signature of an attestation envelope.

    Args:
        envelope: Decoded COSE_Sign1 envelope
        leaf_cert: Leaf certificate (DER bytes or parsed) from the document

    Returns:
        The COSE algorithm identifier that was verified

    Raises:
        UnsupportedKeyTypeError, UnsupportedAlgorithmError,
        AlgorithmKeyMismatchError, InvalidSignatureError
    """
    public_key = signing_key_from_certificate(leaf_cert)
    alg = protected_algorithm(envelope.protected_header)
    _check_compatible(alg, public_key)

    message = sig_structure(envelope)
    signature = envelope.signature

    try:
        if alg in ECDSA_ALGORITHMS:
            _verify_ecdsa(public_key, alg, signature, message)
        elif alg == COSE_ALG_EDDSA:
            public_key.verify(signature, message)
        elif alg in RSA_PSS_ALGORITHMS:
            hash_cls = RSA_PSS_ALGORITHMS[alg]
            public_key.verify(
                signature,
                message,
                padding.PSS(mgf=padding.MGF1(hash_cls()), salt_length=hash_cls.digest_size),
                hash_cls(),
            )
        else:
            hash_cls = RSA_PKCS1_ALGORITHMS[alg]
            public_key.verify(signature, message, padding.PKCS1v15(), hash_cls())
    except InvalidSignatureError:
        raise
    except InvalidSignature as e:
        raise InvalidSignatureError("COSE signature verification failed - attestation may be forged") from e
    except Exception as e:
        raise InvalidSignatureError(f"Signature verification error: {e}") from e

    logger.debug(f"COSE signature verified with {_alg_name(alg)}")
    return alg
