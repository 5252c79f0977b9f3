"""
Certificate Chain Validation

Builds a path from the attestation leaf certificate to the pinned trusted
root, using the document's cabundle as an unordered pool of intermediates.

AWS Nitro ships the cabundle ordered root -> regional -> zonal -> instance,
but nothing here relies on that order: every candidate issuer in the pool
is tried until a path reaching the trusted root is found.

Per-link checks:
- issuer name matches and issuer key verifies the subordinate signature
- every certificate on the path (root included) is inside its validity window
- every issuing certificate is a CA (basicConstraints) allowed to sign
  certificates (keyUsage, when present) with a pathLen that permits its depth
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Set, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.serialization import Encoding

from oyster_attestation.constants import MAX_CHAIN_DEPTH
from oyster_attestation.errors import ChainValidationError, MalformedChainError

logger = logging.getLogger(__name__)

CertificateInput = Union[bytes, x509.Certificate]


def load_certificate(data: CertificateInput) -> x509.Certificate:
    """
    Load a certificate from DER or PEM bytes (or pass through a parsed one).

    Raises:
        ValueError: If the bytes are not a parseable certificate.
    """
    if isinstance(data, x509.Certificate):
        return data
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError(f"Certificate must be bytes, got {type(data).__name__}")
    data = bytes(data)
    if data.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_certificate(data)
    return x509.load_der_x509_certificate(data)


def _is_valid_at(cert: x509.Certificate, now: datetime) -> bool:
    return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc


def _is_issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def _can_issue(issuer: x509.Certificate, intermediates_below: int) -> bool:
    """
    Check that issuer may act as a CA with intermediates_below CAs under it.

    Extensions are parsed lazily; a malformed or duplicated extension means
    the certificate cannot issue.
    """
    try:
        extensions = issuer.extensions
        basic = extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return False
    except (ValueError, x509.DuplicateExtension) as e:
        logger.warning(f"⚠️ Ignoring bundled CA with unparseable extensions: {e}")
        return False
    if not basic.ca:
        return False
    if basic.path_length is not None and intermediates_below > basic.path_length:
        return False

    try:
        key_usage = extensions.get_extension_for_class(x509.KeyUsage).value
    except x509.ExtensionNotFound:
        return True
    return key_usage.key_cert_sign


def _fingerprint(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(Encoding.DER)


def _build_path(
    cert: x509.Certificate,
    pool: Sequence[x509.Certificate],
    root: x509.Certificate,
    now: datetime,
    intermediates_below: int,
    visited: Set[bytes],
) -> Optional[List[x509.Certificate]]:
    """
    Depth-first search for an issuer path from cert to root.

    Returns the path (issuers only, ending with root) or None.
    """
    if _is_issued_by(cert, root) and _can_issue(root, intermediates_below):
        return [root]

    if intermediates_below >= MAX_CHAIN_DEPTH:
        return None

    root_der = _fingerprint(root)
    for candidate in pool:
        candidate_der = _fingerprint(candidate)
        if candidate_der in visited or candidate_der == root_der:
            continue
        if not _is_valid_at(candidate, now):
            continue
        if not _can_issue(candidate, intermediates_below):
            continue
        if not _is_issued_by(cert, candidate):
            continue

        path = _build_path(
            candidate,
            pool,
            root,
            now,
            intermediates_below + 1,
            visited | {candidate_der},
        )
        if path is not None:
            return [candidate] + path

    return None


def verify_chain(
    leaf_cert: CertificateInput,
    ca_chain: Sequence[CertificateInput],
    trusted_root: Optional[CertificateInput],
    now: Optional[datetime] = None,
) -> List[x509.Certificate]:
    """
    Verify that leaf_cert chains to trusted_root through ca_chain.

    When trusted_root is None only structural parsing is performed (untrusted
    mode). Callers decide whether that is acceptable; the verification
    pipeline refuses it unless explicitly configured.

    Args:
        leaf_cert: Leaf certificate (DER bytes or parsed)
        ca_chain: Intermediates as bundled in the document, any order
        trusted_root: Pinned root (DER/PEM bytes or parsed), or None
        now: Validation time (defaults to the current UTC time)

    Returns:
        The validated path, leaf first and root last. In untrusted mode, the
        parsed leaf followed by the parsed bundle.

    Raises:
        MalformedChainError: If any certificate cannot be parsed.
        ChainValidationError: If no valid path to the trusted root exists.
    """
    try:
        leaf = load_certificate(leaf_cert)
    except Exception as e:
        raise MalformedChainError(f"Leaf certificate could not be parsed: {e}") from e

    pool: List[x509.Certificate] = []
    for position, ca_der in enumerate(ca_chain):
        try:
            pool.append(load_certificate(ca_der))
        except Exception as e:
            raise MalformedChainError(f"cabundle[{position}] could not be parsed: {e}") from e

    if trusted_root is None:
        logger.warning("⚠️ No trusted root supplied - certificate chain NOT validated (structural parse only)")
        return [leaf] + pool

    try:
        root = load_certificate(trusted_root)
    except Exception as e:
        raise MalformedChainError(f"Trusted root could not be parsed: {e}") from e

    if now is None:
        now = datetime.now(timezone.utc)

    if not _is_valid_at(leaf, now):
        raise ChainValidationError(
            f"Leaf certificate outside validity window "
            f"({leaf.not_valid_before_utc} - {leaf.not_valid_after_utc})"
        )
    if not _is_valid_at(root, now):
        raise ChainValidationError(
            f"Trusted root outside validity window "
            f"({root.not_valid_before_utc} - {root.not_valid_after_utc})"
        )

    try:
        path = _build_path(leaf, pool, root, now, 0, {_fingerprint(leaf)})
        if path is None:
            raise ChainValidationError(
                f"No valid certificate path from leaf ({leaf.subject.rfc4514_string()}) "
                f"to trusted root ({root.subject.rfc4514_string()}) "
                f"using {len(pool)} bundled certificate(s)"
            )
    except (ValueError, x509.DuplicateExtension) as e:
        # Certificate fields are parsed lazily
        raise MalformedChainError(f"Certificate could not be parsed during path validation: {e}") from e

    logger.debug(f"Certificate chain verified ({len(path)} issuer(s) to trusted root)")
    return [leaf] + path
