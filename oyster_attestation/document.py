"""
Nitro Attestation Document Decoding

The COSE_Sign1 payload is a CBOR map:

    {
        "module_id":   tstr,
        "timestamp":   uint (ms since epoch),
        "digest":      tstr ("SHA384"),
        "pcrs":        {uint => bstr},
        "certificate": bstr (DER),
        "cabundle":    [* bstr (DER)],
        "public_key":  bstr / nil,
        "user_data":   bstr / nil,
        "nonce":       bstr / nil,
    }

Certificates are kept as raw DER here. Parsing them belongs to the
signature and chain stages, which can fail independently.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import cbor2

from oyster_attestation.constants import MAX_CABUNDLE_LENGTH
from oyster_attestation.errors import MalformedDocumentError, ResourceClaimMalformedError

_UINT64_MAX = 2 ** 64 - 1


@dataclass(frozen=True)
class AttestationDocument:
    module_id: str
    timestamp: int
    digest_algorithm: Optional[str]
    measurements: Dict[int, bytes]
    leaf_certificate: bytes
    ca_chain: Tuple[bytes, ...]
    embedded_public_key: Optional[bytes] = None
    user_data: Optional[bytes] = None
    nonce: Optional[bytes] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view (bytes rendered as hex)."""
        return {
            "module_id": self.module_id,
            "timestamp": self.timestamp,
            "digest": self.digest_algorithm,
            "pcrs": {str(index): value.hex() for index, value in sorted(self.measurements.items())},
            "certificate": self.leaf_certificate.hex(),
            "cabundle": [cert.hex() for cert in self.ca_chain],
            "public_key": self.embedded_public_key.hex() if self.embedded_public_key is not None else None,
            "user_data": self.user_data.hex() if self.user_data is not None else None,
            "nonce": self.nonce.hex() if self.nonce is not None else None,
        }


@dataclass(frozen=True)
class ResourceClaim:
    """Enclave size reported in user_data."""

    total_cpus: int
    total_memory: int


def _is_uint(value: Any) -> bool:
    # CBOR true/false decode to bool, which is an int subclass
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _optional_bytes(att_doc: Mapping, field: str) -> Optional[bytes]:
    value = att_doc.get(field)
    if value is None:
        return None
    if not isinstance(value, bytes):
        raise MalformedDocumentError(f"Field '{field}' must be a byte string or null")
    return value


def decode_document(payload: bytes) -> AttestationDocument:
    """
    Decode a COSE_Sign1 payload into an AttestationDocument.

    Raises:
        MalformedDocumentError: If the payload is not a CBOR map, a required
            field (module_id, timestamp, pcrs, certificate) is missing, or any
            field has the wrong type.
    """
    try:
        att_doc = cbor2.loads(payload)
    except Exception as e:
        raise MalformedDocumentError(f"Failed to parse attestation payload: {e}") from e

    if not isinstance(att_doc, Mapping):
        raise MalformedDocumentError(f"Attestation payload must be a map, got {type(att_doc).__name__}")

    for field in ("module_id", "timestamp", "pcrs", "certificate"):
        if att_doc.get(field) is None:
            raise MalformedDocumentError(f"Missing required field: {field}")

    module_id = att_doc["module_id"]
    if not isinstance(module_id, str):
        raise MalformedDocumentError("Field 'module_id' must be a text string")

    timestamp = att_doc["timestamp"]
    if not _is_uint(timestamp) or timestamp > _UINT64_MAX:
        raise MalformedDocumentError("Field 'timestamp' must be an unsigned 64-bit integer")

    digest = att_doc.get("digest")
    if digest is not None and not isinstance(digest, str):
        raise MalformedDocumentError("Field 'digest' must be a text string")

    pcrs = att_doc["pcrs"]
    if not isinstance(pcrs, Mapping):
        raise MalformedDocumentError("Field 'pcrs' must be a map")
    measurements: Dict[int, bytes] = {}
    for index, value in pcrs.items():
        if not _is_uint(index):
            raise MalformedDocumentError(f"PCR index must be an unsigned integer, got {index!r}")
        if not isinstance(value, bytes):
            raise MalformedDocumentError(f"PCR{index} value must be a byte string")
        measurements[index] = value

    certificate = att_doc["certificate"]
    if not isinstance(certificate, bytes):
        raise MalformedDocumentError("Field 'certificate' must be a byte string")

    cabundle = att_doc.get("cabundle")
    if cabundle is None:
        cabundle = []
    if not isinstance(cabundle, (list, tuple)):
        raise MalformedDocumentError("Field 'cabundle' must be an array")
    if len(cabundle) > MAX_CABUNDLE_LENGTH:
        raise MalformedDocumentError(
            f"cabundle has {len(cabundle)} entries, at most {MAX_CABUNDLE_LENGTH} allowed"
        )
    for position, ca_der in enumerate(cabundle):
        if not isinstance(ca_der, bytes):
            raise MalformedDocumentError(f"cabundle[{position}] must be a byte string")

    return AttestationDocument(
        module_id=module_id,
        timestamp=timestamp,
        digest_algorithm=digest,
        measurements=measurements,
        leaf_certificate=certificate,
        ca_chain=tuple(cabundle),
        embedded_public_key=_optional_bytes(att_doc, "public_key"),
        user_data=_optional_bytes(att_doc, "user_data"),
        nonce=_optional_bytes(att_doc, "nonce"),
    )


def decode_resource_claim(user_data: Optional[bytes]) -> ResourceClaim:
    """
    Decode the enclave resource descriptor carried in user_data.

    The enclave writes JSON ({"total_cpus": n, "total_memory": n}); a CBOR
    map with the same keys is accepted as well.

    Raises:
        ResourceClaimMalformedError: If user_data is absent, undecodable, or
            either field is missing or not a non-negative integer.
    """
    if not user_data:
        raise ResourceClaimMalformedError("No user_data in attestation, cannot read resource claim")

    claim: Any = None
    # Try JSON first (the attestation server writes JSON)
    try:
        claim = json.loads(user_data.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError):
        try:
            claim = cbor2.loads(user_data)
        except Exception as e:
            raise ResourceClaimMalformedError(f"user_data is neither JSON nor CBOR: {e}") from e

    if not isinstance(claim, Mapping):
        raise ResourceClaimMalformedError("user_data resource claim must be an object")

    total_cpus = claim.get("total_cpus")
    total_memory = claim.get("total_memory")
    if not _is_uint(total_cpus):
        raise ResourceClaimMalformedError("user_data 'total_cpus' must be a non-negative integer")
    if not _is_uint(total_memory):
        raise ResourceClaimMalformedError("user_data 'total_memory' must be a non-negative integer")

    return ResourceClaim(total_cpus=total_cpus, total_memory=total_memory)
