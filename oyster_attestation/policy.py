"""
Attestation Policy Evaluation

Checks, in order, each short-circuiting on the first failure:
1. Measurements: every PCR index the caller pins must be present and equal
   (byte-for-byte). Indices the caller does not pin are ignored.
2. Resources: user_data must decode to a ResourceClaim meeting the minimums.
3. Freshness: now - max_age must not be later than the document timestamp.

"now" always comes from the local clock, never from the caller.
"""

import hmac
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Mapping, Optional, Union

from cryptography import x509

from oyster_attestation.document import AttestationDocument, decode_resource_claim
from oyster_attestation.errors import (
    AttestationExpiredError,
    InsufficientResourcesError,
    MeasurementMismatchError,
    MeasurementMissingError,
)

logger = logging.getLogger(__name__)

_ONE_MS = timedelta(milliseconds=1)


@dataclass(frozen=True)
class VerificationPolicy:
    """
    Caller-supplied verification policy.

    expected_measurements holds raw bytes; use parse_measurements() to build
    it from hex strings.
    """

    expected_measurements: Dict[int, bytes] = field(default_factory=dict)
    trusted_root: Optional[Union[bytes, x509.Certificate]] = None
    min_cpus: int = 0
    min_memory: int = 0
    max_age: timedelta = timedelta(minutes=5)
    require_public_key: bool = True
    require_chain_validation: bool = True

    def __post_init__(self):
        for index, value in self.expected_measurements.items():
            if isinstance(index, bool) or not isinstance(index, int) or index < 0:
                raise ValueError(f"Measurement index must be a non-negative integer, got {index!r}")
            if not isinstance(value, bytes):
                raise ValueError(
                    f"Expected PCR{index} must be bytes; convert hex with parse_measurements()"
                )
        if self.min_cpus < 0 or self.min_memory < 0:
            raise ValueError("min_cpus and min_memory must be non-negative")
        if not isinstance(self.max_age, timedelta):
            raise ValueError(f"max_age must be a timedelta, got {type(self.max_age).__name__}")


def parse_measurements(measurements: Mapping[Union[int, str], Union[bytes, str]]) -> Dict[int, bytes]:
    """
    Convert caller-facing measurement values into raw bytes.

    Keys may be ints or decimal strings ("0"). Values may be raw bytes (used
    as-is) or hex strings (optional "0x" prefix). Anything else is rejected.

    Raises:
        ValueError: On non-integer keys, negative keys, or invalid hex.
    """
    parsed: Dict[int, bytes] = {}
    for key, value in measurements.items():
        if isinstance(key, bool):
            raise ValueError(f"Invalid PCR index: {key!r}")
        if isinstance(key, str):
            if not key.strip().isdigit():
                raise ValueError(f"Invalid PCR index: {key!r}")
            index = int(key)
        elif isinstance(key, int):
            index = key
        else:
            raise ValueError(f"Invalid PCR index: {key!r}")
        if index < 0:
            raise ValueError(f"Invalid PCR index: {key!r}")

        if isinstance(value, (bytes, bytearray)):
            parsed[index] = bytes(value)
        elif isinstance(value, str):
            hex_value = value.strip()
            if hex_value[:2].lower() == "0x":
                hex_value = hex_value[2:]
            try:
                parsed[index] = bytes.fromhex(hex_value)
            except ValueError as e:
                raise ValueError(f"PCR{index} is not valid hex: {e}") from e
        else:
            raise ValueError(f"PCR{index} must be bytes or a hex string, got {type(value).__name__}")
    return parsed


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def check_measurements(document: AttestationDocument, expected: Mapping[int, bytes]) -> None:
    for index in sorted(expected):
        actual = document.measurements.get(index)
        if actual is None:
            raise MeasurementMissingError(index)
        if not hmac.compare_digest(actual, expected[index]):
            raise MeasurementMismatchError(
                index,
                f"PCR{index} mismatch: got {actual.hex()[:32]}..., "
                f"expected {expected[index].hex()[:32]}...",
            )


def check_resources(document: AttestationDocument, min_cpus: int, min_memory: int) -> None:
    claim = decode_resource_claim(document.user_data)
    if claim.total_cpus < min_cpus:
        raise InsufficientResourcesError(
            f"Enclave does not meet minimum cpus requirement: {claim.total_cpus} < {min_cpus}"
        )
    if claim.total_memory < min_memory:
        raise InsufficientResourcesError(
            f"Enclave does not meet minimum memory requirement: {claim.total_memory} < {min_memory}"
        )


def check_freshness(document: AttestationDocument, max_age: timedelta) -> None:
    now = _now_ms()
    max_age_ms = max_age // _ONE_MS
    if now - max_age_ms > document.timestamp:
        raise AttestationExpiredError(
            f"Attestation is too old: issued {now - document.timestamp} ms ago, max age {max_age_ms} ms"
        )


def evaluate_policy(document: AttestationDocument, policy: VerificationPolicy) -> None:
    """
    Evaluate measurements, resources and freshness, in that order.

    Raises:
        MeasurementMissingError, MeasurementMismatchError,
        ResourceClaimMalformedError, InsufficientResourcesError,
        AttestationExpiredError
    """
    check_measurements(document, policy.expected_measurements)
    check_resources(document, policy.min_cpus, policy.min_memory)
    check_freshness(document, policy.max_age)
    logger.debug(
        f"Policy satisfied: {len(policy.expected_measurements)} PCR(s) pinned, "
        f"min_cpus={policy.min_cpus}, min_memory={policy.min_memory}"
    )
