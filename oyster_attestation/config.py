"""
Oyster Attestation Configuration
================================

Loads verifier defaults from environment variables.

Environment variables may be set in a .env file in the project root.
"""

import logging
import os
import threading
from datetime import timedelta
from typing import Mapping, Optional, Union

from cryptography import x509
from dotenv import load_dotenv

from oyster_attestation.chain import load_certificate
from oyster_attestation.constants import (
    DEFAULT_ATTESTATION_ENDPOINT,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_MAX_AGE_SECONDS,
    NITRO_ROOT_CERT_DER,
)
from oyster_attestation.policy import VerificationPolicy, parse_measurements

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ============================================================
# Trusted Root
# ============================================================
# Unset = pinned AWS Nitro root (constants.NITRO_ROOT_CERT_DER)
ATTESTATION_ROOT_CERT_PATH = os.getenv("ATTESTATION_ROOT_CERT_PATH")

# ============================================================
# Enclave Attestation Service
# ============================================================
ATTESTATION_ENDPOINT = os.getenv("ATTESTATION_ENDPOINT", DEFAULT_ATTESTATION_ENDPOINT)
ATTESTATION_FETCH_TIMEOUT_SECONDS = float(
    os.getenv("ATTESTATION_FETCH_TIMEOUT_SECONDS", str(DEFAULT_FETCH_TIMEOUT_SECONDS))
)

# ============================================================
# Policy Defaults
# ============================================================
ATTESTATION_MAX_AGE_SECONDS = int(os.getenv("ATTESTATION_MAX_AGE_SECONDS", str(DEFAULT_MAX_AGE_SECONDS)))
ATTESTATION_MIN_CPUS = int(os.getenv("ATTESTATION_MIN_CPUS", "0"))
ATTESTATION_MIN_MEMORY = int(os.getenv("ATTESTATION_MIN_MEMORY", "0"))
ATTESTATION_REQUIRE_PUBLIC_KEY = _env_bool("ATTESTATION_REQUIRE_PUBLIC_KEY", True)

if ATTESTATION_FETCH_TIMEOUT_SECONDS <= 0:
    raise ValueError("ATTESTATION_FETCH_TIMEOUT_SECONDS must be positive")
if ATTESTATION_MAX_AGE_SECONDS < 0:
    raise ValueError("ATTESTATION_MAX_AGE_SECONDS must be non-negative")
if ATTESTATION_MIN_CPUS < 0 or ATTESTATION_MIN_MEMORY < 0:
    raise ValueError("ATTESTATION_MIN_CPUS and ATTESTATION_MIN_MEMORY must be non-negative")


# ============================================================
# Trusted Root Loading (once per process)
# ============================================================

_TRUSTED_ROOT: Optional[x509.Certificate] = None
_TRUSTED_ROOT_LOCK = threading.Lock()


def read_certificate_file(path: str) -> x509.Certificate:
    """Read a DER or PEM certificate from disk."""
    with open(path, "rb") as f:
        return load_certificate(f.read())


def get_trusted_root() -> x509.Certificate:
    """
    Return the process-wide trusted root, loading it on first use.

    The root is read-only afterwards; call reset_trusted_root() to force
    a reload (e.g. after rotating the root file).

    Raises:
        OSError: If ATTESTATION_ROOT_CERT_PATH cannot be read.
        ValueError: If the file does not hold a certificate.
    """
    global _TRUSTED_ROOT

    with _TRUSTED_ROOT_LOCK:
        if _TRUSTED_ROOT is None:
            if ATTESTATION_ROOT_CERT_PATH:
                _TRUSTED_ROOT = read_certificate_file(ATTESTATION_ROOT_CERT_PATH)
                logger.info(f"✅ Trusted root loaded from {ATTESTATION_ROOT_CERT_PATH}")
            else:
                _TRUSTED_ROOT = load_certificate(NITRO_ROOT_CERT_DER)
                logger.info("✅ Using pinned AWS Nitro root certificate")
        return _TRUSTED_ROOT


def reset_trusted_root() -> None:
    """Drop the cached trusted root so the next get_trusted_root() reloads it."""
    global _TRUSTED_ROOT
    with _TRUSTED_ROOT_LOCK:
        _TRUSTED_ROOT = None


def default_policy(
    expected_measurements: Optional[Mapping[Union[int, str], Union[bytes, str]]] = None,
    trusted_root: Optional[Union[bytes, x509.Certificate]] = None,
) -> VerificationPolicy:
    """
    Build a VerificationPolicy from the configured defaults.

    Args:
        expected_measurements: PCR index -> expected value (bytes or hex)
        trusted_root: Overrides the configured trusted root
    """
    return VerificationPolicy(
        expected_measurements=parse_measurements(expected_measurements or {}),
        trusted_root=trusted_root if trusted_root is not None else get_trusted_root(),
        min_cpus=ATTESTATION_MIN_CPUS,
        min_memory=ATTESTATION_MIN_MEMORY,
        max_age=timedelta(seconds=ATTESTATION_MAX_AGE_SECONDS),
        require_public_key=ATTESTATION_REQUIRE_PUBLIC_KEY,
    )
