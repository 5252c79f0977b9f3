import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import ExtensionOID, NameOID

from oyster_attestation import policy as policy_module
from oyster_attestation.mock import build_attestation_document, resource_user_data
from oyster_attestation.policy import VerificationPolicy

FIXED_PUBLIC_KEY = bytes(range(32))
PCR0_ZEROS = b"\x00" * 32


def generate_key(key_type: str):
    if key_type == "p384":
        return ec.generate_private_key(ec.SECP384R1())
    if key_type == "p256":
        return ec.generate_private_key(ec.SECP256R1())
    if key_type == "p521":
        return ec.generate_private_key(ec.SECP521R1())
    if key_type == "ed25519":
        return ed25519.Ed25519PrivateKey.generate()
    if key_type == "ed448":
        return ed448.Ed448PrivateKey.generate()
    if key_type == "rsa":
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)
    raise ValueError(key_type)


def issue_certificate(
    subject_cn: str,
    subject_key,
    issuer_cn: str,
    issuer_key,
    is_ca: bool,
    path_length: Optional[int] = None,
    not_before: Optional[datetime] = None,
    not_after: Optional[datetime] = None,
    include_basic_constraints: bool = True,
) -> x509.Certificate:
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, subject_cn)]))
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)]))
        .public_key(subject_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=30))
    )
    if include_basic_constraints:
        builder = builder.add_extension(
            x509.BasicConstraints(ca=is_ca, path_length=path_length if is_ca else None),
            critical=True,
        )
    builder = builder.add_extension(
        x509.KeyUsage(
            digital_signature=not is_ca,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=is_ca,
            crl_sign=is_ca,
            encipher_only=False,
            decipher_only=False,
        ),
        critical=True,
    )

    if isinstance(issuer_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return builder.sign(issuer_key, None)
    return builder.sign(issuer_key, hashes.SHA384())


def der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(Encoding.DER)


def issue_ca_with_broken_basic_constraints(chain: "CertChain"):
    """A CA signed by chain.root whose BasicConstraints value does not parse."""
    now = datetime.now(timezone.utc)
    ca_key = generate_key("p384")
    ca = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "broken-ca")]))
        .issuer_name(chain.root.subject)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.UnrecognizedExtension(ExtensionOID.BASIC_CONSTRAINTS, b"\x00"), critical=True)
        .sign(chain.root_key, hashes.SHA384())
    )
    return ca_key, ca


@dataclass
class CertChain:
    root_key: object
    root: x509.Certificate
    intermediate_key: object
    intermediate: x509.Certificate
    leaf_key: object
    leaf: x509.Certificate

    @property
    def root_der(self) -> bytes:
        return der(self.root)

    @property
    def intermediate_der(self) -> bytes:
        return der(self.intermediate)

    @property
    def leaf_der(self) -> bytes:
        return der(self.leaf)

    @property
    def bundle(self) -> List[bytes]:
        # Nitro orders the bundle root first
        return [self.root_der, self.intermediate_der]


def build_chain(leaf_key_type: str = "p384", root_cn: str = "test-root") -> CertChain:
    root_key = generate_key("p384")
    root = issue_certificate(root_cn, root_key, root_cn, root_key, is_ca=True)
    intermediate_key = generate_key("p384")
    intermediate = issue_certificate("test-intermediate", intermediate_key, root_cn, root_key, is_ca=True)
    leaf_key = generate_key(leaf_key_type)
    leaf = issue_certificate("test-leaf", leaf_key, "test-intermediate", intermediate_key, is_ca=False)
    return CertChain(root_key, root, intermediate_key, intermediate, leaf_key, leaf)


@pytest.fixture(scope="session")
def chain_factory() -> Callable[..., CertChain]:
    cache: Dict[str, CertChain] = {}

    def factory(leaf_key_type: str = "p384") -> CertChain:
        if leaf_key_type not in cache:
            cache[leaf_key_type] = build_chain(leaf_key_type)
        return cache[leaf_key_type]

    return factory


@pytest.fixture(scope="session")
def p384_chain(chain_factory) -> CertChain:
    return chain_factory("p384")


@pytest.fixture(scope="session")
def other_chain() -> CertChain:
    """An unrelated chain whose root does not issue p384_chain."""
    return build_chain("p384", root_cn="other-root")


@pytest.fixture
def make_document(p384_chain) -> Callable[..., bytes]:
    def factory(chain: Optional[CertChain] = None, **overrides) -> bytes:
        chain = chain or p384_chain
        kwargs = dict(
            signing_key=chain.leaf_key,
            leaf_cert_der=chain.leaf_der,
            ca_bundle=chain.bundle,
            pcrs={0: PCR0_ZEROS},
            module_id="test-module",
            timestamp_ms=time.time_ns() // 1_000_000,
            user_data=resource_user_data(total_cpus=4, total_memory=8192),
            public_key=FIXED_PUBLIC_KEY,
        )
        kwargs.update(overrides)
        return build_attestation_document(**kwargs)

    return factory


@pytest.fixture
def make_policy(p384_chain) -> Callable[..., VerificationPolicy]:
    def factory(**overrides) -> VerificationPolicy:
        kwargs = dict(
            expected_measurements={0: PCR0_ZEROS},
            trusted_root=p384_chain.root_der,
            min_cpus=4,
            min_memory=8192,
            max_age=timedelta(minutes=5),
        )
        kwargs.update(overrides)
        return VerificationPolicy(**kwargs)

    return factory


@pytest.fixture
def frozen_now(monkeypatch) -> int:
    """Pin the policy clock; returns the frozen time in ms."""
    now_ms = time.time_ns() // 1_000_000
    monkeypatch.setattr(policy_module, "_now_ms", lambda: now_ms)
    return now_ms
