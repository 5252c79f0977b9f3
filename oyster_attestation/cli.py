"""
CLI for Oyster Attestation Verification
=======================================

Commands:
    oyster-attest decode <file>            Decode a document (NO verification)
    oyster-attest verify <file>            Verify a document from disk
    oyster-attest fetch                    Fetch from the enclave and verify
    oyster-attest mock                     Build a signed test document

Exit code 0 on success, 1 on any verification or transport failure.
"""

import json
import sys
from datetime import timedelta
from typing import Optional, Tuple

import click
from cryptography.hazmat.primitives.serialization import Encoding, load_pem_private_key

from oyster_attestation import config
from oyster_attestation.errors import AttestationError
from oyster_attestation.fetch import ENCODING_HEX, ENCODING_RAW, fetch_attestation
from oyster_attestation.mock import build_attestation_document, resource_user_data
from oyster_attestation.nitro import AttestationVerifier, decode_attestation
from oyster_attestation.policy import VerificationPolicy, parse_measurements


def _read_document(path: str, is_hex: bool) -> bytes:
    with open(path, "rb") as f:
        data = f.read()
    if is_hex:
        try:
            return bytes.fromhex(data.decode("ascii").strip())
        except (UnicodeDecodeError, ValueError) as e:
            raise click.BadParameter(f"{path} is not a hex attestation: {e}")
    return data


def _parse_pcr_options(values: Tuple[str, ...]) -> dict:
    raw = {}
    for value in values:
        index, sep, hex_value = value.partition("=")
        if not sep:
            raise click.BadParameter(f"Expected IDX=HEX, got {value!r}", param_hint="--pcr")
        raw[index] = hex_value
    try:
        return parse_measurements(raw)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--pcr")


def _build_verifier(
    pcr: Tuple[str, ...],
    root: Optional[str],
    min_cpus: int,
    min_memory: int,
    max_age: int,
    allow_missing_public_key: bool,
) -> AttestationVerifier:
    try:
        trusted_root = config.read_certificate_file(root) if root else config.get_trusted_root()
    except (OSError, ValueError) as e:
        raise click.BadParameter(f"Trusted root could not be loaded: {e}", param_hint="--root")
    policy = VerificationPolicy(
        expected_measurements=_parse_pcr_options(pcr),
        trusted_root=trusted_root,
        min_cpus=min_cpus,
        min_memory=min_memory,
        max_age=timedelta(seconds=max_age),
        require_public_key=not allow_missing_public_key,
    )
    return AttestationVerifier(policy)


def _report(verifier: AttestationVerifier, document_bytes: bytes, as_json: bool):
    success, result = verifier.verify_full(document_bytes)

    if as_json:
        click.echo(json.dumps(result, indent=2))
    else:
        click.echo()
        for step in result["verification_steps"]:
            click.echo(f"  {step}")
        click.echo()
        if success:
            click.echo(f"✅ Verified. Public key: {result['public_key'] or '(none)'}")
        else:
            click.echo(f"❌ Verification failed [{result['stage']}/{result['code']}]: {result['error']}", err=True)
        click.echo()

    if not success:
        sys.exit(1)


def policy_options(func):
    """Shared policy options for verify and fetch."""
    options = [
        click.option("--pcr", multiple=True, help="Expected PCR as IDX=HEX (repeatable)"),
        click.option("--root", type=click.Path(exists=True, dir_okay=False), default=None,
                     help="Trusted root certificate (DER or PEM). Default: configured root"),
        click.option("--min-cpus", type=click.IntRange(min=0), default=config.ATTESTATION_MIN_CPUS, show_default=True),
        click.option("--min-memory", type=click.IntRange(min=0), default=config.ATTESTATION_MIN_MEMORY, show_default=True),
        click.option("--max-age", type=click.IntRange(min=0), default=config.ATTESTATION_MAX_AGE_SECONDS,
                     show_default=True, help="Maximum document age in seconds"),
        click.option("--allow-missing-public-key", is_flag=True, default=False,
                     help="Succeed even if the document binds no public key"),
        click.option("--json", "as_json", is_flag=True, default=False, help="Print the verification report as JSON"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(package_name="oyster-attestation")
def main():
    """
    Oyster Attestation CLI - verify AWS Nitro Enclave attestation documents

    Examples:
        oyster-attest decode attestation.bin
        oyster-attest verify attestation.hex --hex --pcr 0=5fec1b...
        oyster-attest fetch --endpoint http://127.0.0.1:1300/attestation/raw
    """
    pass


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--hex", "is_hex", is_flag=True, default=False, help="File holds hex text instead of raw bytes")
def decode(path: str, is_hex: bool):
    """
    Decode an attestation document WITHOUT verifying it.

    ⚠️ Output is attacker-controlled until verified.
    """
    try:
        document = decode_attestation(_read_document(path, is_hex))
    except AttestationError as e:
        click.echo(f"❌ Decode failed [{e.code}]: {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(document.to_dict(), indent=2))


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--hex", "is_hex", is_flag=True, default=False, help="File holds hex text instead of raw bytes")
@policy_options
def verify(path, is_hex, pcr, root, min_cpus, min_memory, max_age, allow_missing_public_key, as_json):
    """Verify an attestation document stored in PATH."""
    verifier = _build_verifier(pcr, root, min_cpus, min_memory, max_age, allow_missing_public_key)
    _report(verifier, _read_document(path, is_hex), as_json)


@main.command()
@click.option("--endpoint", default=config.ATTESTATION_ENDPOINT, show_default=True,
              help="Enclave attestation service URL")
@click.option("--hex", "is_hex", is_flag=True, default=False, help="Endpoint serves hex text")
@click.option("--timeout", type=float, default=config.ATTESTATION_FETCH_TIMEOUT_SECONDS, show_default=True)
@policy_options
def fetch(endpoint, is_hex, timeout, pcr, root, min_cpus, min_memory, max_age, allow_missing_public_key, as_json):
    """Fetch an attestation document from the enclave and verify it."""
    verifier = _build_verifier(pcr, root, min_cpus, min_memory, max_age, allow_missing_public_key)
    try:
        document_bytes = fetch_attestation(
            endpoint=endpoint,
            timeout=timeout,
            encoding=ENCODING_HEX if is_hex else ENCODING_RAW,
        )
    except AttestationError as e:
        click.echo(f"❌ Fetch failed [{e.code}]: {e}", err=True)
        sys.exit(1)
    _report(verifier, document_bytes, as_json)


@main.command()
@click.option("--key", "key_path", type=click.Path(exists=True, dir_okay=False), required=True,
              help="Leaf signing key (PEM, unencrypted)")
@click.option("--cert", "cert_path", type=click.Path(exists=True, dir_okay=False), required=True,
              help="Leaf certificate (DER or PEM)")
@click.option("--ca", "ca_paths", type=click.Path(exists=True, dir_okay=False), multiple=True,
              help="CA bundle certificate (repeatable, embedded in the given order)")
@click.option("--public-key", default=None, help="Enclave public key to bind (hex)")
@click.option("--cpus", type=click.IntRange(min=0), default=2, show_default=True)
@click.option("--memory", type=click.IntRange(min=0), default=4096, show_default=True)
@click.option("--output", "-o", type=click.Path(dir_okay=False), required=True)
@click.option("--hex", "is_hex", is_flag=True, default=False, help="Write hex text instead of raw bytes")
def mock(key_path, cert_path, ca_paths, public_key, cpus, memory, output, is_hex):
    """Build a signed test attestation document (NOT a real Nitro attestation)."""
    with open(key_path, "rb") as f:
        signing_key = load_pem_private_key(f.read(), password=None)

    leaf = config.read_certificate_file(cert_path)
    bundle = [config.read_certificate_file(path).public_bytes(Encoding.DER) for path in ca_paths]

    document_bytes = build_attestation_document(
        signing_key=signing_key,
        leaf_cert_der=leaf.public_bytes(Encoding.DER),
        ca_bundle=bundle,
        user_data=resource_user_data(cpus, memory),
        public_key=bytes.fromhex(public_key) if public_key else None,
    )

    if is_hex:
        with open(output, "w") as f:
            f.write(document_bytes.hex())
    else:
        with open(output, "wb") as f:
            f.write(document_bytes)

    click.echo(f"✅ Mock attestation written to {output} ({len(document_bytes)} bytes)")


if __name__ == "__main__":
    main()
