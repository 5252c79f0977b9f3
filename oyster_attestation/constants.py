"""
Oyster Attestation Constants

Wire-format identifiers (COSE / CBOR), the pinned AWS Nitro root, and
default policy values shared across the verifier.
"""

from typing import Dict

# =============================================================================
# TRUST LEVELS (reported by verify_attestation_full)
# =============================================================================

TRUST_LEVEL_FULL_NITRO = "full_nitro"
TRUST_LEVEL_UNTRUSTED_ROOT = "untrusted_root"

# =============================================================================
# COSE / CBOR
# =============================================================================

# CBOR tag 18 = COSE_Sign1 (RFC 9052)
COSE_SIGN1_TAG = 18

# Context label of the Sig_structure for single-signer messages
COSE_SIGN1_CONTEXT = "Signature1"

# Protected header label carrying the algorithm identifier
COSE_HEADER_ALG = 1

# COSE algorithm identifiers accepted in the protected header
COSE_ALG_ES256 = -7
COSE_ALG_ES384 = -35
COSE_ALG_EDDSA = -8
COSE_ALG_PS256 = -37
COSE_ALG_PS384 = -38
COSE_ALG_PS512 = -39
COSE_ALG_RS256 = -257
COSE_ALG_RS384 = -258
COSE_ALG_RS512 = -259

COSE_ALGORITHM_NAMES: Dict[int, str] = {
    COSE_ALG_ES256: "ES256",
    COSE_ALG_ES384: "ES384",
    COSE_ALG_EDDSA: "EdDSA",
    COSE_ALG_PS256: "PS256",
    COSE_ALG_PS384: "PS384",
    COSE_ALG_PS512: "PS512",
    COSE_ALG_RS256: "RS256",
    COSE_ALG_RS384: "RS384",
    COSE_ALG_RS512: "RS512",
}

COSE_ALGORITHM_IDS: Dict[str, int] = {name: alg for alg, name in COSE_ALGORITHM_NAMES.items()}

# =============================================================================
# ATTESTATION DOCUMENT
# =============================================================================

# Upper bound on path length when searching for a chain to the trusted root
MAX_CHAIN_DEPTH = 8

# Upper bound on cabundle entries; Nitro ships 4 or 5
MAX_CABUNDLE_LENGTH = 16

# =============================================================================
# PINNED VALUES
# =============================================================================

# Amazon Nitro root certificate (DER format)
# Source: https://aws-nitro-enclaves.amazonaws.com/AWS_NitroEnclaves_Root-G1.zip
# Certificate valid: 2019-10-28 to 2049-10-28
# Size: 533 bytes
NITRO_ROOT_CERT_DER: bytes = bytes.fromhex(
    "3082021130820196a003020102021100f93175681b90afe11d46ccb4e4e7f856"
    "300a06082a8648ce3d0403033049310b3009060355040613025553310f300d06"
    "0355040a0c06416d617a6f6e310c300a060355040b0c03415753311b30190603"
    "5504030c126177732e6e6974726f2d656e636c61766573301e170d3139313032"
    "383133323830355a170d3439313032383134323830355a3049310b3009060355"
    "040613025553310f300d060355040a0c06416d617a6f6e310c300a060355040b"
    "0c03415753311b301906035504030c126177732e6e6974726f2d656e636c6176"
    "65733076301006072a8648ce3d020106052b8104002203620004fc0254eba608"
    "c1f36870e29ada90be46383292736e894bfff672d989444b5051e534a4b1f6db"
    "e3c0bc581a32b7b176070ede12d69a3fea211b66e752cf7dd1dd095f6f1370f4"
    "170843d9dc100121e4cf63012809664487c9796284304dc53ff4a3423040300f"
    "0603551d130101ff040530030101ff301d0603551d0e041604149025b50dd905"
    "47e796c396fa729dcf99a9df4b96300e0603551d0f0101ff040403020186300a"
    "06082a8648ce3d0403030369003066023100a37f2f91a1c9bd5ee7b8627c1698"
    "d255038e1f0343f95b63a9628c3d39809545a11ebcbf2e3b55d8aeee71b4c3d6"
    "adf3023100a2f39b1605b27028a5dd4ba069b5016e65b4fbde8fe0061d6a5319"
    "7f9cdaf5d943bc61fc2beb03cb6fee8d2302f3dff6"
)

# =============================================================================
# POLICY DEFAULTS
# =============================================================================

DEFAULT_MAX_AGE_SECONDS = 300
DEFAULT_FETCH_TIMEOUT_SECONDS = 5
DEFAULT_ATTESTATION_ENDPOINT = "http://127.0.0.1:1300/attestation/raw"
