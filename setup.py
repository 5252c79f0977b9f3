import re
import os
import codecs
from os import path
from io import open
from setuptools import setup, find_packages


here = path.abspath(path.dirname(__file__))

with open(path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

with codecs.open(os.path.join(here, "oyster_attestation/__init__.py"), encoding="utf-8") as init_file:
    version_match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]", init_file.read(), re.M)
    if not version_match:
        raise RuntimeError("Unable to find version string in oyster_attestation/__init__.py")
    version_string = version_match.group(1)


requirements = [
    # COSE / CBOR decoding
    "cbor2>=5.4.6",

    # Signatures and X.509 path validation (verify_directly_issued_by, *_utc)
    "cryptography>=42.0.0",

    # HTTP fetch from the enclave attestation service
    "requests>=2.31.0",

    # Environment and configuration
    "python-dotenv>=1.0.0",

    # CLI
    "click>=8.1.0",
]

test_requirements = [
    "pytest>=8.0.0",
    "pytest-mock>=3.10.0",
]

setup(
    name="oyster-attestation",
    version=version_string,
    description="AWS Nitro Enclave attestation document verification",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(include=["oyster_attestation", "oyster_attestation.*"]),
    include_package_data=True,
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={
        "test": test_requirements,
    },
    entry_points={
        "console_scripts": [
            "oyster-attest=oyster_attestation.cli:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Topic :: Security :: Cryptography",
    ],
)
