"""
PEM bundle codec.

Reading: a file of concatenated PEM certificates (what import takes and what
the published ca-bundle.crt / int-bundle.crt hold) into x509 objects.
Writing: a release's certificates back into one PEM bundle.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
from railway import ErrorCode
from railway.result import Result

from cert_trust.domain.models import Certificate

log = structlog.get_logger()


def _parse(pem_data: bytes) -> list[x509.Certificate]:
    certs = x509.load_pem_x509_certificates(pem_data)
    log.debug("pem.parsed", certificates=len(certs))
    return certs


def load_certificates(pem_data: bytes) -> Result[list[x509.Certificate]]:
    """
    Parse every certificate in a PEM bundle.

    Fails VALIDATION_ERROR when the data holds no certificate or any block
    is malformed.
    """
    return Result.from_computation(
        lambda: _parse(pem_data),
        ErrorCode.VALIDATION_ERROR,
        "Failed to parse PEM certificate bundle",
    ).ensure(
        lambda certs: len(certs) > 0,
        ErrorCode.VALIDATION_ERROR,
        "PEM bundle contains no certificates",
    )


def encode_bundle(certificates: Iterable[Certificate | x509.Certificate]) -> str:
    """Concatenate certificates as PEM, in the order given."""
    blocks = []
    for cert in certificates:
        parsed = cert.to_x509() if isinstance(cert, Certificate) else cert
        blocks.append(parsed.public_bytes(Encoding.PEM).decode("ascii"))
    return "".join(blocks)
