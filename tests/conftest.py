"""
Shared test fixtures and helpers for the cert-trust test suite.

Certificates are generated on the fly with cryptography's CertificateBuilder
so every test states exactly the validity window, key identifiers and AIA
it needs. EC P-256 keys keep generation fast.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import AuthorityInformationAccessOID, NameOID

from cert_trust.domain.identity import encode_serial, new_certificate
from cert_trust.domain.models import Certificate

# 2017-01-15T00:00:00Z and friends, so versions line up with 2017.1.x releases.
JAN_2017 = int(datetime(2017, 1, 15, tzinfo=UTC).timestamp())
FEB_2017 = int(datetime(2017, 2, 15, tzinfo=UTC).timestamp())
DEC_2016 = int(datetime(2016, 12, 15, tzinfo=UTC).timestamp())
DAY = 24 * 60 * 60
YEAR = 365 * DAY


def make_certificate(
    common_name: str = "Test CA",
    not_before: int = JAN_2017 - YEAR,
    not_after: int = JAN_2017 + 10 * YEAR,
    serial: int | None = None,
    include_ski: bool = True,
    ski_digest: bytes | None = None,
    aki: bytes | None = None,
    aia_url: str | None = None,
    key: ec.EllipticCurvePrivateKey | None = None,
) -> x509.Certificate:
    """Build a self-signed certificate with the requested identity and validity."""
    key = key or ec.generate_private_key(ec.SECP256R1())
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Trust"),
        ]
    )
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(serial if serial is not None else x509.random_serial_number())
        .not_valid_before(datetime.fromtimestamp(not_before, UTC))
        .not_valid_after(datetime.fromtimestamp(not_after, UTC))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
    )
    if include_ski:
        ski = (
            x509.SubjectKeyIdentifier(ski_digest)
            if ski_digest is not None
            else x509.SubjectKeyIdentifier.from_public_key(key.public_key())
        )
        builder = builder.add_extension(ski, critical=False)
    if aki is not None:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier(
                key_identifier=aki,
                authority_cert_issuer=None,
                authority_cert_serial_number=None,
            ),
            critical=False,
        )
    if aia_url is not None:
        builder = builder.add_extension(
            x509.AuthorityInformationAccess(
                [
                    x509.AccessDescription(
                        AuthorityInformationAccessOID.CA_ISSUERS,
                        x509.UniformResourceIdentifier(aia_url),
                    )
                ]
            ),
            critical=False,
        )
    return builder.sign(key, hashes.SHA256())


def to_pem(*certs: x509.Certificate) -> bytes:
    return b"".join(cert.public_bytes(Encoding.PEM) for cert in certs)


@pytest.fixture()
def cert_factory() -> Callable[..., x509.Certificate]:
    """Return make_certificate for tests that prefer fixtures over imports."""
    return make_certificate


def make_entity(serial: int | None = None, **kwargs: object) -> Certificate:
    """
    A Certificate entity for a freshly generated certificate (see make_certificate).

    CertificateBuilder only issues positive serials, so `serial` is set on the
    entity after generation and `raw` keeps the generated one.
    """
    entity = new_certificate(make_certificate(**kwargs)).value()  # type: ignore[arg-type]
    if serial is None:
        return entity
    return replace(entity, serial=encode_serial(serial))
