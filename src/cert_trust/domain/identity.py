"""
Identity derivation — turn an X.509 certificate into the keys the store uses.

  ski     Subject Key Identifier extension, or SHA-1 of the subjectPublicKey
          bit string when the extension is missing (RFC 5280 §4.2.1.2, method 1)
  aki     Authority Key Identifier key id, or "" when absent
  serial  big-endian minimal encoding of |serial number|; zero is b"\\x00"

Key identifiers are lowercase hex without separators, matching what the
store has always held. No signature or chain checks happen here.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import (
    dsa,
    ec,
    ed448,
    ed25519,
    rsa,
    x448,
    x25519,
)
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.extensions import ExtensionNotFound
from cryptography.x509.oid import AuthorityInformationAccessOID
from railway import ErrorCode
from railway.result import Result

from cert_trust.domain.models import AuthorityInfoAccess, Certificate

log = structlog.get_logger()

_SUPPORTED_KEYS = (
    rsa.RSAPublicKey,
    dsa.DSAPublicKey,
    ec.EllipticCurvePublicKey,
    ed25519.Ed25519PublicKey,
    ed448.Ed448PublicKey,
    x25519.X25519PublicKey,
    x448.X448PublicKey,
)


@dataclass(frozen=True, slots=True)
class Identity:
    ski: str
    aki: str
    serial: bytes


def encode_serial(serial_number: int) -> bytes:
    """Big-endian bytes of |serial_number|; zero encodes as a single zero byte."""
    magnitude = abs(serial_number)
    if magnitude == 0:
        return b"\x00"
    return magnitude.to_bytes((magnitude.bit_length() + 7) // 8, "big")


def decode_serial(serial: bytes) -> int:
    return int.from_bytes(serial, "big")


def derive_ski(public_key: object) -> Result[str]:
    """
    Compute a key identifier from a public key.

    Returns Result.failure(UNSUPPORTED_KEY_KIND) for anything that is not a
    public key type X.509 certificates can carry.
    """
    if not isinstance(public_key, _SUPPORTED_KEYS):
        return Result.failure(
            ErrorCode.UNSUPPORTED_KEY_KIND,
            f"cannot derive a key identifier from {type(public_key).__name__}",
        )
    return Result.from_computation(
        lambda: x509.SubjectKeyIdentifier.from_public_key(public_key).digest.hex(),
        ErrorCode.UNSUPPORTED_KEY_KIND,
        f"cannot derive a key identifier from {type(public_key).__name__}",
    )


def _ski_extension(cert: x509.Certificate) -> str | None:
    """The SKI extension as hex, or None when absent or empty."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
    except (ExtensionNotFound, ValueError):
        return None
    return ext.value.digest.hex() or None


def _aki_extension(cert: x509.Certificate) -> str:
    try:
        ext = cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier)
    except (ExtensionNotFound, ValueError):
        return ""
    if ext.value.key_identifier is None:
        return ""
    return ext.value.key_identifier.hex()


def _public_key(cert: x509.Certificate) -> Result[object]:
    try:
        return Result.success(cert.public_key())
    except (UnsupportedAlgorithm, ValueError) as e:
        return Result.failure(
            ErrorCode.UNSUPPORTED_KEY_KIND,
            f"unsupported public key in certificate {cert.subject.rfc4514_string()!r}",
            e,
        )


def extract_identity(cert: x509.Certificate) -> Result[Identity]:
    """Derive (ski, aki, serial) for a certificate."""
    serial = encode_serial(cert.serial_number)
    aki = _aki_extension(cert)

    ski = _ski_extension(cert)
    if ski is not None:
        return Result.success(Identity(ski=ski, aki=aki, serial=serial))

    log.debug("identity.ski_derived", subject=cert.subject.rfc4514_string())
    return (
        _public_key(cert)
        .flat_map(derive_ski)
        .map(lambda derived: Identity(ski=derived, aki=aki, serial=serial))
    )


def new_certificate(cert: x509.Certificate) -> Result[Certificate]:
    """Build the stored Certificate entity for a parsed X.509 certificate."""
    return extract_identity(cert).map(
        lambda identity: Certificate(
            ski=identity.ski,
            aki=identity.aki,
            serial=identity.serial,
            not_before=int(cert.not_valid_before_utc.timestamp()),
            not_after=int(cert.not_valid_after_utc.timestamp()),
            raw=cert.public_bytes(Encoding.DER),
        )
    )


def new_aia(certificate: Certificate) -> AuthorityInfoAccess | None:
    """
    The first HTTP(S) CA-issuers location of a certificate, keyed by its AKI.

    Returns None when the certificate has no AKI or no such location.
    """
    if not certificate.aki:
        return None

    try:
        ext = certificate.to_x509().extensions.get_extension_for_class(
            x509.AuthorityInformationAccess
        )
    except (ExtensionNotFound, ValueError):
        return None

    for description in ext.value:
        if description.access_method != AuthorityInformationAccessOID.CA_ISSUERS:
            continue
        location = description.access_location
        if isinstance(location, x509.UniformResourceIdentifier) and location.value.startswith(
            "http"
        ):
            return AuthorityInfoAccess(ski=certificate.aki, url=location.value)
    return None
