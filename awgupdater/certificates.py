"""Signer names and policies read from a PE file's embedded Authenticode signature.

These checks are easily by-passed and do not serve security purposes.
"""

from __future__ import annotations

import os
import struct
import sys

from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import NameOID

OFFICIAL_COMMON_NAME = "Privacy Technologies OU"
EV_POLICY_OID = "2.23.140.1.3"
POLICY_EXTENSION_OID = "2.5.29.32"

_PE32_MAGIC = 0x10B
_PE32_PLUS_MAGIC = 0x20B
_SECURITY_DIRECTORY = 4
_WIN_CERT_TYPE_PKCS_SIGNED_DATA = 0x0002

_DISPLAY_NAME_OIDS = (
    NameOID.COMMON_NAME,
    NameOID.ORGANIZATIONAL_UNIT_NAME,
    NameOID.ORGANIZATION_NAME,
    NameOID.EMAIL_ADDRESS,
)


class CertificateError(Exception):
    """Raised when a file carries no usable embedded signature."""


def _security_blob(data: bytes) -> bytes:
    """Return the PKCS#7 blob from a PE image's certificate table."""
    try:
        if data[:2] != b"MZ":
            raise CertificateError("File is not a PE image")
        (pe_offset,) = struct.unpack_from("<I", data, 0x3C)
        if data[pe_offset : pe_offset + 4] != b"PE\0\0":
            raise CertificateError("File is not a PE image")
        optional = pe_offset + 24
        (magic,) = struct.unpack_from("<H", data, optional)
        if magic == _PE32_MAGIC:
            count_offset, directory_offset = 92, 96
        elif magic == _PE32_PLUS_MAGIC:
            count_offset, directory_offset = 108, 112
        else:
            raise CertificateError("Unknown PE optional header")
        (count,) = struct.unpack_from("<I", data, optional + count_offset)
        if count <= _SECURITY_DIRECTORY:
            raise CertificateError("File has no embedded signature")
        start, size = struct.unpack_from(
            "<II", data, optional + directory_offset + 8 * _SECURITY_DIRECTORY
        )
        if start == 0 or size == 0:
            raise CertificateError("File has no embedded signature")
        end = start + size
        if end > len(data):
            raise CertificateError("Certificate table lies outside the file")
        offset = start
        while offset + 8 <= end:
            length, _revision, kind = struct.unpack_from("<IHH", data, offset)
            if length < 8 or offset + length > end:
                raise CertificateError("Malformed certificate table")
            if kind == _WIN_CERT_TYPE_PKCS_SIGNED_DATA:
                return _trim_der(data[offset + 8 : offset + length])
            offset += (length + 7) & ~7
    except struct.error:
        raise CertificateError("Truncated PE image") from None
    raise CertificateError("File has no embedded signature")


def _trim_der(blob: bytes) -> bytes:
    """Cut trailing padding after the outer DER sequence."""
    if len(blob) < 2 or blob[0] != 0x30:
        raise CertificateError("Embedded signature is not DER encoded")
    first = blob[1]
    if first < 0x80:
        total = 2 + first
    else:
        width = first & 0x7F
        if width == 0 or len(blob) < 2 + width:
            raise CertificateError("Embedded signature is not DER encoded")
        total = 2 + width + int.from_bytes(blob[2 : 2 + width], "big")
    if total > len(blob):
        raise CertificateError("Embedded signature is truncated")
    return blob[:total]


def _embedded_certificates(path: str | os.PathLike[str]) -> list[x509.Certificate]:
    with open(path, "rb") as handle:
        data = handle.read()
    blob = _security_blob(data)
    try:
        return pkcs7.load_der_pkcs7_certificates(blob)
    except ValueError as exc:
        raise CertificateError(f"Embedded signature cannot be decoded: {exc}") from None


def _display_name(certificate: x509.Certificate) -> str:
    for oid in _DISPLAY_NAME_OIDS:
        attributes = certificate.subject.get_attributes_for_oid(oid)
        if attributes:
            value = attributes[0].value
            return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
    return ""


def extract_certificate_names(path: str | os.PathLike[str]) -> list[str]:
    """Display names of every certificate in the file's embedded signature."""
    names = [name for name in map(_display_name, _embedded_certificates(path)) if name]
    if not names:
        raise CertificateError("No certificate names found")
    return names


def extract_certificate_policies(path: str | os.PathLike[str], oid: str) -> list[str]:
    """Policy identifiers from the extension ``oid`` of each embedded certificate."""
    try:
        extension_oid = x509.ObjectIdentifier(oid)
    except ValueError:
        raise CertificateError(f"Invalid object identifier {oid!r}") from None
    policies: list[str] = []
    for certificate in _embedded_certificates(path):
        try:
            extension = certificate.extensions.get_extension_for_oid(extension_oid)
        except x509.ExtensionNotFound:
            continue
        except ValueError as exc:
            raise CertificateError(f"Malformed certificate extensions: {exc}") from None
        value = extension.value
        if not isinstance(value, x509.CertificatePolicies):
            raise CertificateError(f"Extension {oid} does not hold certificate policies")
        policies.extend(info.policy_identifier.dotted_string for info in value)
    if not policies:
        raise CertificateError("No certificate policies found")
    return policies


def is_running_official_version(path: str | os.PathLike[str] | None = None) -> bool:
    """Whether the executable is signed by the official publisher."""
    try:
        names = extract_certificate_names(path if path is not None else sys.executable)
    except (OSError, CertificateError):
        return False
    return OFFICIAL_COMMON_NAME in names


def is_running_ev_signed(path: str | os.PathLike[str] | None = None) -> bool:
    """Whether the executable carries an extended-validation code signature."""
    try:
        policies = extract_certificate_policies(
            path if path is not None else sys.executable, POLICY_EXTENSION_OID
        )
    except (OSError, CertificateError):
        return False
    return EV_POLICY_OID in policies