"""Update server settings and selection of a newer release."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from .version import NUMBER, arch

RELEASE_PUBLIC_KEY_BASE64 = "RWRNqGKtBXftKTKPpBPGDMe8jHLnFQ0EdRy8Wg0apV6vTDFLAODD83G4"
UPDATE_SERVER_HOST = "download.wireguard.com"
UPDATE_SERVER_PORT = 443
UPDATE_SERVER_USE_HTTPS = True
LATEST_VERSION_PATH = "/windows-client/latest.sig"
MSI_PATH_TEMPLATE = "/windows-client/{}"
MSI_ARCH_PREFIX_TEMPLATE = "wireguard-{}-"
MSI_SUFFIX = ".msi"

_MAX_VERSION_LENGTH = 128
_MAX_VERSION_PART = 0xFFFF


class VersionError(ValueError):
    """Raised for malformed version strings."""


@dataclass(frozen=True)
class UpdateFound:
    """A release file newer than the running client, with its expected hash."""

    name: str
    hash: bytes


def _parse_part(part: str) -> int:
    if not part:
        raise VersionError("Empty version part")
    if not all(c in "0123456789" for c in part):
        raise VersionError("Invalid version integer part")
    value = int(part)
    if value > _MAX_VERSION_PART:
        raise VersionError("Invalid version integer part")
    return value


def version_newer_than_us(candidate: str, ours: str = NUMBER) -> bool:
    """Whether the dotted version ``candidate`` is newer than ``ours``."""
    candidate_parts = candidate.split(".")
    our_parts = ours.split(".")
    for i in range(max(len(candidate_parts), len(our_parts))):
        c = _parse_part(candidate_parts[i]) if i < len(candidate_parts) else 0
        o = _parse_part(our_parts[i]) if i < len(our_parts) else 0
        if c != o:
            return c > o
    return False


def find_candidate(
    candidates: Mapping[str, bytes], machine: str | None = None, ours: str = NUMBER
) -> UpdateFound | None:
    """Pick the first installer for this architecture that is newer than ``ours``."""
    prefix = MSI_ARCH_PREFIX_TEMPLATE.format(arch(machine))
    for name, digest in candidates.items():
        if not (name.startswith(prefix) and name.endswith(MSI_SUFFIX)):
            continue
        version = name.removeprefix(prefix).removesuffix(MSI_SUFFIX)
        if len(version) > _MAX_VERSION_LENGTH:
            raise VersionError("Version length is too long")
        if version_newer_than_us(version, ours):
            return UpdateFound(name, digest)
    return None