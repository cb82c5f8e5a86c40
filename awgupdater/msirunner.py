"""Private temporary files for downloaded installers, and running msiexec."""

from __future__ import annotations

import os
import secrets
import subprocess
import tempfile
from typing import BinaryIO


class TempFile:
    """A freshly created file held open for writing until its path is needed."""

    def __init__(self, path: str, file: BinaryIO) -> None:
        self.path = path
        self._file: BinaryIO | None = file

    @property
    def name(self) -> str:
        return self.path

    def write(self, data: bytes) -> int:
        """Append ``data`` to the file."""
        if self._file is None:
            raise ValueError("Temporary file is already closed")
        return self._file.write(data)

    def exclusive_path(self) -> str:
        """Close the file so another program may open it, and return its path."""
        if self._file is not None:
            self._file.close()
            self._file = None
        return self.path

    def delete(self) -> None:
        """Close the file if open and remove it."""
        if self._file is not None:
            self._file.close()
            self._file = None
        os.remove(self.path)

    def __enter__(self) -> TempFile:
        return self

    def __exit__(self, *exc_info: object) -> None:
        try:
            self.delete()
        except FileNotFoundError:
            pass


def _windows_directory() -> str:
    return os.environ.get("SystemRoot") or os.environ.get("WINDIR") or r"C:\Windows"


def _default_temp_directory() -> str:
    windir = os.environ.get("SystemRoot") or os.environ.get("WINDIR")
    if windir:
        return os.path.join(windir, "Temp")
    return tempfile.gettempdir()


def msi_temp_file(directory: str | os.PathLike[str] | None = None) -> TempFile:
    """Create a new file with a random name that only the owner may access."""
    name = secrets.token_bytes(32).hex()
    if directory is None:
        directory = _default_temp_directory()
    path = os.path.join(directory, name)
    flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)
    fd = os.open(path, flags, 0o600)
    return TempFile(path, os.fdopen(fd, "wb"))


def run_msi(msi: TempFile, system_directory: str | os.PathLike[str] | None = None) -> None:
    """Install ``msi`` with msiexec; raise CalledProcessError if it fails."""
    if system_directory is None:
        system_directory = os.path.join(_windows_directory(), "System32")
    msi_path = msi.exclusive_path()
    msiexec = os.path.join(system_directory, "msiexec.exe")
    args = [msiexec, "/qb!-", "/i", os.path.basename(msi_path)]
    result = subprocess.run(
        args,
        cwd=os.path.dirname(msi_path),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        check=False,
    )
    if result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, args)