"""Checking for, downloading, verifying and installing client updates."""

from __future__ import annotations

import contextlib
import dataclasses
import hashlib
import hmac
import os
import queue
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass

from .certificates import is_running_official_version
from .httpclient import Connection, HttpError, Response, Session
from .msirunner import TempFile, msi_temp_file, run_msi
from .signify import read_file_list
from .version import NUMBER
from .version import user_agent as default_user_agent
from .versions import (
    LATEST_VERSION_PATH,
    MSI_PATH_TEMPLATE,
    RELEASE_PUBLIC_KEY_BASE64,
    UPDATE_SERVER_HOST,
    UPDATE_SERVER_PORT,
    UPDATE_SERVER_USE_HTTPS,
    UpdateFound,
    find_candidate,
)

_FILE_LIST_LIMIT = 512 * 1024
_DOWNLOAD_LIMIT = 100 * 1024 * 1024
_CHUNK_SIZE = 64 * 1024
_HASH_SIZE = 32

_AUTHENTICODE_SCRIPT = (
    "if ((Get-AuthenticodeSignature -LiteralPath $env:AWG_VERIFY_PATH).Status -eq 'Valid')"
    " { exit 0 } else { exit 1 }"
)


@dataclass(frozen=True)
class DownloadProgress:
    """One step of an update: an activity, byte counts, an error or completion."""

    activity: str = ""
    bytes_downloaded: int = 0
    bytes_total: int = 0
    error: Exception | None = None
    complete: bool = False


def _system_directory() -> str:
    windir = os.environ.get("SystemRoot") or os.environ.get("WINDIR") or r"C:\Windows"
    return os.path.join(windir, "System32")


def _verify_authenticode(path: str) -> bool:
    """Whether Windows considers the file's Authenticode signature valid."""
    powershell = os.path.join(
        _system_directory(), "WindowsPowerShell", "v1.0", "powershell.exe"
    )
    env = dict(os.environ, AWG_VERIFY_PATH=path)
    try:
        result = subprocess.run(
            [powershell, "-NoProfile", "-NonInteractive", "-Command", _AUTHENTICODE_SCRIPT],
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError:
        return False
    return result.returncode == 0


def _read_limited(response: Response, limit: int) -> bytes:
    parts: list[bytes] = []
    remaining = limit
    while remaining > 0:
        chunk = response.read(min(_CHUNK_SIZE, remaining))
        if not chunk:
            break
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


class Updater:
    """Finds newer signed releases on the update server and installs them."""

    def __init__(
        self,
        *,
        user_agent: str | None = None,
        host: str = UPDATE_SERVER_HOST,
        port: int = UPDATE_SERVER_PORT,
        https: bool = UPDATE_SERVER_USE_HTTPS,
        public_key_base64: str = RELEASE_PUBLIC_KEY_BASE64,
        machine: str | None = None,
        current_version: str = NUMBER,
        temp_directory: str | os.PathLike[str] | None = None,
        is_official: Callable[[], bool] = is_running_official_version,
        session_factory: Callable[[str], Session] = Session,
        verify_signature: Callable[[str], bool] = _verify_authenticode,
        install: Callable[[TempFile], None] = run_msi,
    ) -> None:
        self.user_agent = user_agent
        self.host = host
        self.port = port
        self.https = https
        self.public_key_base64 = public_key_base64
        self.machine = machine
        self.current_version = current_version
        self.temp_directory = temp_directory
        self.is_official = is_official
        self.session_factory = session_factory
        self.verify_signature = verify_signature
        self.install = install
        self._in_progress = threading.Lock()

    def _agent(self) -> str:
        return self.user_agent if self.user_agent is not None else default_user_agent()

    def _check(
        self, keep_session: bool
    ) -> tuple[UpdateFound | None, Session | None, Connection | None]:
        if not self.is_official():
            raise RuntimeError("Build is not official, so updates are disabled")
        with contextlib.ExitStack() as stack:
            session = self.session_factory(self._agent())
            stack.callback(session.close)
            connection = session.connect(self.host, self.port, self.https)
            stack.callback(connection.close)
            with connection.get(LATEST_VERSION_PATH, True) as response:
                data = _read_limited(response, _FILE_LIST_LIMIT)
            files = read_file_list(data, self.public_key_base64)
            update = find_candidate(files, self.machine, self.current_version)
            if keep_session:
                stack.pop_all()
                return update, session, connection
        return update, None, None

    def check_for_update(self) -> UpdateFound | None:
        """Return the newer release for this machine, or None if there is none."""
        update, _, _ = self._check(False)
        return update

    def download_verify_and_execute(self, user_token: int = 0) -> queue.Queue[DownloadProgress]:
        """Start an update in the background and return its progress queue.

        The queue ends with an item carrying either an error or ``complete``.
        ``user_token`` is accepted for callers that identify the requesting
        user; the installer runs with this process's own credentials.
        """
        progress: queue.Queue[DownloadProgress] = queue.Queue()
        progress.put(DownloadProgress(activity="Initializing"))
        if not self._in_progress.acquire(blocking=False):
            progress.put(DownloadProgress(error=RuntimeError("An update is already in progress")))
            return progress
        threading.Thread(target=self._run, args=(progress,), daemon=True).start()
        return progress

    def _run(self, progress: queue.Queue[DownloadProgress]) -> None:
        try:
            self._download(progress)
        except Exception as exc:
            progress.put(DownloadProgress(error=exc))
        finally:
            self._in_progress.release()

    def _download(self, progress: queue.Queue[DownloadProgress]) -> None:
        progress.put(DownloadProgress(activity="Checking for update"))
        update, session, connection = self._check(True)
        assert session is not None and connection is not None
        with session, connection:
            if update is None:
                raise RuntimeError("No update was found")

            progress.put(DownloadProgress(activity="Creating temporary file"))
            file = msi_temp_file(self.temp_directory)
            try:
                progress.put(DownloadProgress(activity=f"Msi destination is `{file.name}`"))
                self._fetch(progress, connection, update, file)

                progress.put(DownloadProgress(activity="Verifying authenticode signature"))
                if not self.verify_signature(file.exclusive_path()):
                    raise RuntimeError(
                        "The downloaded update does not have an authentic authenticode signature"
                    )

                progress.put(DownloadProgress(activity="Installing update"))
                self.install(file)
                progress.put(DownloadProgress(complete=True))
            finally:
                with contextlib.suppress(OSError):
                    file.delete()

    def _fetch(
        self,
        progress: queue.Queue[DownloadProgress],
        connection: Connection,
        update: UpdateFound,
        file: TempFile,
    ) -> None:
        current = DownloadProgress(activity="Downloading update")
        progress.put(current)
        with connection.get(MSI_PATH_TEMPLATE.format(update.name), False) as response:
            with contextlib.suppress(HttpError):
                current = dataclasses.replace(current, bytes_total=response.length())
                progress.put(current)
            hasher = hashlib.blake2b(digest_size=_HASH_SIZE)
            remaining = _DOWNLOAD_LIMIT
            while remaining > 0:
                chunk = response.read(min(_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                current = dataclasses.replace(
                    current, bytes_downloaded=current.bytes_downloaded + len(chunk)
                )
                progress.put(current)
                hasher.update(chunk)
                file.write(chunk)
        if not hmac.compare_digest(hasher.digest(), update.hash):
            raise RuntimeError("The downloaded update has the wrong hash")


_DEFAULT_UPDATER = Updater()


def check_for_update() -> UpdateFound | None:
    """Look for a newer official release on the default update server."""
    return _DEFAULT_UPDATER.check_for_update()


def download_verify_and_execute(user_token: int = 0) -> queue.Queue[DownloadProgress]:
    """Download, verify and install the newer release from the default server."""
    return _DEFAULT_UPDATER.download_verify_and_execute(user_token)