import base64
import hashlib
import os
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from awgupdater.downloader import DownloadProgress, Updater
from awgupdater.signify import SignifyError
from awgupdater.versions import UpdateFound

KEY_ID = b"\x01\x02\x03\x04\x05\x06\x07\x08"
MSI_NAME = "wireguard-amd64-9.9.9.msi"
PAYLOAD = b"MSI installer payload " * 5000


class _Handler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def do_GET(self):
        self.server.paths.append(self.path)
        body = self.server.routes.get(self.path)
        if body is None:
            self.send_response(404)
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.routes = {}
    httpd.paths = []
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield httpd
    httpd.shutdown()
    httpd.server_close()


@pytest.fixture
def signing_key():
    return Ed25519PrivateKey.generate()


def _public_key_base64(private_key):
    raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return base64.b64encode(b"Ed" + KEY_ID + raw).decode()


def _signed_list(private_key, entries):
    body = "".join(f"{digest.hex()}  {name}\n" for name, digest in entries.items()).encode()
    signature = base64.b64encode(b"Ed" + KEY_ID + private_key.sign(body))
    return b"untrusted comment: signature from test key\n" + signature + b"\n" + body


def _digest(data):
    return hashlib.blake2b(data, digest_size=32).digest()


def _publish(server, private_key, entries, files):
    server.routes["/windows-client/latest.sig"] = _signed_list(private_key, entries)
    for name, data in files.items():
        server.routes[f"/windows-client/{name}"] = data


def _updater(server, signing_key, tmp_path, **overrides):
    options = dict(
        user_agent="AmneziaWG/test",
        host="127.0.0.1",
        port=server.server_address[1],
        https=False,
        public_key_base64=_public_key_base64(signing_key),
        machine="amd64",
        current_version="1.0.2",
        temp_directory=tmp_path,
        is_official=lambda: True,
        verify_signature=lambda path: True,
        install=lambda msi: None,
    )
    options.update(overrides)
    return Updater(**options)


def _drain(progress, timeout=10):
    items = []
    while True:
        item = progress.get(timeout=timeout)
        items.append(item)
        if item.error is not None or item.complete:
            return items


def _wait_until_empty(directory, timeout=5):
    deadline = time.monotonic() + timeout
    while os.listdir(directory) and time.monotonic() < deadline:
        time.sleep(0.02)
    return os.listdir(directory)


def test_check_for_update_finds_newer_release(server, signing_key, tmp_path):
    _publish(server, signing_key, {MSI_NAME: _digest(PAYLOAD)}, {})
    update = _updater(server, signing_key, tmp_path).check_for_update()
    assert update == UpdateFound(MSI_NAME, _digest(PAYLOAD))


def test_check_for_update_returns_none_when_not_newer(server, signing_key, tmp_path):
    _publish(server, signing_key, {"wireguard-amd64-1.0.2.msi": _digest(PAYLOAD)}, {})
    assert _updater(server, signing_key, tmp_path).check_for_update() is None


def test_check_for_update_respects_architecture(server, signing_key, tmp_path):
    _publish(server, signing_key, {MSI_NAME: _digest(PAYLOAD)}, {})
    assert _updater(server, signing_key, tmp_path, machine="arm64").check_for_update() is None


def test_unofficial_build_disables_updates(server, signing_key, tmp_path):
    updater = _updater(server, signing_key, tmp_path, is_official=lambda: False)
    with pytest.raises(RuntimeError, match="Build is not official"):
        updater.check_for_update()
    assert server.paths == []


def test_tampered_list_is_rejected(server, signing_key, tmp_path):
    _publish(server, signing_key, {MSI_NAME: _digest(PAYLOAD)}, {})
    signed = server.routes["/windows-client/latest.sig"]
    server.routes["/windows-client/latest.sig"] = signed.replace(b"9.9.9", b"9.9.8")
    with pytest.raises(SignifyError, match="Signature is invalid"):
        _updater(server, signing_key, tmp_path).check_for_update()


def test_update_downloads_verifies_and_installs(server, signing_key, tmp_path):
    _publish(server, signing_key, {MSI_NAME: _digest(PAYLOAD)}, {MSI_NAME: PAYLOAD})
    installed = []
    verified = []

    def install(msi):
        with open(msi.exclusive_path(), "rb") as handle:
            installed.append(handle.read())

    def verify(path):
        verified.append(path)
        return True

    updater = _updater(server, signing_key, tmp_path, install=install, verify_signature=verify)
    items = _drain(updater.download_verify_and_execute(0))

    assert items[0] == DownloadProgress(activity="Initializing")
    assert items[-1] == DownloadProgress(complete=True)
    assert all(item.error is None for item in items)
    activities = [item.activity for item in items if item.activity]
    assert "Checking for update" in activities
    assert "Verifying authenticode signature" in activities
    assert "Installing update" in activities
    assert max(item.bytes_downloaded for item in items) == len(PAYLOAD)
    assert any(item.bytes_total == len(PAYLOAD) for item in items)
    assert installed == [PAYLOAD]
    assert os.path.dirname(verified[0]) == str(tmp_path)
    assert _wait_until_empty(tmp_path) == []


def test_wrong_hash_is_reported(server, signing_key, tmp_path):
    _publish(server, signing_key, {MSI_NAME: _digest(b"other")}, {MSI_NAME: PAYLOAD})
    installed = []
    updater = _updater(server, signing_key, tmp_path, install=installed.append)
    items = _drain(updater.download_verify_and_execute(0))
    assert str(items[-1].error) == "The downloaded update has the wrong hash"
    assert installed == []
    assert _wait_until_empty(tmp_path) == []


def test_bad_authenticode_signature_is_reported(server, signing_key, tmp_path):
    _publish(server, signing_key, {MSI_NAME: _digest(PAYLOAD)}, {MSI_NAME: PAYLOAD})
    installed = []
    updater = _updater(
        server, signing_key, tmp_path, verify_signature=lambda path: False, install=installed.append
    )
    items = _drain(updater.download_verify_and_execute(0))
    assert "authentic authenticode signature" in str(items[-1].error)
    assert installed == []


def test_no_update_is_reported(server, signing_key, tmp_path):
    _publish(server, signing_key, {"wireguard-amd64-0.9.msi": _digest(PAYLOAD)}, {})
    items = _drain(_updater(server, signing_key, tmp_path).download_verify_and_execute(0))
    assert str(items[-1].error) == "No update was found"


def test_second_update_while_running_is_refused(server, signing_key, tmp_path):
    _publish(server, signing_key, {MSI_NAME: _digest(PAYLOAD)}, {MSI_NAME: PAYLOAD})
    started = threading.Event()
    release = threading.Event()

    def install(msi):
        started.set()
        release.wait(10)

    updater = _updater(server, signing_key, tmp_path, install=install)
    first = updater.download_verify_and_execute(0)
    assert started.wait(10)
    second = _drain(updater.download_verify_and_execute(0))
    assert second[0].activity == "Initializing"
    assert str(second[-1].error) == "An update is already in progress"
    release.set()
    assert _drain(first)[-1].complete is True