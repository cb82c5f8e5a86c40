# awgupdater

`awgupdater` checks for, downloads, verifies and installs new releases of a
VPN client on Windows. It covers every step of the update path:

- **Release lists** signed in the signify format: an untrusted comment line,
  a base64 Ed25519 signature line, and a list of BLAKE2b-256 file hashes.
- **Version selection**: picking the installer for the running architecture
  whose dotted version is newer than the installed one.
- **Verified downloads**: the installer is streamed to a freshly created
  temporary file while its hash is computed, and the hash is compared in
  constant time with the signed list.
- **Signature check and installation**: the file's Authenticode signature is
  checked with PowerShell's `Get-AuthenticodeSignature`, then the MSI package
  is handed to `msiexec`.

## Modules

| Module | Purpose |
| --- | --- |
| `awgupdater.version` | Client version `NUMBER`, `ProductType`, `WindowsVersion`, `os_name`, `os_is_core`, `arch` and `user_agent` |
| `awgupdater.signify` | `read_file_list` parses and verifies a signed release list; `SignifyError` |
| `awgupdater.versions` | Update server settings, `version_newer_than_us`, `find_candidate`, `UpdateFound`, `VersionError` |
| `awgupdater.certificates` | Signer names and certificate policies from a PE file's embedded signature |
| `awgupdater.msirunner` | `msi_temp_file`, `TempFile` and `run_msi` stage and install the package |
| `awgupdater.httpclient` | `Session`, `Connection` and `Response`: a small blocking HTTP(S) client |
| `awgupdater.downloader` | `Updater`, `DownloadProgress`, `check_for_update` and `download_verify_and_execute` |

## Checking a signed release list

```python
from awgupdater.signify import SignifyError, read_file_list

try:
    hashes = read_file_list(signed_bytes, public_key_base64)
except SignifyError as exc:
    print("rejected:", exc)
else:
    for name, digest in hashes.items():
        print(name, digest.hex())
```

`public_key_base64` defaults to the release key in `awgupdater.versions`.
A list is rejected when the key or signature is malformed, the key ids do
not match, the signature does not verify, a hash line is malformed, or no
hashes are present.

## Comparing versions

```python
from awgupdater.versions import find_candidate, version_newer_than_us

version_newer_than_us("1.0.3", "1.0.2")   # True
version_newer_than_us("1.0", "1.0.0")     # False: missing parts count as zero

update = find_candidate(hashes, "amd64", "1.0.2")
if update is not None:
    print("update available:", update.name)
```

Each version part must be a non-empty decimal integer that fits in 16 bits,
and a version taken from a file name may be at most 128 characters; anything
else raises `VersionError`. `find_candidate` looks for names of the form
`wireguard-<arch>-<version>.msi` and returns the first newer one it meets.

## Running an update

```python
from awgupdater.downloader import check_for_update, download_verify_and_execute

update = check_for_update()
if update is not None:
    progress = download_verify_and_execute(0)
    while True:
        step = progress.get()
        print(step)
        if step.error is not None or step.complete:
            break
```

`check_for_update` raises `RuntimeError` unless the running executable
(`sys.executable` by default) is signed by the official publisher.
`download_verify_and_execute` returns a `queue.Queue` of `DownloadProgress`
values and does its work on a background thread: initialising, checking
for an update, creating the temporary file, downloading (with byte counts),
verifying the signature and installing. The last item carries either an
`error` or `complete=True`. Only one update may run at a time per `Updater`;
a second attempt reports an error straight away. Downloads are capped at
100 MiB and the signed list at 512 KiB.

`Updater` takes keyword arguments for the server, the public key, the
machine architecture, the installed version, the temporary directory, and
callables used for the official-build check, opening a session, verifying
the signature and installing, so each step can be replaced.

## What this package does not do

- It has no command-line entry point or user interface; it is a library.
- It does not raise its own privileges: the `user_token` argument is
  accepted but the installer runs with the calling process's credentials.
- Temporary files are created with owner-only permissions, not with a
  Windows security descriptor, and are not scheduled for removal at reboot.

## Installing the test dependencies

The `test` extra pulls in pytest.