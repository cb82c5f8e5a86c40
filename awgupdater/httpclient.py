"""A small blocking HTTP(S) client with session, connection and response objects."""

from __future__ import annotations

import http.client
import ssl
import weakref
from collections.abc import Iterator

_DEFAULT_HTTP_PORT = 80
_DEFAULT_HTTPS_PORT = 443
_MAX_PORT = 0xFFFF
_MAX_LENGTH = 2**64
_CHUNK_SIZE = 64 * 1024


class HttpError(OSError):
    """Raised when a request cannot be made or its response cannot be read."""


class Session:
    """Shared settings for requests: user agent, timeout and TLS configuration."""

    def __init__(self, user_agent: str, timeout: float | None = 60.0) -> None:
        if "\0" in user_agent:
            raise HttpError("User agent contains a NUL character")
        self.user_agent = user_agent
        self.timeout = timeout
        self._closed = False
        self._tls: ssl.SSLContext | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def tls_context(self) -> ssl.SSLContext:
        """The TLS context shared by this session's secure connections."""
        if self._tls is None:
            context = ssl.create_default_context()
            context.minimum_version = ssl.TLSVersion.TLSv1_2
            self._tls = context
        return self._tls

    def connect(self, server: str, port: int = 0, https: bool = True) -> Connection:
        """Return a connection to ``server``; port 0 picks the scheme's default."""
        if self._closed:
            raise HttpError("Session is closed")
        if not server or "\0" in server:
            raise HttpError(f"Invalid server name {server!r}")
        if not 0 <= port <= _MAX_PORT:
            raise HttpError(f"Invalid port {port}")
        if port == 0:
            port = _DEFAULT_HTTPS_PORT if https else _DEFAULT_HTTP_PORT
        return Connection(self, server, port, https)

    def close(self) -> None:
        """Close the session; further connections are refused."""
        self._closed = True

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Connection:
    """A target server reached through a session."""

    def __init__(self, session: Session, server: str, port: int, https: bool) -> None:
        self.session = session
        self.server = server
        self.port = port
        self.https = https
        self._closed = False
        self._responses: weakref.WeakSet[Response] = weakref.WeakSet()

    @property
    def closed(self) -> bool:
        return self._closed

    def _open(self) -> http.client.HTTPConnection:
        if self.https:
            return http.client.HTTPSConnection(
                self.server,
                self.port,
                timeout=self.session.timeout,
                context=self.session.tls_context(),
            )
        return http.client.HTTPConnection(self.server, self.port, timeout=self.session.timeout)

    def get(self, path: str, refresh: bool = False) -> Response:
        """Send a GET request for ``path``; ``refresh`` bypasses proxy caches."""
        if self._closed:
            raise HttpError("Connection is closed")
        if self.session.closed:
            raise HttpError("Session is closed")
        if "\0" in path:
            raise HttpError("Path contains a NUL character")
        headers = {"User-Agent": self.session.user_agent}
        if refresh:
            headers["Cache-Control"] = "no-cache"
            headers["Pragma"] = "no-cache"
        link = self._open()
        try:
            link.request("GET", path, headers=headers)
            raw = link.getresponse()
        except (OSError, http.client.HTTPException) as exc:
            link.close()
            raise HttpError(f"Request to {self.server}:{self.port} failed: {exc}") from exc
        response = Response(self, link, raw)
        self._responses.add(response)
        return response

    def close(self) -> None:
        """Close the connection and every response still open on it."""
        self._closed = True
        for response in list(self._responses):
            response.close()

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Response:
    """The reply to a request, read as a stream of bytes."""

    def __init__(
        self,
        connection: Connection,
        link: http.client.HTTPConnection,
        raw: http.client.HTTPResponse,
    ) -> None:
        self.connection = connection
        self.status = raw.status
        self.reason = raw.reason
        self.headers = raw.headers
        self._link: http.client.HTTPConnection | None = link
        self._raw: http.client.HTTPResponse | None = raw

    @property
    def closed(self) -> bool:
        return self._raw is None

    def length(self) -> int:
        """The body length announced by the Content-Length header."""
        value = self.headers.get("Content-Length")
        if value is None:
            raise HttpError("Content-Length header not found")
        value = value.strip()
        if not (value.isascii() and value.isdigit()):
            raise HttpError(f"Invalid Content-Length {value!r}")
        length = int(value)
        if length >= _MAX_LENGTH:
            raise HttpError(f"Content-Length {value} is out of range")
        return length

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything if negative; b"" at the end."""
        if self._raw is None:
            raise HttpError("Response is closed")
        if size == 0:
            return b""
        try:
            return self._raw.read(None if size < 0 else size)
        except (OSError, http.client.HTTPException) as exc:
            raise HttpError(f"Reading the response failed: {exc}") from exc

    def __iter__(self) -> Iterator[bytes]:
        while chunk := self.read(_CHUNK_SIZE):
            yield chunk

    def close(self) -> None:
        """Release the response and its network connection."""
        raw, self._raw = self._raw, None
        link, self._link = self._link, None
        if raw is not None:
            raw.close()
        if link is not None:
            link.close()

    def __enter__(self) -> Response:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()