"""
HTTP plumbing for the qBittorrent Web API.

AiohttpTransport sends requests, Authenticator performs the login handshake,
and RequestDispatcher ties them together: it attaches the SID cookie to every
request and, when the server answers 403, logs in again and resends the
request once.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import IO, Mapping, Optional, Union
from urllib.parse import urlencode

import aiohttp

from .exceptions import AuthError, RequestError, TransportError
from .session import SessionStore

logger = logging.getLogger(__name__)

SESSION_COOKIE = "SID"
LOGIN_PATH = "/api/v2/auth/login"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

Body = Union[bytes, bytearray, str, IO[bytes], None]


@dataclass(frozen=True)
class Credentials:
    """Web UI username and password."""
    username: str = ""
    password: str = field(default="", repr=False)

    @property
    def complete(self) -> bool:
        """True when both username and password are set."""
        return bool(self.username and self.password)


@dataclass(frozen=True)
class RequestDescriptor:
    """A request ready to be sent, with its body already buffered."""
    method: str
    path: str
    body: Optional[bytes] = None
    content_type: Optional[str] = None
    query: Optional[Mapping[str, str]] = None


@dataclass
class Response:
    """A fully read HTTP response."""
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def buffer_body(body: Body) -> Optional[bytes]:
    """Read a request body into memory so it can be sent more than once."""
    if body is None:
        return None
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if hasattr(body, "read"):
        data = body.read()
        return data.encode("utf-8") if isinstance(data, str) else bytes(data)
    raise TypeError(f"Unsupported request body type: {type(body).__name__}")


def encode_form(fields: Mapping[str, str]) -> bytes:
    """Encode fields as an application/x-www-form-urlencoded body."""
    return urlencode(fields).encode("ascii")


class AiohttpTransport:
    """
    Sends RequestDescriptors over an aiohttp ClientSession.

    A session passed in by the caller is used as is and never closed here.
    Otherwise one is created on first use with a cookie jar that stores
    nothing, so the SessionStore stays the only holder of the SID.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: Optional[float] = 30.0,
        verify_ssl: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            if not self._owns_session:
                raise TransportError("Injected HTTP session is closed")
            connector = aiohttp.TCPConnector(ssl=self.verify_ssl)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                cookie_jar=aiohttp.DummyCookieJar(),
            )
        return self._session

    async def send(self, request: RequestDescriptor, token: str = "") -> Response:
        session = await self._get_session()
        url = f"{self.base_url}{request.path}"

        headers = {}
        if request.content_type:
            headers["Content-Type"] = request.content_type
        cookies = {SESSION_COOKIE: token} if token else None

        try:
            async with session.request(
                request.method,
                url,
                params=request.query,
                data=request.body,
                headers=headers,
                cookies=cookies,
            ) as resp:
                body = await resp.read()
                return Response(
                    status=resp.status,
                    body=body,
                    headers=dict(resp.headers),
                    cookies={name: morsel.value for name, morsel in resp.cookies.items()},
                )
        except asyncio.TimeoutError as e:
            raise TransportError(f"{request.method} {request.path} timed out") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{request.method} {request.path} failed", str(e)) from e

    async def close(self) -> None:
        if not self._owns_session:
            return
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None


class Authenticator:
    """Performs the login handshake and stores the issued SID."""

    def __init__(
        self,
        transport: AiohttpTransport,
        store: SessionStore,
        credentials: Credentials,
    ):
        self.transport = transport
        self.store = store
        self.credentials = credentials

    async def login(self) -> None:
        """
        POST the credentials to the login endpoint.

        Raises:
            AuthError: the endpoint answered with anything but 200
            TransportError: the request could not be sent
        """
        request = RequestDescriptor(
            method="POST",
            path=LOGIN_PATH,
            body=encode_form({
                "username": self.credentials.username,
                "password": self.credentials.password,
            }),
            content_type=FORM_CONTENT_TYPE,
        )
        # Sent straight through the transport: a 403 here must not
        # trigger another login.
        response = await self.transport.send(request)

        if response.status != 200:
            logger.error(
                f"qBittorrent login as '{self.credentials.username}' failed "
                f"with HTTP {response.status}",
                extra={"path": LOGIN_PATH, "status": response.status},
            )
            raise AuthError(response.status, response.text)

        sid = response.cookies.get(SESSION_COOKIE)
        if sid is None:
            # Authentication may be disabled for this client's subnet
            logger.debug("Login succeeded without a session cookie")
            return

        self.store.set_token(sid)
        logger.info(f"Authenticated with qBittorrent as {self.credentials.username or '(anonymous)'}")


class RequestDispatcher:
    """
    Sends API requests with the current session and recovers from expiry.

    A 403 is taken as an expired session: the dispatcher logs in once and
    resends the original request once. Whatever the second attempt returns
    is final.
    """

    def __init__(
        self,
        transport: AiohttpTransport,
        store: SessionStore,
        authenticator: Authenticator,
    ):
        self.transport = transport
        self.store = store
        self.authenticator = authenticator

    async def dispatch(
        self,
        method: str,
        path: str,
        body: Body = None,
        content_type: Optional[str] = None,
        query: Optional[Mapping[str, str]] = None,
    ) -> Response:
        """
        Send a request and return the successful response.

        Raises:
            RequestError: non-2xx status on the definitive attempt
            AuthError: re-authentication after a 403 failed
            TransportError: the request could not be sent
        """
        request = RequestDescriptor(
            method=method.upper(),
            path=path,
            body=buffer_body(body),
            content_type=content_type,
            query=dict(query) if query else None,
        )
        return await self.send(request)

    async def send(self, request: RequestDescriptor) -> Response:
        start = time.monotonic()
        response = await self._attempt(request)

        if response.status == 403:
            logger.warning(
                f"{request.method} {request.path} returned 403, re-authenticating",
                extra={"method": request.method, "path": request.path, "status": 403},
            )
            try:
                await self.authenticator.login()
            except AuthError:
                logger.error(f"Re-authentication failed, giving up on {request.method} {request.path}")
                raise
            response = await self._attempt(request)

        duration_ms = round((time.monotonic() - start) * 1000, 1)
        if not response.ok:
            logger.debug(
                f"{request.method} {request.path} failed with HTTP {response.status}",
                extra={"method": request.method, "path": request.path,
                       "status": response.status, "duration_ms": duration_ms},
            )
            raise RequestError(response.status, response.text, request.method, request.path)

        logger.debug(
            f"{request.method} {request.path} -> {response.status} ({duration_ms}ms)",
            extra={"method": request.method, "path": request.path,
                   "status": response.status, "duration_ms": duration_ms},
        )
        return response

    async def _attempt(self, request: RequestDescriptor) -> Response:
        return await self.transport.send(request, self.store.get_token())
