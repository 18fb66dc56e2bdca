"""
qBittorrent Web API client.
Typed operations over the /api/v2 endpoints, sent through a dispatcher that
keeps the session alive.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator, Callable, Iterable, Optional, TypeVar, Union

import aiohttp
from pydantic import ValidationError

from .dispatcher import (
    FORM_CONTENT_TYPE,
    AiohttpTransport,
    Authenticator,
    Credentials,
    RequestDispatcher,
    Response,
    encode_form,
)
from .exceptions import ConfigurationError, DecodeError
from .models import (
    TAG_LIST,
    TORRENT_LIST,
    TRACKER_LIST,
    MainData,
    TorrentInfo,
    TorrentPeers,
    TrackerInfo,
)
from .session import SessionStore

if TYPE_CHECKING:
    from .config import ClientSettings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v2"

T = TypeVar("T")


def _bool(value: bool) -> str:
    return "true" if value else "false"


def join_values(values: Union[str, Iterable[str]], separator: str) -> str:
    """Join a sequence for the API; a single string is passed through."""
    if isinstance(values, str):
        return values
    return separator.join(values)


def _decode(validate: Callable[[bytes], T], response: Response, what: str) -> T:
    try:
        return validate(response.body)
    except ValidationError as e:
        raise DecodeError(
            f"Failed to decode {what} response",
            f"{e.error_count()} error(s), first: {e.errors()[0]['msg']}",
        ) from e


@dataclass
class TorrentsInfoParams:
    """Optional filters for /torrents/info. Fields left as None are not sent."""
    filter: Optional[str] = None
    category: Optional[str] = None
    tag: Optional[str] = None
    sort: Optional[str] = None
    reverse: bool = False
    limit: Optional[int] = None
    offset: Optional[int] = None
    hashes: list[str] = field(default_factory=list)

    def to_query(self) -> dict[str, str]:
        query = {}
        if self.filter is not None:
            query["filter"] = self.filter
        if self.category is not None:
            query["category"] = self.category
        if self.tag is not None:
            query["tag"] = self.tag
        if self.sort is not None:
            query["sort"] = self.sort
        if self.reverse:
            query["reverse"] = "true"
        if self.limit is not None and self.limit > 0:
            query["limit"] = str(self.limit)
        if self.offset:
            query["offset"] = str(self.offset)
        if self.hashes:
            query["hashes"] = "|".join(self.hashes)
        return query


@dataclass
class AddTorrentOptions:
    """
    Options for /torrents/add. Fields left as None are not sent and the
    server default applies. Hash checking is skipped unless asked for.
    """
    save_path: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[list[str]] = None
    start_paused: Optional[bool] = None
    auto_tmm: Optional[bool] = None
    skip_checking: Optional[bool] = True

    def to_fields(self) -> dict[str, str]:
        fields = {}
        if self.skip_checking is not None:
            fields["skip_checking"] = _bool(self.skip_checking)
        if self.save_path is not None:
            fields["savepath"] = self.save_path
        if self.category is not None:
            fields["category"] = self.category
        if self.tags is not None:
            fields["tags"] = ",".join(self.tags)
        if self.start_paused is not None:
            fields["paused"] = _bool(self.start_paused)
        if self.auto_tmm is not None:
            fields["autoTMM"] = _bool(self.auto_tmm)
        return fields


class _BufferWriter:
    """Collects the bytes an aiohttp payload writes."""

    def __init__(self):
        self.buffer = bytearray()

    async def write(self, chunk: bytes) -> None:
        self.buffer.extend(chunk)


async def encode_multipart(form: aiohttp.FormData) -> tuple[bytes, str]:
    """Serialize a FormData into a multipart body and its content type."""
    payload = form()
    writer = _BufferWriter()
    await payload.write(writer)
    return bytes(writer.buffer), payload.content_type


class QBittorrentClient:
    """
    Client for the qBittorrent Web API.

    Construct with create() (or use as an async context manager) to log in
    up front. Both username and password empty means the server is expected
    to skip authentication for this client.

    API Documentation: https://github.com/qbittorrent/qBittorrent/wiki/WebUI-API-(qBittorrent-4.1)
    """

    def __init__(
        self,
        username: str = "",
        password: str = "",
        host: str = "localhost",
        port: Union[int, str] = 8080,
        use_https: bool = False,
        verify_ssl: bool = True,
        timeout: Optional[float] = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if not host:
            raise ConfigurationError("host must not be empty")
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid port: {port!r}") from None
        if not 0 < port < 65536:
            raise ConfigurationError(f"Invalid port: {port}")

        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_https = use_https

        protocol = "https" if use_https else "http"
        self.base_url = f"{protocol}://{host}:{port}"

        self._store = SessionStore()
        self._transport = AiohttpTransport(
            self.base_url,
            session=session,
            timeout=timeout,
            verify_ssl=verify_ssl,
        )
        self._authenticator = Authenticator(
            self._transport,
            self._store,
            Credentials(username, password),
        )
        self._dispatcher = RequestDispatcher(self._transport, self._store, self._authenticator)

    @classmethod
    async def create(cls, *args, **kwargs) -> "QBittorrentClient":
        """Build a client and log in when credentials are given."""
        client = cls(*args, **kwargs)
        return await client.connect()

    @classmethod
    async def from_settings(
        cls,
        settings: "ClientSettings",
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "QBittorrentClient":
        return await cls.create(
            username=settings.username,
            password=settings.password,
            host=settings.host,
            port=settings.port,
            use_https=settings.use_https,
            verify_ssl=settings.verify_ssl,
            timeout=settings.timeout,
            session=session,
        )

    async def connect(self) -> "QBittorrentClient":
        """Log in if credentials are set and no session exists yet."""
        if self.username and self.password and not self._store.get_token():
            try:
                await self.login()
            except Exception:
                await self.close()
                raise
        return self

    async def __aenter__(self) -> "QBittorrentClient":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP session (unless it was injected)."""
        await self._transport.close()

    @property
    def token(self) -> str:
        """Current session token, empty before the first login."""
        return self._store.get_token()

    async def login(self) -> None:
        """Authenticate against /auth/login and store the session cookie."""
        await self._authenticator.login()

    async def _get(self, endpoint: str, params: Optional[dict[str, str]] = None) -> Response:
        return await self._dispatcher.dispatch("GET", f"{API_PREFIX}{endpoint}", query=params)

    async def _post(self, endpoint: str, data: dict[str, str]) -> Response:
        return await self._dispatcher.dispatch(
            "POST",
            f"{API_PREFIX}{endpoint}",
            body=encode_form(data),
            content_type=FORM_CONTENT_TYPE,
        )

    # =========================================================================
    # Torrents
    # =========================================================================

    async def torrents_info(self, params: Optional[TorrentsInfoParams] = None) -> list[TorrentInfo]:
        """List torrents, optionally filtered."""
        query = params.to_query() if params else None
        response = await self._get("/torrents/info", query)
        return _decode(TORRENT_LIST.validate_json, response, "torrents/info")

    async def torrents_add(
        self,
        filename: str,
        data: bytes,
        options: Optional[AddTorrentOptions] = None,
    ) -> None:
        """Upload a .torrent file."""
        options = options or AddTorrentOptions()

        form = aiohttp.FormData()
        for name, value in options.to_fields().items():
            form.add_field(name, value)
        form.add_field(
            "torrents",
            data,
            filename=filename,
            content_type="application/x-bittorrent",
        )
        body, content_type = await encode_multipart(form)

        await self._dispatcher.dispatch(
            "POST",
            f"{API_PREFIX}/torrents/add",
            body=body,
            content_type=content_type,
        )
        logger.info(
            f"Added torrent {filename}" + (f" to category {options.category}" if options.category else ""),
            extra={"operation": "add"},
        )

    async def torrents_delete(self, infohash: str) -> None:
        """Delete a torrent together with its downloaded files."""
        await self._post("/torrents/delete", {"hashes": infohash, "deleteFiles": "true"})
        logger.info(f"Deleted torrent {infohash}", extra={"operation": "delete", "torrent_hash": infohash})

    async def torrents_export(self, infohash: str) -> bytes:
        """Return the .torrent file for a torrent."""
        response = await self._post("/torrents/export", {"hash": infohash})
        return response.body

    async def torrents_download(self, infohash: str) -> bytes:
        """Fetch the .torrent file through /torrents/file."""
        response = await self._get("/torrents/file", {"hashes": infohash})
        return response.body

    async def set_force_start(self, infohash: str, value: bool) -> None:
        await self._post("/torrents/setForceStart", {"hashes": infohash, "value": _bool(value)})
        logger.debug(f"Force start {'enabled' if value else 'disabled'} for {infohash}")

    async def torrents_trackers(self, infohash: str) -> list[TrackerInfo]:
        response = await self._get("/torrents/trackers", {"hash": infohash})
        return _decode(TRACKER_LIST.validate_json, response, "torrents/trackers")

    # =========================================================================
    # Tags
    # =========================================================================

    async def torrents_add_tags(
        self,
        hashes: Union[str, Iterable[str]],
        tags: Union[str, Iterable[str]],
    ) -> None:
        await self._post("/torrents/addTags", {
            "hashes": join_values(hashes, "|"),
            "tags": join_values(tags, ","),
        })

    async def torrents_remove_tags(
        self,
        hashes: Union[str, Iterable[str]],
        tags: Union[str, Iterable[str]],
    ) -> None:
        await self._post("/torrents/removeTags", {
            "hashes": join_values(hashes, "|"),
            "tags": join_values(tags, ","),
        })

    async def torrents_create_tags(self, tags: Union[str, Iterable[str]]) -> None:
        await self._post("/torrents/createTags", {"tags": join_values(tags, ",")})

    async def torrents_delete_tags(self, tags: Union[str, Iterable[str]]) -> None:
        await self._post("/torrents/deleteTags", {"tags": join_values(tags, ",")})

    async def torrents_get_all_tags(self) -> list[str]:
        """All tags known to the server, used or not."""
        response = await self._get("/torrents/tags")
        return _decode(TAG_LIST.validate_json, response, "torrents/tags")

    async def torrents_get_tags(self, hashes: Union[str, Iterable[str]]) -> list[str]:
        """Tags in use by the given torrents, in first-seen order."""
        torrents = await self.torrents_info(TorrentsInfoParams(hashes=[join_values(hashes, "|")]))
        seen = {}
        for torrent in torrents:
            for tag in torrent.tags:
                seen.setdefault(tag, None)
        return list(seen)

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync_maindata(self, rid: int = 0) -> MainData:
        """Snapshot of everything that changed since revision rid (0 = full)."""
        response = await self._get("/sync/maindata", {"rid": str(rid)})
        data = _decode(MainData.model_validate_json, response, "sync/maindata")
        logger.debug(
            f"maindata rid {rid} -> {data.rid} ({len(data.torrents)} torrents changed)",
            extra={"rid": data.rid},
        )
        return data

    async def sync_torrent_peers(self, infohash: str, rid: int = 0) -> TorrentPeers:
        response = await self._get("/sync/torrentPeers", {"hash": infohash, "rid": str(rid)})
        return _decode(TorrentPeers.model_validate_json, response, "sync/torrentPeers")

    async def iter_maindata(self, interval: float = 2.0, rid: int = 0) -> AsyncIterator[MainData]:
        """
        Poll maindata forever, yielding each snapshot.

        Args:
            interval: Seconds to sleep between polls
            rid: Revision to start from (0 asks for a full update)
        """
        while True:
            data = await self.sync_maindata(rid)
            yield data
            rid = data.rid
            await asyncio.sleep(interval)
