"""
Pytest configuration and shared fixtures.
"""

import json
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from qbit_client.client import QBittorrentClient

LOGIN_PATH = "/api/v2/auth/login"


# ============================================================================
# Fake qBittorrent Web API
# ============================================================================

@dataclass
class RecordedRequest:
    """A request received by the fake server."""
    method: str
    path: str
    query: dict[str, str]
    form: dict[str, Any]
    cookies: dict[str, str]
    content_type: str
    body: bytes = b""
    files: dict[str, tuple[str, bytes]] = field(default_factory=dict)


@dataclass
class Reply:
    status: int = 200
    body: Any = "Ok."
    cookies: Optional[dict[str, str]] = None


class FakeQBittorrent:
    """
    In-process stand-in for the qBittorrent Web UI.

    Replies are scripted per path: queued replies are used first, then the
    default for that path, then 404. Every request is recorded.
    """

    def __init__(self):
        self.requests: list[RecordedRequest] = []
        self._queued: dict[str, deque] = defaultdict(deque)
        self._defaults: dict[str, Reply] = {
            LOGIN_PATH: Reply(200, "Ok.", {"SID": "sid-1"}),
        }
        self.server: Optional[TestServer] = None

        # Session enforcement: off by default so replies are fully scripted
        self.enforce_session = False
        self.valid_sids: set[str] = set()
        self.logins = 0

    def expire_sessions(self) -> None:
        """Turn on session enforcement and invalidate every issued SID."""
        self.enforce_session = True
        self.valid_sids.clear()

    def reply(self, path: str, status: int = 200, body: Any = "Ok.", cookies=None) -> None:
        """Queue a one-shot reply for path."""
        self._queued[path].append(Reply(status, body, cookies))

    def set_default(self, path: str, status: int = 200, body: Any = "Ok.", cookies=None) -> None:
        self._defaults[path] = Reply(status, body, cookies)

    def requests_to(self, path: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.path == path]

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._handle)
        return app

    async def _handle(self, request: web.Request) -> web.Response:
        record = RecordedRequest(
            method=request.method,
            path=request.path,
            query=dict(request.query),
            form={},
            cookies=dict(request.cookies),
            content_type=request.content_type,
        )
        if request.content_type == "multipart/form-data":
            post = await request.post()
            for name, value in post.items():
                if isinstance(value, web.FileField):
                    record.files[name] = (value.filename, value.file.read())
                else:
                    record.form[name] = value
        else:
            record.body = await request.read()
            if request.content_type == "application/x-www-form-urlencoded":
                record.form = dict(await request.post())
        self.requests.append(record)

        if self.enforce_session:
            if request.path == LOGIN_PATH:
                self.logins += 1
                sid = f"sid-{self.logins + 1}"
                self.valid_sids.add(sid)
                response = web.Response(text="Ok.")
                response.set_cookie("SID", sid)
                return response
            if record.cookies.get("SID") not in self.valid_sids:
                return web.Response(status=403, text="Forbidden")

        if self._queued[request.path]:
            reply = self._queued[request.path].popleft()
        else:
            reply = self._defaults.get(request.path, Reply(404, "Not Found"))

        if isinstance(reply.body, (dict, list)):
            response = web.Response(
                status=reply.status,
                text=json.dumps(reply.body),
                content_type="application/json",
            )
        elif isinstance(reply.body, bytes):
            response = web.Response(
                status=reply.status,
                body=reply.body,
                content_type="application/x-bittorrent",
            )
        else:
            response = web.Response(status=reply.status, text=reply.body)

        for name, value in (reply.cookies or {}).items():
            response.set_cookie(name, value)
        return response


@pytest.fixture
async def fake_qbittorrent():
    """Start a fake qBittorrent server on a free local port."""
    fake = FakeQBittorrent()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.server = server
    yield fake
    await server.close()


@pytest.fixture
async def make_client(fake_qbittorrent):
    """Factory creating logged-in clients against the fake server."""
    clients = []

    async def _make(username: str = "testuser", password: str = "testpass", **kwargs):
        client = await QBittorrentClient.create(
            username=username,
            password=password,
            host=fake_qbittorrent.server.host,
            port=fake_qbittorrent.server.port,
            **kwargs,
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.close()


@pytest.fixture
async def qb_client(make_client):
    """A client that has logged in once (SID "sid-1")."""
    return await make_client()


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def sample_torrent_json():
    """A /torrents/info entry as qBittorrent 4.6 returns it."""
    return {
        "added_on": 1700000000,
        "amount_left": 0,
        "auto_tmm": False,
        "availability": -1,
        "category": "linux",
        "completed": 4700000000,
        "completion_on": 1700003600,
        "content_path": "/downloads/ubuntu-24.04-desktop-amd64.iso",
        "dl_limit": 0,
        "dlspeed": 0,
        "downloaded": 4700000000,
        "downloaded_session": 0,
        "eta": 8640000,
        "f_l_piece_prio": False,
        "force_start": False,
        "hash": "8a19577fb5f690970ca43a57ff1011ae202244b8",
        "isPrivate": False,
        "last_activity": 1700007200,
        "magnet_uri": "magnet:?xt=urn:btih:8a19577fb5f690970ca43a57ff1011ae202244b8",
        "max_ratio": -1,
        "max_seeding_time": -1,
        "name": "ubuntu-24.04-desktop-amd64.iso",
        "num_complete": 120,
        "num_incomplete": 4,
        "num_leechs": 1,
        "num_seeds": 0,
        "priority": 0,
        "progress": 1,
        "ratio": 0.52,
        "ratio_limit": -2,
        "save_path": "/downloads",
        "seeding_time": 3600,
        "seeding_time_limit": -2,
        "seen_complete": 1700003600,
        "seq_dl": False,
        "size": 4700000000,
        "state": "stalledUP",
        "super_seeding": False,
        "tags": "linux, iso",
        "time_active": 7200,
        "total_size": 4700000000,
        "tracker": "https://torrent.ubuntu.com/announce",
        "up_limit": 0,
        "uploaded": 2444000000,
        "uploaded_session": 0,
        "upspeed": 1024,
    }
