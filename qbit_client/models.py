"""
Typed records decoded from qBittorrent Web API responses.

Field names follow Python conventions; the wire names are kept as aliases so
records validate straight from the JSON the API returns. Fields the server
leaves out take zero values, which matters for incremental sync updates
where only changed fields are sent.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class TorrentInfo(_Record):
    """One torrent as returned by /api/v2/torrents/info."""

    added_on: int = 0
    amount_left: int = 0
    auto_tmm: bool = False
    availability: float = 0.0
    category: str = ""
    completed: int = 0
    completion_on: int = 0
    content_path: str = ""
    dl_limit: int = 0
    dl_speed: int = Field(0, alias="dlspeed")
    downloaded: int = 0
    downloaded_session: int = 0
    eta: int = 0
    first_last_piece_prio: bool = Field(False, alias="f_l_piece_prio")
    force_start: bool = False
    hash: str = ""
    is_private: bool = Field(False, alias="isPrivate")
    last_activity: int = 0
    magnet_uri: str = ""
    max_ratio: float = 0.0
    max_seeding_time: int = 0
    name: str = ""
    num_complete: int = 0
    num_incomplete: int = 0
    num_leechs: int = 0
    num_seeds: int = 0
    priority: int = 0
    progress: float = 0.0
    ratio: float = 0.0
    ratio_limit: float = 0.0
    save_path: str = ""
    seeding_time: int = 0
    seeding_time_limit: int = 0
    seen_complete: int = 0
    sequential_download: bool = Field(False, alias="seq_dl")
    size: int = 0
    state: str = ""
    super_seeding: bool = False
    tags: list[str] = Field(default_factory=list)
    time_active: int = 0
    total_size: int = 0
    tracker: str = ""
    up_limit: int = 0
    uploaded: int = 0
    uploaded_session: int = 0
    up_speed: int = Field(0, alias="upspeed")

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> list[str]:
        # The Web UI joins tags with ", ", so each item is trimmed rather
        # than kept exactly as split on ",". Anything that is not a string
        # (missing, null, garbage) is treated as "no tags".
        if isinstance(value, list):
            return value
        if not isinstance(value, str) or value == "":
            return []
        return [tag.strip() for tag in value.split(",")]


class TrackerInfo(_Record):
    """One tracker entry from /api/v2/torrents/trackers."""

    url: str = ""
    status: int = 0
    tier: int = 0
    num_peers: int = 0
    msg: str = ""


class ServerState(_Record):
    """Global transfer and disk statistics carried by a maindata snapshot."""

    alltime_dl: int = 0
    alltime_ul: int = 0
    average_time_queue: int = 0
    connection_status: str = ""
    dht_nodes: int = 0
    dl_info_data: int = 0
    dl_info_speed: int = 0
    dl_rate_limit: int = 0
    free_space_on_disk: int = 0
    global_ratio: str = ""
    queued_io_jobs: int = 0
    queueing: bool = False
    read_cache_hits: str = ""
    read_cache_overload: str = ""
    refresh_interval: int = 0
    total_buffers_size: int = 0
    total_peer_connections: int = 0
    total_queued_size: int = 0
    total_wasted_session: int = 0
    up_info_data: int = 0
    up_info_speed: int = 0
    up_rate_limit: int = 0
    use_alt_speed_limits: bool = False
    use_subcategories: bool = False
    write_cache_overload: str = ""


class MainData(_Record):
    """
    Snapshot from /api/v2/sync/maindata.

    With rid=0 the server sends everything and sets full_update. With the rid
    of a previous snapshot it sends only what changed since then.
    """

    categories: dict[str, dict[str, Any]] = Field(default_factory=dict)
    categories_removed: list[str] = Field(default_factory=list)
    full_update: bool = False
    rid: int = 0
    server_state: ServerState = Field(default_factory=ServerState)
    tags: list[str] = Field(default_factory=list)
    tags_removed: list[str] = Field(default_factory=list)
    torrents: dict[str, TorrentInfo] = Field(default_factory=dict)
    torrents_removed: list[str] = Field(default_factory=list)
    # tracker URL -> info hashes announcing to it
    trackers: dict[str, list[str]] = Field(default_factory=dict)


class TorrentPeer(_Record):
    """A peer connected to a torrent."""

    client: str = ""
    connection: str = ""
    country: str = ""
    country_code: str = ""
    dl_speed: int = 0
    downloaded: int = 0
    files: str = ""
    flags: str = ""
    flags_desc: str = ""
    ip: str = ""
    peer_id_client: str = ""
    port: int = 0
    progress: float = 0.0
    relevance: float = 0.0
    uploaded: int = 0
    up_speed: int = 0


class TorrentPeers(_Record):
    """Snapshot from /api/v2/sync/torrentPeers, keyed by "ip:port"."""

    full_update: bool = False
    peers: dict[str, TorrentPeer] = Field(default_factory=dict)
    peers_removed: list[str] = Field(default_factory=list)
    rid: int = 0
    show_flags: bool = False


TORRENT_LIST = TypeAdapter(list[TorrentInfo])
TRACKER_LIST = TypeAdapter(list[TrackerInfo])
TAG_LIST = TypeAdapter(list[str])
