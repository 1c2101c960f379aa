"""
UDP query protocol: wire codec and per-server prober.
"""
from server_scout.services.query.codec import (
    ServerInfo,
    PlayerInfo,
    read_cstring,
    build_master_query,
    parse_master_response,
    parse_info,
    parse_players,
    INFO_REQUEST,
    PLAYER_REQUEST,
)
from server_scout.services.query.prober import ServerProber, ProbeResult, split_address, udp_request

__all__ = [
    "ServerInfo",
    "PlayerInfo",
    "read_cstring",
    "build_master_query",
    "parse_master_response",
    "parse_info",
    "parse_players",
    "INFO_REQUEST",
    "PLAYER_REQUEST",
    "ServerProber",
    "ProbeResult",
    "split_address",
    "udp_request",
]
