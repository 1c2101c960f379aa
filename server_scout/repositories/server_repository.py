"""
Server and snapshot data access.

Usage:
    repo = ServerRepository(db)
    server = repo.upsert({"ip": "1.2.3.4", "port": 27015, "name": "My server"})
    repo.add_snapshot(server.id, {"player_count": 12, "max_players": 32})
"""
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import delete

from server_scout.models import Server, ServerSnapshot, Prediction
from server_scout.repositories.base import BaseRepository
from server_scout.utils.timezone import utcnow

# Columns a probe may write; identity and bookkeeping columns are excluded
SERVER_FIELDS = (
    "name", "map", "tags", "game_dir", "game_description", "max_players",
    "password_protected", "secure", "version", "os", "server_type", "game_id",
    "country", "region",
)

SNAPSHOT_FIELDS = (
    "player_count", "max_players", "bot_count", "map", "gamemode",
    "gamemode_confidence", "is_regional", "regional_confidence", "ping_ms",
)


class ServerRepository(BaseRepository[Server]):
    """Repository for servers and their snapshots."""

    def __init__(self, db):
        super().__init__(Server, db)

    def find_by_address(self, ip: str, port: int) -> Optional[Server]:
        return self.db.query(Server).filter(
            Server.ip == ip,
            Server.port == port
        ).first()

    def upsert(self, record: Dict[str, Any], now: Optional[datetime] = None) -> Server:
        """
        Insert or update a server by (ip, port).

        Only fields present in ``record`` are written, so a probe that got a
        player list but no info reply refreshes liveness without blanking the
        name or map. ``first_seen`` is set on insert only.
        """
        now = now or utcnow()
        values = {k: record[k] for k in SERVER_FIELDS if k in record}

        server = self.find_by_address(record["ip"], record["port"])
        if server is None:
            server = self.create(
                ip=record["ip"],
                port=record["port"],
                first_seen=now,
                last_seen=now,
                is_active=True,
                consecutive_failures=0,
                name=values.pop("name", None) or "Unknown",
                **values,
            )
            self.db.flush()
            return server

        self.apply(server, values)
        server.last_seen = now
        server.is_active = True
        server.consecutive_failures = 0
        self.db.flush()
        return server

    def mark_seen(
        self,
        ip: str,
        port: int,
        offline_after: int,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Record a failed probe for a known server.

        Touches ``last_seen`` and the failure counter only. Once
        ``offline_after`` consecutive probes have failed, ``is_active`` is
        flipped to False: the server stops counting as live but its row and
        descriptive fields (name, map, tags) stay as they were.

        Returns:
            False if the server was never recorded
        """
        server = self.find_by_address(ip, port)
        if server is None:
            return False

        server.last_seen = now or utcnow()
        server.consecutive_failures = (server.consecutive_failures or 0) + 1
        if server.consecutive_failures >= offline_after:
            server.is_active = False
        self.db.flush()
        return True

    def add_snapshot(self, server_id: int, snapshot: Dict[str, Any]) -> ServerSnapshot:
        values = {k: snapshot[k] for k in SNAPSHOT_FIELDS if k in snapshot}
        row = ServerSnapshot(
            server_id=server_id,
            snapshot_time=snapshot.get("snapshot_time") or utcnow(),
            **values,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def purge_snapshots(self, before: datetime) -> int:
        result = self.db.execute(
            delete(ServerSnapshot).where(ServerSnapshot.snapshot_time < before)
        )
        return result.rowcount or 0

    def texts(self, limit: Optional[int] = None) -> List[Tuple[str, str, str]]:
        """(name, tags, map) for every named server, oldest first."""
        query = self.db.query(Server.name, Server.tags, Server.map).filter(
            Server.name.isnot(None)
        ).order_by(Server.id)
        if limit:
            query = query.limit(limit)
        return [(name or "", tags or "", map_name or "") for name, tags, map_name in query.all()]

    def regional_addresses(self) -> List[str]:
        """Addresses whose current regional prediction is positive."""
        rows = self.db.query(Server.ip, Server.port).join(
            Prediction, Prediction.server_id == Server.id
        ).filter(
            Prediction.kind == "regional",
            Prediction.label == "true"
        ).all()
        return [f"{ip}:{port}" for ip, port in rows]
