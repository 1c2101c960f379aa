"""
Player profile data access.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any

from server_scout.models import Player
from server_scout.repositories.base import BaseRepository
from server_scout.utils.timezone import utcnow

PLAYER_FIELDS = (
    "username", "profile_url", "country", "creation_date", "avatar_url",
    "owns_game", "total_games",
)


class PlayerRepository(BaseRepository[Player]):
    """Repository for enriched player profiles."""

    def __init__(self, db):
        super().__init__(Player, db)

    def find_by_steam_id(self, steam_id: str) -> Optional[Player]:
        return self.db.query(Player).filter(Player.steam_id == steam_id).first()

    def upsert(self, profile: Dict[str, Any], now: Optional[datetime] = None) -> Player:
        """
        Insert or refresh a player by steam id.

        ``steam_id`` and ``first_seen`` never change after insert; every
        upsert stamps ``last_updated``.
        """
        now = now or utcnow()
        steam_id = str(profile["steam_id"])
        values = {k: profile[k] for k in PLAYER_FIELDS if k in profile}

        player = self.find_by_steam_id(steam_id)
        if player is None:
            player = self.create(steam_id=steam_id, first_seen=now, last_updated=now, **values)
        else:
            self.apply(player, values)
            player.last_updated = now

        self.db.flush()
        return player

    def last_updated(self, steam_id: str) -> Optional[datetime]:
        row = self.db.query(Player.last_updated).filter(Player.steam_id == steam_id).first()
        return row[0] if row else None

    def find_stale(self, before: datetime, limit: int = 1000) -> List[str]:
        """Steam ids not refreshed since ``before``, oldest first."""
        rows = self.db.query(Player.steam_id).filter(
            Player.last_updated < before
        ).order_by(Player.last_updated.asc()).limit(limit).all()
        return [steam_id for (steam_id,) in rows]
