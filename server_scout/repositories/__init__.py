"""
Repository layer for data access.

Repositories hold the query logic for one table and operate on a session they
are handed. Services never use them directly; they go through the
PersistenceGateway, which owns sessions, transactions and retries.

Usage:
    from server_scout.core.database import Database
    from server_scout.repositories import PersistenceGateway

    gateway = PersistenceGateway(Database("sqlite:///./data/scout.db"))
    server_id = gateway.upsert_server({"ip": "1.2.3.4", "port": 27015})
"""

from server_scout.repositories.base import BaseRepository
from server_scout.repositories.server_repository import ServerRepository
from server_scout.repositories.player_repository import PlayerRepository
from server_scout.repositories.prediction_repository import PredictionRepository
from server_scout.repositories.gateway import PersistenceGateway

__all__ = [
    "BaseRepository",
    "ServerRepository",
    "PlayerRepository",
    "PredictionRepository",
    "PersistenceGateway",
]
