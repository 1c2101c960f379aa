"""
Base repository class for data access.

Repositories hold query logic for one model and work on a caller-supplied
session; they never commit. Transaction boundaries and retries belong to the
PersistenceGateway.

Example:
    class ServerRepository(BaseRepository[Server]):
        def find_by_address(self, ip: str, port: int) -> Optional[Server]:
            return self.db.query(Server).filter(
                Server.ip == ip, Server.port == port
            ).first()
"""
from abc import ABC
from typing import TypeVar, Generic, Type, Optional, Any, Dict

from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Common data access methods.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    def find_by_id(self, id: int) -> Optional[T]:
        """Find a single record by primary key."""
        return self.db.get(self.model_type, id)

    def create(self, **kwargs) -> T:
        """Create a new record (added to the session, not committed)."""
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance

    def apply(self, instance: T, values: Dict[str, Any]) -> T:
        """Copy known attributes from ``values`` onto ``instance``."""
        for key, value in values.items():
            if hasattr(instance, key):
                setattr(instance, key, value)
        return instance

