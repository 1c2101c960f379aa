"""
Database models for server-scout.

Tables are created from this metadata (``Database.init_db``); there is no
hand-written DDL.
"""
from sqlalchemy import (
    Column, String, Float, Integer, BigInteger, DateTime, ForeignKey, Boolean,
    Text, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base

from server_scout.utils.timezone import utcnow

Base = declarative_base()

PREDICTION_KINDS = ("gamemode", "regional")


class Server(Base):
    """A game server, identified by (ip, port). Never deleted, only marked inactive."""
    __tablename__ = "servers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip = Column(String(45), nullable=False)
    port = Column(Integer, nullable=False)
    name = Column(String(255), nullable=True)
    map = Column(String(255), nullable=True)
    tags = Column(Text, nullable=True)
    game_dir = Column(String(64), nullable=True)
    game_description = Column(String(255), nullable=True)
    max_players = Column(Integer, nullable=True)
    password_protected = Column(Boolean, nullable=False, default=False)
    secure = Column(Boolean, nullable=False, default=False)
    version = Column(String(64), nullable=True)
    os = Column(String(1), nullable=True)  # l, w, m
    server_type = Column(String(1), nullable=True)  # d, l, p
    game_id = Column(Integer, nullable=True)
    country = Column(String(64), nullable=True)
    region = Column(String(64), nullable=True)
    first_seen = Column(DateTime, nullable=False, default=utcnow)
    last_seen = Column(DateTime, nullable=False, default=utcnow, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)

    snapshots = relationship("ServerSnapshot", back_populates="server", cascade="all, delete-orphan")
    predictions = relationship("Prediction", back_populates="server", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("ip", "port", name="uq_servers_ip_port"),
    )

    @property
    def address(self) -> str:
        return f"{self.ip}:{self.port}"


class ServerSnapshot(Base):
    """Point-in-time observation of a server. Append-only."""
    __tablename__ = "server_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    snapshot_time = Column(DateTime, nullable=False, default=utcnow)
    player_count = Column(Integer, nullable=False, default=0)
    max_players = Column(Integer, nullable=False, default=0)
    bot_count = Column(Integer, nullable=False, default=0)
    map = Column(String(255), nullable=True)
    gamemode = Column(String(64), nullable=True)
    gamemode_confidence = Column(Float, nullable=False, default=0.0)
    is_regional = Column(Boolean, nullable=True)
    regional_confidence = Column(Float, nullable=False, default=0.0)
    ping_ms = Column(Integer, nullable=True)

    server = relationship("Server", back_populates="snapshots")

    __table_args__ = (
        Index("ix_snapshots_server_time", "server_id", "snapshot_time"),
    )


class Player(Base):
    """Player profile from the external profile API. ``steam_id`` is immutable."""
    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    steam_id = Column(String(32), unique=True, nullable=False, index=True)
    username = Column(String(255), nullable=True)
    profile_url = Column(String(512), nullable=True)
    country = Column(String(8), nullable=True)
    creation_date = Column(DateTime, nullable=True)
    avatar_url = Column(String(512), nullable=True)
    owns_game = Column(Boolean, nullable=False, default=False)
    total_games = Column(Integer, nullable=False, default=0)
    first_seen = Column(DateTime, nullable=False, default=utcnow)
    last_updated = Column(DateTime, nullable=False, default=utcnow, index=True)


class Prediction(Base):
    """
    Latest classifier output for one (server, kind).

    Re-classification overwrites the label columns; manual feedback is written
    once and never overwritten. ``feedback_label`` keeps the label the verdict
    was given against, so later re-classification cannot change its meaning.
    """
    __tablename__ = "predictions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String(16), nullable=False)  # gamemode, regional
    label = Column(String(64), nullable=False)
    confidence = Column(Float, nullable=False)  # 0.0 to 1.0
    reason = Column(Text, nullable=True)
    source = Column(String(16), nullable=False)  # rule_based, learned, combined
    needs_review = Column(Boolean, nullable=False, default=False)
    features_json = Column(Text, nullable=True)
    model_version = Column(String(50), nullable=True)
    predicted_at = Column(DateTime, nullable=False, default=utcnow)

    # Manual feedback ('accept', 'reject' or an explicit label)
    manual_feedback = Column(String(64), nullable=True)
    feedback_label = Column(String(64), nullable=True)  # label at feedback time
    feedback_reason = Column(Text, nullable=True)
    feedback_time = Column(DateTime, nullable=True)

    server = relationship("Server", back_populates="predictions")

    __table_args__ = (
        UniqueConstraint("server_id", "kind", name="uq_predictions_server_kind"),
        Index("ix_predictions_review", "kind", "needs_review"),
    )


class ModelTrainingRun(Base):
    """One retraining pass of a learned scorer."""
    __tablename__ = "model_training_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(16), nullable=False, index=True)
    model_version = Column(String(50), nullable=False)
    samples = Column(Integer, nullable=False)
    epochs = Column(Integer, nullable=False)
    accuracy = Column(Float, nullable=True)
    loss = Column(Float, nullable=True)
    trained_at = Column(DateTime, nullable=False, default=utcnow)
