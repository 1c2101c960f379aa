"""
ORM models.

Usage:
    from server_scout.models import Server, Prediction
"""
from server_scout.models.models import (
    Base,
    Server,
    ServerSnapshot,
    Player,
    Prediction,
    ModelTrainingRun,
    PREDICTION_KINDS,
)

__all__ = [
    "Base",
    "Server",
    "ServerSnapshot",
    "Player",
    "Prediction",
    "ModelTrainingRun",
    "PREDICTION_KINDS",
]
