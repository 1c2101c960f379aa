"""
Prediction and training-run data access.

A server has at most one prediction per kind. Re-classification overwrites
the label columns in place; the feedback columns are written once, together
with a copy of the label the verdict judged.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import update

from server_scout.models import Prediction, Server, ModelTrainingRun
from server_scout.repositories.base import BaseRepository
from server_scout.utils.timezone import utcnow

PREDICTION_FIELDS = (
    "label", "confidence", "reason", "source", "needs_review",
    "features_json", "model_version",
)


class PredictionRepository(BaseRepository[Prediction]):
    """Repository for classifier predictions and manual feedback."""

    def __init__(self, db):
        super().__init__(Prediction, db)

    def find_for_server(self, server_id: int, kind: str) -> Optional[Prediction]:
        return self.db.query(Prediction).filter(
            Prediction.server_id == server_id,
            Prediction.kind == kind
        ).first()

    def upsert(
        self,
        server_id: int,
        kind: str,
        values: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> Prediction:
        """Insert or overwrite the (server, kind) prediction, keeping any feedback."""
        now = now or utcnow()
        fields = {k: values[k] for k in PREDICTION_FIELDS if k in values}

        prediction = self.find_for_server(server_id, kind)
        if prediction is None:
            prediction = self.create(server_id=server_id, kind=kind, predicted_at=now, **fields)
        else:
            self.apply(prediction, fields)
            prediction.predicted_at = now

        self.db.flush()
        return prediction

    def find_needing_review(self, kind: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """
        Predictions flagged for review that have no feedback yet.

        Ordered by confidence, highest first.
        """
        query = self.db.query(Prediction, Server).join(
            Server, Server.id == Prediction.server_id
        ).filter(
            Prediction.needs_review.is_(True),
            Prediction.manual_feedback.is_(None)
        )
        if kind:
            query = query.filter(Prediction.kind == kind)

        rows = query.order_by(Prediction.confidence.desc()).limit(limit).all()
        return [
            {
                "id": prediction.id,
                "server_id": server.id,
                "address": server.address,
                "name": server.name,
                "map": server.map,
                "tags": server.tags,
                "kind": prediction.kind,
                "label": prediction.label,
                "confidence": prediction.confidence,
                "reason": prediction.reason,
                "source": prediction.source,
            }
            for prediction, server in rows
        ]

    def submit_feedback(
        self,
        prediction_id: int,
        verdict: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Record feedback on a prediction.

        Returns:
            True if written; False if the prediction does not exist or
            already carries feedback.
        """
        result = self.db.execute(
            update(Prediction)
            .where(
                Prediction.id == prediction_id,
                Prediction.manual_feedback.is_(None)
            )
            .values(
                manual_feedback=verdict,
                feedback_label=Prediction.label,
                feedback_reason=reason,
                feedback_time=now or utcnow(),
                needs_review=False,
            )
        )
        return (result.rowcount or 0) > 0

    def training_set(self, kind: str) -> List[Dict[str, Any]]:
        """
        Predictions of ``kind`` that carry feedback, with their server text.

        ``label`` is the label the verdict was given against, not whatever
        the latest re-classification wrote.
        """
        rows = self.db.query(Prediction, Server).join(
            Server, Server.id == Prediction.server_id
        ).filter(
            Prediction.kind == kind,
            Prediction.manual_feedback.isnot(None)
        ).order_by(Prediction.feedback_time.asc()).all()
        return [
            {
                "server_id": server.id,
                "name": server.name or "",
                "tags": server.tags or "",
                "map": server.map or "",
                "label": prediction.feedback_label or prediction.label,
                "current_label": prediction.label,
                "confidence": prediction.confidence,
                "manual_feedback": prediction.manual_feedback,
            }
            for prediction, server in rows
        ]

    def record_training_run(self, run: Dict[str, Any]) -> ModelTrainingRun:
        row = ModelTrainingRun(
            kind=run["kind"],
            model_version=run["model_version"],
            samples=run["samples"],
            epochs=run["epochs"],
            accuracy=run.get("accuracy"),
            loss=run.get("loss"),
            trained_at=run.get("trained_at") or utcnow(),
        )
        self.db.add(row)
        self.db.flush()
        return row
