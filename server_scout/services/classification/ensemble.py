"""
Classification ensemble: rule stage + learned stage for game mode and
regional affinity, plus feedback-driven retraining.

Game mode:
- Rule confidence above the general gate (0.6) is used outright.
- Otherwise the learned model is consulted; the rule still wins above the
  rule-confident threshold (0.8), else the more confident of the two wins.
- needs_review when the final confidence is below the review threshold.

Regional affinity:
- confidence = 0.6 * rule + 0.4 * learned; label = confidence > 0.5.
- needs_review when confidence is below the review threshold or strictly
  inside (0.3, 0.7).

A classifier that raises yields an "unknown" / False result with zero
confidence flagged for review; it never aborts the caller.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from server_scout.core import metrics
from server_scout.core.errors import PersistenceError
from server_scout.core.logging import get_logger
from server_scout.services.classification.features import (
    DEFAULT_VOCABULARY_SIZE,
    FeatureVector,
    Vocabulary,
    build_text_blob,
)
from server_scout.services.classification.model import (
    LogisticModel,
    SoftmaxModel,
    next_version,
)
from server_scout.services.classification.results import ClassificationResult, ResultKind
from server_scout.services.classification.rules import (
    GameModeRules,
    RegionalRules,
    UNKNOWN_GAMEMODE,
)
from server_scout.utils.timezone import utcnow

logger = get_logger(__name__)

RULE_WEIGHT = 0.6
LEARNED_WEIGHT = 0.4

GAMEMODE_MODEL_FILE = "gamemode.joblib"
REGIONAL_MODEL_FILE = "regional.joblib"

POSITIVE_FEEDBACK = {"regional", "true", "1", "yes"}
NEGATIVE_FEEDBACK = {"not_regional", "false", "0", "no"}


@dataclass(frozen=True)
class ServerClassification:
    """Both verdicts for one server plus the features they were computed from."""
    gamemode: ClassificationResult
    regional: ClassificationResult
    features: Optional[FeatureVector] = None

    @property
    def is_regional(self) -> bool:
        return bool(self.regional.label)


class GameModeClassifier:
    """Rule-first game mode classifier with a softmax fallback."""

    def __init__(
        self,
        rules: GameModeRules,
        model: SoftmaxModel,
        general_gate: float = 0.6,
        rule_confident: float = 0.8,
        review_threshold: float = 0.5,
    ):
        self.rules = rules
        self.model = model
        self.general_gate = general_gate
        self.rule_confident = rule_confident
        self.review_threshold = review_threshold

    def learned(self, features: FeatureVector) -> ClassificationResult:
        label, confidence = self.model.predict(features.as_array())
        return ClassificationResult(
            kind=ResultKind.LEARNED,
            label=label,
            confidence=confidence,
            needs_review=confidence < self.review_threshold,
            reason=f"Learned prediction ({round(confidence * 100)}% confidence)",
        )

    def combine(self, rule: ClassificationResult, learned: ClassificationResult) -> ClassificationResult:
        if rule.confidence > self.rule_confident:
            return rule
        if learned.confidence > rule.confidence:
            return learned
        return rule

    def classify(self, blob: str, features: FeatureVector) -> ClassificationResult:
        rule = self.rules.score(blob)
        if rule.confidence > self.general_gate:
            return rule
        return self.combine(rule, self.learned(features))


class RegionalClassifier:
    """Blended rule + logistic regional affinity classifier."""

    def __init__(
        self,
        rules: RegionalRules,
        model: LogisticModel,
        review_threshold: float = 0.5,
        review_floor: float = 0.3,
        confident_threshold: float = 0.7,
    ):
        self.rules = rules
        self.model = model
        self.review_threshold = review_threshold
        self.review_floor = review_floor
        self.confident_threshold = confident_threshold

    def learned(self, features: FeatureVector) -> ClassificationResult:
        probability = float(self.model.predict_proba(features.as_array())[0])
        return ClassificationResult(
            kind=ResultKind.LEARNED,
            label=probability > 0.5,
            confidence=probability,
            needs_review=self.review_floor < probability < self.confident_threshold,
            reason=f"Learned prediction ({round(probability * 100)}% confidence)",
        )

    def combine(self, rule: ClassificationResult, learned: ClassificationResult) -> ClassificationResult:
        confidence = rule.confidence * RULE_WEIGHT + learned.confidence * LEARNED_WEIGHT
        return ClassificationResult(
            kind=ResultKind.COMBINED,
            label=confidence > self.review_threshold,
            confidence=confidence,
            needs_review=(
                confidence < self.review_threshold
                or self.review_floor < confidence < self.confident_threshold
            ),
            reason=(
                f"Combined: Rule={round(rule.confidence * 100)}%, "
                f"Learned={round(learned.confidence * 100)}%"
            ),
        )

    def classify(self, blob: str, features: FeatureVector) -> ClassificationResult:
        return self.combine(self.rules.score(blob), self.learned(features))


def error_result(kind: str, error: Exception) -> ClassificationResult:
    return ClassificationResult(
        kind=ResultKind.COMBINED,
        label=UNKNOWN_GAMEMODE if kind == "gamemode" else False,
        confidence=0.0,
        needs_review=True,
        reason=f"Error: {error}",
    )


def feedback_to_label(verdict: str, predicted_label: str) -> Optional[bool]:
    """
    Turn a regional feedback verdict into a binary training label.

    'accept' keeps the predicted label, 'reject' negates it, and explicit
    values (regional/true/1, not_regional/false/0) are taken as given.
    """
    verdict = (verdict or "").strip().lower()
    predicted = (predicted_label or "").strip().lower() == "true"
    if verdict == "accept":
        return predicted
    if verdict == "reject":
        return not predicted
    if verdict in POSITIVE_FEEDBACK:
        return True
    if verdict in NEGATIVE_FEEDBACK:
        return False
    return None


class ClassificationService:
    """
    Owns the vocabulary, both classifiers and their learned models.

    Usage:
        service = ClassificationService(gateway, model_dir=Path("data/models"))
        service.initialize()
        result = service.classify("[PL] DarkRP Polska", "darkrp", "rp_downtown")
    """

    def __init__(
        self,
        gateway,
        vocabulary_size: int = DEFAULT_VOCABULARY_SIZE,
        model_dir: Optional[Path] = None,
        gamemode_gate: float = 0.6,
        gamemode_rule_confident: float = 0.8,
        regional_confident: float = 0.7,
        review_threshold: float = 0.5,
        regional_review_floor: float = 0.3,
        retrain_epochs: int = 10,
    ):
        self.gateway = gateway
        self.vocabulary_size = vocabulary_size
        self.model_dir = Path(model_dir) if model_dir else None
        self.retrain_epochs = retrain_epochs

        self.vocabulary = Vocabulary(width=vocabulary_size)
        self.gamemode_rules = GameModeRules(review_threshold=review_threshold)
        self.regional_rules = RegionalRules(
            review_threshold=review_threshold,
            review_floor=regional_review_floor,
            confident_threshold=regional_confident,
        )
        self.gamemode = GameModeClassifier(
            self.gamemode_rules,
            SoftmaxModel(vocabulary_size, self.gamemode_rules.labels),
            general_gate=gamemode_gate,
            rule_confident=gamemode_rule_confident,
            review_threshold=review_threshold,
        )
        self.regional = RegionalClassifier(
            self.regional_rules,
            LogisticModel(vocabulary_size),
            review_threshold=review_threshold,
            review_floor=regional_review_floor,
            confident_threshold=regional_confident,
        )

        self.is_initialized = False
        self.last_training: Dict[str, Dict[str, Any]] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Setup
    # ─────────────────────────────────────────────────────────────────────

    def initialize(self) -> bool:
        """
        Load saved models, or build a fresh vocabulary from stored servers.

        Saved models carry the vocabulary they were trained with and are
        reused only while that vocabulary is non-empty and at least as large
        as the one the stored servers now yield. Otherwise the vocabulary is
        rebuilt and the models are retrained from the stored feedback, since
        feature indices must stay aligned with the weights.
        """
        logger.info("🤖 Initializing classification service...")

        built = self._build_vocabulary()
        loaded = self._load_models()

        if loaded is not None:
            regional, gamemode = loaded
            if regional.tokens and len(regional.tokens) >= len(built):
                self.vocabulary = Vocabulary(regional.tokens, width=self.vocabulary_size)
                self.regional.model = regional
                if gamemode is not None:
                    self.gamemode.model = gamemode
                logger.info(f"Loaded saved models (vocabulary {len(self.vocabulary)} tokens)")
                self.is_initialized = True
                return True

            logger.warning(
                f"⚠️ Saved models cover {len(regional.tokens)} tokens but stored servers "
                f"yield {len(built)}, rebuilding vocabulary"
            )

        self.vocabulary = built
        logger.info(f"✅ Built vocabulary with {len(self.vocabulary)} tokens")

        if loaded is not None:
            # Versions keep counting up across the rebuild
            regional, gamemode = loaded
            self.regional.model.version = regional.version
            if gamemode is not None:
                self.gamemode.model.version = gamemode.version
            self.retrain_from_feedback()

        self.is_initialized = True
        return True

    def _build_vocabulary(self) -> Vocabulary:
        try:
            rows = self.gateway.server_texts()
        except PersistenceError as e:
            logger.error(f"Failed to build vocabulary: {e}")
            rows = []
        return Vocabulary.build_from_texts(
            (build_text_blob(name, tags, map_name) for name, tags, map_name in rows),
            width=self.vocabulary_size,
        )

    def _ensure_vocabulary(self) -> bool:
        """Rebuild an empty vocabulary from the servers stored since startup."""
        if len(self.vocabulary):
            return True
        self.vocabulary = self._build_vocabulary()
        if len(self.vocabulary):
            logger.info(f"✅ Built vocabulary with {len(self.vocabulary)} tokens")
            return True
        return False

    def _model_path(self, filename: str) -> Optional[Path]:
        return self.model_dir / filename if self.model_dir else None

    def _load_models(self) -> Optional[Tuple[LogisticModel, Optional[SoftmaxModel]]]:
        regional_path = self._model_path(REGIONAL_MODEL_FILE)
        gamemode_path = self._model_path(GAMEMODE_MODEL_FILE)
        if not regional_path or not regional_path.exists():
            return None

        try:
            regional = LogisticModel.load(regional_path)
            gamemode = SoftmaxModel.load(gamemode_path) if gamemode_path.exists() else None
        except Exception as e:
            logger.warning(f"Could not load saved models, starting fresh: {e}")
            return None

        if regional.n_features != self.vocabulary_size:
            logger.warning(
                f"Saved model width {regional.n_features} != vocabulary size "
                f"{self.vocabulary_size}, starting fresh"
            )
            return None

        if gamemode is not None and (
            gamemode.n_features != self.vocabulary_size
            or gamemode.classes != list(self.gamemode_rules.labels)
        ):
            gamemode = None
        return regional, gamemode

    def _save_model(self, model, filename: str) -> None:
        path = self._model_path(filename)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        model.tokens = self.vocabulary.tokens
        model.save(path)

    # ─────────────────────────────────────────────────────────────────────
    # Prediction
    # ─────────────────────────────────────────────────────────────────────

    def classify(self, name: Optional[str], tags: Optional[str], map_name: Optional[str]) -> ServerClassification:
        """Run both classifiers; an error in one does not affect the other."""
        blob = build_text_blob(name, tags, map_name)
        features = None
        try:
            features = self.vocabulary.vectorize(blob)
        except Exception as e:
            logger.error(f"Feature extraction failed for {name!r}: {e}")

        results = {}
        for kind, classifier in (("gamemode", self.gamemode), ("regional", self.regional)):
            try:
                if features is None:
                    raise ValueError("no feature vector")
                results[kind] = classifier.classify(blob, features)
            except Exception as e:
                logger.error(f"❌ {kind} prediction failed for {name!r}: {e}")
                results[kind] = error_result(kind, e)
            metrics.predictions_total.labels(kind=kind, source=results[kind].kind.value).inc()

        return ServerClassification(
            gamemode=results["gamemode"],
            regional=results["regional"],
            features=features,
        )

    def classify_and_store(
        self,
        server_id: int,
        name: Optional[str],
        tags: Optional[str],
        map_name: Optional[str],
    ) -> ServerClassification:
        """
        Classify a stored server and upsert both predictions.

        Raises:
            PersistenceError: if a prediction could not be written
        """
        classification = self.classify(name, tags, map_name)
        features_json = classification.features.to_json() if classification.features else None

        for kind, result, model in (
            ("gamemode", classification.gamemode, self.gamemode.model),
            ("regional", classification.regional, self.regional.model),
        ):
            self.gateway.upsert_prediction(server_id, kind, {
                "label": result.stored_label,
                "confidence": float(result.confidence),
                "reason": result.reason,
                "source": result.kind.value,
                "needs_review": result.needs_review,
                "features_json": features_json,
                "model_version": f"{kind}-{model.version}",
            })

        return classification

    # ─────────────────────────────────────────────────────────────────────
    # Retraining
    # ─────────────────────────────────────────────────────────────────────

    def _training_rows(self, kind: str) -> List[Dict[str, Any]]:
        try:
            return self.gateway.feedback_training_set(kind)
        except PersistenceError as e:
            logger.error(f"Could not load {kind} feedback: {e}")
            return []

    def _regional_samples(self, rows) -> Tuple[np.ndarray, np.ndarray]:
        """Feature matrix and 0/1 targets; ``label`` is the label the verdict judged."""
        blobs, y = [], []
        for row in rows:
            label = feedback_to_label(row["manual_feedback"], row["label"])
            if label is None:
                continue
            blobs.append(build_text_blob(row["name"], row["tags"], row["map"]))
            y.append(1 if label else 0)
        return self.vocabulary.transform(blobs), np.asarray(y, dtype=np.int64)

    def _gamemode_samples(self, rows) -> Tuple[np.ndarray, np.ndarray]:
        model = self.gamemode.model
        blobs, y = [], []
        for row in rows:
            verdict = (row["manual_feedback"] or "").strip().lower()
            label = row["label"] if verdict == "accept" else verdict
            index = model.class_index(label)
            if index is None:
                continue
            blobs.append(build_text_blob(row["name"], row["tags"], row["map"]))
            y.append(index)
        return self.vocabulary.transform(blobs), np.asarray(y, dtype=np.int64)

    def _retrain(self, kind: str, model, X: np.ndarray, y: np.ndarray, filename: str) -> Optional[Dict[str, Any]]:
        if len(y) == 0:
            logger.info(f"📭 No usable {kind} feedback, skipping retraining")
            return None

        logger.info(f"🔄 Retraining {kind} model with {len(y)} feedback samples...")
        scores = model.fit(X, y, epochs=self.retrain_epochs)
        model.version = next_version(model.version)

        run = {
            "kind": kind,
            "model_version": f"{kind}-{model.version}",
            "samples": int(len(y)),
            "epochs": self.retrain_epochs,
            "accuracy": scores["accuracy"],
            "loss": scores["loss"],
            "trained_at": utcnow(),
        }
        self.gateway.record_training_run(run)
        self._save_model(model, filename)
        self.last_training[kind] = run
        logger.info(
            f"✅ {kind} model {model.version} trained "
            f"(accuracy {scores['accuracy']:.2f}, loss {scores['loss']:.3f})"
        )
        return run

    def retrain_from_feedback(self) -> Dict[str, Optional[Dict[str, Any]]]:
        """
        Retrain the learned stages from feedback-bearing predictions.

        A kind with no usable feedback is left untouched. Failures are logged
        and never raised; rule behaviour is unaffected either way.

        Returns:
            Training run per kind, or None where nothing was trained
        """
        logger.info("📚 Learning from manual feedback...")
        runs: Dict[str, Optional[Dict[str, Any]]] = {"regional": None, "gamemode": None}

        if not self._ensure_vocabulary():
            logger.warning("📭 Vocabulary is empty, skipping retraining")
            return runs

        try:
            X, y = self._regional_samples(self._training_rows("regional"))
            runs["regional"] = self._retrain("regional", self.regional.model, X, y, REGIONAL_MODEL_FILE)
        except Exception as e:
            logger.error(f"❌ Regional model retraining failed: {e}")

        try:
            X, y = self._gamemode_samples(self._training_rows("gamemode"))
            runs["gamemode"] = self._retrain("gamemode", self.gamemode.model, X, y, GAMEMODE_MODEL_FILE)
        except Exception as e:
            logger.error(f"❌ Game mode model retraining failed: {e}")

        return runs

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_initialized": self.is_initialized,
            "vocabulary_size": len(self.vocabulary),
            "vocabulary_width": self.vocabulary.width,
            "gamemode_patterns": len(self.gamemode_rules.detectors),
            "regional_patterns": len(self.regional_rules.detectors),
            "model_versions": {
                "gamemode": self.gamemode.model.version,
                "regional": self.regional.model.version,
            },
            "thresholds": {
                "gamemode_gate": self.gamemode.general_gate,
                "gamemode_rule_confident": self.gamemode.rule_confident,
                "regional_confident": self.regional.confident_threshold,
                "review": self.regional.review_threshold,
                "regional_review_floor": self.regional.review_floor,
            },
            "last_training": self.last_training,
        }
