"""
Learned stage: scikit-learn linear scorers retrained from manual feedback.

- LogisticModel: binary scorer (regional affinity)
- SoftmaxModel: multiclass scorer (game mode)

Both wrap ``SGDClassifier(loss="log_loss")`` and learn through ``partial_fit``,
one call per retraining pass, so each retrain continues from the deployed
weights. An untrained model scores neutrally (0.5 for the binary scorer, a
uniform distribution for the multiclass one). The estimator, vocabulary
tokens and model version are saved together in one joblib file.
"""
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import joblib
import numpy as np
from sklearn.linear_model import SGDClassifier
from sklearn.metrics import accuracy_score, log_loss

DEFAULT_SEED = 42
INITIAL_VERSION = "v0"


def next_version(version: str) -> str:
    """v3 -> v4; anything unparseable restarts at v1."""
    try:
        return f"v{int(version.lstrip('v')) + 1}"
    except ValueError:
        return "v1"


class _LinearScorer:
    """
    SGD log-loss classifier over class indices ``0..len(classes)-1``.

    Args:
        n_features: Input width
        classes: Ordered class labels
        seed: Seed for the estimator's shuffling
    """

    def __init__(self, n_features: int, classes: Sequence[Any], seed: int = DEFAULT_SEED):
        self.n_features = n_features
        self.classes = list(classes)
        self.seed = seed
        self.estimator = SGDClassifier(loss="log_loss", random_state=seed)
        self.version = INITIAL_VERSION
        self.tokens: List[str] = []

    @property
    def is_trained(self) -> bool:
        return hasattr(self.estimator, "coef_")

    @property
    def weights(self) -> np.ndarray:
        if self.is_trained:
            return self.estimator.coef_.copy()
        rows = 1 if len(self.classes) == 2 else len(self.classes)
        return np.zeros((rows, self.n_features))

    def _as_matrix(self, X) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if X.shape[1] != self.n_features:
            raise ValueError(f"Expected {self.n_features} features, got {X.shape[1]}")
        return X

    def _proba(self, X) -> np.ndarray:
        X = self._as_matrix(X)
        if not self.is_trained:
            return np.full((X.shape[0], len(self.classes)), 1.0 / len(self.classes))
        return self.estimator.predict_proba(X)

    def fit(self, X, y, epochs: int = 10) -> Dict[str, float]:
        """
        Run ``epochs`` passes of ``partial_fit`` over the samples.

        Args:
            y: Class indices

        Returns:
            Final training ``loss`` and ``accuracy``
        """
        X = self._as_matrix(X)
        y = np.asarray(y).astype(np.int64).reshape(-1)
        if X.shape[0] != y.shape[0]:
            raise ValueError(f"X has {X.shape[0]} rows but y has {y.shape[0]}")

        labels = np.arange(len(self.classes))
        for _ in range(epochs):
            self.estimator.partial_fit(X, y, classes=labels)

        proba = self.estimator.predict_proba(X)
        return {
            "loss": float(log_loss(y, proba, labels=labels)),
            "accuracy": float(accuracy_score(y, proba.argmax(axis=1))),
        }

    def save(self, path: Union[str, Path]) -> None:
        joblib.dump({
            "estimator": self.estimator,
            "n_features": self.n_features,
            "classes": self.classes,
            "seed": self.seed,
            "version": self.version,
            "tokens": list(self.tokens),
        }, path)

    def _restore(self, payload: Dict[str, Any]) -> None:
        self.estimator = payload["estimator"]
        self.version = payload["version"]
        self.tokens = list(payload["tokens"])


class LogisticModel(_LinearScorer):
    """Binary scorer; ``predict_proba`` gives the positive-class probability."""

    def __init__(self, n_features: int, seed: int = DEFAULT_SEED):
        super().__init__(n_features, (False, True), seed)

    def predict_proba(self, X) -> np.ndarray:
        return self._proba(X)[:, 1]

    @classmethod
    def load(cls, path: Union[str, Path]) -> "LogisticModel":
        payload = joblib.load(path)
        model = cls(payload["n_features"], seed=payload["seed"])
        model._restore(payload)
        return model


class SoftmaxModel(_LinearScorer):
    """Multiclass scorer over string labels."""

    def __init__(self, n_features: int, classes: Sequence[str], seed: int = DEFAULT_SEED):
        if len(classes) < 2:
            raise ValueError("SoftmaxModel needs at least two classes")
        super().__init__(n_features, classes, seed)

    def predict_proba(self, X) -> np.ndarray:
        return self._proba(X)

    def predict(self, x) -> Tuple[str, float]:
        """Best class and its probability for a single row."""
        proba = self._proba(x)[0]
        best = int(np.argmax(proba))
        return self.classes[best], float(proba[best])

    def class_index(self, label: str) -> Optional[int]:
        try:
            return self.classes.index(label)
        except ValueError:
            return None

    @classmethod
    def load(cls, path: Union[str, Path]) -> "SoftmaxModel":
        payload = joblib.load(path)
        model = cls(payload["n_features"], payload["classes"], seed=payload["seed"])
        model._restore(payload)
        return model
