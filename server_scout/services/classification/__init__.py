"""
Classification ensemble for game mode and regional affinity.

- features: text blob, vocabulary and fixed-width feature vectors
- rules: ordered pattern detectors (no trainable state)
- model: scikit-learn SGD log-loss scorers
- ensemble: combination policy, persistence of predictions, retraining
"""
from server_scout.services.classification.results import ClassificationResult, ResultKind
from server_scout.services.classification.features import FeatureVector, Vocabulary, build_text_blob
from server_scout.services.classification.rules import GameModeRules, RegionalRules, WeightClass
from server_scout.services.classification.model import LogisticModel, SoftmaxModel
from server_scout.services.classification.ensemble import (
    ClassificationService,
    GameModeClassifier,
    RegionalClassifier,
    ServerClassification,
    feedback_to_label,
)

__all__ = [
    "ClassificationResult",
    "ResultKind",
    "FeatureVector",
    "Vocabulary",
    "build_text_blob",
    "GameModeRules",
    "RegionalRules",
    "WeightClass",
    "LogisticModel",
    "SoftmaxModel",
    "ClassificationService",
    "GameModeClassifier",
    "RegionalClassifier",
    "ServerClassification",
    "feedback_to_label",
]
