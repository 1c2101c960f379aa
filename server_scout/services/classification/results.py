"""
Tagged classifier results.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Union


class ResultKind(Enum):
    """Which stage produced a result."""
    RULE_BASED = "rule_based"
    LEARNED = "learned"
    COMBINED = "combined"


@dataclass(frozen=True)
class ClassificationResult:
    """
    One classifier verdict.

    ``label`` is a game mode name for the game-mode classifier and a bool
    for the regional classifier.
    """
    kind: ResultKind
    label: Union[str, bool]
    confidence: float
    needs_review: bool
    reason: str

    @property
    def stored_label(self) -> str:
        """Label as written to the predictions table."""
        if isinstance(self.label, bool):
            return "true" if self.label else "false"
        return self.label
