"""
Rule stage: ordered named pattern detectors.

Rules have no trainable state; retraining never changes their output.

Game mode:
    Each matching detector scores len(match) / len(blob) + 0.5, capped at
    0.95. The highest score wins; ties go to the detector declared first.

Regional affinity:
    Every matching detector adds its weight class (locale name 0.9, marker
    0.8, anything else 0.6); the sum is capped at 0.95.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Pattern, Sequence

from server_scout.services.classification.results import ClassificationResult, ResultKind

RULE_CONFIDENCE_CAP = 0.95
GAMEMODE_SCORE_BIAS = 0.5
UNKNOWN_GAMEMODE = "unknown"


class WeightClass(Enum):
    """Fixed contribution of a regional detector."""
    LOCALE = 0.9
    MARKER = 0.8
    GENERIC = 0.6


@dataclass(frozen=True)
class PatternDetector:
    name: str
    pattern: Pattern
    weight: WeightClass = WeightClass.GENERIC


def _detector(name: str, pattern: str, weight: WeightClass = WeightClass.GENERIC) -> PatternDetector:
    return PatternDetector(name=name, pattern=re.compile(pattern, re.IGNORECASE), weight=weight)


GAMEMODE_DETECTORS = (
    _detector("darkrp", r"\b(darkrp|dark\s*rp|roleplay|rp)\b"),
    _detector("sandbox", r"\b(sandbox|build|creative)\b"),
    _detector("ttt", r"\b(ttt|trouble|terrorist|traitor)\b"),
    _detector("prophunt", r"\b(prop\s*hunt|prophunt|hide)\b"),
    _detector("murder", r"\b(murder|gm_murder)\b"),
    _detector("deathrun", r"\b(deathrun|death\s*run|dr_)\b"),
    _detector("jailbreak", r"\b(jailbreak|jail\s*break|prison)\b"),
    _detector("zombiesurvival", r"\b(zombie|zs_|survival)\b"),
    _detector("cinema", r"\b(cinema|movie|theater)\b"),
    _detector("militaryrp", r"\b(military|milrp|army|war)\b"),
)

GAMEMODE_LABELS = tuple(detector.name for detector in GAMEMODE_DETECTORS)

# Polish community detectors
REGIONAL_DETECTORS = (
    _detector("country_name", r"\b(pl|poland|polska|polish)\b", WeightClass.LOCALE),
    _detector("city", r"\b(warszawa|krakow|gdansk|wroclaw|poznan|lodz|katowice)\b"),
    _detector("bracket_tag", r"\[pl\]"),
    _detector("polska", r"polska", WeightClass.LOCALE),
    _detector("pl_token", r"\bpl\b"),
    _detector("polsk_stem", r"polsk"),
    _detector("flag", "\U0001F1F5\U0001F1F1", WeightClass.MARKER),
    _detector("polish", r"polish"),
)


class GameModeRules:
    """Best-match game mode detector."""

    def __init__(
        self,
        detectors: Sequence[PatternDetector] = GAMEMODE_DETECTORS,
        review_threshold: float = 0.5,
    ):
        self.detectors = tuple(detectors)
        self.review_threshold = review_threshold

    @property
    def labels(self):
        return tuple(detector.name for detector in self.detectors)

    def score(self, blob: str) -> ClassificationResult:
        best: Optional[str] = None
        best_score = 0.0

        for detector in self.detectors:
            match = detector.pattern.search(blob)
            if not match:
                continue
            score = len(match.group(0)) / len(blob) + GAMEMODE_SCORE_BIAS
            # strict comparison keeps the earlier detector on ties
            if score > best_score:
                best, best_score = detector.name, score

        confidence = min(best_score, RULE_CONFIDENCE_CAP)
        return ClassificationResult(
            kind=ResultKind.RULE_BASED,
            label=best or UNKNOWN_GAMEMODE,
            confidence=confidence,
            needs_review=confidence < self.review_threshold,
            reason=f"Rule-based match: {best}" if best else "No pattern match",
        )


class RegionalRules:
    """Weighted-sum regional affinity detector."""

    def __init__(
        self,
        detectors: Sequence[PatternDetector] = REGIONAL_DETECTORS,
        review_threshold: float = 0.5,
        review_floor: float = 0.3,
        confident_threshold: float = 0.7,
    ):
        self.detectors = tuple(detectors)
        self.review_threshold = review_threshold
        self.review_floor = review_floor
        self.confident_threshold = confident_threshold

    def score(self, blob: str) -> ClassificationResult:
        matched = [d for d in self.detectors if d.pattern.search(blob)]
        confidence = min(sum(d.weight.value for d in matched), RULE_CONFIDENCE_CAP)

        return ClassificationResult(
            kind=ResultKind.RULE_BASED,
            label=confidence > self.review_threshold,
            confidence=confidence,
            needs_review=self.review_floor < confidence < self.confident_threshold,
            reason=f"Rule-based: {len(matched)} patterns matched"
                   + (f" ({', '.join(d.name for d in matched)})" if matched else ""),
        )
