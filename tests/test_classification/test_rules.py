"""Unit tests for the rule stage.

Test Strategy:
1. Game mode detectors score by match share and prefer the first on ties
2. Regional detectors sum weight classes, capped at 0.95
3. Confidence never drops when another regional marker is added
"""
import pytest

from server_scout.services.classification.features import build_text_blob
from server_scout.services.classification.results import ResultKind
from server_scout.services.classification.rules import GameModeRules, RegionalRules


class TestGameModeRules:
    """Test suite for game mode pattern scoring."""

    def test_darkrp_detected(self):
        """Should label an obvious DarkRP server as darkrp."""
        blob = build_text_blob("Best DarkRP Server", "gm:darkrp", "rp_downtown_v4c")
        result = GameModeRules().score(blob)

        assert result.label == "darkrp"
        assert result.kind is ResultKind.RULE_BASED
        assert 0.5 < result.confidence <= 0.95

    def test_score_formula(self):
        """Should score len(match) / len(blob) + 0.5."""
        blob = "ttt community server"
        result = GameModeRules().score(blob)

        assert result.label == "ttt"
        assert result.confidence == pytest.approx(3 / len(blob) + 0.5)

    def test_confidence_capped(self):
        """Should cap a blob that is entirely the match at 0.95."""
        assert GameModeRules().score("darkrp").confidence == 0.95

    def test_tie_goes_to_first_declared(self):
        """Should keep the earlier detector when scores are equal."""
        result = GameModeRules().score("ttt war")
        assert result.label == "ttt"

    def test_no_match_is_unknown(self):
        """Should return unknown with zero confidence when nothing matches."""
        result = GameModeRules().score("just a server")

        assert result.label == "unknown"
        assert result.confidence == 0.0
        assert result.needs_review is True

    def test_empty_blob(self):
        """Should not fail on an empty text blob."""
        assert GameModeRules().score("").label == "unknown"


class TestRegionalRules:
    """Test suite for regional affinity scoring."""

    def test_no_markers(self):
        """Should score zero and label False without markers."""
        result = RegionalRules().score("best darkrp server")

        assert result.label is False
        assert result.confidence == 0.0
        assert result.needs_review is False

    def test_single_generic_marker(self):
        """Should score a lone generic marker at 0.6 and send it to review."""
        result = RegionalRules().score("serwer z krakow")

        assert result.confidence == pytest.approx(0.6)
        assert result.label is True
        assert result.needs_review is True

    def test_weights_sum_and_cap(self):
        """Should cap the weighted sum at 0.95."""
        result = RegionalRules().score("[pl] polska darkrp")

        assert result.confidence == 0.95
        assert result.label is True
        assert result.needs_review is False
        assert "country_name" in result.reason

    def test_flag_marker(self):
        """Should recognise the flag emoji as a marker."""
        result = RegionalRules().score("darkrp \U0001F1F5\U0001F1F1")
        assert result.confidence == pytest.approx(0.8)

    def test_confidence_is_monotonic(self):
        """Should never lower confidence when another marker is added."""
        rules = RegionalRules()
        blob = "darkrp server"
        previous = rules.score(blob).confidence
        for marker in ("krakow", "polish", "[pl]", "polska", "\U0001F1F5\U0001F1F1"):
            blob = f"{blob} {marker}"
            current = rules.score(blob).confidence
            assert current >= previous
            previous = current
