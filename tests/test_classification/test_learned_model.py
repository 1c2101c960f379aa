"""Unit tests for features and the scikit-learn learned models."""
import numpy as np
import pytest

from server_scout.services.classification.features import Vocabulary, build_text_blob, tokenize
from server_scout.services.classification.model import LogisticModel, SoftmaxModel, next_version


class TestFeatures:
    """Test suite for text blobs and the vocabulary."""

    def test_text_blob(self):
        """Should lower-case and space-join name, tags and map."""
        assert build_text_blob("[PL] DarkRP", None, "RP_Downtown") == "[pl] darkrp  rp_downtown"

    def test_tokenize_drops_short_words(self):
        """Should keep only tokens of three or more characters."""
        assert tokenize("pl darkrp rp server") == ["darkrp", "server"]

    def test_vocabulary_first_seen_order(self):
        """Should index tokens in first-seen order up to the width."""
        vocabulary = Vocabulary.build_from_texts(["alpha beta", "beta gamma delta"], width=3)

        assert vocabulary.tokens == ["alpha", "beta", "gamma"]
        assert "delta" not in vocabulary

    def test_vectorize_named_features(self):
        """Should produce a fixed-width vector with named active features."""
        vocabulary = Vocabulary(["darkrp", "polska"], width=4)
        features = vocabulary.vectorize("polska unknownword")

        assert features.width == 4
        assert features.names == ("token:darkrp", "token:polska", "slot:2", "slot:3")
        assert features.active() == ["token:polska"]
        assert '"active": ["token:polska"]' in features.to_json()

    def test_transform_matrix(self):
        """Should give one binary row per blob at the full width."""
        vocabulary = Vocabulary(["darkrp", "polska"], width=5)
        matrix = vocabulary.transform(["darkrp darkrp polska", "nothing known", "POLSKA"])

        assert matrix.shape == (3, 5)
        np.testing.assert_array_equal(matrix[0], [1, 1, 0, 0, 0])
        np.testing.assert_array_equal(matrix[1], [0, 0, 0, 0, 0])
        np.testing.assert_array_equal(matrix[2], [0, 1, 0, 0, 0])

    def test_transform_empty(self):
        """Should return an empty matrix of the right width for no blobs."""
        assert Vocabulary(["darkrp"], width=3).transform([]).shape == (0, 3)

    def test_empty_vocabulary_vectorizes_to_zeros(self):
        """Should keep the full width with no known tokens."""
        vocabulary = Vocabulary([], width=4)

        assert len(vocabulary) == 0
        assert vocabulary.vectorize("darkrp polska").values == (0.0, 0.0, 0.0, 0.0)


class TestLogisticModel:
    """Test suite for the binary scorer."""

    def test_untrained_scores_neutral(self):
        """Should give exactly 0.5 before the first training pass."""
        model = LogisticModel(8)

        assert model.is_trained is False
        assert model.predict_proba(np.ones(8))[0] == pytest.approx(0.5)
        assert model.weights.shape == (1, 8)

    def test_same_seed_same_fit(self):
        """Should learn identical weights from one seed and one sample set."""
        X = np.array([[1, 0, 1], [0, 1, 0]], dtype=float)
        y = np.array([1, 0])
        first, second = LogisticModel(3, seed=7), LogisticModel(3, seed=7)
        first.fit(X, y)
        second.fit(X, y)

        np.testing.assert_allclose(first.weights, second.weights)

    def test_fit_separable(self):
        """Should learn a single discriminating feature."""
        X = np.array([[1, 0], [1, 0], [0, 1], [0, 1]], dtype=float)
        y = np.array([1, 1, 0, 0], dtype=float)
        model = LogisticModel(2)

        scores = model.fit(X, y, epochs=200)

        assert scores["accuracy"] == 1.0
        assert model.predict_proba([1, 0])[0] > 0.5 > model.predict_proba([0, 1])[0]

    def test_fit_rejects_wrong_width(self):
        """Should refuse training data of the wrong width."""
        with pytest.raises(ValueError):
            LogisticModel(3).fit(np.ones((2, 2)), np.ones(2))

    def test_save_and_load(self, tmp_path):
        """Should restore the fitted estimator, version and vocabulary tokens."""
        model = LogisticModel(4)
        model.fit(np.eye(4), np.array([1, 0, 1, 0]), epochs=20)
        model.version = "v3"
        model.tokens = ["darkrp", "polska"]
        path = tmp_path / "regional.joblib"
        model.save(path)

        loaded = LogisticModel.load(path)

        assert loaded.version == "v3"
        assert loaded.tokens == ["darkrp", "polska"]
        assert loaded.is_trained is True
        np.testing.assert_allclose(loaded.weights, model.weights)
        np.testing.assert_allclose(loaded.predict_proba(np.eye(4)), model.predict_proba(np.eye(4)))


class TestSoftmaxModel:
    """Test suite for the multiclass scorer."""

    def test_predict_returns_known_class(self):
        """Should always predict one of its classes."""
        label, probability = SoftmaxModel(5, ["darkrp", "ttt"]).predict(np.zeros(5))
        assert label in ("darkrp", "ttt")
        assert 0.0 < probability <= 1.0

    def test_fit(self):
        """Should learn to separate two classes."""
        model = SoftmaxModel(2, ["darkrp", "ttt"])
        X = np.array([[1, 0], [0, 1]] * 4, dtype=float)
        y = np.array([0, 1] * 4)

        scores = model.fit(X, y, epochs=200)

        assert scores["accuracy"] == 1.0
        assert model.predict([0, 1])[0] == "ttt"

    def test_untrained_is_uniform(self):
        """Should spread probability evenly before training."""
        proba = SoftmaxModel(4, ["darkrp", "ttt", "sandbox"]).predict_proba(np.zeros(4))
        np.testing.assert_allclose(proba, [[1 / 3, 1 / 3, 1 / 3]])

    def test_requires_classes(self):
        """Should refuse to build with fewer than two classes."""
        with pytest.raises(ValueError):
            SoftmaxModel(2, [])
        with pytest.raises(ValueError):
            SoftmaxModel(2, ["darkrp"])

    def test_save_and_load_classes(self, tmp_path):
        """Should restore class labels with the estimator."""
        model = SoftmaxModel(2, ["darkrp", "ttt"])
        model.fit(np.array([[1, 0], [0, 1]] * 4, dtype=float), np.array([0, 1] * 4), epochs=50)
        path = tmp_path / "gamemode.joblib"
        model.save(path)

        loaded = SoftmaxModel.load(path)

        assert loaded.classes == ["darkrp", "ttt"]
        assert loaded.predict([0, 1])[0] == model.predict([0, 1])[0]


def test_next_version():
    """Should bump numeric versions and restart unparseable ones."""
    assert next_version("v0") == "v1"
    assert next_version("v9") == "v10"
    assert next_version("custom") == "v1"
