"""
Text features for server classification.

A server is reduced to one lower-cased text blob (name, tags, map). The
learned stage turns that blob into a fixed-width binary bag-of-words vector
over an explicit, ordered vocabulary.
"""
import json
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.feature_extraction.text import CountVectorizer

MIN_TOKEN_LENGTH = 3
DEFAULT_VOCABULARY_SIZE = 100


def build_text_blob(name: Optional[str], tags: Optional[str], map_name: Optional[str]) -> str:
    """Lower-cased "name tags map" string used by every classifier stage."""
    return f"{name or ''} {tags or ''} {map_name or ''}".lower()


def tokenize(blob: str) -> List[str]:
    """Whitespace tokens longer than two characters."""
    return [word for word in blob.split() if len(word) >= MIN_TOKEN_LENGTH]


@dataclass(frozen=True)
class FeatureVector:
    """Ordered named features; ``names[i]`` labels ``values[i]``."""
    names: Tuple[str, ...]
    values: Tuple[float, ...]

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)

    @property
    def width(self) -> int:
        return len(self.values)

    def active(self) -> List[str]:
        return [name for name, value in zip(self.names, self.values) if value]

    def to_json(self) -> str:
        return json.dumps({"width": self.width, "active": self.active()})


class Vocabulary:
    """
    Token to feature-index mapping with a fixed-vocabulary ``CountVectorizer``.

    Indices follow first-seen order over the historic texts and stop at
    ``width``; the mapping never changes after it is built. Positions past
    the last known token are padded with slot keys the tokenizer can never
    produce, so every vector is exactly ``width`` wide.

    Args:
        tokens: Ordered tokens, index = position
        width: Feature vector width
    """

    def __init__(self, tokens: Sequence[str] = (), width: int = DEFAULT_VOCABULARY_SIZE):
        self.width = width
        self.index: Dict[str, int] = {}
        for token in tokens:
            if len(self.index) >= width:
                break
            if token not in self.index:
                self.index[token] = len(self.index)

        mapping = dict(self.index)
        for position in range(len(mapping), width):
            mapping[f"<slot {position}>"] = position
        self._vectorizer = CountVectorizer(
            vocabulary=mapping,
            tokenizer=tokenize,
            token_pattern=None,
            binary=True,
        )

    @classmethod
    def build_from_texts(cls, texts: Iterable[str], width: int = DEFAULT_VOCABULARY_SIZE) -> "Vocabulary":
        ordered: Dict[str, None] = {}
        for text in texts:
            for token in tokenize(text.lower()):
                ordered.setdefault(token, None)
                if len(ordered) >= width:
                    return cls(list(ordered), width)
        return cls(list(ordered), width)

    def __len__(self) -> int:
        return len(self.index)

    def __contains__(self, token: str) -> bool:
        return token in self.index

    @property
    def tokens(self) -> List[str]:
        return list(self.index)

    def feature_names(self) -> Tuple[str, ...]:
        names = [f"token:{token}" for token in self.index]
        names.extend(f"slot:{i}" for i in range(len(names), self.width))
        return tuple(names)

    def transform(self, blobs: Sequence[str]) -> np.ndarray:
        """Dense ``len(blobs) x width`` binary matrix."""
        if not blobs:
            return np.zeros((0, self.width))
        return self._vectorizer.transform(list(blobs)).toarray().astype(np.float64)

    def vectorize(self, blob: str) -> FeatureVector:
        values = self.transform([blob])[0]
        return FeatureVector(names=self.feature_names(), values=tuple(float(v) for v in values))
