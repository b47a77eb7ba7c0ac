"""Name similarity scoring.

Normalizes organization and patch names and compares them with a blend of:
1. Normalized Levenshtein similarity over the whole name
2. Token overlap (exact token, containment, near-identical token)
3. A containment bonus when one name is a substring of the other

A score of 1.0 is reserved for identical normalized names. Every function
here is pure and total: unscoreable input scores 0.0 instead of raising.
"""

import re

from rapidfuzz.distance import Levenshtein

# Legal-entity suffixes stripped from the end of a name
LEGAL_SUFFIXES = frozenset(
    {
        "pty",
        "ltd",
        "pl",
        "proprietary",
        "limited",
        "inc",
        "incorporated",
        "corp",
        "corporation",
        "co",
        "company",
        "llc",
        "llp",
        "plc",
        "nl",
    }
)

_SEPARATORS = re.compile(r"[&/_\-]+")
_PUNCTUATION = re.compile(r"[^\w\s]+")
_WHITESPACE = re.compile(r"\s+")

# Highest score a non-identical pair may reach
NON_EXACT_CAP = 0.99


class SimilarityScorer:
    """Deterministic, symmetric name similarity in [0, 1].

    Weights follow the employer-import matcher:
    - Levenshtein similarity: 0.4
    - Token overlap: 0.5
    - Containment: 0.1, with containment alone guaranteeing 0.9
    """

    def __init__(
        self,
        levenshtein_weight: float = 0.4,
        token_weight: float = 0.5,
        containment_weight: float = 0.1,
        containment_floor: float = 0.9,
        min_token_length: int = 3,
        near_token_similarity: float = 0.8,
    ):
        self.levenshtein_weight = levenshtein_weight
        self.token_weight = token_weight
        self.containment_weight = containment_weight
        self.containment_floor = containment_floor
        self.min_token_length = min_token_length
        self.near_token_similarity = near_token_similarity

    def normalize(self, name: str | None) -> str:
        """Normalize a name for comparison.

        Case-folds, drops ampersands and punctuation, strips trailing
        legal-entity suffixes ("Pty Ltd", "Inc", ...) and collapses
        whitespace. A name made only of suffixes keeps its first token.
        """
        if not name:
            return ""

        normalized = name.casefold()
        normalized = _SEPARATORS.sub(" ", normalized)
        normalized = _PUNCTUATION.sub("", normalized)

        tokens = _WHITESPACE.split(normalized.strip())
        tokens = [t for t in tokens if t]
        while len(tokens) > 1 and tokens[-1] in LEGAL_SUFFIXES:
            tokens.pop()

        return " ".join(tokens)

    def score(self, a: str | None, b: str | None) -> float:
        """Score two raw names. Identical normalized names score exactly 1.0."""
        na = self.normalize(a)
        nb = self.normalize(b)
        if not na or not nb:
            return 0.0
        if na == nb:
            return 1.0
        return self.score_normalized(na, nb)

    def score_normalized(self, na: str, nb: str) -> float:
        """Score two already-normalized, non-identical names."""
        levenshtein = Levenshtein.normalized_similarity(na, nb)
        tokens = self.token_similarity(na, nb)
        contains = self.containment_floor if (na in nb or nb in na) else 0.0

        combined = max(
            levenshtein * self.levenshtein_weight
            + tokens * self.token_weight
            + contains * self.containment_weight,
            contains,
        )
        return max(0.0, min(combined, NON_EXACT_CAP))

    def token_similarity(self, na: str, nb: str) -> float:
        """Token overlap between two normalized names.

        Each token pair contributes 1.0 when equal, 0.7 when one contains the
        other and 0.5 when they are near-identical; the total is divided by
        the larger token count. Pair kinds are tallied as integers so the
        result does not depend on argument order.
        """
        tokens_a = [t for t in na.split() if len(t) >= self.min_token_length]
        tokens_b = [t for t in nb.split() if len(t) >= self.min_token_length]
        if not tokens_a or not tokens_b:
            return 0.0

        exact = contained = near = 0
        for ta in tokens_a:
            for tb in tokens_b:
                if ta == tb:
                    exact += 1
                elif ta in tb or tb in ta:
                    contained += 1
                elif Levenshtein.normalized_similarity(ta, tb) > self.near_token_similarity:
                    near += 1

        matches = exact * 1.0 + contained * 0.7 + near * 0.5
        return min(matches / max(len(tokens_a), len(tokens_b)), 1.0)


_default_scorer = SimilarityScorer()


def normalize_name(name: str | None) -> str:
    """Normalize a name with the default scorer.

    Args:
        name: Organization or patch name

    Returns:
        Normalized name ("" for unusable input)
    """
    return _default_scorer.normalize(name)


def score(a: str | None, b: str | None) -> float:
    """Similarity of two names in [0, 1] with the default scorer."""
    return _default_scorer.score(a, b)
