"""
Tests for dedup.py: fingerprint fast path, shingle similarity and the
threshold boundary.
"""

import pytest

from docucrawl.dedup import DedupFilter, jaccard, shingles


def words(prefix, n):
    return " ".join(f"{prefix}{i}" for i in range(n))


class TestSimilarity:

    def test_identical_dom_is_duplicate(self):
        f = DedupFilter()
        f.remember("<div>" + words("w", 50) + "</div>", "first")
        assert f.is_duplicate("<div>" + words("w", 50) + "</div>")

    def test_different_dom_is_kept(self):
        f = DedupFilter()
        f.remember(words("alpha", 50), "first")
        assert not f.is_duplicate(words("beta", 50))

    def test_empty_filter_never_duplicate(self):
        assert not DedupFilter().is_duplicate(words("w", 20))

    def test_similarity_reports_best_label(self):
        f = DedupFilter()
        f.remember(words("a", 40), "a-page")
        f.remember(words("b", 40), "b-page")
        score, label = f.similarity(words("b", 40))
        assert score == 1.0
        assert label == "b-page"

    def test_only_remembered_captures_count(self):
        f = DedupFilter()
        dom = words("w", 30)
        assert not f.is_duplicate(dom)
        assert not f.is_duplicate(dom)
        assert len(f) == 0

    def test_short_dom_single_shingle(self):
        assert len(shingles("one two", k=5)) == 1

    def test_jaccard_edges(self):
        assert jaccard(frozenset(), frozenset()) == 1.0
        assert jaccard(frozenset({1}), frozenset()) == 0.0


class TestThresholdBoundary:
    """Strictly-greater comparison: a score equal to the threshold is kept."""

    def _pair(self):
        base = words("t", 104)
        # One changed token in the middle alters 5 of the 100 shingles
        tokens = base.split()
        tokens[50] = "changed"
        return base, " ".join(tokens)

    def test_score_equal_to_threshold_is_not_duplicate(self):
        base, variant = self._pair()
        score = jaccard(shingles(base), shingles(variant))
        f = DedupFilter(threshold=score)
        f.remember(base, "base")
        assert not f.is_duplicate(variant)

    def test_score_above_threshold_is_duplicate(self):
        base, variant = self._pair()
        score = jaccard(shingles(base), shingles(variant))
        f = DedupFilter(threshold=score - 0.01)
        f.remember(base, "base")
        assert f.is_duplicate(variant)

    def test_near_duplicate_under_default_threshold(self):
        base, variant = self._pair()
        # 95 shared of 105 distinct shingles is below 0.95
        f = DedupFilter()
        f.remember(base, "base")
        assert not f.is_duplicate(variant)

    @pytest.mark.parametrize("bad", [-0.1, 1.5])
    def test_threshold_out_of_range(self, bad):
        with pytest.raises(ValueError):
            DedupFilter(threshold=bad)
