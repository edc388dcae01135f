"""
Dedup Filter
============
Near-duplicate detection over cleaned DOM snapshots within one job.

Two checks, cheapest first:
    1. MD5 fingerprint of the cleaned DOM (exact repeat).
    2. Jaccard similarity of word shingles against every screen already
       kept in this job.

A capture is a duplicate when similarity is strictly greater than the
threshold (default 0.95).  Only captures that were actually persisted are
remembered, so discarded captures never shadow later ones.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Dict, FrozenSet, List, Optional, Tuple

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[A-Za-z0-9_\-]+")


def fingerprint(dom: str) -> str:
    return hashlib.md5(dom.encode("utf-8", errors="replace")).hexdigest()


def shingles(dom: str, k: int = 5) -> FrozenSet[int]:
    """Hashed k-word shingles of a DOM snapshot (tags and text alike)."""
    tokens = _TOKEN_RE.findall(dom.lower())
    if not tokens:
        return frozenset()
    if len(tokens) < k:
        return frozenset([hash(" ".join(tokens))])
    return frozenset(
        hash(" ".join(tokens[i:i + k])) for i in range(len(tokens) - k + 1)
    )


def jaccard(a: FrozenSet[int], b: FrozenSet[int]) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class DedupFilter:
    """Per-job similarity check.  Create one instance per job."""

    def __init__(self, threshold: float = 0.95, shingle_size: int = 5):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"dedup threshold must be within [0, 1], got {threshold}")
        self.threshold = threshold
        self.shingle_size = shingle_size
        self._fingerprints: Dict[str, str] = {}       # md5 → first label
        self._kept: List[Tuple[str, FrozenSet[int]]] = []

    def __len__(self) -> int:
        return len(self._kept)

    def similarity(self, dom: str) -> Tuple[float, Optional[str]]:
        """Highest similarity to any kept screen, and that screen's label."""
        fp = fingerprint(dom)
        if fp in self._fingerprints:
            return 1.0, self._fingerprints[fp]
        candidate = shingles(dom, self.shingle_size)
        best, best_label = 0.0, None
        for label, kept in self._kept:
            score = jaccard(candidate, kept)
            if score > best:
                best, best_label = score, label
        return best, best_label

    def is_duplicate(self, dom: str) -> bool:
        score, label = self.similarity(dom)
        if score > self.threshold:
            logger.info(f"[DEDUP] Discarding capture — {score:.0%} similar to {label}")
            return True
        return False

    def remember(self, dom: str, label: str) -> None:
        """Record a persisted capture so later ones are compared against it."""
        self._fingerprints.setdefault(fingerprint(dom), label)
        self._kept.append((label, shingles(dom, self.shingle_size)))
