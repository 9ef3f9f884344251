"""Semantic deduplication of search results.

Similarity between two matches is 0.7 x embedding cosine + 0.3 x Jaccard over word tokens
(identical chunk ids count as 1.0). The top preserve_top_n results by score are always kept.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Literal

from rag_engine.vector_store.base import VectorSearchMatch, cosine_similarity

logger = logging.getLogger(__name__)

Strategy = Literal["greedy", "max-score", "diverse"]

EMBEDDING_WEIGHT = 0.7
TEXT_WEIGHT = 0.3
NEW_FILE_LENIENCY = 0.9


@dataclass
class DuplicateGroup:
    kept: VectorSearchMatch
    removed: list[VectorSearchMatch] = field(default_factory=list)
    similarity: float = 0.0


@dataclass
class DedupResult:
    matches: list[VectorSearchMatch]
    duplicates_removed: int = 0
    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)


def tokenize(text: str) -> set[str]:
    return {t for t in re.split(r"\W+", text.lower()) if len(t) > 2}


def jaccard(a: str, b: str) -> float:
    ta, tb = tokenize(a), tokenize(b)
    union = ta | tb
    if not union:
        return 0.0
    return len(ta & tb) / len(union)


def match_similarity(a: VectorSearchMatch, b: VectorSearchMatch) -> float:
    if a.chunk.chunk_id == b.chunk.chunk_id:
        return 1.0
    return (
        EMBEDDING_WEIGHT * cosine_similarity(a.chunk.embedding, b.chunk.embedding)
        + TEXT_WEIGHT * jaccard(a.chunk.text, b.chunk.text)
    )


def _by_score(matches: list[VectorSearchMatch]) -> list[VectorSearchMatch]:
    return sorted(matches, key=lambda m: m.score, reverse=True)


def ensure_file_diversity(
    kept: list[VectorSearchMatch], original: list[VectorSearchMatch], min_different_files: int
) -> list[VectorSearchMatch]:
    """Pull the best match of each missing file back in until min_different_files paths are present."""
    files = {m.chunk.path for m in kept}
    if len(files) >= min_different_files:
        return kept
    result = list(kept)
    ids = {m.chunk.chunk_id for m in kept}
    for match in _by_score(original):
        if len(files) >= min_different_files:
            break
        if match.chunk.path in files or match.chunk.chunk_id in ids:
            continue
        result.append(match)
        files.add(match.chunk.path)
        ids.add(match.chunk.chunk_id)
    return _by_score(result)


class SemanticDeduplicator:
    def __init__(
        self,
        threshold: float = 0.95,
        strategy: Strategy = "max-score",
        preserve_top_n: int = 3,
        cross_file: bool = True,
        min_different_files: int = 3,
    ):
        if strategy not in ("greedy", "max-score", "diverse"):
            raise ValueError(f"Unknown dedup strategy: {strategy}")
        self.threshold = threshold
        self.strategy = strategy
        self.preserve_top_n = max(0, preserve_top_n)
        self.cross_file = cross_file
        self.min_different_files = min_different_files

    def deduplicate(self, matches: list[VectorSearchMatch]) -> DedupResult:
        """Never raises: on an internal error the input comes back unchanged."""
        if not matches:
            return DedupResult(matches=[])
        try:
            ordered = _by_score(matches)
            preserved = ordered[: self.preserve_top_n]
            rest = ordered[self.preserve_top_n :]
            if self.strategy == "max-score":
                kept, groups = self._max_score(preserved, rest)
            else:
                kept, groups = self._sequential(preserved, rest, diverse=self.strategy == "diverse")
            kept = ensure_file_diversity(kept, matches, self.min_different_files)
        except Exception as e:
            logger.warning("retrieval.dedup: deduplication failed, returning input: %s", e)
            return DedupResult(matches=list(matches))
        removed = len(matches) - len(kept)
        if removed:
            logger.debug("retrieval.dedup: %s removed %d of %d", self.strategy, removed, len(matches))
        return DedupResult(matches=kept, duplicates_removed=removed, duplicate_groups=groups)

    def _comparable(self, a: VectorSearchMatch, b: VectorSearchMatch) -> bool:
        return self.cross_file or a.chunk.path == b.chunk.path

    def _sequential(self, preserved, candidates, diverse: bool):
        """Greedy: drop a candidate whose best similarity to a kept item reaches the threshold.

        Diverse lowers the threshold by 10% for candidates from files not yet kept.
        """
        kept = list(preserved)
        files = {m.chunk.path for m in preserved}
        groups: dict[str, DuplicateGroup] = {}
        for candidate in candidates:
            best, nearest = 0.0, None
            for existing in kept:
                if not self._comparable(candidate, existing):
                    continue
                sim = match_similarity(candidate, existing)
                if sim > best:
                    best, nearest = sim, existing
            threshold = self.threshold
            if diverse and candidate.chunk.path not in files:
                threshold *= NEW_FILE_LENIENCY
            if nearest is None or best < threshold:
                kept.append(candidate)
                files.add(candidate.chunk.path)
                continue
            group = groups.setdefault(nearest.chunk.chunk_id, DuplicateGroup(nearest, similarity=best))
            group.removed.append(candidate)
        return kept, list(groups.values())

    def _max_score(self, preserved, candidates):
        """Single-link grouping against each group's first member; keep each group's best score.

        Input is score-sorted, so the first member is the best. Preserved items always
        start their own group.
        """
        groups: list[list[VectorSearchMatch]] = [[m] for m in preserved]
        for match in candidates:
            for group in groups:
                head = group[0]
                if self._comparable(match, head) and match_similarity(match, head) >= self.threshold:
                    group.append(match)
                    break
            else:
                groups.append([match])
        kept = [max(g, key=lambda m: m.score) for g in groups]
        debug = []
        for group, best in zip(groups, kept):
            removed = [m for m in group if m is not best]
            if removed:
                avg = sum(match_similarity(m, best) for m in removed) / len(removed)
                debug.append(DuplicateGroup(best, removed, avg))
        return kept, debug
