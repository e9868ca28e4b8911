"""Agglomerative clustering of embedded codes into candidate themes."""

import logging
from collections import Counter
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import ExtractionConfig
from .embeddings import compute_centroid, similarity, similarity_matrix
from .models import CandidateTheme, Code

logger = logging.getLogger(__name__)

# Similarities closer than this are treated as tied.
TIE_TOLERANCE = 1e-9


def partition_by_dimension(codes: Sequence[Code]) -> Tuple[List[Code], List[Code]]:
    """Split codes into those sharing the majority embedding dimension and the rest.

    Codes without an embedding always land in the excluded list.
    """
    embedded = [code for code in codes if code.embedding is not None]
    counts = Counter(code.embedding.dimensions for code in embedded)
    if not counts:
        return [], list(codes)

    majority = max(counts.items(), key=lambda item: (item[1], item[0]))[0]
    kept = [code for code in embedded if code.embedding.dimensions == majority]
    excluded = [
        code for code in codes
        if code.embedding is None or code.embedding.dimensions != majority
    ]
    if excluded:
        logger.warning(
            f"Excluding {len(excluded)} codes whose embeddings are missing or not {majority}-dimensional"
        )
    return kept, excluded


def representative_code(theme: CandidateTheme) -> Code:
    """The code closest to the theme centroid (first one wins on ties)."""
    best_code = theme.codes[0]
    best_score = -np.inf
    for code in theme.codes:
        if code.embedding is None:
            continue
        score = similarity(code.embedding, theme.centroid)
        if score > best_score + TIE_TOLERANCE:
            best_code, best_score = code, score
    return best_code


def build_theme(theme_id: str, codes: Sequence[Code]) -> CandidateTheme:
    """Create a theme with a freshly computed centroid and a provisional label."""
    centroid = compute_centroid([code.embedding for code in codes if code.embedding is not None])
    theme = CandidateTheme(id=theme_id, label="", codes=list(codes), centroid=centroid)
    theme.label = representative_code(theme).text
    return theme


class ClusteringEngine:
    """Hierarchical (centroid linkage) agglomeration of codes.

    Each code starts as its own cluster and the two clusters with the most
    similar centroids are merged until ``target_count`` clusters remain or
    the best similarity falls below the stop threshold. Ties prefer the pair
    with more codes, then the lowest indices, so results are deterministic.
    """

    def __init__(self, stop_threshold: float = 0.35):
        self.stop_threshold = stop_threshold
        self.last_merge_count = 0

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> "ClusteringEngine":
        return cls(stop_threshold=config.cluster_stop_threshold)

    def cluster(
        self,
        codes: Sequence[Code],
        target_count: Optional[int] = None,
        stop_threshold: Optional[float] = None,
        id_prefix: str = "theme",
    ) -> List[CandidateTheme]:
        """Group codes into candidate themes.

        Args:
            codes: Embedded codes
            target_count: Stop once this many clusters remain (None: threshold only)
            stop_threshold: Override for the similarity stop threshold
            id_prefix: Prefix for generated theme ids

        Returns:
            Candidate themes ordered by their first code
        """
        codes, _ = partition_by_dimension(codes)
        self.last_merge_count = 0
        if not codes:
            return []

        n = len(codes)
        target = max(1, target_count or 1)
        stop = self.stop_threshold if stop_threshold is None else stop_threshold

        members = [[i] for i in range(n)]
        sums = np.vstack([code.embedding.vector for code in codes]).astype(np.float64)
        counts = np.ones(n)
        centroids = sums.copy()
        centroid_norms = np.array([code.embedding.norm for code in codes])
        active = np.ones(n, dtype=bool)

        sim = similarity_matrix([code.embedding for code in codes])
        np.fill_diagonal(sim, -np.inf)

        remaining = n
        while remaining > target:
            best = sim.max()
            if not np.isfinite(best) or best < stop:
                break
            i, j = self._select_pair(sim, best, counts)

            members[i].extend(members[j])
            members[j] = []
            sums[i] += sums[j]
            counts[i] += counts[j]
            active[j] = False
            remaining -= 1
            sim[j, :] = -np.inf
            sim[:, j] = -np.inf

            centroids[i] = sums[i] / counts[i]
            centroid_norms[i] = np.linalg.norm(centroids[i])
            row = self._centroid_row(i, centroids, centroid_norms, active)
            sim[i, :] = row
            sim[:, i] = row
            self.last_merge_count += 1
            logger.debug(f"Merged clusters {i} and {j} (similarity {best:.3f}, {int(counts[i])} codes)")

        themes = []
        for index in np.flatnonzero(active):
            cluster_codes = [codes[m] for m in sorted(members[index])]
            themes.append(build_theme(f"{id_prefix}_{len(themes) + 1}", cluster_codes))

        logger.info(f"Clustered {n} codes into {len(themes)} candidate themes ({self.last_merge_count} merges)")
        return themes

    @staticmethod
    def _select_pair(sim: np.ndarray, best: float, counts: np.ndarray) -> Tuple[int, int]:
        rows, cols = np.nonzero(sim >= best - TIE_TOLERANCE)
        candidates = [(int(r), int(c)) for r, c in zip(rows, cols) if r < c]
        return min(candidates, key=lambda pair: (-(counts[pair[0]] + counts[pair[1]]), pair[0], pair[1]))

    @staticmethod
    def _centroid_row(
        index: int,
        centroids: np.ndarray,
        norms: np.ndarray,
        active: np.ndarray,
    ) -> np.ndarray:
        """Similarity of centroid ``index`` to every other active centroid."""
        with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
            row = (centroids @ centroids[index]) / (norms * norms[index])
        row[~np.isfinite(row)] = 0.0
        row = np.clip(row, -1.0, 1.0)
        row[~active] = -np.inf
        row[index] = -np.inf
        return row

    def split(self, theme: CandidateTheme, parts: int = 2) -> List[CandidateTheme]:
        """Re-cluster a theme's own codes into ``parts`` sub-themes."""
        if len(theme.codes) < parts:
            return [theme]
        subthemes = self.cluster(theme.codes, target_count=parts, stop_threshold=-np.inf)
        for k, sub in enumerate(subthemes, 1):
            sub.id = f"{theme.id}.{k}"
        return subthemes
