"""Shared pieces for strategies that consume extracted themes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Mapping, Sequence, Tuple

import numpy as np

from ..embeddings import EmbeddingWithNorm, similarity
from ..models import CandidateTheme, Code


@dataclass
class StrategyContext:
    """Intermediate pipeline state handed to strategies: codes, embeddings and themes."""

    codes: Sequence[Code]
    embeddings: Mapping[str, EmbeddingWithNorm]
    themes: Sequence[CandidateTheme]

    @classmethod
    def from_codes(cls, codes: Sequence[Code], themes: Sequence[CandidateTheme]) -> "StrategyContext":
        embeddings = {code.id: code.embedding for code in codes if code.embedding is not None}
        return cls(codes=codes, embeddings=embeddings, themes=themes)

    def embedded_codes(self, theme: CandidateTheme) -> List[Tuple[Code, EmbeddingWithNorm]]:
        """Codes of ``theme`` that have an embedding in this context (others are skipped)."""
        pairs = []
        for code in theme.codes:
            embedding = self.embeddings.get(code.id)
            if embedding is not None:
                pairs.append((code, embedding))
        return pairs


def rank_by_centrality(
    candidates: Sequence[Tuple[Code, EmbeddingWithNorm]],
    centroid: EmbeddingWithNorm,
) -> List[Tuple[Code, EmbeddingWithNorm, float]]:
    """Candidates sorted by similarity to the centroid, most central first (stable)."""
    scored = [(code, embedding, similarity(embedding, centroid)) for code, embedding in candidates]
    return sorted(scored, key=lambda item: -item[2])


def select_diverse(
    candidates: Sequence[Tuple[Code, EmbeddingWithNorm]],
    centroid: EmbeddingWithNorm,
    k: int,
) -> List[Tuple[Code, EmbeddingWithNorm]]:
    """Greedy max-min selection: start from the most central code, then repeatedly
    take the candidate farthest from everything already chosen."""
    if k <= 0 or not candidates:
        return []
    ranked = rank_by_centrality(candidates, centroid)
    chosen = [ranked[0][:2]]
    remaining = [item[:2] for item in ranked[1:]]

    while remaining and len(chosen) < k:
        distances = [
            min(1.0 - similarity(embedding, other) for _, other in chosen)
            for _, embedding in remaining
        ]
        best = int(np.argmax(distances))
        chosen.append(remaining.pop(best))
    return chosen


class PipelineStrategy(ABC):
    """A domain-specific consumer of the extraction's intermediate state."""

    name = "strategy"

    @abstractmethod
    def apply(self, context: StrategyContext) -> Any:
        """Derive strategy output from ``context``; never recomputes embeddings."""
