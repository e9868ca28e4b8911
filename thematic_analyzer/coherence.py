"""Coherence scoring and adaptive acceptance of candidate themes.

Coherence is the mean pairwise cosine similarity of a theme's codes. The
acceptance bar depends on what the codes were extracted from: themes backed
by at least one full text (or overflowing abstract) must meet the strict
bar, themes built only from abstracts and transcripts the relaxed one.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from .config import ExtractionConfig
from .embeddings import similarity, similarity_matrix
from .models import NEUTRAL_COHERENCE, CandidateTheme, SkipRecord, Source

logger = logging.getLogger(__name__)


@dataclass
class RejectedTheme:
    theme: CandidateTheme
    reason: str
    coherence: float
    threshold: float

    def to_skip_record(self) -> SkipRecord:
        detail = f"{self.reason} (coherence {self.coherence:.3f}, threshold {self.threshold:.3f}, {self.theme.size} codes)"
        return SkipRecord(self.theme.id, 'validation', detail)


@dataclass
class ValidationReport:
    accepted: List[CandidateTheme] = field(default_factory=list)
    rejected: List[RejectedTheme] = field(default_factory=list)

    @property
    def rejection_reasons(self) -> Dict[str, int]:
        reasons: Dict[str, int] = {}
        for item in self.rejected:
            reasons[item.reason] = reasons.get(item.reason, 0) + 1
        return reasons


class CoherenceValidator:
    """Score theme coherence and apply the strict or relaxed acceptance bar."""

    def __init__(
        self,
        strict_threshold: float = 0.6,
        relaxed_threshold: float = 0.45,
        min_codes: int = 2,
        min_sources: int = 1,
        min_distinctiveness: float = 0.0,
    ):
        if strict_threshold < relaxed_threshold:
            raise ValueError(
                f"Strict threshold ({strict_threshold}) must not be below relaxed threshold ({relaxed_threshold})"
            )
        self.strict_threshold = strict_threshold
        self.relaxed_threshold = relaxed_threshold
        self.min_codes = min_codes
        self.min_sources = min_sources
        self.min_distinctiveness = min_distinctiveness

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> "CoherenceValidator":
        return cls(
            strict_threshold=config.strict_coherence,
            relaxed_threshold=config.relaxed_coherence,
            min_codes=config.min_theme_codes,
            min_sources=config.min_theme_sources,
            min_distinctiveness=config.min_distinctiveness,
        )

    def score(self, theme: CandidateTheme) -> float:
        """Mean pairwise similarity of the theme's codes, clamped to [0, 1].

        Themes with fewer than two embedded codes get the neutral 0.5.
        """
        embeddings = [code.embedding for code in theme.codes if code.embedding is not None]
        if len(embeddings) < 2:
            return NEUTRAL_COHERENCE

        matrix = similarity_matrix(embeddings)
        upper = matrix[np.triu_indices(len(embeddings), k=1)]
        value = float(upper.mean())
        if not np.isfinite(value):
            logger.error(f"Non-finite coherence for theme '{theme.id}'; scoring 0")
            return 0.0
        return min(1.0, max(0.0, value))

    def has_rich_sources(self, theme: CandidateTheme, sources_by_id: Mapping[str, Source]) -> bool:
        for source_id in theme.source_ids:
            source = sources_by_id.get(source_id)
            if source is not None and source.content_type.is_rich:
                return True
        return False

    def threshold_for(self, theme: CandidateTheme, sources_by_id: Mapping[str, Source]) -> float:
        """Strict bar if any contributing source is full text, relaxed bar otherwise."""
        if self.has_rich_sources(theme, sources_by_id):
            return self.strict_threshold
        return self.relaxed_threshold

    @staticmethod
    def distinctiveness(theme: CandidateTheme, others: Sequence[CandidateTheme]) -> float:
        """1 minus the highest centroid similarity to any other theme."""
        closest = max(
            (similarity(theme.centroid, other.centroid) for other in others if other is not theme),
            default=0.0,
        )
        return 1.0 - max(0.0, closest)

    def assess(self, theme: CandidateTheme, sources_by_id: Mapping[str, Source]) -> Optional[str]:
        """Score ``theme`` in place and return a rejection reason, or None if it passes."""
        theme.coherence = self.score(theme)
        theme.threshold = self.threshold_for(theme, sources_by_id)

        if theme.size < self.min_codes:
            return 'insufficient_codes'
        if len(theme.source_ids) < self.min_sources:
            return 'insufficient_sources'
        if theme.coherence < theme.threshold:
            return 'low_coherence'
        return None

    def validate(
        self,
        themes: Sequence[CandidateTheme],
        sources_by_id: Mapping[str, Source],
    ) -> ValidationReport:
        """Split themes into accepted and rejected according to the adaptive bars."""
        report = ValidationReport()
        for theme in themes:
            reason = self.assess(theme, sources_by_id)
            if reason is None and self.min_distinctiveness > 0:
                if self.distinctiveness(theme, themes) < self.min_distinctiveness:
                    reason = 'low_distinctiveness'

            if reason is None:
                report.accepted.append(theme)
            else:
                report.rejected.append(RejectedTheme(theme, reason, theme.coherence, theme.threshold))
                logger.debug(
                    f"Rejected theme '{theme.id}' ({reason}): coherence {theme.coherence:.3f} "
                    f"vs threshold {theme.threshold:.3f}"
                )

        if report.rejected:
            logger.info(
                f"Validated {len(themes)} themes: {len(report.accepted)} accepted, "
                f"{len(report.rejected)} rejected {report.rejection_reasons}"
            )
        return report
