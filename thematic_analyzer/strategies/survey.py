"""Survey construction: Likert scale items per theme.

Each theme becomes a construct. Items are picked for construct validity
(closest to the theme centroid first) and non-redundancy (no two items more
similar than ``redundancy_threshold``). Internal consistency is estimated
with standardized Cronbach's alpha from the mean inter-item similarity.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..embeddings import EmbeddingWithNorm, similarity, similarity_matrix
from .base import PipelineStrategy, StrategyContext, rank_by_centrality

logger = logging.getLogger(__name__)

LIKERT_LABELS = {
    5: ["Strongly disagree", "Disagree", "Neutral", "Agree", "Strongly agree"],
    7: ["Strongly disagree", "Disagree", "Somewhat disagree", "Neutral",
        "Somewhat agree", "Agree", "Strongly agree"],
}

ITEM_TEMPLATES = [
    "{concept} plays an important role in my experience.",
    "I often take {concept} into account.",
    "{concept} is relevant to the work I do.",
    "I have a clear understanding of {concept}.",
    "{concept} shapes the decisions I make.",
]

REVERSE_TEMPLATE = "{concept} has little bearing on my experience."

# Minimum alpha for a construct to be usable as a scale.
QUALITY_GATE_ALPHA = 0.6


@dataclass
class SurveyItem:
    id: str
    text: str
    theme_id: str
    code_id: str
    reversed: bool = False
    loading: float = 0.0


@dataclass
class Construct:
    theme_id: str
    name: str
    definition: str
    items: List[SurveyItem]
    cronbach_alpha: Optional[float]
    reliability: str
    mean_inter_item_similarity: Optional[float]

    @property
    def meets_quality_gate(self) -> bool:
        return self.cronbach_alpha is not None and self.cronbach_alpha >= QUALITY_GATE_ALPHA


@dataclass
class SurveyResult:
    constructs: List[Construct] = field(default_factory=list)
    scale: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def total_items(self) -> int:
        return sum(len(construct.items) for construct in self.constructs)

    def to_dict(self) -> Dict[str, Any]:
        constructs = []
        for construct in self.constructs:
            data = asdict(construct)
            data['meets_quality_gate'] = construct.meets_quality_gate
            constructs.append(data)
        return {
            'constructs': constructs,
            'scale': dict(self.scale),
            'total_items': self.total_items,
            'warnings': list(self.warnings),
        }


def cronbach_alpha(embeddings: Sequence[EmbeddingWithNorm]) -> Optional[float]:
    """Standardized alpha k*r / (1 + (k-1)*r) with r the mean inter-item similarity."""
    k = len(embeddings)
    if k < 2:
        return None
    matrix = similarity_matrix(embeddings)
    # Clamped so alpha stays within [0, 1]
    mean_r = max(float(matrix[np.triu_indices(k, k=1)].mean()), 0.0)
    return (k * mean_r) / (1 + (k - 1) * mean_r)


def reliability_level(alpha: Optional[float]) -> str:
    if alpha is None:
        return "insufficient_items"
    if alpha >= 0.9:
        return "excellent"
    if alpha >= 0.8:
        return "good"
    if alpha >= 0.7:
        return "acceptable"
    if alpha >= 0.6:
        return "questionable"
    if alpha >= 0.5:
        return "poor"
    return "unacceptable"


class SurveyConstructionStrategy(PipelineStrategy):
    """Turn final themes into survey constructs with Likert items."""

    name = "survey"

    def __init__(
        self,
        items_per_theme: int = 4,
        min_items: int = 3,
        redundancy_threshold: float = 0.9,
        scale_points: int = 5,
        include_reverse: bool = True,
    ):
        if scale_points not in LIKERT_LABELS:
            raise ValueError(f"scale_points must be one of {sorted(LIKERT_LABELS)}, got {scale_points}")
        if min_items > items_per_theme:
            raise ValueError("min_items cannot exceed items_per_theme")
        self.items_per_theme = items_per_theme
        self.min_items = min_items
        self.redundancy_threshold = redundancy_threshold
        self.scale_points = scale_points
        self.include_reverse = include_reverse

    def select_items(self, candidates, centroid: EmbeddingWithNorm) -> List[tuple]:
        """Most central candidates first, skipping any too similar to an item already chosen."""
        selected = []
        for code, embedding, loading in rank_by_centrality(candidates, centroid):
            if any(similarity(embedding, other) >= self.redundancy_threshold for _, other, _ in selected):
                continue
            selected.append((code, embedding, loading))
            if len(selected) >= self.items_per_theme:
                break
        return selected

    def apply(self, context: StrategyContext) -> SurveyResult:
        result = SurveyResult(scale={
            'type': 'likert',
            'points': self.scale_points,
            'labels': LIKERT_LABELS[self.scale_points],
        })

        for theme in context.themes:
            candidates = context.embedded_codes(theme)
            if not candidates:
                result.warnings.append(f"Theme '{theme.id}' has no embedded codes; no construct created")
                continue

            selected = self.select_items(candidates, theme.centroid)
            if len(selected) < self.min_items:
                result.warnings.append(
                    f"Theme '{theme.id}' yields {len(selected)} non-redundant items "
                    f"(minimum {self.min_items}); construct is reduced"
                )

            reverse_index = len(selected) // 2 if self.include_reverse and len(selected) >= 3 else None
            items = []
            for index, (code, _, loading) in enumerate(selected):
                is_reverse = index == reverse_index
                template = REVERSE_TEMPLATE if is_reverse else ITEM_TEMPLATES[index % len(ITEM_TEMPLATES)]
                items.append(SurveyItem(
                    id=f"{theme.id}-i{index + 1}",
                    text=template.format(concept=code.text),
                    theme_id=theme.id,
                    code_id=code.id,
                    reversed=is_reverse,
                    loading=loading,
                ))

            alpha = cronbach_alpha([embedding for _, embedding, _ in selected])
            mean_r = None
            if len(selected) >= 2:
                matrix = similarity_matrix([embedding for _, embedding, _ in selected])
                mean_r = float(matrix[np.triu_indices(len(selected), k=1)].mean())

            result.constructs.append(Construct(
                theme_id=theme.id,
                name=theme.label,
                definition=theme.description,
                items=items,
                cronbach_alpha=alpha,
                reliability=reliability_level(alpha),
                mean_inter_item_similarity=mean_r,
            ))

        logger.info(f"Survey: {len(result.constructs)} constructs, {result.total_items} items")
        return result
