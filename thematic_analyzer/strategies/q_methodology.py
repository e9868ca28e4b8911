"""Q-methodology concourse: representative opinion statements per theme.

Statements are chosen for breadth of viewpoint. Within a theme the most
central code comes first and the rest are picked by greedy max-min
distance; across themes, statements that nearly duplicate a statement of
another theme are dropped.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

import numpy as np
from sklearn.metrics import davies_bouldin_score

from ..embeddings import EmbeddingWithNorm, similarity, similarity_matrix
from ..models import Code
from ..utils.text_processing import truncate
from .base import PipelineStrategy, StrategyContext, select_diverse

logger = logging.getLogger(__name__)


@dataclass
class Statement:
    id: str
    text: str
    theme_id: str
    code_id: str
    source_id: str


@dataclass
class QMethodologyResult:
    statements: List[Statement] = field(default_factory=list)
    statements_per_theme: Dict[str, int] = field(default_factory=dict)
    diversity: Dict[str, float] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'statements': [asdict(statement) for statement in self.statements],
            'statements_per_theme': dict(self.statements_per_theme),
            'diversity': dict(self.diversity),
            'warnings': list(self.warnings),
        }


class QMethodologyStrategy(PipelineStrategy):
    """Derive a diverse set of sortable statements from the final themes."""

    name = "q_methodology"

    def __init__(
        self,
        statements_per_theme: int = 3,
        min_statements_per_theme: int = 2,
        diversity_threshold: float = 0.7,
        max_statement_length: int = 200,
    ):
        if min_statements_per_theme > statements_per_theme:
            raise ValueError("min_statements_per_theme cannot exceed statements_per_theme")
        self.statements_per_theme = statements_per_theme
        self.min_statements_per_theme = min_statements_per_theme
        self.diversity_threshold = diversity_threshold
        self.max_statement_length = max_statement_length

    def statement_text(self, code: Code) -> str:
        """First excerpt of the code (a sentence from the source), or its label."""
        text = code.excerpts[0] if code.excerpts else code.text
        text = truncate(text, self.max_statement_length)
        return text if text.endswith(('.', '?', '!', '...')) else f"{text}."

    def apply(self, context: StrategyContext) -> QMethodologyResult:
        result = QMethodologyResult()
        chosen: List[tuple] = []  # (theme_id, embedding)

        for theme in context.themes:
            candidates = context.embedded_codes(theme)
            skipped = theme.size - len(candidates)
            if skipped:
                logger.debug(f"Theme '{theme.id}': skipping {skipped} codes without embeddings")
            if len(candidates) < self.min_statements_per_theme:
                result.warnings.append(
                    f"Theme '{theme.id}' has {len(candidates)} usable codes "
                    f"(minimum {self.min_statements_per_theme}); returning a reduced statement set"
                )

            count = 0
            for code, embedding in select_diverse(candidates, theme.centroid, self.statements_per_theme):
                if self._duplicates_other_theme(theme.id, embedding, chosen):
                    logger.debug(f"Dropping statement from '{code.id}': near-duplicate of another theme")
                    continue
                result.statements.append(Statement(
                    id=f"S{len(result.statements) + 1:02d}",
                    text=self.statement_text(code),
                    theme_id=theme.id,
                    code_id=code.id,
                    source_id=code.source_id,
                ))
                chosen.append((theme.id, embedding))
                count += 1
            result.statements_per_theme[theme.id] = count

        result.diversity = self.diversity_metrics(context)
        logger.info(
            f"Q-methodology: {len(result.statements)} statements from {len(context.themes)} themes "
            f"(avg theme similarity {result.diversity['avg_pairwise_similarity']:.3f})"
        )
        return result

    def _duplicates_other_theme(self, theme_id: str, embedding: EmbeddingWithNorm, chosen: List[tuple]) -> bool:
        return any(
            other_theme != theme_id and similarity(embedding, other) > self.diversity_threshold
            for other_theme, other in chosen
        )

    def diversity_metrics(self, context: StrategyContext) -> Dict[str, float]:
        """Pairwise theme similarity, redundancy, Davies-Bouldin index and source coverage."""
        themes = list(context.themes)
        all_sources = {code.source_id for code in context.codes}
        covered = {source_id for theme in themes for source_id in theme.source_ids}
        coverage = 100.0 * len(covered & all_sources) / len(all_sources) if all_sources else 0.0

        metrics = {
            'avg_pairwise_similarity': 0.0,
            'max_pairwise_similarity': 0.0,
            'redundant_pairs': 0,
            'davies_bouldin': 0.0,
            'source_coverage': coverage,
        }
        if len(themes) <= 1:
            return metrics

        matrix = similarity_matrix([theme.centroid for theme in themes])
        upper = matrix[np.triu_indices(len(themes), k=1)]
        metrics['avg_pairwise_similarity'] = float(upper.mean())
        metrics['max_pairwise_similarity'] = float(upper.max())
        metrics['redundant_pairs'] = int(np.count_nonzero(upper > self.diversity_threshold))
        metrics['davies_bouldin'] = self._davies_bouldin(context)
        return metrics

    @staticmethod
    def _davies_bouldin(context: StrategyContext) -> float:
        vectors, labels = [], []
        for index, theme in enumerate(context.themes):
            for _, embedding in context.embedded_codes(theme):
                vectors.append(embedding.vector)
                labels.append(index)

        n_labels = len(set(labels))
        if n_labels < 2 or n_labels >= len(labels) or len({v.shape for v in vectors}) > 1:
            return 0.0
        return float(davies_bouldin_score(np.vstack(vectors), labels))
