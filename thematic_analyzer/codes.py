"""Open coding: derive atomic codes from each source and embed them.

Codes are the most frequent bigrams and keywords of a source, each grounded
in up to a few sentence excerpts that contain it.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Sequence

from .cancellation import check_cancelled
from .config import ExtractionConfig
from .embeddings import EmbeddingProvider
from .models import Code, SkipRecord, Source
from .utils.text_processing import (
    bigrams,
    capitalize_label,
    collapse_near_duplicates,
    segment_sentences,
    tokenize,
    top_terms,
    truncate,
)

logger = logging.getLogger(__name__)


@dataclass
class CodeExtractionResult:
    codes: List[Code]
    skipped: List[SkipRecord] = field(default_factory=list)
    attempted: int = 0
    unavailable: int = 0

    @property
    def embedding_failures(self) -> int:
        return self.attempted - len(self.codes)


class InitialCodeExtractor:
    """Extract and embed codes for every source of a corpus."""

    def __init__(self, provider: EmbeddingProvider, config: Optional[ExtractionConfig] = None):
        self.provider = provider
        self.config = config or ExtractionConfig()

    def extract_codes(self, source: Source) -> List[Code]:
        """Derive codes (without embeddings) from one source."""
        cfg = self.config
        if not source.content or not source.content.strip():
            return []

        sentences = segment_sentences(source.content, cfg.min_sentence_length)
        if not sentences:
            return []

        words = tokenize(source.content, cfg.min_word_length)
        keywords = top_terms(words, cfg.top_keywords)
        if not keywords:
            return []

        phrases = top_terms(bigrams(words), cfg.top_bigrams) if cfg.top_bigrams else []
        labels = collapse_near_duplicates(
            phrases + keywords[:cfg.keywords_per_source],
            threshold=cfg.duplicate_label_ratio,
        )

        codes = []
        for label in labels:
            excerpts = self._find_excerpts(label, sentences)
            if not excerpts:
                continue
            text = capitalize_label(label)
            codes.append(Code(
                id=f"{source.id}:c{len(codes) + 1}",
                text=text,
                source_id=source.id,
                description=f"{text} as discussed in {source.title or source.id}",
                excerpts=tuple(excerpts),
            ))
        return codes

    def _find_excerpts(self, label: str, sentences: Sequence[str]) -> List[str]:
        needle = label.lower()
        excerpts = []
        for sentence in sentences:
            if needle in sentence.lower():
                excerpts.append(truncate(sentence, self.config.max_excerpt_length))
                if len(excerpts) >= self.config.excerpts_per_code:
                    break
        return excerpts

    def extract(self, sources: Sequence[Source], cancel_token: Optional[Any] = None) -> CodeExtractionResult:
        """Extract codes from all sources and embed each one once.

        A code whose embedding fails is dropped with a warning; the remaining
        codes are still returned.

        Args:
            sources: Validated sources
            cancel_token: Optional cancellation token

        Returns:
            CodeExtractionResult with embedded codes and skip records
        """
        check_cancelled(cancel_token, "open coding")
        skipped: List[SkipRecord] = []
        pending: List[Code] = []

        for source in sources:
            if not source.content or not source.content.strip():
                logger.warning(f"Skipping source '{source.id}': empty content")
                skipped.append(SkipRecord(source.id, 'coding', 'empty_content'))
                continue
            try:
                codes = self.extract_codes(source)
            except Exception as e:
                logger.error(f"Failed to extract codes from source '{source.id}': {str(e)}")
                skipped.append(SkipRecord(source.id, 'coding', f'extraction_failed: {e}'))
                continue
            if not codes:
                logger.warning(f"No codes extracted from source '{source.id}'")
                skipped.append(SkipRecord(source.id, 'coding', 'no_codes'))
                continue
            logger.debug(f"Extracted {len(codes)} codes from '{source.id}'")
            pending.extend(codes)

        check_cancelled(cancel_token, "code embedding")
        logger.info(f"Embedding {len(pending)} codes from {len(sources)} sources...")
        outcomes = self.provider.embed_many([code.embedding_text for code in pending], cancel_token)

        embedded: List[Code] = []
        unavailable = 0
        for code, outcome in zip(pending, outcomes):
            if outcome.ok:
                embedded.append(replace(code, embedding=outcome.embedding))
                continue
            reason = 'embedding_unavailable' if outcome.unavailable else 'embedding_rejected'
            logger.warning(f"Dropping code '{code.id}' ({code.text}): {outcome.error}")
            skipped.append(SkipRecord(code.id, 'embedding', f'{reason}: {outcome.error}'))
            if outcome.unavailable:
                unavailable += 1

        if len(embedded) < len(pending):
            logger.warning(f"Embedded {len(embedded)}/{len(pending)} codes; {len(pending) - len(embedded)} skipped")
        else:
            logger.info(f"Embedded all {len(embedded)} codes")

        return CodeExtractionResult(
            codes=embedded,
            skipped=skipped,
            attempted=len(pending),
            unavailable=unavailable,
        )
