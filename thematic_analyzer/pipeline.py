"""
Theme extraction pipeline.

Orchestrates the six phases of reflexive thematic analysis:
1. Familiarization: validate and fingerprint the corpus (result cache lookup)
2. Initial coding: extract and embed codes per source
3. Theme generation: agglomerative clustering of codes
4. Theme review: adaptive coherence validation
5. Defining and naming: merge/split refinement and labeling
6. Reporting: saturation and coverage summaries, optional strategies

Stages run one after another; work inside a stage runs concurrently. The
cancellation token is checked at every stage boundary.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .cache import ResultCache, corpus_fingerprint
from .cancellation import CancellationToken, check_cancelled
from .clustering import ClusteringEngine, partition_by_dimension
from .codes import InitialCodeExtractor
from .coherence import CoherenceValidator
from .config import ExtractionConfig
from .embeddings import EmbeddingProvider
from .exceptions import CollaboratorOutageError, InvalidSourceError
from .models import ExtractionResult, SkipRecord, Source
from .refiner import ThemeLabeler, ThemeRefiner
from .saturation import analyze_saturation, coverage_summary
from .strategies.base import PipelineStrategy, StrategyContext

logger = logging.getLogger(__name__)

SourceLike = Union[Source, Mapping[str, Any]]


def fingerprint_params(
    config: ExtractionConfig,
    model_id: str,
    target_themes: Optional[int] = None,
    llm_labels: bool = False,
    strategy_names: Sequence[str] = (),
) -> Dict[str, Any]:
    """Everything besides the sources that changes the outcome of a run."""
    params = config.to_params()
    params['embedding_model'] = model_id
    params['target_themes'] = target_themes or config.target_themes
    params['llm_labels'] = llm_labels
    params['strategies'] = list(strategy_names)
    return params


class ThemeExtractionPipeline:
    """Extract validated, labeled themes from a corpus of sources."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        complete: Optional[Callable[[str], str]] = None,
        config: Optional[ExtractionConfig] = None,
        result_cache: Optional[ResultCache] = None,
        strategies: Optional[Sequence[PipelineStrategy]] = None,
        labeler: Optional[ThemeLabeler] = None,
    ):
        """Initialize the pipeline.

        Args:
            provider: Embedding provider (wraps the external ``embed`` function)
            complete: Optional ``complete(prompt) -> text`` function used for labels.
                Without it every theme gets its deterministic fallback label.
            config: Thresholds and limits (defaults to ``ExtractionConfig()``)
            result_cache: Optional cache of complete results per corpus fingerprint
            strategies: Optional strategies applied to the final themes
            labeler: Custom labeler (overrides ``complete``)
        """
        self.config = config or ExtractionConfig()
        self.provider = provider
        self.result_cache = result_cache
        self.strategies = list(strategies or [])

        self.extractor = InitialCodeExtractor(provider, self.config)
        self.engine = ClusteringEngine.from_config(self.config)
        self.validator = CoherenceValidator.from_config(self.config)
        self.labeler = labeler or ThemeLabeler(
            complete,
            max_label_length=self.config.label_max_length,
            max_retries=self.config.max_retries,
            retry_backoff=self.config.retry_backoff,
            sleep=provider.sleep,
            max_workers=self.config.remote_concurrency,
        )
        self.refiner = ThemeRefiner.from_config(self.config, self.engine, self.validator, self.labeler)

    @staticmethod
    def prepare_sources(sources: Iterable[SourceLike]) -> List[Source]:
        """Validate records and reject duplicate ids.

        Raises:
            InvalidSourceError: for malformed records or duplicate ids
        """
        prepared = []
        seen = set()
        for record in sources:
            source = record if isinstance(record, Source) else Source.from_dict(record)
            if source.id in seen:
                raise InvalidSourceError(f"Duplicate source id '{source.id}'")
            seen.add(source.id)
            prepared.append(source)
        return prepared

    def fingerprint(self, sources: Sequence[Source], target_themes: Optional[int] = None) -> str:
        params = fingerprint_params(
            self.config,
            self.provider.model_id,
            target_themes=target_themes,
            llm_labels=self.labeler.complete is not None,
            strategy_names=[strategy.name for strategy in self.strategies],
        )
        return corpus_fingerprint(sources, params)

    def _embedding_delta(self, before: Dict[str, int]) -> Dict[str, int]:
        """Provider counters accumulated since ``before`` was read."""
        after = self.provider.stats
        return {key: after[key] - before.get(key, 0) for key in after}

    def run(
        self,
        sources: Iterable[SourceLike],
        cancel_token: Optional[CancellationToken] = None,
        target_themes: Optional[int] = None,
    ) -> ExtractionResult:
        """Run the full extraction.

        Args:
            sources: Source objects or raw records
            cancel_token: Optional token; cancellation raises PipelineCancelledError
            target_themes: Optional override for the clustering target count

        Returns:
            ExtractionResult with final themes and summaries

        Raises:
            InvalidSourceError: for malformed input
            CollaboratorOutageError: if every embedding request failed
            PipelineCancelledError: if the run was cancelled
        """
        start_time = time.time()
        embedding_before = self.provider.stats
        sources = self.prepare_sources(sources)
        check_cancelled(cancel_token, "familiarization")

        logger.info(f"{'='*60}")
        logger.info("THEME EXTRACTION PIPELINE")
        logger.info(f"{'='*60}")
        logger.info(f"Sources: {len(sources)}")
        logger.info(f"Embedding model: {self.provider.model_id}")

        fingerprint = self.fingerprint(sources, target_themes)
        if self.result_cache is not None:
            cached = self.result_cache.get(fingerprint)
            if isinstance(cached, ExtractionResult):
                logger.info(f"Returning cached result ({len(cached.themes)} themes)")
                return cached
            if cached is not None:
                logger.error(f"Discarding corrupt result cache entry for {fingerprint[:12]}")
                self.result_cache.invalidate(fingerprint)

        if not sources:
            logger.warning("No sources supplied; nothing to extract")

        sources_by_id = {source.id: source for source in sources}
        skipped: List[SkipRecord] = []

        # Phase 2: initial coding
        logger.info("Phase 2: extracting and embedding codes...")
        extraction = self.extractor.extract(sources, cancel_token)
        skipped.extend(extraction.skipped)
        if extraction.attempted and not extraction.codes and extraction.unavailable == extraction.attempted:
            raise CollaboratorOutageError(
                f"All {extraction.attempted} embedding requests failed; the embedding backend appears to be unavailable"
            )

        # Phase 3: theme generation
        check_cancelled(cancel_token, "clustering")
        codes, excluded = partition_by_dimension(extraction.codes)
        skipped.extend(SkipRecord(code.id, 'clustering', 'dimension_mismatch') for code in excluded)
        target = target_themes or self.config.target_themes or self.config.max_themes
        logger.info(f"Phase 3: clustering {len(codes)} codes (target {target} themes)...")
        candidates = self.engine.cluster(codes, target_count=target)

        # Phase 4: theme review
        check_cancelled(cancel_token, "validation")
        initial = self.validator.validate(candidates, sources_by_id)
        logger.info(
            f"Phase 4: {len(initial.accepted)}/{len(candidates)} candidate themes pass coherence before refinement"
        )

        # Phase 5: refine and name
        check_cancelled(cancel_token, "refinement")
        logger.info("Phase 5: refining and labeling themes...")
        refinement = self.refiner.refine(candidates, sources_by_id, cancel_token)
        skipped.extend(rejected.to_skip_record() for rejected in refinement.rejected)
        themes = refinement.themes

        # Phase 6: report
        check_cancelled(cancel_token, "reporting")
        saturation = analyze_saturation(themes, sources, self.config)
        coverage = coverage_summary(sources, codes, themes)

        stats = {
            'sources': len(sources),
            'sources_skipped': sum(1 for record in skipped if record.stage == 'coding'),
            'codes_extracted': extraction.attempted,
            'codes_embedded': len(extraction.codes),
            'codes_skipped': extraction.embedding_failures + len(excluded),
            'candidate_themes': len(candidates),
            'initially_accepted': len(initial.accepted),
            'merges': refinement.merges,
            'splits': refinement.splits,
            'refinement_passes': refinement.passes,
            'themes_rejected': len(refinement.rejected),
            'final_themes': len(themes),
            'fallback_labels': refinement.fallback_labels,
            'embedding': self._embedding_delta(embedding_before),
            'duration_seconds': round(time.time() - start_time, 3),
        }
        result = ExtractionResult(
            themes=themes,
            saturation=saturation,
            coverage=coverage,
            skipped=skipped,
            stats=stats,
            fingerprint=fingerprint,
        )

        if self.strategies:
            context = StrategyContext.from_codes(codes, themes)
            for strategy in self.strategies:
                check_cancelled(cancel_token, f"strategy {strategy.name}")
                result.strategy_outputs[strategy.name] = strategy.apply(context)

        if self.result_cache is not None:
            self.result_cache.put(fingerprint, result)

        logger.info(f"{'='*60}")
        logger.info("RESULTS SUMMARY")
        logger.info(f"{'='*60}")
        for theme in themes:
            logger.info(
                f"  {theme.label}: {theme.size} codes, {len(theme.source_ids)} sources, "
                f"coherence {theme.coherence:.3f}"
            )
        logger.info(f"Skipped units: {len(skipped)}")
        logger.info(f"Coverage: {coverage['source_coverage']:.0%} of sources")
        logger.info(f"Saturation: {saturation['recommendation']}")
        logger.info(f"PIPELINE COMPLETE in {stats['duration_seconds']:.1f}s")
        logger.info(f"{'='*60}")
        return result


def extract_themes(
    sources: Iterable[SourceLike],
    embed: Callable[[str], Any],
    complete: Optional[Callable[[str], str]] = None,
    config: Optional[ExtractionConfig] = None,
    **kwargs,
) -> ExtractionResult:
    """Convenience function to run the pipeline with a bare ``embed`` function.

    Args:
        sources: Source objects or raw records
        embed: ``embed(text) -> vector`` function
        complete: Optional ``complete(prompt) -> text`` function for labels
        config: Optional configuration
        **kwargs: Passed on to ``ThemeExtractionPipeline.run``

    Returns:
        ExtractionResult
    """
    config = config or ExtractionConfig()
    provider = EmbeddingProvider.from_config(embed, config)
    pipeline = ThemeExtractionPipeline(provider, complete=complete, config=config)
    return pipeline.run(sources, **kwargs)
