"""Theme review and naming: merge near-duplicates, split incoherent themes, label.

Labeling goes through an injected ``complete(prompt) -> text`` function
(``OpenAICompletion`` by default in the CLI). A failing or unparseable
completion never loses a theme; it falls back to the label of the theme's
most representative code.
"""

import json
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from openai import OpenAI

from .cancellation import check_cancelled
from .clustering import TIE_TOLERANCE, ClusteringEngine, build_theme, representative_code
from .coherence import CoherenceValidator, RejectedTheme
from .config import ExtractionConfig
from .embeddings import similarity
from .exceptions import PipelineCancelledError
from .models import CandidateTheme, Source
from .utils.retry import call_with_retry
from .utils.text_processing import tokenize, top_terms

logger = logging.getLogger(__name__)

LABEL_SYSTEM_PROMPT = (
    "You are an expert qualitative researcher naming themes in a reflexive thematic "
    "analysis (Braun & Clarke). You answer with valid JSON only."
)

LABEL_PROMPT = """The following codes were grouped into one theme:
{codes}

Representative excerpts:
{excerpts}

Name the theme with a concise label (2-6 words) and describe it in one sentence.

Respond with JSON only: {{"label": "...", "description": "..."}}"""


class OpenAICompletion:
    """``complete(prompt) -> text`` backed by OpenAI chat completions."""

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini",
                 temperature: float = 0.2, max_tokens: int = 200):
        self.client = OpenAI(api_key=api_key) if api_key else OpenAI()
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def __call__(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": LABEL_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""


class ThemeLabeler:
    """Name and describe themes, falling back to a deterministic local label."""

    def __init__(
        self,
        complete: Optional[Callable[[str], str]] = None,
        max_label_length: int = 80,
        max_retries: int = 2,
        retry_backoff: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        max_codes_in_prompt: int = 15,
        max_workers: int = 8,
    ):
        self.complete = complete
        self.max_label_length = max_label_length
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.sleep = sleep
        self.max_codes_in_prompt = max_codes_in_prompt
        self.max_workers = max_workers
        self.fallback_count = 0
        self._lock = threading.Lock()

    @staticmethod
    def keywords(theme: CandidateTheme, n: int = 7) -> List[str]:
        words = tokenize(' '.join(code.text for code in theme.codes))
        return top_terms(words, n)

    def fallback(self, theme: CandidateTheme) -> Tuple[str, str]:
        """Label from the most representative code plus a keyword description."""
        label = representative_code(theme).text[:self.max_label_length]
        keywords = theme.keywords or self.keywords(theme)
        sources = len(theme.source_ids)
        description = (
            f"Theme spanning {theme.size} codes from {sources} "
            f"source{'s' if sources != 1 else ''}, centred on {', '.join(keywords[:5]) or label.lower()}."
        )
        return label, description

    def build_prompt(self, theme: CandidateTheme) -> str:
        codes = [f"- {code.text}" for code in theme.codes[:self.max_codes_in_prompt]]
        if theme.size > self.max_codes_in_prompt:
            codes.append(f"- ... and {theme.size - self.max_codes_in_prompt} more")
        excerpts = []
        for code in theme.codes[:3]:
            if code.excerpts:
                excerpts.append(f'- "{code.excerpts[0]}"')
        return LABEL_PROMPT.format(
            codes='\n'.join(codes),
            excerpts='\n'.join(excerpts) or '- (none)',
        )

    def parse_response(self, text: str) -> Optional[Tuple[str, str]]:
        """Pull ``label`` and ``description`` out of a JSON completion."""
        if not text:
            return None
        match = re.search(r'\{.*\}', text, re.DOTALL)
        if not match:
            return None
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None

        label = data.get('label')
        if not isinstance(label, str) or not label.strip():
            return None
        label = ' '.join(label.split()).strip('"\'')[:self.max_label_length]
        description = data.get('description')
        description = ' '.join(description.split()) if isinstance(description, str) else ''
        return label, description

    def label(self, theme: CandidateTheme, cancel_token: Optional[Any] = None) -> CandidateTheme:
        """Set ``label``, ``description`` and ``keywords`` on ``theme`` in place."""
        self._apply(theme, cancel_token)
        return theme

    def label_all(self, themes: Sequence[CandidateTheme], cancel_token: Optional[Any] = None) -> int:
        """Label themes concurrently (at most ``max_workers`` completions in flight).

        Returns:
            Number of themes that got the fallback label in this call
        """
        if not themes:
            return 0
        workers = min(self.max_workers, len(themes))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self._apply, theme, cancel_token) for theme in themes]
            return sum(1 for future in futures if future.result())

    def _apply(self, theme: CandidateTheme, cancel_token: Optional[Any]) -> bool:
        """Label one theme; True when the fallback label was used."""
        theme.keywords = self.keywords(theme)
        parsed = None

        if self.complete is not None:
            prompt = self.build_prompt(theme)
            try:
                response = call_with_retry(
                    lambda: self.complete(prompt),
                    max_retries=self.max_retries,
                    backoff=self.retry_backoff,
                    sleep=self.sleep,
                    description=f"Labeling theme '{theme.id}'",
                    cancel_token=cancel_token,
                )
                parsed = self.parse_response(response)
                if parsed is None:
                    logger.warning(f"Unparseable label response for theme '{theme.id}'; using fallback label")
            except PipelineCancelledError:
                raise
            except Exception as e:
                logger.warning(f"Labeling failed for theme '{theme.id}': {str(e)}; using fallback label")

        used_fallback = parsed is None
        if used_fallback:
            with self._lock:
                self.fallback_count += 1
            parsed = self.fallback(theme)

        theme.label, theme.description = parsed
        return used_fallback


@dataclass
class RefinementResult:
    themes: List[CandidateTheme]
    rejected: List[RejectedTheme] = field(default_factory=list)
    passes: int = 0
    merges: int = 0
    splits: int = 0
    fallback_labels: int = 0


class ThemeRefiner:
    """Iteratively merge and split candidate themes, then validate and label them."""

    def __init__(
        self,
        engine: ClusteringEngine,
        validator: CoherenceValidator,
        labeler: Optional[ThemeLabeler] = None,
        merge_threshold: float = 0.85,
        split_min_codes: int = 4,
        max_passes: int = 3,
    ):
        self.engine = engine
        self.validator = validator
        self.labeler = labeler or ThemeLabeler()
        self.merge_threshold = merge_threshold
        self.split_min_codes = split_min_codes
        self.max_passes = max_passes

    @classmethod
    def from_config(
        cls,
        config: ExtractionConfig,
        engine: ClusteringEngine,
        validator: CoherenceValidator,
        labeler: Optional[ThemeLabeler] = None,
    ) -> "ThemeRefiner":
        return cls(
            engine,
            validator,
            labeler=labeler,
            merge_threshold=config.merge_threshold,
            split_min_codes=config.split_min_codes,
            max_passes=config.max_refinement_passes,
        )

    def merge_near_duplicates(self, themes: List[CandidateTheme]) -> Tuple[List[CandidateTheme], int]:
        """Merge theme pairs whose centroids are more similar than the merge bar."""
        themes = list(themes)
        merges = 0
        while len(themes) > 1:
            best = None
            for i in range(len(themes)):
                for j in range(i + 1, len(themes)):
                    score = similarity(themes[i].centroid, themes[j].centroid)
                    if score <= self.merge_threshold:
                        continue
                    combined = themes[i].size + themes[j].size
                    if (best is None or score > best[0] + TIE_TOLERANCE
                            or (abs(score - best[0]) <= TIE_TOLERANCE and combined > best[1])):
                        best = (score, combined, i, j)
            if best is None:
                break

            score, _, i, j = best
            logger.debug(f"Merging near-duplicate themes '{themes[i].id}' and '{themes[j].id}' ({score:.3f})")
            themes[i] = build_theme(themes[i].id, themes[i].codes + themes[j].codes)
            del themes[j]
            merges += 1
        return themes, merges

    def split_incoherent(
        self,
        themes: List[CandidateTheme],
        sources_by_id: Mapping[str, Source],
    ) -> Tuple[List[CandidateTheme], int]:
        """Split each theme below its coherence bar into two re-clustered sub-themes."""
        result = []
        splits = 0
        for theme in themes:
            reason = self.validator.assess(theme, sources_by_id)
            if reason == 'low_coherence' and theme.size >= self.split_min_codes:
                parts = self.engine.split(theme)
                if len(parts) == 2:
                    logger.debug(
                        f"Split theme '{theme.id}' (coherence {theme.coherence:.3f}) into "
                        f"{parts[0].size} + {parts[1].size} codes"
                    )
                    result.extend(parts)
                    splits += 1
                    continue
            result.append(theme)
        return result, splits

    def refine(
        self,
        themes: List[CandidateTheme],
        sources_by_id: Mapping[str, Source],
        cancel_token: Optional[Any] = None,
    ) -> RefinementResult:
        """Run merge/split passes until nothing changes, then validate and label.

        Args:
            themes: Candidate themes from clustering
            sources_by_id: Sources used to pick the coherence bar per theme
            cancel_token: Optional cancellation token

        Returns:
            RefinementResult with labeled accepted themes and rejected ones
        """
        result = RefinementResult(themes=list(themes))
        for pass_number in range(1, self.max_passes + 1):
            check_cancelled(cancel_token, f"refinement pass {pass_number}")
            merged_themes, merges = self.merge_near_duplicates(result.themes)
            split_themes, splits = self.split_incoherent(merged_themes, sources_by_id)

            result.themes = split_themes
            result.passes = pass_number
            result.merges += merges
            result.splits += splits
            logger.info(
                f"Refinement pass {pass_number}: {merges} merges, {splits} splits, "
                f"{len(split_themes)} themes"
            )
            if merges == 0 and splits == 0:
                break

        report = self.validator.validate(result.themes, sources_by_id)
        result.themes = report.accepted
        result.rejected = report.rejected

        check_cancelled(cancel_token, "labeling")
        result.fallback_labels = self.labeler.label_all(result.themes, cancel_token)
        return result
