"""Tunable thresholds and limits for theme extraction.

Values can come from a YAML file and from ``THEMATIC_*`` environment
variables (environment wins), e.g.::

    extraction:
      strict_coherence: 0.6
      relaxed_coherence: 0.45
      merge_threshold: 0.85
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "THEMATIC_"


@dataclass
class ExtractionConfig:
    # Embedding infrastructure
    embedding_model: str = "text-embedding-3-small"
    local_concurrency: int = 100
    remote_concurrency: int = 8
    embedding_cache_size: int = 10000
    embedding_cache_ttl: float = 86400.0
    result_cache_size: int = 100
    result_cache_ttl: float = 86400.0
    max_retries: int = 3
    retry_backoff: float = 0.5

    # Open coding
    min_sentence_length: int = 20
    min_word_length: int = 3
    top_keywords: int = 10
    top_bigrams: int = 5
    keywords_per_source: int = 3
    excerpts_per_code: int = 3
    max_excerpt_length: int = 300
    duplicate_label_ratio: float = 90.0

    # Clustering
    cluster_stop_threshold: float = 0.35
    target_themes: Optional[int] = None
    max_themes: int = 20

    # Validation
    strict_coherence: float = 0.6
    relaxed_coherence: float = 0.45
    min_theme_codes: int = 2
    min_theme_sources: int = 1
    min_distinctiveness: float = 0.0

    # Refinement
    merge_threshold: float = 0.85
    split_min_codes: int = 4
    max_refinement_passes: int = 3

    # Labeling
    labeling_model: str = "gpt-4o-mini"
    label_max_length: int = 80

    # Saturation
    new_theme_threshold: int = 1
    saturation_posterior_threshold: float = 0.8
    low_probability_threshold: float = 0.2
    power_law_threshold: float = 0.5
    r_squared_threshold: float = 0.7
    robustness_threshold: float = 0.75
    saturation_permutations: int = 100
    random_seed: int = 42

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check ranges and relationships between thresholds.

        Raises:
            ValueError: if any setting is out of range
        """
        for name in ('local_concurrency', 'remote_concurrency', 'embedding_cache_size',
                     'result_cache_size', 'top_keywords', 'excerpts_per_code',
                     'max_excerpt_length', 'max_themes', 'min_theme_codes',
                     'min_theme_sources', 'split_min_codes', 'max_refinement_passes',
                     'label_max_length', 'saturation_permutations'):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1, got {getattr(self, name)}")

        for name in ('max_retries', 'top_bigrams', 'keywords_per_source', 'min_sentence_length',
                     'min_word_length', 'new_theme_threshold'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative, got {getattr(self, name)}")

        for name in ('embedding_cache_ttl', 'result_cache_ttl'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.retry_backoff < 0:
            raise ValueError(f"retry_backoff must not be negative, got {self.retry_backoff}")

        for name in ('strict_coherence', 'relaxed_coherence', 'min_distinctiveness',
                     'saturation_posterior_threshold', 'low_probability_threshold',
                     'r_squared_threshold', 'robustness_threshold'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")

        for name in ('cluster_stop_threshold', 'merge_threshold'):
            value = getattr(self, name)
            if not -1.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between -1 and 1, got {value}")

        if self.strict_coherence < self.relaxed_coherence:
            raise ValueError(
                f"strict_coherence ({self.strict_coherence}) must be >= "
                f"relaxed_coherence ({self.relaxed_coherence})"
            )
        if self.target_themes is not None and self.target_themes < 1:
            raise ValueError(f"target_themes must be at least 1, got {self.target_themes}")
        if not 0.0 <= self.duplicate_label_ratio <= 100.0:
            raise ValueError(f"duplicate_label_ratio must be between 0 and 100, got {self.duplicate_label_ratio}")

    def to_params(self) -> Dict[str, Any]:
        """Settings that influence extraction output (used in result-cache fingerprints)."""
        params = asdict(self)
        for name in ('local_concurrency', 'remote_concurrency', 'embedding_cache_size',
                     'embedding_cache_ttl', 'result_cache_size', 'result_cache_ttl',
                     'max_retries', 'retry_backoff'):
            params.pop(name)
        return params

    def replace(self, **changes) -> "ExtractionConfig":
        values = asdict(self)
        values.update(changes)
        return ExtractionConfig(**values)


def _coerce(value: str, current: Any, name: str) -> Any:
    """Convert an environment string to the type of the field's default."""
    text = value.strip()
    if name == 'target_themes':
        return None if text.lower() in {'', 'none', 'auto'} else int(text)
    if isinstance(current, bool):
        return text.lower() in {"1", "true", "yes", "y", "on"}
    if isinstance(current, int):
        return int(text)
    if isinstance(current, float):
        return float(text)
    return text


def _env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    defaults = ExtractionConfig()
    overrides = {}
    for f in fields(ExtractionConfig):
        key = f"{ENV_PREFIX}{f.name.upper()}"
        if key not in environ:
            continue
        try:
            overrides[f.name] = _coerce(environ[key], getattr(defaults, f.name), f.name)
        except ValueError:
            raise ValueError(f"Invalid value for {key}: {environ[key]!r}")
    return overrides


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ExtractionConfig:
    """Load an ExtractionConfig from YAML and environment overrides.

    Args:
        path: Optional YAML file. Settings may sit at the top level or under
            an ``extraction:`` key.
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated configuration
    """
    values: Dict[str, Any] = {}
    if path is not None:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        data = data.get('extraction', data)

        known = {f.name for f in fields(ExtractionConfig)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {', '.join(sorted(unknown))}")
        values.update(data)
        logger.info(f"Loaded extraction config from {path}")

    values.update(_env_overrides(environ))
    return ExtractionConfig(**values)
