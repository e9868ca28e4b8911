"""Theoretical saturation and coverage summaries for an extraction run.

Saturation combines three signals computed on the theme emergence curve
(new themes contributed by each successive source):

1. Bayesian: Beta(1, 1) prior on the probability that a source yields new
   themes; saturated when P(p < 0.2 | data) > 0.8
2. Power law: new themes ~ a * n^-b fitted in log-log space; saturating
   when b > 0.5 and R^2 > 0.7
3. Robustness: share of shuffled source orders that are still saturated
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from scipy.stats import beta as beta_distribution

from .config import ExtractionConfig
from .models import CandidateTheme, Code, Source

logger = logging.getLogger(__name__)


def emergence_curve(themes: Sequence[CandidateTheme], sources: Sequence[Source]) -> List[Dict[str, Any]]:
    """New and cumulative theme counts as sources are read in the given order."""
    theme_sources = [set(theme.source_ids) for theme in themes]
    discovered = set()
    curve = []
    for index, source in enumerate(sources):
        new_themes = 0
        for theme_index, source_ids in enumerate(theme_sources):
            if theme_index not in discovered and source.id in source_ids:
                discovered.add(theme_index)
                new_themes += 1
        cumulative = len(discovered)
        curve.append({
            'source_index': index,
            'source_id': source.id,
            'new_themes': new_themes,
            'cumulative_themes': cumulative,
            'percentage_new': (new_themes / cumulative * 100) if cumulative else 0.0,
        })
    return curve


def bayesian_saturation(
    new_theme_counts: Sequence[int],
    new_theme_threshold: int = 1,
    low_probability: float = 0.2,
    posterior_threshold: float = 0.8,
) -> Dict[str, Any]:
    """Beta-Binomial saturation test over the emergence curve."""
    alpha, beta = 1.0, 1.0
    saturation_point = None
    for i, new_themes in enumerate(new_theme_counts):
        if new_themes > new_theme_threshold:
            alpha += 1
        else:
            beta += 1
        if saturation_point is None and beta_distribution.cdf(low_probability, alpha, beta) > posterior_threshold:
            saturation_point = i + 1

    posterior = float(beta_distribution.cdf(low_probability, alpha, beta))
    lower, upper = beta_distribution.ppf([0.025, 0.975], alpha, beta)
    return {
        'is_saturated': posterior > posterior_threshold,
        'saturation_point': saturation_point,
        'posterior_probability': posterior,
        'credible_interval': [float(lower), float(upper)],
        'alpha': alpha,
        'beta': beta,
        'posterior_mean': alpha / (alpha + beta),
    }


def fit_power_law(
    new_theme_counts: Sequence[int],
    exponent_threshold: float = 0.5,
    r_squared_threshold: float = 0.7,
) -> Dict[str, Any]:
    """Fit new_themes = a * n^-b in log-log space."""
    if len(new_theme_counts) < 3:
        return {'a': 0.0, 'b': 0.0, 'r_squared': 0.0, 'saturating': False}

    x = np.log(np.arange(1, len(new_theme_counts) + 1))
    y = np.log(np.maximum(np.asarray(new_theme_counts, dtype=float), 0.1))
    slope, intercept = np.polyfit(x, y, 1)

    predicted = intercept + slope * x
    ss_total = float(((y - y.mean()) ** 2).sum())
    ss_residual = float(((y - predicted) ** 2).sum())
    r_squared = 1 - ss_residual / ss_total if ss_total > 0 else 0.0
    b = float(-slope)
    return {
        'a': float(math.exp(intercept)),
        'b': b,
        'r_squared': r_squared,
        'saturating': b > exponent_threshold and r_squared > r_squared_threshold,
    }


def order_robustness(
    themes: Sequence[CandidateTheme],
    sources: Sequence[Source],
    config: ExtractionConfig,
) -> Dict[str, Any]:
    """Share of random source orders under which the corpus still looks saturated."""
    rng = np.random.default_rng(config.random_seed)
    outcomes = []
    for _ in range(config.saturation_permutations):
        order = rng.permutation(len(sources))
        curve = emergence_curve(themes, [sources[i] for i in order])
        result = bayesian_saturation(
            [point['new_themes'] for point in curve],
            config.new_theme_threshold,
            config.low_probability_threshold,
            config.saturation_posterior_threshold,
        )
        outcomes.append(result['is_saturated'])

    score = sum(outcomes) / len(outcomes) if outcomes else 0.0
    return {
        'robustness_score': score,
        'permutations': len(outcomes),
        'is_robust': score > config.robustness_threshold,
    }


def _recommendation(bayesian: Dict, power_law: Dict, robustness: Dict, confidence: float, n_sources: int) -> str:
    pct = f"{confidence * 100:.0f}%"
    if bayesian['is_saturated'] and power_law['saturating'] and robustness['is_robust']:
        return (f"High confidence saturation ({pct}): all three signals agree. "
                f"Additional sources are unlikely to yield new themes.")
    if bayesian['is_saturated'] and power_law['saturating']:
        return (f"Moderate saturation ({pct}): Bayesian and power-law signals agree, "
                f"robustness {robustness['robustness_score'] * 100:.0f}%. "
                f"Consider 2-3 more sources to confirm.")
    if bayesian['is_saturated']:
        return (f"Weak saturation signal ({pct}): only the Bayesian signal is present. "
                f"Collect 5-10 more sources.")
    return (f"No saturation ({pct}): new themes are still emerging "
            f"(posterior {bayesian['posterior_probability'] * 100:.0f}%). "
            f"Target about {math.ceil(n_sources * 1.5)} sources.")


def analyze_saturation(
    themes: Sequence[CandidateTheme],
    sources: Sequence[Source],
    config: Optional[ExtractionConfig] = None,
) -> Dict[str, Any]:
    """Saturation summary for the final themes over the corpus in input order."""
    config = config or ExtractionConfig()
    if not themes or not sources:
        return {
            'is_saturated': False,
            'saturation_point': None,
            'confidence': 0.0,
            'recommendation': "No themes were extracted; saturation cannot be assessed.",
            'emergence_curve': [],
        }

    curve = emergence_curve(themes, sources)
    counts = [point['new_themes'] for point in curve]
    bayesian = bayesian_saturation(
        counts,
        config.new_theme_threshold,
        config.low_probability_threshold,
        config.saturation_posterior_threshold,
    )
    power_law = fit_power_law(counts, config.power_law_threshold, config.r_squared_threshold)
    robustness = order_robustness(themes, sources, config)

    product = bayesian['posterior_probability'] * max(power_law['r_squared'], 0.0) * robustness['robustness_score']
    confidence = product ** (1 / 3)
    is_saturated = bayesian['is_saturated'] and power_law['saturating'] and robustness['is_robust']

    logger.info(
        f"Saturation: {'reached' if is_saturated else 'not reached'} "
        f"(posterior {bayesian['posterior_probability']:.2f}, b={power_law['b']:.2f}, "
        f"R²={power_law['r_squared']:.2f}, robustness {robustness['robustness_score']:.2f})"
    )
    return {
        'is_saturated': is_saturated,
        'saturation_point': bayesian['saturation_point'],
        'confidence': confidence,
        'recommendation': _recommendation(bayesian, power_law, robustness, confidence, len(sources)),
        'bayesian': bayesian,
        'power_law': power_law,
        'robustness': robustness,
        'emergence_curve': curve,
    }


def coverage_summary(
    sources: Sequence[Source],
    codes: Sequence[Code],
    themes: Sequence[CandidateTheme],
) -> Dict[str, Any]:
    """How much of the corpus and of the extracted codes the final themes account for."""
    sources_with_codes = {code.source_id for code in codes}
    sources_in_themes = {source_id for theme in themes for source_id in theme.source_ids}
    codes_in_themes = sum(theme.size for theme in themes)

    def _ratio(part: int, whole: int) -> float:
        return part / whole if whole else 0.0

    return {
        'total_sources': len(sources),
        'sources_with_codes': len(sources_with_codes),
        'sources_in_themes': len(sources_in_themes),
        'source_coverage': _ratio(len(sources_in_themes), len(sources)),
        'total_codes': len(codes),
        'codes_in_themes': codes_in_themes,
        'code_coverage': _ratio(codes_in_themes, len(codes)),
    }
