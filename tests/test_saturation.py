"""Tests for saturation analysis and coverage summaries."""

import pytest

from thematic_analyzer.config import ExtractionConfig
from thematic_analyzer.models import ContentType, Source
from thematic_analyzer.saturation import (
    analyze_saturation,
    bayesian_saturation,
    coverage_summary,
    emergence_curve,
    fit_power_law,
    order_robustness,
)


def _sources(n):
    return [Source(id=f"s{i}", content="text", content_type=ContentType.ABSTRACT) for i in range(1, n + 1)]


@pytest.fixture
def themes(make_code, make_theme):
    return [
        make_theme("t1", [make_code("s1:c1", [1.0, 0.0], source_id="s1"),
                          make_code("s3:c1", [1.0, 0.1], source_id="s3")]),
        make_theme("t2", [make_code("s1:c2", [0.0, 1.0], source_id="s1"),
                          make_code("s2:c1", [0.1, 1.0], source_id="s2")]),
        make_theme("t3", [make_code("s4:c1", [1.0, 1.0], source_id="s4"),
                          make_code("s4:c2", [1.0, 0.9], source_id="s4")]),
    ]


class TestEmergenceCurve:
    """Test theme emergence tracking."""

    def test_curve(self, themes):
        curve = emergence_curve(themes, _sources(5))

        assert [p['new_themes'] for p in curve] == [2, 0, 0, 1, 0]
        assert [p['cumulative_themes'] for p in curve] == [2, 2, 2, 3, 3]
        assert curve[3]['percentage_new'] == pytest.approx(100 / 3)
        assert curve[0]['source_id'] == "s1"

    def test_empty_themes(self):
        curve = emergence_curve([], _sources(2))
        assert [p['new_themes'] for p in curve] == [0, 0]
        assert curve[0]['percentage_new'] == 0.0


class TestBayesianSaturation:
    """Test the Beta-Binomial saturation signal."""

    def test_saturates_after_enough_quiet_sources(self):
        result = bayesian_saturation([0] * 10)
        assert result['is_saturated'] is True
        # 1 - 0.8^beta > 0.8 first holds at beta = 8, i.e. after 7 sources
        assert result['saturation_point'] == 7
        assert result['alpha'] == 1.0
        assert result['beta'] == 11.0

    def test_not_saturated_while_themes_emerge(self):
        result = bayesian_saturation([3, 2, 4, 2, 3, 2])
        assert result['is_saturated'] is False
        assert result['saturation_point'] is None
        assert result['posterior_mean'] == pytest.approx(7 / 8)

    def test_credible_interval_bounds(self):
        lower, upper = bayesian_saturation([0, 2, 0, 0])['credible_interval']
        assert 0.0 <= lower < upper <= 1.0


class TestPowerLaw:
    """Test the power-law decay signal."""

    def test_exact_power_law(self):
        result = fit_power_law([12, 6, 4, 3])
        assert result['b'] == pytest.approx(1.0)
        assert result['a'] == pytest.approx(12.0)
        assert result['r_squared'] == pytest.approx(1.0)
        assert result['saturating'] is True

    def test_flat_curve_not_saturating(self):
        result = fit_power_law([2, 2, 2, 2, 2])
        assert result['saturating'] is False
        assert result['r_squared'] == 0.0

    def test_too_few_points(self):
        assert fit_power_law([3, 1])['saturating'] is False


class TestAnalyzeSaturation:
    """Test the combined saturation summary."""

    def test_no_themes(self):
        result = analyze_saturation([], _sources(3))
        assert result['is_saturated'] is False
        assert result['confidence'] == 0.0
        assert "No themes" in result['recommendation']

    def test_summary_keys(self, themes):
        config = ExtractionConfig(saturation_permutations=10)
        result = analyze_saturation(themes, _sources(5), config)

        assert set(result) >= {'is_saturated', 'saturation_point', 'confidence', 'recommendation',
                               'bayesian', 'power_law', 'robustness', 'emergence_curve'}
        assert 0.0 <= result['confidence'] <= 1.0
        assert result['robustness']['permutations'] == 10

    def test_robustness_is_seeded(self, themes):
        config = ExtractionConfig(saturation_permutations=15, random_seed=7)
        first = order_robustness(themes, _sources(5), config)
        second = order_robustness(themes, _sources(5), config)
        assert first == second


class TestCoverage:
    """Test coverage summaries."""

    def test_coverage(self, themes, make_code):
        codes = [code for theme in themes for code in theme.codes] + [make_code("s5:c1", [1.0, 0.0], source_id="s5")]
        coverage = coverage_summary(_sources(6), codes, themes[:2])

        assert coverage['total_sources'] == 6
        assert coverage['sources_with_codes'] == 5
        assert coverage['sources_in_themes'] == 3
        assert coverage['source_coverage'] == pytest.approx(0.5)
        assert coverage['total_codes'] == 7
        assert coverage['codes_in_themes'] == 4
        assert coverage['code_coverage'] == pytest.approx(4 / 7)

    def test_empty(self):
        coverage = coverage_summary([], [], [])
        assert coverage['source_coverage'] == 0.0
        assert coverage['code_coverage'] == 0.0
