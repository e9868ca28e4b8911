"""Tests for the Q-methodology and survey strategies."""

import pytest

from thematic_analyzer.embeddings import EmbeddingWithNorm
from thematic_analyzer.strategies import (
    STRATEGIES,
    QMethodologyStrategy,
    StrategyContext,
    SurveyConstructionStrategy,
)
from thematic_analyzer.strategies.survey import cronbach_alpha, reliability_level


def _context(themes):
    codes = [code for theme in themes for code in theme.codes]
    return StrategyContext.from_codes(codes, themes)


def test_registry():
    assert STRATEGIES['q-methodology'] is QMethodologyStrategy
    assert STRATEGIES['survey'] is SurveyConstructionStrategy


class TestStrategyContext:
    """Test the shared strategy context."""

    def test_codes_without_embeddings_skipped(self, make_code, make_theme):
        theme = make_theme("t1", [make_code("a", [1.0, 0.0]), make_code("b", None)])
        context = _context([theme])

        assert set(context.embeddings) == {"a"}
        assert [code.id for code, _ in context.embedded_codes(theme)] == ["a"]


class TestQMethodology:
    """Test statement selection."""

    @pytest.fixture
    def themes(self, make_code, make_theme):
        return [
            make_theme("A", [
                make_code("a1", [1.0, 0.0, 0.0], source_id="s1",
                          excerpts=["Remote work blurs the line between home and office."]),
                make_code("a2", [1.0, 0.2, 0.0], source_id="s2"),
                make_code("a3", [1.0, 0.0, 0.2], source_id="s3"),
            ]),
            make_theme("B", [
                make_code("b1", [0.0, 1.0, 0.0], source_id="s4"),
                make_code("b2", [0.0, 1.0, 0.2], source_id="s5"),
            ]),
        ]

    def test_statements(self, themes):
        result = QMethodologyStrategy(statements_per_theme=3).apply(_context(themes))

        assert [s.id for s in result.statements] == ["S01", "S02", "S03", "S04", "S05"]
        assert [s.code_id for s in result.statements] == ["a1", "a2", "a3", "b1", "b2"]
        assert result.statements_per_theme == {"A": 3, "B": 2}
        assert result.statements[0].text == "Remote work blurs the line between home and office."
        assert result.statements[1].text == "Code a2."
        assert result.warnings == []

    def test_warns_on_small_theme(self, themes, make_code, make_theme):
        themes.append(make_theme("C", [make_code("c1", [0.0, 0.0, 1.0], source_id="s6")]))
        result = QMethodologyStrategy().apply(_context(themes))

        assert result.statements_per_theme["C"] == 1
        assert len(result.warnings) == 1
        assert "Theme 'C' has 1 usable codes" in result.warnings[0]

    def test_drops_near_duplicate_of_other_theme(self, themes, make_code, make_theme):
        themes.append(make_theme("D", [make_code("d1", [1.0, 0.01, 0.0], source_id="s6")]))
        result = QMethodologyStrategy(min_statements_per_theme=1).apply(_context(themes))

        assert result.statements_per_theme["D"] == 0
        assert "d1" not in [s.code_id for s in result.statements]

    def test_diversity_metrics(self, themes):
        result = QMethodologyStrategy().apply(_context(themes))

        assert result.diversity['redundant_pairs'] == 0
        assert result.diversity['avg_pairwise_similarity'] < 0.3
        assert result.diversity['davies_bouldin'] > 0.0
        assert result.diversity['source_coverage'] == 100.0

    def test_single_theme_diversity(self, themes):
        metrics = QMethodologyStrategy().diversity_metrics(_context(themes[:1]))
        assert metrics['avg_pairwise_similarity'] == 0.0
        assert metrics['davies_bouldin'] == 0.0

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            QMethodologyStrategy(statements_per_theme=1, min_statements_per_theme=2)

    def test_to_dict(self, themes):
        data = QMethodologyStrategy().apply(_context(themes)).to_dict()
        assert data['statements'][0]['id'] == "S01"
        assert set(data) == {'statements', 'statements_per_theme', 'diversity', 'warnings'}


class TestSurvey:
    """Test survey construct building."""

    @pytest.fixture
    def theme(self, make_code, make_theme):
        return make_theme("theme_1", [
            make_code("base", [1.0, 0.0, 0.0, 0.0], text="Workload"),
            make_code("v1", [1.0, 0.5, 0.0, 0.0], text="Overtime"),
            make_code("v2", [1.0, 0.0, 0.5, 0.0], text="Fatigue"),
            make_code("v3", [1.0, 0.0, 0.0, 0.5], text="Stress"),
            make_code("v4", [1.0, -0.5, 0.0, 0.0], text="Exhaustion"),
        ])

    def test_items_selected_by_centrality(self, theme):
        result = SurveyConstructionStrategy(items_per_theme=4).apply(_context([theme]))
        construct = result.constructs[0]

        assert [item.code_id for item in construct.items] == ["base", "v2", "v3", "v1"]
        assert [item.id for item in construct.items] == ["theme_1-i1", "theme_1-i2", "theme_1-i3", "theme_1-i4"]
        assert construct.items[0].text == "Workload plays an important role in my experience."
        assert construct.items[0].loading == pytest.approx(0.990, abs=1e-3)

    def test_reverse_item(self, theme):
        items = SurveyConstructionStrategy(items_per_theme=4).apply(_context([theme])).constructs[0].items
        assert [item.reversed for item in items] == [False, False, True, False]
        assert items[2].text == "Stress has little bearing on my experience."

    def test_reliability(self, theme):
        construct = SurveyConstructionStrategy(items_per_theme=4).apply(_context([theme])).constructs[0]

        assert construct.cronbach_alpha == pytest.approx(0.957, abs=1e-3)
        assert construct.reliability == "excellent"
        assert construct.meets_quality_gate

    def test_redundant_codes_reduce_construct(self, make_code, make_theme):
        theme = make_theme("theme_1", [make_code("a", [1.0, 0.0]), make_code("b", [1.0, 0.0])])
        result = SurveyConstructionStrategy().apply(_context([theme]))

        assert len(result.constructs[0].items) == 1
        assert result.constructs[0].reliability == "insufficient_items"
        assert not result.constructs[0].meets_quality_gate
        assert "non-redundant items" in result.warnings[0]

    def test_scale(self, theme):
        result = SurveyConstructionStrategy(scale_points=7).apply(_context([theme]))
        assert result.scale['points'] == 7
        assert len(result.scale['labels']) == 7
        assert result.to_dict()['total_items'] == result.total_items

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            SurveyConstructionStrategy(scale_points=4)
        with pytest.raises(ValueError):
            SurveyConstructionStrategy(items_per_theme=2, min_items=3)


class TestCronbachAlpha:
    """Test the standardized alpha estimate."""

    def test_identical_items(self):
        items = [EmbeddingWithNorm.from_raw([1.0, 2.0], "test") for _ in range(3)]
        assert cronbach_alpha(items) == pytest.approx(1.0)

    def test_single_item(self):
        assert cronbach_alpha([EmbeddingWithNorm.from_raw([1.0, 0.0], "test")]) is None

    def test_opposed_items_floor_at_zero(self):
        items = [
            EmbeddingWithNorm.from_raw([1.0, 0.0], "test"),
            EmbeddingWithNorm.from_raw([0.0, 1.0], "test"),
            EmbeddingWithNorm.from_raw([-1.0, 0.0], "test"),
        ]
        alpha = cronbach_alpha(items)
        assert alpha == 0.0
        assert reliability_level(alpha) == "unacceptable"

    def test_alpha_within_unit_interval(self):
        items = [EmbeddingWithNorm.from_raw([1.0, 0.0], "test"), EmbeddingWithNorm.from_raw([-0.6, 0.8], "test")]
        assert 0.0 <= cronbach_alpha(items) <= 1.0

    @pytest.mark.parametrize("alpha,level", [
        (None, "insufficient_items"),
        (0.95, "excellent"),
        (0.85, "good"),
        (0.72, "acceptable"),
        (0.65, "questionable"),
        (0.55, "poor"),
        (0.2, "unacceptable"),
    ])
    def test_reliability_level(self, alpha, level):
        assert reliability_level(alpha) == level
