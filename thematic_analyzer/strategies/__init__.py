"""Domain adapters that turn extracted themes into research instruments."""

from .base import PipelineStrategy, StrategyContext
from .q_methodology import QMethodologyStrategy, QMethodologyResult, Statement
from .survey import SurveyConstructionStrategy, SurveyResult, Construct, SurveyItem

STRATEGIES = {
    'q-methodology': QMethodologyStrategy,
    'survey': SurveyConstructionStrategy,
}

__all__ = [
    'PipelineStrategy',
    'StrategyContext',
    'QMethodologyStrategy',
    'QMethodologyResult',
    'Statement',
    'SurveyConstructionStrategy',
    'SurveyResult',
    'Construct',
    'SurveyItem',
    'STRATEGIES',
]
