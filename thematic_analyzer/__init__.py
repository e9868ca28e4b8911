"""
Thematic Analyzer - embedding-based theme extraction for qualitative research.
"""

from .cache import ResultCache, TTLCache, corpus_fingerprint
from .cancellation import CancellationToken
from .config import ExtractionConfig, load_config
from .embeddings import (
    EmbeddingProvider,
    EmbeddingWithNorm,
    HashingEmbeddingBackend,
    OpenAIEmbeddingBackend,
    similarity,
)
from .exceptions import (
    CollaboratorOutageError,
    EmbeddingUnavailableError,
    InvalidEmbeddingError,
    InvalidSourceError,
    PipelineCancelledError,
    ThematicAnalysisError,
)
from .models import CandidateTheme, Code, ContentType, ExtractionResult, SkipRecord, Source
from .pipeline import ThemeExtractionPipeline, extract_themes
from .refiner import OpenAICompletion

__version__ = "0.1.0"
__all__ = [
    'ThemeExtractionPipeline',
    'extract_themes',
    'ExtractionConfig',
    'load_config',
    'EmbeddingProvider',
    'EmbeddingWithNorm',
    'HashingEmbeddingBackend',
    'OpenAIEmbeddingBackend',
    'OpenAICompletion',
    'similarity',
    'ResultCache',
    'TTLCache',
    'corpus_fingerprint',
    'CancellationToken',
    'Source',
    'ContentType',
    'Code',
    'CandidateTheme',
    'SkipRecord',
    'ExtractionResult',
    'ThematicAnalysisError',
    'InvalidSourceError',
    'InvalidEmbeddingError',
    'EmbeddingUnavailableError',
    'CollaboratorOutageError',
    'PipelineCancelledError',
]
