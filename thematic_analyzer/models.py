"""Data model shared by every stage of the theme extraction pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .embeddings import EmbeddingWithNorm
from .exceptions import InvalidSourceError

NEUTRAL_COHERENCE = 0.5


class ContentType(str, Enum):
    FULL_TEXT = "full_text"
    ABSTRACT_OVERFLOW = "abstract_overflow"
    ABSTRACT = "abstract"
    VIDEO_TRANSCRIPT = "video_transcript"

    @property
    def is_rich(self) -> bool:
        """Full texts (and abstracts long enough to overflow) support a stricter coherence bar."""
        return self in RICH_CONTENT_TYPES


RICH_CONTENT_TYPES = frozenset({ContentType.FULL_TEXT, ContentType.ABSTRACT_OVERFLOW})


@dataclass(frozen=True)
class Source:
    """A single document of the corpus (abstract, full text or transcript)."""

    id: str
    content: str
    content_type: ContentType
    title: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def content_length(self) -> int:
        return len(self.content)

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "Source":
        """Validate a raw record and build a Source.

        Accepts both ``content_type`` and ``contentType`` keys.

        Raises:
            InvalidSourceError: if the id is missing, the content is not a
                string or the content type is unknown
        """
        if not isinstance(record, Mapping):
            raise InvalidSourceError(f"Source record must be a mapping, got {type(record).__name__}")

        source_id = record.get('id')
        if source_id is None or not str(source_id).strip():
            raise InvalidSourceError(f"Source record missing required field 'id': {dict(record)}")
        source_id = str(source_id).strip()

        content = record.get('content', '')
        if content is None:
            content = ''
        if not isinstance(content, str):
            raise InvalidSourceError(
                f"Source '{source_id}' content must be text, got {type(content).__name__}"
            )

        raw_type = record.get('content_type', record.get('contentType'))
        if raw_type is None:
            raise InvalidSourceError(f"Source '{source_id}' missing required field 'content_type'")
        try:
            content_type = ContentType(str(raw_type).strip().lower())
        except ValueError:
            valid = ', '.join(t.value for t in ContentType)
            raise InvalidSourceError(
                f"Source '{source_id}' has unknown content type '{raw_type}' (expected one of: {valid})"
            )

        metadata = record.get('metadata') or {}
        if not isinstance(metadata, Mapping):
            raise InvalidSourceError(f"Source '{source_id}' metadata must be a mapping")

        title = record.get('title') or ''
        return cls(
            id=source_id,
            content=content,
            content_type=content_type,
            title=str(title),
            metadata=dict(metadata),
        )


@dataclass(frozen=True)
class Code:
    """Atomic concept extracted from one source (open coding)."""

    id: str
    text: str
    source_id: str
    description: str = ""
    excerpts: Tuple[str, ...] = ()
    embedding: Optional[EmbeddingWithNorm] = field(default=None, compare=False, repr=False)

    @property
    def embedding_text(self) -> str:
        """Text sent to the embedding backend: the label followed by its excerpts."""
        if not self.excerpts:
            return self.text
        return f"{self.text}: " + ' '.join(self.excerpts)


@dataclass
class CandidateTheme:
    """Group of codes produced by clustering and reworked by the refiner."""

    id: str
    label: str
    codes: List[Code]
    centroid: EmbeddingWithNorm = field(repr=False)
    description: str = ""
    keywords: List[str] = field(default_factory=list)
    coherence: Optional[float] = None
    threshold: Optional[float] = None

    @property
    def source_ids(self) -> List[str]:
        """Ids of contributing sources in first-seen order."""
        return list(dict.fromkeys(code.source_id for code in self.codes))

    @property
    def size(self) -> int:
        return len(self.codes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'label': self.label,
            'description': self.description,
            'keywords': list(self.keywords),
            'coherence_score': self.coherence,
            'threshold': self.threshold,
            'source_ids': self.source_ids,
            'codes': [
                {'id': code.id, 'text': code.text, 'source_id': code.source_id}
                for code in self.codes
            ],
        }


@dataclass(frozen=True)
class SkipRecord:
    """Explains why a unit (source, code or theme) did not reach the final result."""

    unit_id: str
    stage: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {'unit_id': self.unit_id, 'stage': self.stage, 'reason': self.reason}


@dataclass
class ExtractionResult:
    """Final themes plus saturation, coverage and skip metadata for one corpus."""

    themes: List[CandidateTheme]
    saturation: Dict[str, Any] = field(default_factory=dict)
    coverage: Dict[str, Any] = field(default_factory=dict)
    skipped: List[SkipRecord] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    fingerprint: Optional[str] = None
    strategy_outputs: Dict[str, Any] = field(default_factory=dict)

    def skipped_by_stage(self, stage: str) -> List[SkipRecord]:
        return [record for record in self.skipped if record.stage == stage]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fingerprint': self.fingerprint,
            'themes': [theme.to_dict() for theme in self.themes],
            'saturation': self.saturation,
            'coverage': self.coverage,
            'skipped': [record.to_dict() for record in self.skipped],
            'stats': self.stats,
            'strategies': {
                name: output.to_dict() if hasattr(output, 'to_dict') else output
                for name, output in self.strategy_outputs.items()
            },
        }
