"""Exception types raised by the theme extraction pipeline."""


class ThematicAnalysisError(Exception):
    """Base class for all errors raised by Thematic Analyzer."""


class InvalidSourceError(ThematicAnalysisError, ValueError):
    """A source record is malformed and cannot be processed."""


class EmbeddingError(ThematicAnalysisError):
    """An embedding could not be produced for a piece of text."""


class InvalidEmbeddingError(EmbeddingError):
    """The embedding backend returned a vector that failed validation."""


class EmbeddingUnavailableError(EmbeddingError):
    """The embedding backend kept failing after all retries."""


class TransientCollaboratorError(ThematicAnalysisError):
    """A collaborator failure that is worth retrying (timeout, rate limit)."""


class CollaboratorOutageError(ThematicAnalysisError):
    """Every call to an external collaborator failed during a run."""


class PipelineCancelledError(ThematicAnalysisError):
    """The run was cancelled through its cancellation token."""

    def __init__(self, stage: str):
        super().__init__(f"Theme extraction cancelled during stage: {stage}")
        self.stage = stage
