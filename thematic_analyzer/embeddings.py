"""Embedding generation, validation, caching and cosine similarity.

All vectors enter the system through ``EmbeddingWithNorm.from_raw``: whatever
shape a backend returns is normalized there, validated once, frozen and
stored together with its precomputed L2 norm.
"""

import hashlib
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
from openai import OpenAI
from sklearn.feature_extraction.text import HashingVectorizer

from .cache import TTLCache
from .cancellation import check_cancelled
from .exceptions import (
    EmbeddingError,
    EmbeddingUnavailableError,
    InvalidEmbeddingError,
    PipelineCancelledError,
)
from .utils.retry import TRANSIENT_ERRORS, call_with_retry
from .utils.text_processing import normalize_text

logger = logging.getLogger(__name__)


def _coerce_vector(raw: Any) -> np.ndarray:
    """Turn the output of any supported backend into a float array."""
    if isinstance(raw, dict):
        raw = raw.get('embedding', raw.get('vector'))
    elif isinstance(getattr(raw, 'data', None), list):
        # openai CreateEmbeddingResponse
        if not raw.data:
            raise InvalidEmbeddingError("Embedding response contained no data")
        raw = raw.data[0]
    if hasattr(raw, 'embedding'):
        raw = raw.embedding
    if raw is None:
        raise InvalidEmbeddingError("Embedding backend returned no vector")
    if hasattr(raw, 'toarray'):
        raw = raw.toarray()

    try:
        vector = np.array(raw, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidEmbeddingError(f"Embedding output is not numeric: {e}") from e

    if vector.ndim == 2 and vector.shape[0] == 1:
        vector = vector[0]
    return vector


@dataclass(frozen=True, eq=False)
class EmbeddingWithNorm:
    """Immutable embedding vector with its precomputed L2 norm."""

    vector: np.ndarray
    norm: float
    dimensions: int
    model_id: str

    @classmethod
    def from_values(
        cls,
        values: Any,
        model_id: str,
        require_positive_norm: bool = True,
    ) -> "EmbeddingWithNorm":
        """Validate ``values`` and build a frozen embedding.

        Args:
            values: 1-D sequence of floats
            model_id: Identifier of the model that produced the vector
            require_positive_norm: Reject all-zero vectors (disabled for centroids)

        Raises:
            InvalidEmbeddingError: if the vector is empty, not 1-D, contains
                non-finite values or has an unusable norm
        """
        vector = np.array(values, dtype=np.float64)
        if vector.ndim != 1 or vector.size == 0:
            raise InvalidEmbeddingError(f"Expected a non-empty 1-D vector, got shape {vector.shape}")
        if not np.all(np.isfinite(vector)):
            bad = int(np.count_nonzero(~np.isfinite(vector)))
            raise InvalidEmbeddingError(f"Embedding contains {bad} non-finite values")

        with np.errstate(over='ignore'):
            norm = float(np.linalg.norm(vector))
        if not np.isfinite(norm) or norm < 0 or (require_positive_norm and norm == 0):
            raise InvalidEmbeddingError(f"Embedding norm must be finite and positive, got {norm}")

        vector.setflags(write=False)
        return cls(vector=vector, norm=norm, dimensions=int(vector.size), model_id=model_id)

    @classmethod
    def from_raw(cls, raw: Any, model_id: str) -> "EmbeddingWithNorm":
        """Build an embedding from any backend output shape."""
        return cls.from_values(_coerce_vector(raw), model_id)

    def __deepcopy__(self, memo: Dict[int, Any]) -> "EmbeddingWithNorm":
        # Immutable, so copies of results can share it
        return self


def similarity(a: EmbeddingWithNorm, b: EmbeddingWithNorm) -> float:
    """Cosine similarity using precomputed norms.

    Returns 0 instead of raising for mismatched dimensions, zero norms and
    non-finite results.
    """
    if a.dimensions != b.dimensions:
        logger.warning(
            f"Similarity requested between {a.dimensions}-d and {b.dimensions}-d embeddings; scoring 0"
        )
        return 0.0
    if a.norm == 0 or b.norm == 0:
        return 0.0

    with np.errstate(all='ignore'):
        value = float(np.dot(a.vector, b.vector) / (a.norm * b.norm))
    if not np.isfinite(value):
        logger.error(f"Non-finite cosine similarity ({value}); scoring 0")
        return 0.0
    return min(1.0, max(-1.0, value))


def similarity_matrix(embeddings: Sequence[EmbeddingWithNorm]) -> np.ndarray:
    """Pairwise cosine similarities for a list of embeddings.

    Args:
        embeddings: Embeddings to compare

    Returns:
        Symmetric (n, n) array with values in [-1, 1]
    """
    n = len(embeddings)
    if n == 0:
        return np.zeros((0, 0))

    if len({e.dimensions for e in embeddings}) > 1:
        logger.warning("Mixed embedding dimensions in similarity matrix; mismatched pairs score 0")
        matrix = np.zeros((n, n))
        for i in range(n):
            for j in range(i, n):
                matrix[i, j] = matrix[j, i] = similarity(embeddings[i], embeddings[j])
        return matrix

    vectors = np.vstack([e.vector for e in embeddings])
    norms = np.array([e.norm for e in embeddings])
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        matrix = (vectors @ vectors.T) / np.outer(norms, norms)

    invalid = ~np.isfinite(matrix)
    if invalid.any():
        nonzero = np.outer(norms > 0, norms > 0)
        corrupt = int(np.count_nonzero(invalid & nonzero))
        if corrupt:
            logger.error(f"Replaced {corrupt} non-finite similarities with 0")
        matrix[invalid] = 0.0
    return np.clip(matrix, -1.0, 1.0)


def compute_centroid(
    embeddings: Sequence[EmbeddingWithNorm],
    model_id: Optional[str] = None,
) -> EmbeddingWithNorm:
    """Component-wise mean of ``embeddings`` as a fresh embedding."""
    if not embeddings:
        raise ValueError("Cannot compute the centroid of an empty set of embeddings")
    dimensions = {e.dimensions for e in embeddings}
    if len(dimensions) > 1:
        raise ValueError(f"Cannot average embeddings of different dimensions: {sorted(dimensions)}")

    mean = np.vstack([e.vector for e in embeddings]).mean(axis=0)
    return EmbeddingWithNorm.from_values(
        mean,
        model_id or embeddings[0].model_id,
        require_positive_norm=False,
    )


class OpenAIEmbeddingBackend:
    """Remote embedding backend using the OpenAI embeddings endpoint."""

    is_local = False

    def __init__(self, api_key: Optional[str] = None, model: str = "text-embedding-3-small"):
        """Initialize the backend.

        Args:
            api_key: OpenAI API key (will use environment variable if not provided)
            model: OpenAI embedding model to use
        """
        self.api_key = api_key or os.getenv('OPENAI_API_KEY')
        if not self.api_key:
            raise ValueError("OpenAI API key is required. Set OPENAI_API_KEY environment variable or pass api_key parameter.")

        self.client = OpenAI(api_key=self.api_key)
        self.model = model

    def __call__(self, text: str) -> List[float]:
        response = self.client.embeddings.create(input=[text], model=self.model)
        return response.data[0].embedding


class HashingEmbeddingBackend:
    """Local, deterministic embeddings from hashed unigram and bigram counts.

    Needs no network access, so it runs behind the high local concurrency
    bound. Texts made only of stop words hash to the zero vector and are
    rejected by validation.
    """

    is_local = True

    def __init__(self, n_features: int = 512):
        self.model = f"hashing-{n_features}"
        self.vectorizer = HashingVectorizer(
            n_features=n_features,
            ngram_range=(1, 2),
            alternate_sign=False,
            norm='l2',
            stop_words='english',
        )

    def __call__(self, text: str) -> np.ndarray:
        return self.vectorizer.transform([text]).toarray()[0]


class ConcurrencyGate:
    """Bounded semaphore limiting in-flight calls to an embedding backend."""

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be at least 1, got {limit}")
        self.limit = limit
        self._semaphore = threading.BoundedSemaphore(limit)
        self._lock = threading.Lock()
        self._active = 0
        self.peak = 0

    @classmethod
    def for_backend(cls, backend: Any, local_limit: int = 100, remote_limit: int = 8) -> "ConcurrencyGate":
        """High bound for local compute, low bound for rate-limited remote providers."""
        is_local = getattr(backend, 'is_local', False)
        return cls(local_limit if is_local else remote_limit)

    @property
    def active(self) -> int:
        return self._active

    def __enter__(self) -> "ConcurrencyGate":
        self._semaphore.acquire()
        with self._lock:
            self._active += 1
            self.peak = max(self.peak, self._active)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        with self._lock:
            self._active -= 1
        self._semaphore.release()
        return False


@dataclass
class EmbeddingOutcome:
    """Result of embedding one text inside a batch."""

    text: str
    embedding: Optional[EmbeddingWithNorm] = None
    error: Optional[str] = None
    unavailable: bool = False

    @property
    def ok(self) -> bool:
        return self.embedding is not None


class EmbeddingProvider:
    """Validating, caching and rate-bounded wrapper around an ``embed(text)`` function."""

    def __init__(
        self,
        backend: Callable[[str], Any],
        model_id: Optional[str] = None,
        cache: Optional[TTLCache] = None,
        gate: Optional[ConcurrencyGate] = None,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the provider.

        Args:
            backend: Callable returning a vector for a text (any supported shape)
            model_id: Model identifier mixed into cache keys. Defaults to the
                backend's ``model`` attribute.
            cache: Embedding cache. A private 10,000 entry / 24h cache is
                created when omitted.
            gate: Concurrency gate. Sized from ``backend.is_local`` when omitted.
            max_retries: Retries for transient backend failures
            retry_backoff: Delay before the first retry, doubled afterwards
            sleep: Sleep function used between retries
        """
        self.backend = backend
        self.model_id = model_id or getattr(backend, 'model', None) or type(backend).__name__
        self.cache = cache if cache is not None else TTLCache(max_size=10000, ttl_seconds=86400)
        self.gate = gate or ConcurrencyGate.for_backend(backend)
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.sleep = sleep
        self._stats_lock = threading.Lock()
        self._stats = {'cache_hits': 0, 'backend_calls': 0, 'rejected': 0, 'unavailable': 0}

    @classmethod
    def from_config(cls, backend: Callable[[str], Any], config: Any, **kwargs) -> "EmbeddingProvider":
        """Build a provider using the cache, gate and retry settings of an ``ExtractionConfig``."""
        cache = kwargs.pop('cache', None)
        if cache is None:
            cache = TTLCache(max_size=config.embedding_cache_size, ttl_seconds=config.embedding_cache_ttl)
        gate = kwargs.pop('gate', None)
        if gate is None:
            gate = ConcurrencyGate.for_backend(
                backend,
                local_limit=config.local_concurrency,
                remote_limit=config.remote_concurrency,
            )
        return cls(
            backend,
            cache=cache,
            gate=gate,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff,
            **kwargs,
        )

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    @property
    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def cache_key(self, text: str) -> str:
        """Generate a cache key for the given text."""
        return hashlib.md5(f"{self.model_id}:{normalize_text(text)}".encode()).hexdigest()

    def _call_backend(self, text: str) -> Any:
        with self.gate:
            self._count('backend_calls')
            return self.backend(text)

    def embed(self, text: str, cancel_token: Optional[Any] = None) -> EmbeddingWithNorm:
        """Embed a single text, serving repeated texts from the cache.

        Args:
            text: Text to embed
            cancel_token: Optional cancellation token checked before the backend call

        Returns:
            Validated, frozen embedding

        Raises:
            ValueError: if ``text`` is empty
            InvalidEmbeddingError: if the backend output fails validation
            EmbeddingUnavailableError: if the backend keeps failing
        """
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Cannot embed empty text")

        key = self.cache_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            if isinstance(cached, EmbeddingWithNorm) and cached.model_id == self.model_id:
                self._count('cache_hits')
                return cached
            logger.error(f"Discarding corrupt embedding cache entry {key}")
            self.cache.delete(key)

        try:
            raw = call_with_retry(
                lambda: self._call_backend(text),
                max_retries=self.max_retries,
                backoff=self.retry_backoff,
                sleep=self.sleep,
                description=f"Embedding request ({self.model_id})",
                cancel_token=cancel_token,
            )
        except PipelineCancelledError:
            raise
        except TRANSIENT_ERRORS as e:
            self._count('unavailable')
            raise EmbeddingUnavailableError(f"Embedding backend unavailable: {e}") from e
        except Exception as e:
            self._count('unavailable')
            raise EmbeddingUnavailableError(f"Embedding backend failed: {e}") from e

        try:
            embedding = EmbeddingWithNorm.from_raw(raw, self.model_id)
        except InvalidEmbeddingError as e:
            self._count('rejected')
            logger.warning(f"Rejected embedding for '{text[:50]}': {e}")
            raise

        self.cache.set(key, embedding)
        return embedding

    def _embed_outcome(self, text: str, cancel_token: Optional[Any]) -> EmbeddingOutcome:
        try:
            return EmbeddingOutcome(text=text, embedding=self.embed(text, cancel_token))
        except EmbeddingUnavailableError as e:
            return EmbeddingOutcome(text=text, error=str(e), unavailable=True)
        except (EmbeddingError, ValueError) as e:
            return EmbeddingOutcome(text=text, error=str(e))
        except PipelineCancelledError as e:
            return EmbeddingOutcome(text=text, error=str(e))

    def embed_many(self, texts: Sequence[str], cancel_token: Optional[Any] = None) -> List[EmbeddingOutcome]:
        """Embed many texts concurrently, bounded by the gate.

        Every text gets an outcome; one failure never blocks the others. The
        call returns only after all units have settled.

        Raises:
            PipelineCancelledError: if the token was cancelled during the batch
        """
        if not texts:
            return []

        outcomes: List[Optional[EmbeddingOutcome]] = [None] * len(texts)
        workers = min(self.gate.limit, len(texts))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._embed_outcome, text, cancel_token): i
                for i, text in enumerate(texts)
            }
            for future in as_completed(futures):
                outcomes[futures[future]] = future.result()

        check_cancelled(cancel_token, "embedding")
        return outcomes
