"""
Shared test fixtures and configuration.
"""

import hashlib
import re
import threading

import numpy as np
import pytest

from thematic_analyzer.cache import TTLCache
from thematic_analyzer.clustering import build_theme
from thematic_analyzer.config import ExtractionConfig
from thematic_analyzer.embeddings import ConcurrencyGate, EmbeddingProvider, EmbeddingWithNorm
from thematic_analyzer.models import Code, ContentType, Source

# Five unrelated research topics; every sentence mentions its topic's vocabulary.
TOPICS = {
    'remote_work': {
        'vocabulary': {'remote', 'home', 'commute', 'commuting', 'flexibility', 'flexible',
                       'hybrid', 'distributed', 'office', 'telework'},
        'sentences': [
            "Remote workers value the flexibility of working from home without a daily commute.",
            "Hybrid schedules let distributed teams split time between home and the office.",
            "Telework reduced commuting time but blurred boundaries between home and office life.",
            "Employees with flexible remote arrangements reported fewer commute related absences.",
        ],
    },
    'burnout': {
        'vocabulary': {'burnout', 'exhaustion', 'stress', 'workload', 'fatigue', 'overtime',
                       'emotional', 'wellbeing', 'nurses', 'shifts'},
        'sentences': [
            "Nurses described burnout as emotional exhaustion driven by relentless workload.",
            "Chronic fatigue and unpaid overtime intensified stress among hospital nurses.",
            "Emotional exhaustion predicted burnout more strongly than workload alone.",
            "Staff wellbeing declined as overtime and fatigue accumulated across shifts.",
        ],
    },
    'learning': {
        'vocabulary': {'students', 'student', 'classroom', 'teachers', 'learning', 'curriculum',
                       'feedback', 'peer', 'peers', 'lessons'},
        'sentences': [
            "Students valued timely feedback from teachers during classroom learning.",
            "Peer learning activities increased student engagement with the curriculum.",
            "Teachers redesigned lessons so students could practise feedback with peers.",
            "Classroom discussions helped students connect curriculum content to learning goals.",
        ],
    },
    'climate': {
        'vocabulary': {'climate', 'flooding', 'drought', 'farmers', 'farming', 'rainfall',
                       'crops', 'adaptation', 'irrigation', 'planting'},
        'sentences': [
            "Farmers adapted planting calendars as climate change shifted seasonal rainfall.",
            "Repeated flooding and drought destroyed crops and forced adaptation strategies.",
            "Irrigation investments helped farming households cope with erratic rainfall.",
            "Climate adaptation programmes trained farmers to diversify crops.",
        ],
    },
    'finance': {
        'vocabulary': {'savings', 'debt', 'loans', 'budgeting', 'income', 'credit',
                       'financial', 'banking', 'mortgage', 'literacy'},
        'sentences': [
            "Households relied on credit and short term loans when income fell.",
            "Financial literacy workshops improved budgeting and savings habits.",
            "Mortgage debt and credit card balances shaped banking decisions.",
            "Participants linked stable income to higher savings and lower debt.",
        ],
    },
}

TOPIC_NAMES = list(TOPICS)
EMBEDDING_DIMENSIONS = 16


def topic_of(index: int) -> str:
    """Topic of the ``index``-th abstract (topics are interleaved)."""
    return TOPIC_NAMES[index % len(TOPIC_NAMES)]


def topic_embed(text: str) -> np.ndarray:
    """Deterministic fake embedding: one axis per topic plus a small text-seeded jitter."""
    words = re.findall(r'[a-z]+', text.lower())
    vector = np.zeros(EMBEDDING_DIMENSIONS)
    for axis, name in enumerate(TOPIC_NAMES):
        vector[axis] = sum(1 for word in words if word in TOPICS[name]['vocabulary'])
    norm = np.linalg.norm(vector)
    if norm:
        vector /= norm
    seed = int(hashlib.md5(text.encode('utf-8')).hexdigest()[:8], 16)
    vector[len(TOPIC_NAMES):] = np.random.default_rng(seed).normal(0.0, 0.02, EMBEDDING_DIMENSIONS - len(TOPIC_NAMES))
    return vector


class CountingEmbed:
    """Thread-safe wrapper that counts calls and can fail selected texts."""

    model = "topic-test"
    is_local = True

    def __init__(self, fail_texts=None, error=RuntimeError):
        self.calls = 0
        self.fail_texts = set(fail_texts or ())
        self.error = error
        self._lock = threading.Lock()

    def __call__(self, text):
        with self._lock:
            self.calls += 1
        if text in self.fail_texts:
            raise self.error(f"backend failure for {text[:20]}")
        return topic_embed(text)


def build_abstracts(count=50):
    records = []
    for i in range(count):
        sentences = TOPICS[topic_of(i)]['sentences']
        k = i // len(TOPIC_NAMES)
        content = ' '.join(sentences[(k + j) % len(sentences)] for j in range(3))
        records.append({
            'id': f"A{i + 1:02d}",
            'title': f"Study {i + 1}",
            'content': content,
            'content_type': 'abstract',
        })
    return records


@pytest.fixture
def abstracts():
    """Fifty abstracts, ten per topic, interleaved by topic."""
    return build_abstracts(50)


@pytest.fixture
def sources(abstracts):
    return [Source.from_dict(record) for record in abstracts]


@pytest.fixture
def config():
    """Default config with a small permutation count to keep saturation fast."""
    return ExtractionConfig(saturation_permutations=20, retry_backoff=0.0)


@pytest.fixture
def counting_embed():
    return CountingEmbed()


@pytest.fixture
def provider(counting_embed, config):
    return EmbeddingProvider.from_config(counting_embed, config, sleep=lambda seconds: None)


@pytest.fixture
def make_provider(config):
    """Factory for providers around an arbitrary backend with retries that never sleep."""
    def _make(backend, **kwargs):
        kwargs.setdefault('sleep', lambda seconds: None)
        kwargs.setdefault('cache', TTLCache(max_size=1000, ttl_seconds=3600))
        kwargs.setdefault('gate', ConcurrencyGate(4))
        return EmbeddingProvider(backend, **kwargs)
    return _make


@pytest.fixture
def make_code():
    """Factory for embedded codes from explicit vectors."""
    def _make(code_id, vector, source_id="s1", text=None, excerpts=()):
        embedding = EmbeddingWithNorm.from_values(vector, "test") if vector is not None else None
        return Code(
            id=code_id,
            text=text or f"Code {code_id}",
            source_id=source_id,
            excerpts=tuple(excerpts),
            embedding=embedding,
        )
    return _make


@pytest.fixture
def make_theme():
    """Factory for candidate themes built from codes."""
    def _make(theme_id, codes):
        return build_theme(theme_id, codes)
    return _make


@pytest.fixture
def abstract_sources():
    """Sources keyed by id, all plain abstracts (relaxed coherence bar)."""
    return {
        f"s{i}": Source(id=f"s{i}", content="text", content_type=ContentType.ABSTRACT)
        for i in range(1, 9)
    }


@pytest.fixture
def temp_dir(tmp_path):
    """Create a temporary directory for test output."""
    return tmp_path
