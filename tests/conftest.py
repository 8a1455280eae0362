import threading
from datetime import datetime, timedelta, timezone

import pytest

from reunite.models.reports import Report
from reunite.services.embeddings import HashEmbeddingService
from reunite.services.engine import Engine
from reunite.services.memory_store import create_memory_stores
from reunite.services.scoring import SEMANTIC_WEIGHTS
from reunite.services.semantic_judge import SemanticJudge

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
UBC = {"latitude": 49.2606, "longitude": -123.246}


class FakeJudge(SemanticJudge):
    """Returns a fixed answer, or raises it when it is an exception."""
    name = "fake"

    def __init__(self, answer=9, configured=True):
        self.answer = answer
        self._configured = configured
        self.calls = 0

    @property
    def configured(self) -> bool:
        return self._configured

    def judge_same_object(self, name_a, desc_a, name_b, desc_b):
        self.calls += 1
        if isinstance(self.answer, Exception):
            raise self.answer
        if callable(self.answer):
            return self.answer(name_a, desc_a, name_b, desc_b)
        return self.answer


@pytest.fixture
def stores():
    return create_memory_stores()


@pytest.fixture
def embedder():
    return HashEmbeddingService(text_dim=64, image_dim=32)


@pytest.fixture
def engine(stores, embedder):
    eng = Engine(stores, embedder, judge=None, weights=SEMANTIC_WEIGHTS)
    yield eng
    eng.close()


@pytest.fixture
def make_report(embedder):
    def _make(kind="lost", owner_id="alice", title="Black iPhone 13",
              description="black iphone with a cracked screen protector and blue case",
              category="electronics", occurred_at=T0, location=UBC, embed=True, **extra):
        report = Report(owner_id=owner_id, kind=kind, title=title, description=description,
                        category=category, occurred_at=occurred_at, location=location, **extra)
        if embed:
            report.text_embedding = embedder.embed_text(f"{title} {description}")
        return report
    return _make


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


def race(*calls, timeout: float = 10.0):
    """Run each call on its own thread, released together by a barrier.

    Returns (results, errors) in completion order.
    """
    start = threading.Barrier(len(calls))
    results, errors = [], []

    def run(fn):
        start.wait()
        try:
            results.append(fn())
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run, args=(fn,)) for fn in calls]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=timeout)
    return results, errors
