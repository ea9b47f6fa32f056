import random
import threading

import pytest

from qa_agents.learning import (
    CONFIDENCE_CEILING,
    CONFIDENCE_FLOOR,
    LOCK_STRIPES,
    LearningStore,
    context_key,
    next_confidence,
)
from qa_agents.models import LearningEntry
from qa_tools.storage import MemoryRepository

CONTEXT = context_key("Login button", "Login Screen")


def test_context_key_format():
    assert CONTEXT == "Login button on screen 'Login Screen'"
    assert context_key("Menu", None) == "Menu on screen 'Current Screen'"


def test_new_entries_start_at_fixed_confidence(learning):
    ok = learning.record(context_key("A", "S"), "//a", True)
    bad = learning.record(context_key("B", "S"), "//b", False, error_detail="not found")
    assert ok.confidence_score == 0.7
    assert bad.confidence_score == 0.3
    assert bad.error_details == "not found"
    assert ok.use_count == bad.use_count == 1


def test_updates_move_confidence_by_fixed_step(learning):
    learning.record(CONTEXT, "//a", True)
    entry = learning.record(CONTEXT, "//b", True)
    assert entry.confidence_score == pytest.approx(0.75)
    assert entry.element_identifiers == "//b"
    entry = learning.record(CONTEXT, "//b", False, error_detail="gone", correction="//c")
    assert entry.confidence_score == pytest.approx(0.70)
    assert entry.use_count == 3
    assert entry.correction == "//c"
    assert not entry.successful
    assert len(learning.entries(CONTEXT)) == 1


def test_success_keeps_earlier_correction(learning):
    learning.record(CONTEXT, "//a", False, error_detail="gone", correction="//c")
    entry = learning.record(CONTEXT, "//c", True)
    assert entry.correction == "//c"
    assert entry.error_details == "gone"


def test_confidence_stays_bounded_under_arbitrary_outcomes():
    rng = random.Random(1234)
    for _ in range(50):
        score = rng.choice([0.3, 0.7])
        for _ in range(rng.randint(1, 80)):
            score = next_confidence(score, rng.random() < 0.5)
            assert CONFIDENCE_FLOOR <= score <= CONFIDENCE_CEILING


def test_confidence_saturates(learning):
    for _ in range(20):
        entry = learning.record(CONTEXT, "//a", True)
    assert entry.confidence_score == pytest.approx(0.95)
    for _ in range(40):
        entry = learning.record(CONTEXT, "//a", False)
    assert entry.confidence_score == 0.0


def test_query_respects_threshold(learning):
    learning.record(CONTEXT, "//a", True)
    assert learning.query(CONTEXT).element_identifiers == "//a"
    assert learning.query(CONTEXT, threshold=0.8) is None
    assert learning.query(context_key("Other", "Login Screen")) is None


def test_best_correction_only_returns_failures_with_corrections(repositories):
    store = LearningStore(repositories.learning, threshold=0.7)
    repositories.learning.save(LearningEntry(context=CONTEXT, successful=True, confidence_score=0.9, correction="//ok"))
    assert store.best_correction(CONTEXT) is None
    repositories.learning.save(LearningEntry(context=CONTEXT, successful=False, confidence_score=0.6, correction="//low"))
    assert store.best_correction(CONTEXT) is None
    repositories.learning.save(LearningEntry(context=CONTEXT, successful=False, confidence_score=0.8, correction="//fix"))
    assert store.best_correction(CONTEXT).correction == "//fix"
    assert store.has_past_failures(CONTEXT)


def test_teach_records_correction(learning):
    entry = learning.teach("Login button", "Login Screen", "//android.widget.Button[@text='Sign in']")
    assert entry.context == CONTEXT
    assert entry.correction == "//android.widget.Button[@text='Sign in']"
    assert entry.confidence_score == 0.3


def test_disabled_store_is_inert():
    repo = MemoryRepository()
    store = LearningStore(repo, enabled=False)
    assert store.record(CONTEXT, "//a", True) is None
    assert store.query(CONTEXT) is None
    assert store.best_correction(CONTEXT) is None
    assert store.has_past_failures(CONTEXT) is False
    assert repo.all() == []


def test_concurrent_updates_to_one_context_are_not_lost(learning):
    learning.record(CONTEXT, "//a", True)

    def worker():
        for _ in range(25):
            learning.record(CONTEXT, "//a", True)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    entries = learning.entries(CONTEXT)
    assert len(entries) == 1
    assert entries[0].use_count == 101


def test_lock_pool_stays_fixed_across_many_contexts(learning):
    pool = list(learning._locks)
    for n in range(500):
        learning.record(context_key(f"Item {n}", "Catalog"), f"//item[{n}]", n % 2 == 0)

    assert learning._locks == pool
    assert len(learning._locks) == LOCK_STRIPES
    assert learning._lock_for(CONTEXT) is learning._lock_for(context_key("Login button", "Login Screen"))
