from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import List, Optional

from .models import Action, LearningEntry

logger = logging.getLogger(__name__)

CONFIDENCE_STEP = 0.05
CONFIDENCE_CEILING = 0.95
CONFIDENCE_FLOOR = 0.0
INITIAL_SUCCESS_CONFIDENCE = 0.7
INITIAL_FAILURE_CONFIDENCE = 0.3
DEFAULT_SCREEN = "Current Screen"
LOCK_STRIPES = 64


def context_key(description: Optional[str], screen: Optional[str]) -> str:
    return f"{description or ''} on screen '{screen or DEFAULT_SCREEN}'"


def next_confidence(current: float, successful: bool) -> float:
    """
    Bounded drift: +0.05 after a success, -0.05 after a failure, clamped to
    [0.0, 0.95]. Not a calibrated probability; threshold comparisons depend on
    these exact bounds.
    """
    if successful:
        return min(CONFIDENCE_CEILING, current + CONFIDENCE_STEP)
    return max(CONFIDENCE_FLOOR, current - CONFIDENCE_STEP)


class LearningStore:
    """
    Remembers how element lookups went in a given (description, screen)
    context so later runs can reuse a known correction instead of asking the
    vision model again.

    Entries live in a repository (see qa_tools.storage). Updates to one context
    are serialized by one of a fixed pool of locks chosen by hashing the context.
    """

    def __init__(self, repository, threshold: float = 0.7, enabled: bool = True) -> None:
        self.repository = repository
        self.threshold = threshold
        self.enabled = enabled
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, context: str) -> threading.Lock:
        return self._locks[hash(context) % LOCK_STRIPES]

    def entries(self, context: str) -> List[LearningEntry]:
        return self.repository.find(lambda e: e.context == context)

    # -------------------------
    # Writes
    # -------------------------
    def record(
        self,
        context: str,
        locator: Optional[str],
        successful: bool,
        error_detail: Optional[str] = None,
        correction: Optional[str] = None,
        action: Optional[Action] = None,
        screen_description: Optional[str] = None,
    ) -> Optional[LearningEntry]:
        if not self.enabled:
            return None

        with self._lock_for(context):
            existing = self.entries(context)
            if existing:
                entry = max(existing, key=lambda e: e.confidence_score)
                entry.successful = successful
                if not successful:
                    if error_detail is not None:
                        entry.error_details = error_detail
                    if correction is not None:
                        entry.correction = correction
                entry.element_identifiers = locator
                entry.use_count += 1
                entry.confidence_score = next_confidence(entry.confidence_score, successful)
                entry.updated_at = datetime.now()
            else:
                entry = LearningEntry(
                    context=context,
                    successful=successful,
                    confidence_score=INITIAL_SUCCESS_CONFIDENCE if successful else INITIAL_FAILURE_CONFIDENCE,
                    action=action.type.value if action else None,
                    error_details=error_detail,
                    correction=correction,
                    element_identifiers=locator,
                    screen_description=screen_description,
                )
            saved = self.repository.save(entry)

        logger.debug(
            "learning: %s context=%r successful=%s confidence=%.2f uses=%d",
            "updated" if existing else "created",
            context,
            successful,
            saved.confidence_score,
            saved.use_count,
        )
        return saved

    def teach(self, description: str, screen: Optional[str], correction: str) -> Optional[LearningEntry]:
        """Record an operator-supplied locator correction for a context."""
        return self.record(
            context_key(description, screen),
            locator=None,
            successful=False,
            error_detail="correction supplied by operator",
            correction=correction,
            screen_description=screen,
        )

    # -------------------------
    # Reads
    # -------------------------
    def query(self, context: str, threshold: Optional[float] = None) -> Optional[LearningEntry]:
        if not self.enabled:
            return None
        floor = self.threshold if threshold is None else threshold
        candidates = [e for e in self.entries(context) if e.confidence_score >= floor]
        return max(candidates, key=lambda e: e.confidence_score, default=None)

    def best_correction(self, context: str, threshold: Optional[float] = None) -> Optional[LearningEntry]:
        if not self.enabled:
            return None
        floor = self.threshold if threshold is None else threshold
        candidates = [
            e for e in self.entries(context) if e.has_correction and e.confidence_score >= floor
        ]
        return max(candidates, key=lambda e: e.confidence_score, default=None)

    def has_past_failures(self, context: str) -> bool:
        if not self.enabled:
            return False
        return any(not e.successful for e in self.entries(context))
