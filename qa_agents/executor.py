from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from .errors import AutomationError, DriverOperationFailed, EvidenceCaptureFailed, InvalidActionValue
from .learning import LearningStore, context_key
from .models import DIRECTIONS, Action, ActionType, Outcome, ScreenEvidence

logger = logging.getLogger(__name__)

LONG_PRESS_MS = 1000
SWIPE_MS = 300
SCROLL_MS = 800

Handler = Callable[[object, Action], Optional[str]]


def parse_wait_ms(value: Optional[str]) -> int:
    try:
        millis = int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidActionValue(f"WAIT needs a millisecond value, got {value!r}") from None
    if millis < 0:
        raise InvalidActionValue(f"WAIT needs a non-negative millisecond value, got {value!r}")
    return millis


def gesture_endpoints(size: Tuple[int, int], direction: Optional[str]) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """Start at the screen centre and move 70% of the half-size towards `direction`."""
    key = (direction or "").strip().upper()
    if key not in DIRECTIONS:
        raise InvalidActionValue(f"Direction must be one of {', '.join(DIRECTIONS)}, got {direction!r}")
    width, height = size
    start_x, start_y = width // 2, height // 2
    end_x, end_y = start_x, start_y
    if key == "UP":
        end_y = int(start_y * 0.3)
    elif key == "DOWN":
        end_y = int(start_y * 1.7)
    elif key == "LEFT":
        end_x = int(start_x * 0.3)
    else:
        end_x = int(start_x * 1.7)
    return (start_x, start_y), (end_x, end_y)


def _safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", value).strip("_") or "screenshot"


class Executor:
    """
    Executes one action against the device driver and records what happened.

    Per action: RESOLVING (when the action targets an element and has no
    locator yet) -> ATTEMPTING -> SUCCEEDED | FAILED. Every failure is turned
    into the action's outcome; nothing raised by the driver escapes `execute`.
    """

    def __init__(
        self,
        resolver,
        learning: LearningStore,
        screenshots=None,
        wait_timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.resolver = resolver
        self.learning = learning
        self.screenshots = screenshots
        self.wait_timeout = wait_timeout
        self.sleep = sleep
        self._handlers: Dict[ActionType, Handler] = {
            ActionType.TAP: self._tap,
            ActionType.LONG_PRESS: self._long_press,
            ActionType.TYPE: self._type,
            ActionType.CLEAR: self._clear,
            ActionType.SWIPE: self._swipe,
            ActionType.SCROLL: self._scroll,
            ActionType.BACK: self._back,
            ActionType.VERIFY_TEXT: self._verify_text,
            ActionType.VERIFY_ELEMENT: self._verify_element,
            ActionType.WAIT: self._wait,
            ActionType.LAUNCH_APP: self._launch_app,
            ActionType.CLOSE_APP: self._close_app,
            ActionType.TAKE_SCREENSHOT: self._take_screenshot,
        }

    # -------------------------
    # Evidence
    # -------------------------
    def capture(self, driver, name: str) -> ScreenEvidence:
        """Best-effort screenshot; failures are logged and never raised."""
        evidence = ScreenEvidence()
        try:
            evidence.description = driver.current_screen()
        except Exception as exc:  # noqa: BLE001
            logger.debug("execute: could not read current screen: %s", exc)
        try:
            evidence.screenshot = driver.screenshot()
            if evidence.screenshot and self.screenshots is not None:
                evidence.ref = self.screenshots.save(name, evidence.screenshot)
        except Exception as exc:  # noqa: BLE001
            failure = exc if isinstance(exc, EvidenceCaptureFailed) else EvidenceCaptureFailed(f"{name}: {exc}")
            logger.warning("execute: evidence capture failed: %s", failure)
        return evidence

    # -------------------------
    # Execution
    # -------------------------
    def execute(self, action: Action, driver) -> Outcome:
        tag = action.id if action.id is not None else action.sequence
        before = self.capture(driver, f"before_action_{tag}.png")
        error: Optional[AutomationError] = None
        evidence_ref: Optional[str] = None

        try:
            if action.needs_resolution():
                logger.info("execute: [%s] RESOLVING", action.label())
                action.locator = self.resolver.resolve(action, before)
            elif not action.screen_description:
                action.screen_description = before.description
            logger.info("execute: [%s] ATTEMPTING locator=%s value=%r", action.label(), action.locator, action.value)
            evidence_ref = self._handlers[action.type](driver, action)
        except AutomationError as exc:
            error = exc
        except Exception as exc:  # noqa: BLE001
            error = DriverOperationFailed(str(exc) or exc.__class__.__name__)

        action.executed_at = datetime.now()
        if error is None:
            action.successful = True
            action.error_message = None
            after = self.capture(driver, f"after_action_{tag}.png")
            action.screenshot = evidence_ref or after.ref
            logger.info("execute: [%s] SUCCEEDED", action.label())
        else:
            action.successful = False
            action.error_message = str(error)
            failure = self.capture(driver, f"failure_{tag}.png")
            action.screenshot = failure.ref
            logger.warning("execute: [%s] FAILED (%s): %s", action.label(), error.__class__.__name__, error)

        self._learn(action)
        return Outcome(successful=action.successful, error_message=action.error_message, evidence_ref=action.screenshot)

    def _learn(self, action: Action) -> None:
        """Report the outcome to the learning store; a store failure never changes the outcome."""
        if not action.element_description:
            return
        try:
            self.learning.record(
                context_key(action.element_description, action.screen_description),
                action.locator,
                bool(action.successful),
                error_detail=action.error_message,
                correction=None,
                action=action,
                screen_description=action.screen_description,
            )
        except Exception:  # noqa: BLE001
            logger.exception("execute: [%s] could not record learning outcome", action.label())

    # -------------------------
    # Handlers
    # -------------------------
    def _element(self, driver, action: Action):
        if not action.locator:
            raise InvalidActionValue(f"{action.type.value} needs an element locator")
        return driver.find_element(action.locator, self.wait_timeout)

    def _tap(self, driver, action: Action) -> None:
        driver.tap(self._element(driver, action))

    def _long_press(self, driver, action: Action) -> None:
        driver.long_press(self._element(driver, action), LONG_PRESS_MS)

    def _type(self, driver, action: Action) -> None:
        if action.value is None:
            raise InvalidActionValue("TYPE needs a value to type")
        driver.type_text(self._element(driver, action), action.value)

    def _clear(self, driver, action: Action) -> None:
        driver.clear(self._element(driver, action))

    def _gesture(self, driver, action: Action, duration_ms: int) -> None:
        start, end = gesture_endpoints(driver.window_size(), action.value)
        driver.swipe(start, end, duration_ms)

    def _swipe(self, driver, action: Action) -> None:
        self._gesture(driver, action, SWIPE_MS)

    def _scroll(self, driver, action: Action) -> None:
        self._gesture(driver, action, SCROLL_MS)

    def _back(self, driver, action: Action) -> None:
        driver.back()

    def _verify_text(self, driver, action: Action) -> None:
        if action.value:
            driver.find_text(action.value, self.wait_timeout)
        else:
            self._element(driver, action)

    def _verify_element(self, driver, action: Action) -> None:
        self._element(driver, action)

    def _wait(self, driver, action: Action) -> None:
        self.sleep(parse_wait_ms(action.value) / 1000.0)

    @staticmethod
    def _package(action: Action) -> str:
        package = (action.value or "").strip()
        if not package:
            raise InvalidActionValue(f"{action.type.value} needs an app package identifier")
        return package

    def _launch_app(self, driver, action: Action) -> None:
        driver.launch_app(self._package(action))

    def _close_app(self, driver, action: Action) -> None:
        driver.close_app(self._package(action))

    def _take_screenshot(self, driver, action: Action) -> Optional[str]:
        data = driver.screenshot()
        if self.screenshots is None:
            return None
        return self.screenshots.save(f"manual_{_safe_name(action.value or str(action.sequence))}.png", data)
