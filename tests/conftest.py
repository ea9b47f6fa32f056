from __future__ import annotations

import json
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

import pytest

from qa_agents.coordinator import Coordinator
from qa_agents.errors import DriverSessionError, ElementNotFound, OracleError
from qa_agents.executor import Executor
from qa_agents.learning import LearningStore
from qa_agents.planner import Planner
from qa_agents.resolver import Resolver
from qa_tools.driver import UiElement
from qa_tools.storage import Repositories, ScreenshotStore

LOGIN_PLAN = json.dumps(
    [
        {"actionType": "TAP", "elementDescription": "Username input field", "value": "", "sequence": 1},
        {"actionType": "TYPE", "elementDescription": "Username input field", "value": "testuser", "sequence": 2},
        {"actionType": "TAP", "elementDescription": "Password input field", "value": "", "sequence": 3},
        {"actionType": "TYPE", "elementDescription": "Password input field", "value": "password123", "sequence": 4},
        {"actionType": "TAP", "elementDescription": "Login button", "value": "", "sequence": 5},
    ]
)

LOGIN_LOCATORS = {
    "Username input field": "//android.widget.EditText[@resource-id='com.example:id/username']",
    "Password input field": "//android.widget.EditText[@resource-id='com.example:id/password']",
    "Login button": "//android.widget.Button[@text='Login']",
}


class FakeTextOracle:
    def __init__(self, response: str = "", error: Optional[Exception] = None) -> None:
        self.response = response
        self.error = error
        self.calls: List[Dict[str, Optional[str]]] = []

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        self.calls.append({"prompt": prompt, "system": system})
        if self.error is not None:
            raise self.error
        return self.response


class FakeVisionOracle:
    """Answers with the locator whose description appears in the directive."""

    def __init__(self, locators: Optional[Dict[str, str]] = None, raw: Optional[str] = None, fail: bool = False) -> None:
        self.locators = locators or {}
        self.raw = raw
        self.fail = fail
        self.calls: List[Dict[str, object]] = []

    def analyze(self, prompt: str, image: Optional[bytes], system: Optional[str] = None) -> str:
        self.calls.append({"prompt": prompt, "image": image, "system": system})
        if self.fail:
            raise OracleError("vision model unreachable")
        if self.raw is not None:
            return self.raw
        for description, locator in self.locators.items():
            if system and description in system:
                return "Here is what I found:\n" + json.dumps(
                    {
                        "screenDescription": "Login Screen",
                        "matchedElement": {"type": "field", "suggestedLocators": {"structural": locator}},
                    }
                )
        return "I could not find that element."


class FakeDriver:
    """
    In-memory device. Locators in `missing` never resolve; every call is
    recorded in `calls`. Tracks how many sessions are open at once.
    """

    def __init__(
        self,
        missing: Iterable[str] = (),
        screen: Optional[str] = "Login Screen",
        screenshot_error: Optional[Exception] = None,
        fail_start: bool = False,
        action_delay: float = 0.0,
    ) -> None:
        self.missing = set(missing)
        self.screen = screen
        self.screenshot_error = screenshot_error
        self.fail_start = fail_start
        self.action_delay = action_delay
        self.calls: List[tuple] = []
        self.starts = 0
        self.ends = 0
        self.open_sessions = 0
        self.max_open_sessions = 0
        self._lock = threading.Lock()

    @contextmanager
    def session(self):
        self.starts += 1
        if self.fail_start:
            raise DriverSessionError("No usable device (offline)")
        with self._lock:
            self.open_sessions += 1
            self.max_open_sessions = max(self.max_open_sessions, self.open_sessions)
        try:
            yield self
        finally:
            with self._lock:
                self.open_sessions -= 1
            self.ends += 1

    def _record(self, *call) -> None:
        self.calls.append(call)
        if self.action_delay:
            time.sleep(self.action_delay)

    def find_element(self, locator: str, timeout: Optional[float] = None) -> UiElement:
        self._record("find", locator)
        if locator in self.missing:
            raise ElementNotFound(locator, timeout or 0)
        return UiElement(class_name="android.widget.Button", text=locator, bounds=(0, 0, 100, 50))

    def find_text(self, text: str, timeout: Optional[float] = None) -> UiElement:
        self._record("find_text", text)
        if text in self.missing:
            raise ElementNotFound(text, timeout or 0)
        return UiElement(text=text)

    def tap(self, element: UiElement) -> None:
        self._record("tap", element.text)

    def long_press(self, element: UiElement, duration_ms: int = 1000) -> None:
        self._record("long_press", element.text, duration_ms)

    def type_text(self, element: UiElement, text: str) -> None:
        self._record("type", element.text, text)

    def clear(self, element: UiElement) -> None:
        self._record("clear", element.text)

    def window_size(self):
        return (1080, 2400)

    def swipe(self, start, end, duration_ms: int) -> None:
        self._record("swipe", start, end, duration_ms)

    def back(self) -> None:
        self._record("back")

    def launch_app(self, package: str) -> None:
        self._record("launch", package)

    def close_app(self, package: str) -> None:
        self._record("close", package)

    def screenshot(self) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return b"\x89PNG fake"

    def current_screen(self) -> Optional[str]:
        return self.screen


@pytest.fixture
def repositories() -> Repositories:
    return Repositories.in_memory()


@pytest.fixture
def learning(repositories) -> LearningStore:
    return LearningStore(repositories.learning, threshold=0.7)


@pytest.fixture
def vision() -> FakeVisionOracle:
    return FakeVisionOracle(LOGIN_LOCATORS)


@pytest.fixture
def screenshots(tmp_path) -> ScreenshotStore:
    return ScreenshotStore(tmp_path / "shots")


@pytest.fixture
def executor(vision, learning, screenshots) -> Executor:
    return Executor(Resolver(vision, learning), learning, screenshots=screenshots, wait_timeout=0.1, sleep=lambda s: None)


@pytest.fixture
def make_coordinator(repositories, executor):
    def factory(response: str = LOGIN_PLAN, driver: Optional[FakeDriver] = None, **kwargs) -> Coordinator:
        planner = Planner(FakeTextOracle(response), allow_synthetic=kwargs.pop("allow_synthetic", False))
        return Coordinator(planner, kwargs.pop("executor", executor), driver or FakeDriver(), repositories, **kwargs)

    return factory
