from __future__ import annotations

import logging
import re
import time
import xml.etree.ElementTree as ET
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from qa_agents.errors import DriverOperationFailed, DriverSessionError, ElementNotFound

from .adb_client import KEYCODE_BACK, KEYCODE_DEL, KEYCODE_MOVE_END, AdbClient

logger = logging.getLogger(__name__)

_BOUNDS_RE = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")


@dataclass
class UiElement:
    """A node of the uiautomator hierarchy the driver can act on."""

    class_name: str = ""
    text: str = ""
    resource_id: str = ""
    content_desc: str = ""
    bounds: Tuple[int, int, int, int] = (0, 0, 0, 0)

    @property
    def center(self) -> Tuple[int, int]:
        x1, y1, x2, y2 = self.bounds
        return (x1 + x2) // 2, (y1 + y2) // 2

    @classmethod
    def from_node(cls, node: ET.Element) -> "UiElement":
        match = _BOUNDS_RE.match(node.attrib.get("bounds", ""))
        bounds = tuple(int(v) for v in match.groups()) if match else (0, 0, 0, 0)
        return cls(
            class_name=node.attrib.get("class", ""),
            text=node.attrib.get("text", ""),
            resource_id=node.attrib.get("resource-id", ""),
            content_desc=node.attrib.get("content-desc", ""),
            bounds=bounds,
        )


# ---------------------------------------------------------------------------
# Locator matching
# ---------------------------------------------------------------------------

_STEP_RE = re.compile(r"(//|/)([A-Za-z_$][\w.$-]*|\*)")
_EQ_RE = re.compile(r"""^(?:@([\w-]+)|text\(\))\s*=\s*(['"])(.*)\2$""", re.S)
_FUNC_RE = re.compile(r"""^(contains|starts-with)\(\s*(?:@([\w-]+)|text\(\))\s*,\s*(['"])(.*)\3\s*\)$""", re.S)
_BOOL_SPLIT_RE = re.compile(r"""\s+(and|or)\s+(?=(?:[^'"]|'[^']*'|"[^"]*")*$)""")

Condition = Callable[[ET.Element], bool]


def _norm(s: str) -> str:
    return " ".join(s.lower().split())


def _read_predicates(locator: str, pos: int) -> Tuple[List[str], int]:
    """Collect consecutive [..] bodies starting at pos, honouring quoted text."""
    bodies: List[str] = []
    while pos < len(locator) and locator[pos] == "[":
        quote = None
        end = pos + 1
        while end < len(locator):
            ch = locator[end]
            if quote:
                if ch == quote:
                    quote = None
            elif ch in ("'", '"'):
                quote = ch
            elif ch == "]":
                break
            end += 1
        if end >= len(locator):
            raise DriverOperationFailed(f"Unbalanced predicate in locator: {locator}")
        bodies.append(locator[pos + 1 : end].strip())
        pos = end + 1
    return bodies, pos


def _condition(expr: str, locator: str) -> Condition:
    match = _EQ_RE.match(expr)
    if match:
        attr, value = match.group(1) or "text", match.group(3)
        return lambda n: n.attrib.get(attr, "") == value
    match = _FUNC_RE.match(expr)
    if match:
        func, attr, value = match.group(1), match.group(2) or "text", match.group(4)
        if func == "contains":
            return lambda n: value in n.attrib.get(attr, "")
        return lambda n: n.attrib.get(attr, "").startswith(value)
    raise DriverOperationFailed(f"Unsupported predicate {expr!r} in locator: {locator}")


def _predicate(body: str, locator: str) -> Any:
    """Either an int position or a Condition built from and/or joined terms."""
    if body.isdigit():
        return int(body)
    parts = _BOOL_SPLIT_RE.split(body)
    terms = [_condition(p.strip(), locator) for p in parts[::2]]
    ops = parts[1::2]

    def check(node: ET.Element) -> bool:
        result = terms[0](node)
        for op, term in zip(ops, terms[1:]):
            result = (result and term(node)) if op == "and" else (result or term(node))
        return result

    return check


def _parse_path(locator: str) -> List[Tuple[str, str, List[Any]]]:
    steps = []
    pos = 0
    while pos < len(locator):
        match = _STEP_RE.match(locator, pos)
        if not match:
            raise DriverOperationFailed(f"Unsupported structural locator: {locator}")
        axis, test = match.group(1), match.group(2)
        bodies, pos = _read_predicates(locator, match.end())
        steps.append((axis, test, [_predicate(b, locator) for b in bodies]))
    return steps


def _eval_path(root: ET.Element, locator: str) -> List[ET.Element]:
    context = [root]
    for axis, test, predicates in _parse_path(locator):
        selected: List[ET.Element] = []
        for ctx in context:
            pool = [n for n in ctx.iter() if n is not ctx] if axis == "//" else list(ctx)
            nodes = [n for n in pool if n.tag == "node" and (test == "*" or n.attrib.get("class") == test)]
            for pred in predicates:
                if isinstance(pred, int):
                    nodes = nodes[pred - 1 : pred] if pred >= 1 else []
                else:
                    nodes = [n for n in nodes if pred(n)]
            for n in nodes:
                if not any(n is s for s in selected):
                    selected.append(n)
        context = selected
    return context


def match_locator(xml_text: str, locator: str) -> List[UiElement]:
    """
    Elements of a uiautomator dump matched by a locator. Accepted forms:

    * structural path: //android.widget.Button[@text='Login'], //*[contains(@text,'Sign')][1]
    * accessibility:<content-desc> or ~<content-desc>
    * id:<resource-id>, or any string containing ':id/'
    * text:<exact text>
    * anything else: case-insensitive substring of text or content-desc
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise DriverOperationFailed(f"Unparseable UI dump: {exc}") from exc

    locator = locator.strip()
    if locator.startswith("/"):
        return [UiElement.from_node(n) for n in _eval_path(root, locator)]

    all_nodes = [n for n in root.iter("node")]
    if locator.startswith("accessibility:") or locator.startswith("~"):
        desc = locator.split(":", 1)[1] if locator.startswith("accessibility:") else locator[1:]
        hits = [n for n in all_nodes if n.attrib.get("content-desc") == desc]
    elif locator.startswith("id:") or ":id/" in locator:
        rid = locator[3:] if locator.startswith("id:") else locator
        hits = [
            n
            for n in all_nodes
            if n.attrib.get("resource-id") == rid or n.attrib.get("resource-id", "").endswith(f":id/{rid}")
        ]
    elif locator.startswith("text:"):
        text = locator[5:]
        hits = [n for n in all_nodes if n.attrib.get("text") == text]
    else:
        target = _norm(locator)
        hits = [
            n
            for n in all_nodes
            if target and (target in _norm(n.attrib.get("text", "")) or target in _norm(n.attrib.get("content-desc", "")))
        ]
    return [UiElement.from_node(n) for n in hits]


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class AdbDriver:
    """
    Device driver on top of AdbClient. Element lookups poll the uiautomator
    dump until the locator matches or the wait timeout expires.

    In dry mode every command is simulated and lookups return a placeholder
    element, so the whole pipeline can run without an emulator.
    """

    poll_interval = 0.5

    def __init__(
        self,
        device_id: Optional[str] = None,
        mode: str = "dry",
        wait_timeout: float = 10.0,
        client: Optional[AdbClient] = None,
    ) -> None:
        self.mode = mode
        self.wait_timeout = wait_timeout
        self.adb = client or AdbClient(device_id=device_id, dry_run=(mode != "adb"))
        self._window_size: Optional[Tuple[int, int]] = None
        self.active = False

    @property
    def dry_run(self) -> bool:
        return self.adb.dry_run

    def _check(self, res: Dict[str, Any], what: str) -> Dict[str, Any]:
        status = res.get("status")
        if status not in ("ok", "simulated"):
            detail = res.get("stderr") or status
            raise DriverOperationFailed(f"{what} failed: {detail}")
        return res

    # -------------------------
    # Session
    # -------------------------
    def start_session(self) -> None:
        if not self.dry_run:
            res = self.adb.get_state()
            if res.get("status") != "ok" or res.get("state") != "device":
                raise DriverSessionError(
                    f"No usable device ({res.get('stderr') or res.get('state') or res.get('status')})"
                )
        self.active = True
        logger.info("driver: session started (mode=%s, device=%s)", self.mode, self.adb.device_id or "default")

    def end_session(self) -> None:
        self.active = False
        self._window_size = None
        logger.info("driver: session ended")

    @contextmanager
    def session(self) -> Iterator["AdbDriver"]:
        self.start_session()
        try:
            yield self
        finally:
            self.end_session()

    # -------------------------
    # Lookup
    # -------------------------
    def dump(self) -> str:
        res = self._check(self.adb.dump_ui(), "UI dump")
        return res.get("xml", "")

    def find_all(self, locator: str) -> List[UiElement]:
        if self.dry_run:
            return [UiElement(text=locator)]
        return match_locator(self.dump(), locator)

    def find_element(self, locator: str, timeout: Optional[float] = None) -> UiElement:
        wait = self.wait_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        while True:
            found = self.find_all(locator)
            if found:
                return found[0]
            if time.monotonic() >= deadline:
                raise ElementNotFound(locator, wait)
            time.sleep(self.poll_interval)

    def find_text(self, text: str, timeout: Optional[float] = None) -> UiElement:
        quote = '"' if "'" in text else "'"
        return self.find_element(f"//*[contains(@text,{quote}{text}{quote})]", timeout)

    # -------------------------
    # Gestures and input
    # -------------------------
    def tap(self, element: UiElement) -> None:
        self._check(self.adb.tap(*element.center), "tap")

    def long_press(self, element: UiElement, duration_ms: int = 1000) -> None:
        x, y = element.center
        self._check(self.adb.long_press(x, y, duration_ms), "long press")

    def type_text(self, element: UiElement, text: str) -> None:
        self.tap(element)
        self._check(self.adb.input_text(text), "type")

    def clear(self, element: UiElement) -> None:
        self.tap(element)
        self._check(self.adb.keyevent(KEYCODE_MOVE_END), "clear")
        self._check(self.adb.keyevents(KEYCODE_DEL, max(len(element.text), 50)), "clear")

    def swipe(self, start: Tuple[int, int], end: Tuple[int, int], duration_ms: int) -> None:
        self._check(self.adb.swipe(start[0], start[1], end[0], end[1], duration_ms), "swipe")

    def window_size(self) -> Tuple[int, int]:
        if self._window_size:
            return self._window_size
        if self.dry_run:
            self._window_size = (1080, 2400)
            return self._window_size
        res = self._check(self.adb.get_screen_size(), "screen size")
        self._window_size = (int(res["width"]), int(res["height"]))
        return self._window_size

    def back(self) -> None:
        self._check(self.adb.keyevent(KEYCODE_BACK), "back")

    # -------------------------
    # Apps and screen
    # -------------------------
    def launch_app(self, package: str) -> None:
        self._check(self.adb.start_app(package), f"launch {package}")

    def close_app(self, package: str) -> None:
        self._check(self.adb.force_stop(package), f"close {package}")

    def screenshot(self) -> bytes:
        res = self._check(self.adb.screenshot(), "screenshot")
        return res.get("stdout") or b""

    def current_screen(self) -> Optional[str]:
        if self.dry_run:
            return None
        res = self.adb.current_focus()
        return res.get("focus") if res.get("status") == "ok" else None
