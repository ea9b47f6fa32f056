from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

from .errors import OracleError, PlanningFailed
from .models import Action, ActionType
from .parsing import extract_json_array

logger = logging.getLogger(__name__)

SYSTEM_DIRECTIVE = """\
You are an expert mobile testing assistant.
Your task is to analyze the user's test instruction and break it down into a sequence of specific actions to perform on a mobile app.

For each instruction, provide a JSON array of test actions in the following format:
[
  {
    "actionType": "ACTION_TYPE",
    "elementDescription": "Detailed description of the element",
    "value": "Value to input (if applicable)",
    "sequence": number
  }
]

ACTION_TYPE must be one of: TAP, LONG_PRESS, TYPE, CLEAR, SWIPE, SCROLL, BACK, VERIFY_TEXT, VERIFY_ELEMENT, WAIT, LAUNCH_APP, CLOSE_APP, TAKE_SCREENSHOT
SWIPE and SCROLL take a direction value (UP, DOWN, LEFT, RIGHT). WAIT takes milliseconds. LAUNCH_APP and CLOSE_APP take the app package name.

Example:
For "Login with username 'testuser' and password 'password123'", the output would be:
[
  {"actionType": "TAP", "elementDescription": "Username input field", "value": "", "sequence": 1},
  {"actionType": "TYPE", "elementDescription": "Username input field", "value": "testuser", "sequence": 2},
  {"actionType": "TAP", "elementDescription": "Password input field", "value": "", "sequence": 3},
  {"actionType": "TYPE", "elementDescription": "Password input field", "value": "password123", "sequence": 4},
  {"actionType": "TAP", "elementDescription": "Login button", "value": "", "sequence": 5},
  {"actionType": "VERIFY_TEXT", "elementDescription": "Welcome message or home screen indicator", "value": "", "sequence": 6}
]

Always be thorough and think step by step about what actions a user would need to perform to complete the instruction.
Return ONLY the JSON array without any additional text or explanation.
"""

PLACEHOLDER_DESCRIPTION = "Sample element"


def _text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    return raw if isinstance(raw, str) else str(raw)


def _sequence(raw: Any, position: int) -> int:
    if isinstance(raw, bool):
        return position
    if isinstance(raw, str):
        raw = raw.strip()
    elif not isinstance(raw, (int, float)):
        return position
    try:
        return int(raw)
    except (ValueError, OverflowError):
        return position


def parse_actions(text: Optional[str]) -> List[Action]:
    """
    Turn an oracle response into ordered, unsaved actions.

    Records outside the closed action set are dropped with a warning. The
    surviving actions are ordered by (declared sequence, array position) and
    renumbered 1..N. A missing or undecodable payload yields an empty list.
    """
    records = extract_json_array(text)
    if records is None:
        logger.warning("plan: no JSON array found in oracle response")
        return []

    ordered: List[Tuple[int, int, Action]] = []
    for position, record in enumerate(records, start=1):
        if not isinstance(record, dict):
            logger.warning("plan: dropping non-object record at position %d: %r", position, record)
            continue
        action_type = ActionType.parse(record.get("actionType"))
        if action_type is None:
            logger.warning("plan: dropping record with unknown actionType %r", record.get("actionType"))
            continue
        action = Action(
            type=action_type,
            element_description=_text(record.get("elementDescription")),
            value=_text(record.get("value")),
        )
        ordered.append((_sequence(record.get("sequence"), position), position, action))

    ordered.sort(key=lambda item: (item[0], item[1]))
    actions = [item[2] for item in ordered]
    for number, action in enumerate(actions, start=1):
        action.sequence = number
    return actions


class Planner:
    """Turns a natural-language test instruction into an ordered action plan."""

    def __init__(self, oracle, allow_synthetic: bool = False) -> None:
        self.oracle = oracle
        self.allow_synthetic = allow_synthetic

    def plan(self, instruction_text: str) -> List[Action]:
        logger.info("plan: requesting actions for %r", instruction_text)
        reason = "no usable actions in oracle response"
        actions: List[Action] = []
        try:
            response = self.oracle.complete(instruction_text, system=SYSTEM_DIRECTIVE)
            logger.debug("plan: oracle response: %s", response)
            actions = parse_actions(response)
        except OracleError as exc:
            reason = f"oracle call failed: {exc}"
            logger.error("plan: %s", reason)

        if actions:
            logger.info("plan: generated %d actions", len(actions))
            return actions

        if self.allow_synthetic:
            logger.warning("plan: %s; substituting a synthetic placeholder action", reason)
            return [
                Action(
                    type=ActionType.TAP,
                    element_description=PLACEHOLDER_DESCRIPTION,
                    sequence=1,
                    synthetic=True,
                )
            ]
        raise PlanningFailed(f"Planning failed for {instruction_text!r}: {reason}")
