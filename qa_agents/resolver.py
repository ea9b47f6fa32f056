from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from .errors import OracleError, ResolutionDegraded
from .learning import DEFAULT_SCREEN, LearningStore, context_key
from .models import Action, ActionType, ScreenEvidence
from .parsing import extract_json_object

logger = logging.getLogger(__name__)

VISION_DIRECTIVE_TEMPLATE = """\
You are an expert mobile app UI analyzer.
You are looking at a screenshot of a mobile application.

Your task is to:
1. Identify and describe all visible UI elements on the screen
2. For each element, suggest possible locator strategies (structural path, accessibility id, resource id)
3. Based on the element description provided, determine the best matching element and its precise location

Focus on finding the element that best matches this description: {description}

Respond with a JSON object in the following format:
{{
  "screenDescription": "Brief description of the screen (e.g., 'Login Screen', 'Home Page')",
  "matchedElement": {{
    "description": "Description of the matched element",
    "type": "Type of element (button, text field, etc.)",
    "text": "Text content of the element (if any)",
    "confidence": 0.95,
    "bounds": {{"x": 100, "y": 200, "width": 300, "height": 50}},
    "suggestedLocators": {{
      "structural": "//android.widget.Button[@text='Login']",
      "accessibilityId": "login_button",
      "rawId": "com.example.app:id/login_button"
    }}
  }},
  "otherElements": [
    {{"description": "Description of another element", "type": "Type of element", "text": "Text content (if any)"}}
  ]
}}

Return ONLY the JSON object without any additional text or explanation.
"""

VISION_PROMPT = "Analyze this screenshot and find the element that matches the given description."

# Fixed locators for the nearest known widget pattern, used when the vision
# oracle cannot produce a match.
DEFAULT_LOCATORS: Dict[ActionType, str] = {
    ActionType.TYPE: "//android.widget.EditText",
    ActionType.CLEAR: "//android.widget.EditText",
    ActionType.VERIFY_TEXT: "//android.widget.TextView",
}
DEFAULT_LOCATOR = "//android.widget.Button"


def pick_locator(suggested: Dict[str, Any]) -> Optional[str]:
    """Structural path first, then accessibility id, then raw resource id."""
    structural = suggested.get("structural") or suggested.get("xpath")
    if isinstance(structural, str) and structural.strip():
        return structural.strip()
    accessibility = suggested.get("accessibilityId")
    if isinstance(accessibility, str) and accessibility.strip():
        return f"accessibility:{accessibility.strip()}"
    raw_id = suggested.get("rawId") or suggested.get("id")
    if isinstance(raw_id, str) and raw_id.strip():
        return f"id:{raw_id.strip()}"
    return None


class Resolver:
    """
    Picks a locator for an action through a fixed priority chain:
    learned correction, vision oracle, fixed default.

    The resolver never writes to the learning store; the executor records the
    outcome once the locator has actually been tried.
    """

    def __init__(self, vision_oracle, learning: LearningStore, threshold: Optional[float] = None) -> None:
        self.vision_oracle = vision_oracle
        self.learning = learning
        self.threshold = learning.threshold if threshold is None else threshold

    def resolve(self, action: Action, evidence: ScreenEvidence) -> str:
        screen = evidence.description or DEFAULT_SCREEN
        action.screen_description = screen
        context = context_key(action.element_description, screen)

        learned = self.learning.best_correction(context, self.threshold)
        if learned is not None:
            logger.info(
                "resolve: using learned correction for %r (confidence %.2f): %s",
                context,
                learned.confidence_score,
                learned.correction,
            )
            action.resolution_source = "learned"
            return learned.correction

        match = self._ask_vision(action, evidence)
        if match is not None:
            locator, description = match
            if description:
                action.element_description = description
            action.resolution_source = "vision"
            logger.info("resolve: vision match for %r -> %s", context, locator)
            return locator

        locator = DEFAULT_LOCATORS.get(action.type, DEFAULT_LOCATOR)
        degraded = ResolutionDegraded(f"no match for {action.element_description!r}; using default {locator}")
        logger.warning("resolve: degraded: %s", degraded)
        action.resolution_source = "default"
        return locator

    def _ask_vision(self, action: Action, evidence: ScreenEvidence) -> Optional[Tuple[str, Optional[str]]]:
        if self.vision_oracle is None:
            return None
        directive = VISION_DIRECTIVE_TEMPLATE.format(description=action.element_description or "")
        try:
            response = self.vision_oracle.analyze(VISION_PROMPT, evidence.screenshot, system=directive)
        except OracleError as exc:
            logger.error("resolve: vision oracle failed: %s", exc)
            return None
        logger.debug("resolve: vision response: %s", response)

        analysis = extract_json_object(response)
        if not analysis:
            return None
        matched = analysis.get("matchedElement")
        if not isinstance(matched, dict):
            return None
        suggested = matched.get("suggestedLocators")
        locator = pick_locator(suggested) if isinstance(suggested, dict) else None
        if locator is None:
            return None
        description = matched.get("description")
        return locator, description if isinstance(description, str) and description.strip() else None
