from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


def _now() -> datetime:
    return datetime.now()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class InstructionStatus(Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ActionType(Enum):
    """Closed set of device actions the planner may emit."""

    TAP = "TAP"
    LONG_PRESS = "LONG_PRESS"
    TYPE = "TYPE"
    CLEAR = "CLEAR"
    SWIPE = "SWIPE"
    SCROLL = "SCROLL"
    BACK = "BACK"
    VERIFY_TEXT = "VERIFY_TEXT"
    VERIFY_ELEMENT = "VERIFY_ELEMENT"
    WAIT = "WAIT"
    LAUNCH_APP = "LAUNCH_APP"
    CLOSE_APP = "CLOSE_APP"
    TAKE_SCREENSHOT = "TAKE_SCREENSHOT"

    @classmethod
    def parse(cls, name: Any) -> Optional["ActionType"]:
        if not isinstance(name, str):
            return None
        try:
            return cls(name.strip().upper())
        except ValueError:
            return None

    @property
    def needs_element(self) -> bool:
        return self in ELEMENT_ACTIONS

    @property
    def needs_direction(self) -> bool:
        return self in (ActionType.SWIPE, ActionType.SCROLL)

    @property
    def needs_package(self) -> bool:
        return self in (ActionType.LAUNCH_APP, ActionType.CLOSE_APP)


ELEMENT_ACTIONS = frozenset(
    {
        ActionType.TAP,
        ActionType.LONG_PRESS,
        ActionType.TYPE,
        ActionType.CLEAR,
        ActionType.VERIFY_TEXT,
        ActionType.VERIFY_ELEMENT,
    }
)

DIRECTIONS = ("UP", "DOWN", "LEFT", "RIGHT")


@dataclass
class Instruction:
    """A natural-language test directive and its lifecycle."""

    text: str
    id: Optional[int] = None
    status: InstructionStatus = InstructionStatus.PENDING
    created_at: datetime = field(default_factory=_now)
    processed_at: Optional[datetime] = None
    result: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = _iso(self.created_at)
        data["processed_at"] = _iso(self.processed_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Instruction":
        return cls(
            text=data["text"],
            id=data.get("id"),
            status=InstructionStatus(data.get("status", "PENDING")),
            created_at=_from_iso(data.get("created_at")) or _now(),
            processed_at=_from_iso(data.get("processed_at")),
            result=data.get("result"),
        )


@dataclass
class Action:
    """One atomic device operation derived from an instruction."""

    type: ActionType
    element_description: Optional[str] = None
    value: Optional[str] = None
    sequence: int = 0
    id: Optional[int] = None
    instruction_id: Optional[int] = None
    locator: Optional[str] = None
    successful: Optional[bool] = None
    error_message: Optional[str] = None
    screenshot: Optional[str] = None
    executed_at: Optional[datetime] = None
    screen_description: Optional[str] = None
    resolution_source: Optional[str] = None
    synthetic: bool = False

    def needs_resolution(self) -> bool:
        return self.type.needs_element and not self.locator

    def label(self) -> str:
        return f"{self.sequence}: {self.type.value} on {self.element_description}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["executed_at"] = _iso(self.executed_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        return cls(
            type=ActionType(data["type"]),
            element_description=data.get("element_description"),
            value=data.get("value"),
            sequence=int(data.get("sequence", 0)),
            id=data.get("id"),
            instruction_id=data.get("instruction_id"),
            locator=data.get("locator"),
            successful=data.get("successful"),
            error_message=data.get("error_message"),
            screenshot=data.get("screenshot"),
            executed_at=_from_iso(data.get("executed_at")),
            screen_description=data.get("screen_description"),
            resolution_source=data.get("resolution_source"),
            synthetic=bool(data.get("synthetic", False)),
        )


@dataclass
class Outcome:
    successful: bool
    error_message: Optional[str] = None
    evidence_ref: Optional[str] = None


@dataclass
class ScreenEvidence:
    """Screen state captured around an action: image bytes plus where it was stored."""

    screenshot: Optional[bytes] = None
    description: Optional[str] = None
    ref: Optional[str] = None


@dataclass
class LearningEntry:
    context: str
    successful: bool
    confidence_score: float
    action: Optional[str] = None
    error_details: Optional[str] = None
    correction: Optional[str] = None
    element_identifiers: Optional[str] = None
    screen_description: Optional[str] = None
    use_count: int = 1
    id: Optional[int] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def has_correction(self) -> bool:
        return not self.successful and bool(self.correction)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        data["updated_at"] = _iso(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningEntry":
        return cls(
            context=data["context"],
            successful=bool(data["successful"]),
            confidence_score=float(data["confidence_score"]),
            action=data.get("action"),
            error_details=data.get("error_details"),
            correction=data.get("correction"),
            element_identifiers=data.get("element_identifiers"),
            screen_description=data.get("screen_description"),
            use_count=int(data.get("use_count", 1)),
            id=data.get("id"),
            created_at=_from_iso(data.get("created_at")) or _now(),
            updated_at=_from_iso(data.get("updated_at")) or _now(),
        )
