from __future__ import annotations

from typing import List, Sequence, Tuple

from .models import Action, InstructionStatus

ALL_SUCCEEDED = "All actions completed successfully"
SYNTHETIC_MARKER = "[synthetic plan]"


class Supervisor:
    """
    Classifies an executed plan as COMPLETED or FAILED and renders the
    human-readable result. An instruction is COMPLETED only when every action
    reports success; an action that never ran counts as a failure.
    """

    def evaluate(self, actions: Sequence[Action]) -> Tuple[InstructionStatus, str]:
        ordered = sorted(actions, key=lambda a: a.sequence)
        failures: List[str] = [self.describe_failure(a) for a in ordered if a.successful is not True]

        if ordered and not failures:
            status, result = InstructionStatus.COMPLETED, ALL_SUCCEEDED
        elif not ordered:
            status, result = InstructionStatus.FAILED, "No actions were executed"
        else:
            status, result = InstructionStatus.FAILED, "\n".join(failures)

        if any(a.synthetic for a in ordered):
            result = f"{SYNTHETIC_MARKER} {result}"
        return status, result

    @staticmethod
    def describe_failure(action: Action) -> str:
        error = action.error_message or "not executed"
        return (
            f"Failed at step {action.sequence}: {action.type.value} "
            f"on {action.element_description} - {error}"
        )
