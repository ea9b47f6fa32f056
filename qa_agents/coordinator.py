from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import List, Optional

from .models import Action, Instruction, InstructionStatus
from .supervisor import Supervisor

logger = logging.getLogger(__name__)


class Coordinator:
    """
    Runs instructions end to end: plan once, then execute every action in
    sequence order on a single device, then let the supervisor classify the run.

    Planning happens outside the device lock, so several instructions can plan
    at once; execution holds the lock for a whole instruction, so two
    instructions never interleave on the same device. `process` never raises:
    any failure ends up as a FAILED instruction with the error in its result.
    """

    def __init__(
        self,
        planner,
        executor,
        driver,
        repositories,
        supervisor: Optional[Supervisor] = None,
        timeout: Optional[float] = None,
        max_workers: int = 2,
    ) -> None:
        self.planner = planner
        self.executor = executor
        self.driver = driver
        self.instructions = repositories.instructions
        self.actions = repositories.actions
        self.supervisor = supervisor or Supervisor()
        self.timeout = timeout
        self.max_workers = max_workers
        self._device_lock = threading.Lock()
        self._cancel = threading.Event()
        self._pool: Optional[ThreadPoolExecutor] = None
        self._pool_lock = threading.Lock()

    # -------------------------
    # Submission
    # -------------------------
    def submit(self, text: str) -> Instruction:
        if not text or not text.strip():
            raise ValueError("Instruction text cannot be blank")
        instruction = Instruction(text=text.strip())
        return self.instructions.save(instruction)

    def run(self, text: str, timeout: Optional[float] = None) -> Instruction:
        return self.process(self.submit(text), timeout=timeout)

    def process_async(self, instruction: Instruction, timeout: Optional[float] = None) -> "Future[Instruction]":
        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="instruction")
            pool = self._pool
        return pool.submit(self.process, instruction, timeout)

    def cancel(self) -> None:
        """
        Stop the running (or next) instruction between actions. An action already
        sent to the device runs to completion; the request is consumed once honoured.
        """
        self._cancel.set()

    def shutdown(self, wait: bool = True) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.shutdown(wait=wait)
                self._pool = None

    # -------------------------
    # Processing
    # -------------------------
    def process(self, instruction: Instruction, timeout: Optional[float] = None) -> Instruction:
        limit = timeout if timeout is not None else self.timeout
        logger.info("Processing instruction %s: %s", instruction.id, instruction.text)

        try:
            instruction.status = InstructionStatus.IN_PROGRESS
            self.instructions.save(instruction)

            planned = self.planner.plan(instruction.text)
            for action in planned:
                action.instruction_id = instruction.id
                self.actions.save(action)

            with self._device_lock:
                # the time limit covers device work only, not the wait for the lock
                deadline = time.monotonic() + limit if limit else None
                with self.driver.session() as driver:
                    self._run_actions(planned, driver, deadline)

            instruction.status, instruction.result = self.supervisor.evaluate(planned)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error processing instruction %s", instruction.id)
            instruction.status = InstructionStatus.FAILED
            instruction.result = f"Error: {exc}"

        instruction.processed_at = datetime.now()
        try:
            self.instructions.save(instruction)
        except Exception:  # noqa: BLE001
            logger.exception("Could not persist final state of instruction %s", instruction.id)
        logger.info("Instruction %s finished with status %s", instruction.id, instruction.status.value)
        return instruction

    def _run_actions(self, planned: List[Action], driver, deadline: Optional[float]) -> None:
        for index, action in enumerate(sorted(planned, key=lambda a: a.sequence)):
            stop_reason = self._stop_reason(deadline)
            if stop_reason:
                logger.warning("Stopping before step %d: %s", action.sequence, stop_reason)
                for skipped in sorted(planned, key=lambda a: a.sequence)[index:]:
                    skipped.successful = False
                    skipped.error_message = f"Skipped: {stop_reason}"
                    self.actions.save(skipped)
                self._cancel.clear()
                return

            logger.info("Executing action: %s on %s", action.type.value, action.element_description)
            self.executor.execute(action, driver)
            self.actions.save(action)

    def _stop_reason(self, deadline: Optional[float]) -> Optional[str]:
        if self._cancel.is_set():
            return "instruction cancelled"
        if deadline is not None and time.monotonic() >= deadline:
            return "instruction timed out"
        return None

    # -------------------------
    # Queries
    # -------------------------
    def list_instructions(self) -> List[Instruction]:
        return sorted(self.instructions.all(), key=lambda i: (i.created_at, i.id or 0), reverse=True)

    def instructions_by_status(self, status: InstructionStatus) -> List[Instruction]:
        return self.instructions.find(lambda i: i.status == status)

    def actions_for(self, instruction: Instruction) -> List[Action]:
        found = self.actions.find(lambda a: a.instruction_id == instruction.id)
        return sorted(found, key=lambda a: a.sequence)
