from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from qa_agents import Coordinator, Executor, LearningStore, Planner, Resolver
from qa_agents.config import Settings
from qa_agents.planner import SYSTEM_DIRECTIVE
from qa_agents.resolver import VISION_PROMPT
from qa_tools.driver import AdbDriver
from qa_tools.oracles import TextOracle, VisionOracle, build_agent
from qa_tools.storage import Repositories, ScreenshotStore


def load_instructions(path: Path) -> List[Dict[str, Any]]:
    """Accepts a JSON list of strings or of {"id", "instruction"} objects."""
    data = json.loads(path.read_text())
    if not isinstance(data, list):
        raise ValueError(f"Unexpected instruction file format in {path}")
    cases: List[Dict[str, Any]] = []
    for idx, item in enumerate(data, start=1):
        if isinstance(item, str):
            cases.append({"id": f"I{idx}", "instruction": item})
        elif isinstance(item, dict) and item.get("instruction"):
            cases.append({"id": item.get("id", f"I{idx}"), "instruction": item["instruction"]})
        else:
            raise ValueError(f"Entry {idx} in {path} has no instruction text")
    return cases


def build_coordinator(settings: Settings, repositories: Optional[Repositories] = None) -> Coordinator:
    repos = repositories or (
        Repositories.json_dir(settings.storage_dir) if settings.storage_dir else Repositories.in_memory()
    )
    learning = LearningStore(repos.learning, threshold=settings.confidence_threshold, enabled=settings.learning_enabled)

    planner_agent = build_agent(
        "instruction_planner",
        settings.model,
        SYSTEM_DIRECTIVE,
        description="Breaks a test instruction into typed device actions.",
    )
    locator_agent = build_agent(
        "element_locator",
        settings.locator_model,
        VISION_PROMPT,
        description="Finds the on-screen element matching a description.",
    )

    planner = Planner(TextOracle(planner_agent), allow_synthetic=settings.allow_synthetic_plan)
    resolver = Resolver(VisionOracle(locator_agent), learning, threshold=settings.confidence_threshold)
    executor = Executor(
        resolver,
        learning,
        screenshots=ScreenshotStore(settings.screenshot_dir),
        wait_timeout=settings.wait_timeout,
    )
    driver = AdbDriver(device_id=settings.device_id, mode=settings.mode, wait_timeout=settings.wait_timeout)
    return Coordinator(planner, executor, driver, repos, timeout=settings.instruction_timeout)


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings.from_env().merge(
        confidence_threshold=args.threshold,
        wait_timeout=args.wait_timeout,
        learning_enabled=False if args.no_learning else None,
        screenshot_dir=args.screenshot_dir,
        storage_dir=args.storage_dir,
        model=args.model,
        vision_model=args.vision_model,
        device_id=args.device_id,
        mode=args.mode,
        allow_synthetic_plan=True if args.allow_synthetic_plan else None,
        instruction_timeout=args.timeout,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run natural-language mobile test instructions.")
    parser.add_argument("--instructions", type=Path, default=None, help="JSON file with instructions to run.")
    parser.add_argument("--prompt", type=str, default=None, help="Run a single ad-hoc instruction.")
    parser.add_argument("--device-id", type=str, default=None, help="ADB device/emulator id.")
    parser.add_argument(
        "--mode",
        choices=["dry", "adb"],
        default=None,
        help="dry: simulate actions; adb: send real ADB commands.",
    )
    parser.add_argument("--model", type=str, default=None, help="Planner model (ollama/<name> or a Gemini model).")
    parser.add_argument("--vision-model", type=str, default=None, help="Vision model for element lookup.")
    parser.add_argument("--storage-dir", type=Path, default=None, help="Directory for JSON persistence.")
    parser.add_argument("--screenshot-dir", type=Path, default=None, help="Screenshot retention directory.")
    parser.add_argument("--threshold", type=float, default=None, help="Learned-correction confidence threshold.")
    parser.add_argument("--wait-timeout", type=float, default=None, help="Element lookup timeout in seconds.")
    parser.add_argument("--timeout", type=float, default=None, help="Overall time limit per instruction.")
    parser.add_argument("--no-learning", action="store_true", help="Disable the learning store.")
    parser.add_argument("--allow-synthetic-plan", action="store_true", help="Run a placeholder plan if planning fails.")
    parser.add_argument(
        "--teach",
        nargs=3,
        metavar=("DESCRIPTION", "SCREEN", "LOCATOR"),
        help="Record a locator correction for an element on a screen and exit.",
    )
    parser.add_argument("--list", action="store_true", help="List stored instructions and exit.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING...).")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="[%(asctime)s] %(name)s.%(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    settings = settings_from_args(args)
    coordinator = build_coordinator(settings)

    if args.teach:
        description, screen, locator = args.teach
        entry = coordinator.executor.learning.teach(description, screen, locator)
        if entry is None:
            print("Learning is disabled; nothing recorded.")
        else:
            print(f"Learned: {entry.context} -> {entry.correction} (confidence {entry.confidence_score:.2f})")
        return 0

    if args.list:
        for instruction in coordinator.list_instructions():
            print(f"{instruction.id} | {instruction.status.value} | {instruction.created_at:%Y-%m-%d %H:%M:%S} | {instruction.text}")
        return 0

    if args.prompt:
        cases = [{"id": "PROMPT", "instruction": args.prompt}]
    elif args.instructions:
        cases = load_instructions(args.instructions)
    else:
        parser.error("one of --prompt, --instructions, --teach or --list is required")

    results = []
    try:
        for case in cases:
            instruction = coordinator.run(case["instruction"])
            results.append(instruction)
            print(f"[{case['id']}] {instruction.status.value} - {instruction.result}")
            for action in coordinator.actions_for(instruction):
                mark = "ok" if action.successful else "FAIL"
                print(f"  step {action.sequence}: {action.type.value} {action.element_description or ''} -> {mark}")
    finally:
        coordinator.shutdown()

    passed = sum(1 for r in results if r.status.value == "COMPLETED")
    print(f"Completed {len(results)} instructions: {passed} passed, {len(results) - passed} failed.")
    return 0 if passed == len(results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
