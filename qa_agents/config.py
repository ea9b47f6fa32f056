from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

ENV_PREFIX = "QA_AGENT_"

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """
    Runtime options. Defaults mirror the values the pipeline was tuned with;
    `from_env` reads QA_AGENT_* variables and CLI flags override through `merge`.
    """

    confidence_threshold: float = 0.7
    wait_timeout: float = 10.0
    learning_enabled: bool = True
    screenshot_dir: Path = field(default_factory=lambda: Path("screenshots"))
    storage_dir: Optional[Path] = None
    model: str = "ollama/qwen2.5vl:7b"
    vision_model: Optional[str] = None
    device_id: Optional[str] = None
    mode: str = "dry"
    allow_synthetic_plan: bool = False
    instruction_timeout: Optional[float] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            raw = env.get(ENV_PREFIX + name)
            return raw.strip() if raw and raw.strip() else None

        overrides: Dict[str, Any] = {}
        if get("CONFIDENCE_THRESHOLD"):
            overrides["confidence_threshold"] = float(get("CONFIDENCE_THRESHOLD"))
        if get("WAIT_TIMEOUT"):
            overrides["wait_timeout"] = float(get("WAIT_TIMEOUT"))
        if get("LEARNING_ENABLED"):
            overrides["learning_enabled"] = get("LEARNING_ENABLED").lower() in _TRUE
        if get("SCREENSHOT_DIR"):
            overrides["screenshot_dir"] = Path(get("SCREENSHOT_DIR"))
        if get("STORAGE_DIR"):
            overrides["storage_dir"] = Path(get("STORAGE_DIR"))
        if get("MODEL"):
            overrides["model"] = get("MODEL")
        if get("VISION_MODEL"):
            overrides["vision_model"] = get("VISION_MODEL")
        if get("DEVICE_ID"):
            overrides["device_id"] = get("DEVICE_ID")
        if get("MODE"):
            overrides["mode"] = get("MODE")
        if get("ALLOW_SYNTHETIC_PLAN"):
            overrides["allow_synthetic_plan"] = get("ALLOW_SYNTHETIC_PLAN").lower() in _TRUE
        if get("INSTRUCTION_TIMEOUT"):
            overrides["instruction_timeout"] = float(get("INSTRUCTION_TIMEOUT"))
        return cls().merge(**overrides)

    def merge(self, **overrides: Any) -> "Settings":
        """Return a copy with every non-None override applied."""
        updated = replace(self, **{k: v for k, v in overrides.items() if v is not None})
        if not 0.0 <= updated.confidence_threshold <= 1.0:
            raise ValueError(f"confidence_threshold must be within [0, 1], got {updated.confidence_threshold}")
        if updated.wait_timeout <= 0:
            raise ValueError(f"wait_timeout must be positive, got {updated.wait_timeout}")
        if updated.mode not in ("dry", "adb"):
            raise ValueError(f"mode must be 'dry' or 'adb', got {updated.mode!r}")
        return updated

    @property
    def locator_model(self) -> str:
        return self.vision_model or self.model
