from __future__ import annotations

import re
import subprocess
from typing import Any, Dict, List, Optional

KEYCODE_BACK = 4
KEYCODE_DEL = 67
KEYCODE_MOVE_END = 123

UI_DUMP_REMOTE = "/sdcard/qa_uidump.xml"

# Characters `adb shell input text` hands to the device shell unescaped.
_SHELL_SPECIAL = re.compile(r"""([\\"'`()&|;<>$*?#~])""")
_OVERRIDE_SIZE = re.compile(r"Override size:\s*(\d+)x(\d+)")
_PHYSICAL_SIZE = re.compile(r"Physical size:\s*(\d+)x(\d+)")
_FOCUS = re.compile(r"mCurrentFocus=Window\{[^ ]+ [^ ]+ ([^}\s]+)\}")

Result = Dict[str, Any]


class AdbClient:
    """
    Builds and runs adb commands for one device.

    Every method returns a result dict with "cmd" and "status" ("ok", "error",
    "timeout", or "simulated" when dry_run is set); callers decide what a
    non-ok status means. Query methods add their parsed fields to the dict.
    """

    def __init__(self, device_id: Optional[str] = None, dry_run: bool = False, timeout: int = 20) -> None:
        self.device_id = device_id
        self.dry_run = dry_run
        self.timeout = timeout

    def command(self, args: List[str]) -> List[str]:
        target = ["-s", self.device_id] if self.device_id else []
        return ["adb", *target, *args]

    def _run(self, args: List[str], timeout: Optional[int] = None, binary: bool = False) -> Result:
        cmd = self.command(args)
        if self.dry_run:
            return {"cmd": cmd, "status": "simulated", "stdout": b"" if binary else "", "stderr": ""}

        limit = timeout or self.timeout
        try:
            proc = subprocess.run(cmd, capture_output=True, timeout=limit, check=False)
        except subprocess.TimeoutExpired:
            return {"cmd": cmd, "status": "timeout", "stderr": f"adb timed out after {limit}s"}
        except FileNotFoundError:
            return {"cmd": cmd, "status": "error", "stderr": "adb executable not found on PATH"}

        out = proc.stdout or b""
        return {
            "cmd": cmd,
            "status": "ok" if proc.returncode == 0 else "error",
            "stdout": out if binary else out.decode("utf-8", errors="ignore"),
            "stderr": (proc.stderr or b"").decode("utf-8", errors="ignore"),
            "returncode": proc.returncode,
        }

    def _shell(self, *args: Any) -> Result:
        return self._run(["shell", *[str(a) for a in args]])

    # -------------------------
    # Device state
    # -------------------------
    def get_state(self) -> Result:
        res = self._run(["get-state"])
        if res["status"] == "ok":
            res["state"] = res["stdout"].strip()
        return res

    def get_screen_size(self) -> Result:
        """Adds "width"/"height"; an override size wins over the physical one."""
        res = self._shell("wm", "size")
        if res["status"] != "ok":
            return res
        found = _OVERRIDE_SIZE.search(res["stdout"]) or _PHYSICAL_SIZE.search(res["stdout"])
        if found is None:
            res.update(status="error", stderr=f"Unable to parse screen size from: {res['stdout']}")
            return res
        res["width"], res["height"] = int(found.group(1)), int(found.group(2))
        return res

    def current_focus(self) -> Result:
        """Adds "focus": the focused window as package/activity, or None."""
        res = self._shell("dumpsys", "window")
        if res["status"] == "ok":
            found = _FOCUS.search(res["stdout"])
            res["focus"] = found.group(1) if found else None
        return res

    def dump_ui(self) -> Result:
        """Adds "xml": the uiautomator hierarchy of the current screen."""
        res = self._shell("uiautomator", "dump", UI_DUMP_REMOTE)
        if res["status"] != "ok":
            return res
        res = self._run(["exec-out", "cat", UI_DUMP_REMOTE])
        if res["status"] == "ok":
            res["xml"] = res["stdout"]
        return res

    def screenshot(self) -> Result:
        return self._run(["exec-out", "screencap", "-p"], binary=True)

    # -------------------------
    # Input
    # -------------------------
    def tap(self, x: int, y: int) -> Result:
        return self._shell("input", "tap", x, y)

    def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int = 300) -> Result:
        return self._shell("input", "swipe", x1, y1, x2, y2, duration_ms)

    def long_press(self, x: int, y: int, duration_ms: int = 1000) -> Result:
        # zero-distance swipe
        return self.swipe(x, y, x, y, duration_ms)

    def keyevent(self, key_code: int) -> Result:
        return self._shell("input", "keyevent", key_code)

    def keyevents(self, key_code: int, count: int) -> Result:
        return self._shell("input", "keyevent", *[key_code] * max(count, 1))

    def input_text(self, text: str) -> Result:
        return self._shell("input", "text", _SHELL_SPECIAL.sub(r"\\\1", text).replace(" ", "%s"))

    # -------------------------
    # App lifecycle
    # -------------------------
    def start_app(self, package: str) -> Result:
        return self._shell("monkey", "-p", package, "-c", "android.intent.category.LAUNCHER", 1)

    def force_stop(self, package: str) -> Result:
        return self._shell("am", "force-stop", package)
