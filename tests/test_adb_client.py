import subprocess

from qa_tools.adb_client import KEYCODE_DEL, AdbClient


class Completed:
    def __init__(self, stdout=b"", stderr=b"", returncode=0):
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode


def test_dry_run_never_spawns(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("subprocess should not run in dry mode")

    monkeypatch.setattr(subprocess, "run", fail)
    res = AdbClient(device_id="emulator-5554", dry_run=True).tap(10, 20)
    assert res["status"] == "simulated"
    assert res["cmd"] == ["adb", "-s", "emulator-5554", "shell", "input", "tap", "10", "20"]


def test_screen_size_prefers_override(monkeypatch):
    out = b"Physical size: 1080x2400\nOverride size: 720x1600\n"
    monkeypatch.setattr(subprocess, "run", lambda *a, **k: Completed(stdout=out))
    res = AdbClient().get_screen_size()
    assert (res["width"], res["height"]) == (720, 1600)


def test_screen_size_unparseable(monkeypatch):
    monkeypatch.setattr(subprocess, "run", lambda *a, **k: Completed(stdout=b"nothing useful"))
    res = AdbClient().get_screen_size()
    assert res["status"] == "error"
    assert "Unable to parse" in res["stderr"]


def test_timeout_and_missing_binary(monkeypatch):
    def timeout(*a, **k):
        raise subprocess.TimeoutExpired(cmd="adb", timeout=1)

    monkeypatch.setattr(subprocess, "run", timeout)
    assert AdbClient(timeout=1).get_state()["status"] == "timeout"

    def missing(*a, **k):
        raise FileNotFoundError("adb")

    monkeypatch.setattr(subprocess, "run", missing)
    assert AdbClient().get_state()["stderr"] == "adb executable not found on PATH"


def test_current_focus(monkeypatch):
    out = b"  mCurrentFocus=Window{3c1b2f u0 com.example/com.example.LoginActivity}\n"
    monkeypatch.setattr(subprocess, "run", lambda *a, **k: Completed(stdout=out))
    assert AdbClient().current_focus()["focus"] == "com.example/com.example.LoginActivity"


def test_dump_ui_reads_back_xml(monkeypatch):
    seen = []

    def run(cmd, **kwargs):
        seen.append(cmd)
        return Completed(stdout=b"<hierarchy/>" if "cat" in cmd else b"UI hierchary dumped")

    monkeypatch.setattr(subprocess, "run", run)
    res = AdbClient().dump_ui()
    assert res["xml"] == "<hierarchy/>"
    assert seen[0][:3] == ["adb", "shell", "uiautomator"]


def test_input_text_escapes_shell_characters():
    res = AdbClient(dry_run=True).input_text("it's a (test)")
    assert res["cmd"][-1] == "it\\'s%sa%s\\(test\\)"


def test_keyevents_batches_codes():
    res = AdbClient(dry_run=True).keyevents(KEYCODE_DEL, 3)
    assert res["cmd"] == ["adb", "shell", "input", "keyevent", "67", "67", "67"]
