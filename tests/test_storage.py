import json
from datetime import datetime
from pathlib import Path

import pytest

from qa_agents.errors import EvidenceCaptureFailed
from qa_agents.models import Action, ActionType, Instruction, InstructionStatus, LearningEntry
from qa_tools.storage import JsonRepository, MemoryRepository, Repositories, ScreenshotStore


def test_memory_repository_assigns_ids():
    repo = MemoryRepository()
    first = repo.save(Instruction(text="a"))
    second = repo.save(Instruction(text="b"))
    assert (first.id, second.id) == (1, 2)
    repo.save(first)
    assert len(repo.all()) == 2
    assert repo.get(2) is second
    assert repo.find(lambda i: i.text == "b") == [second]


def test_json_directory_round_trip(tmp_path):
    repos = Repositories.json_dir(tmp_path)
    instruction = repos.instructions.save(
        Instruction(text="Login", status=InstructionStatus.COMPLETED, processed_at=datetime(2024, 5, 1, 12, 30))
    )
    repos.actions.save(
        Action(
            type=ActionType.TYPE,
            element_description="Username input field",
            value="testuser",
            sequence=2,
            instruction_id=instruction.id,
            successful=True,
            executed_at=datetime(2024, 5, 1, 12, 29),
        )
    )
    repos.learning.save(LearningEntry(context="Login button on screen 'Home'", successful=False, confidence_score=0.3, correction="//b"))

    reloaded = Repositories.json_dir(tmp_path)
    (inst,) = reloaded.instructions.all()
    assert inst.status is InstructionStatus.COMPLETED
    assert inst.processed_at == datetime(2024, 5, 1, 12, 30)
    (action,) = reloaded.actions.all()
    assert action.type is ActionType.TYPE
    assert action.value == "testuser"
    assert action.instruction_id == instruction.id
    (entry,) = reloaded.learning.all()
    assert entry.has_correction
    assert reloaded.instructions.save(Instruction(text="next")).id == 2

    on_disk = json.loads((tmp_path / "actions.json").read_text())
    assert on_disk[0]["type"] == "TYPE"
    assert not (tmp_path / "actions.tmp").exists()


def test_corrupt_file_is_reported(tmp_path):
    path = tmp_path / "instructions.json"
    path.write_text("{not json")
    with pytest.raises(ValueError, match="Corrupt repository file"):
        JsonRepository(path, Instruction)


def test_screenshot_store_never_overwrites(tmp_path):
    store = ScreenshotStore(tmp_path / "shots")
    first = store.save("before_action_1.png", b"one")
    second = store.save("before_action_1.png", b"two")
    assert first != second
    assert Path(first).read_bytes() == b"one"
    assert Path(second).read_bytes() == b"two"
    assert Path(second).name.startswith("before_action_1_")


def test_screenshot_store_failure(tmp_path):
    blocker = tmp_path / "shots"
    blocker.write_text("a file, not a directory")
    with pytest.raises(EvidenceCaptureFailed):
        ScreenshotStore(blocker).save("x.png", b"data")
