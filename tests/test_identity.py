from __future__ import annotations

import re
import threading
from pathlib import Path

from fryler.prompting.identity import IdentityFiles


def test_init_copies_defaults_once(tmp_path: Path) -> None:
    identity = IdentityFiles(tmp_path / "id")

    created = identity.init_identity_files()
    assert sorted(p.name for p in created) == ["MEMORY.md", "SOUL.md"]
    assert "FRYLER_TASK" in identity.read_soul()

    identity.soul_path.write_text("custom soul", encoding="utf-8")
    assert identity.init_identity_files() == []
    assert identity.read_soul() == "custom soul"


def test_missing_documents_read_as_empty(tmp_path: Path) -> None:
    identity = IdentityFiles(tmp_path / "empty")
    assert identity.read_soul() == ""
    assert identity.read_memory() == ""
    assert identity.get_identity_context() == (
        "=== FRYLER IDENTITY (SOUL.md) ===\n\n\n=== FRYLER MEMORY (MEMORY.md) ===\n"
    )


def test_identity_context_layout(tmp_path: Path) -> None:
    identity = IdentityFiles(tmp_path)
    identity.soul_path.write_text("I am fryler.", encoding="utf-8")
    identity.memory_path.write_text("# Memory", encoding="utf-8")

    assert identity.get_identity_context() == (
        "=== FRYLER IDENTITY (SOUL.md) ===\nI am fryler.\n\n=== FRYLER MEMORY (MEMORY.md) ===\n# Memory"
    )


def test_append_memory_adds_timestamped_entry(tmp_path: Path) -> None:
    identity = IdentityFiles(tmp_path)
    identity.memory_path.write_text("# Memory", encoding="utf-8")

    identity.append_memory("Likes tea")

    text = identity.read_memory()
    assert text.startswith("# Memory\n### ")
    assert re.search(r"\n### \d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z\nLikes tea$", text)
    assert not Path(f"{identity.memory_path}.lock").exists()


def test_concurrent_appends_do_not_interleave(tmp_path: Path) -> None:
    identity = IdentityFiles(tmp_path)
    entries = [f"entry-{i}" for i in range(20)]
    threads = [threading.Thread(target=identity.append_memory, args=(entry,)) for entry in entries]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    text = identity.read_memory()
    for entry in entries:
        assert f"\n{entry}" in text
    assert text.count("\n### ") == len(entries)
