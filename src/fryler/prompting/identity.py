"""SOUL.md / MEMORY.md identity documents."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from fryler.filelock import file_lock

logger = logging.getLogger(__name__)

SOUL_FILE = "SOUL.md"
MEMORY_FILE = "MEMORY.md"

_DEFAULT_FILES = {
    SOUL_FILE: "soul.md",
    MEMORY_FILE: "memory.md",
}


def _template_root() -> Path:
    return Path(__file__).resolve().parent / "templates"


class IdentityFiles:
    """Persona and narrative knowledge documents under one directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    @property
    def soul_path(self) -> Path:
        return self.root / SOUL_FILE

    @property
    def memory_path(self) -> Path:
        return self.root / MEMORY_FILE

    def init_identity_files(self) -> list[Path]:
        """Copy the packaged defaults for any document that does not exist yet."""
        self.root.mkdir(parents=True, exist_ok=True)
        created: list[Path] = []
        for filename, template in _DEFAULT_FILES.items():
            target = self.root / filename
            if target.exists():
                continue
            source = _template_root() / template
            if source.exists():
                shutil.copyfile(source, target)
            else:
                logger.warning("identity template missing: %s", source)
                target.write_text("", encoding="utf-8")
            created.append(target)
        if created:
            logger.info("identity: initialized %s", ", ".join(p.name for p in created))
        return created

    def read_soul(self) -> str:
        return self._read(self.soul_path)

    def read_memory(self) -> str:
        return self._read(self.memory_path)

    @staticmethod
    def _read(path: Path) -> str:
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def append_memory(self, entry: str) -> None:
        """Append a timestamped entry to MEMORY.md; existing content is never rewritten."""
        self.root.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        with file_lock(self.memory_path):
            with self.memory_path.open("a", encoding="utf-8") as handle:
                handle.write(f"\n### {timestamp}\n{entry}")

    def get_identity_context(self) -> str:
        return (
            f"=== FRYLER IDENTITY (SOUL.md) ===\n{self.read_soul()}\n\n"
            f"=== FRYLER MEMORY (MEMORY.md) ===\n{self.read_memory()}"
        )
