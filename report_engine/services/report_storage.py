from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from report_engine.config import get_settings

logger = logging.getLogger(__name__)


class ReportFileStorage:
    """Artifact directory for exported reports. Every path it hands out stays under ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def path_for(self, file_name: str) -> Path:
        candidate = (self.ensure_root() / Path(file_name).name).resolve()
        if not self._contains(candidate):
            raise ValueError(f"Refusing to write outside the reports directory: {file_name}")
        return candidate

    def write(self, file_name: str, payload: bytes) -> Path:
        target = self.path_for(file_name)
        target.write_bytes(payload)
        return target

    def exists(self, path: str | Path) -> bool:
        return self.resolve(path) is not None

    def read(self, path: str | Path) -> bytes:
        resolved = self.resolve(path)
        if resolved is None:
            raise FileNotFoundError(str(path))
        return resolved.read_bytes()

    def resolve(self, path: str | Path | None) -> Optional[Path]:
        """Return the absolute path when it exists inside the reports directory, otherwise None."""
        if not path:
            return None
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        candidate = candidate.resolve()
        if not self._contains(candidate) or not candidate.is_file():
            return None
        return candidate

    def delete(self, path: str | Path | None) -> bool:
        resolved = self.resolve(path)
        if resolved is None:
            return False
        resolved.unlink()
        logger.info("Removed expired report artifact %s", resolved)
        return True

    def _contains(self, candidate: Path) -> bool:
        root = self.root.resolve()
        return candidate == root or root in candidate.parents


def get_report_storage() -> ReportFileStorage:
    return ReportFileStorage(get_settings().reports_dir)


__all__ = ["ReportFileStorage", "get_report_storage"]
