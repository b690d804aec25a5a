"""Lightweight project view fed to characterization agents.

Built before file discovery, from the same walk rules, so agents see
the file listing, manifests and README without any per-file analysis.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from ..constants import MANIFEST_FILES
from ..discovery import FileScanner
from ..parsing import detect_language

logger = logging.getLogger(__name__)

MAX_MANIFEST_CHARS = 3000
MAX_README_CHARS = 3000
MAX_LISTING_FILES = 300
_README_NAMES = ("README.md", "README.rst", "README.txt", "README")


@dataclass
class ProjectSnapshot:
    name: str
    files: List[str] = field(default_factory=list)
    manifests: Dict[str, str] = field(default_factory=dict)
    readme: str = ""

    @classmethod
    def from_scanner(cls, scanner: FileScanner) -> "ProjectSnapshot":
        root = scanner.root
        files = list(scanner.iter_paths())
        manifests = {}
        for name in MANIFEST_FILES:
            path = root / name
            if path.is_file():
                manifests[name] = _read_excerpt(path, MAX_MANIFEST_CHARS)
        readme = ""
        for name in _README_NAMES:
            path = root / name
            if path.is_file():
                readme = _read_excerpt(path, MAX_README_CHARS)
                break
        logger.debug(
            f"Snapshot of {root.name}: {len(files)} files, "
            f"{len(manifests)} manifests, readme={'yes' if readme else 'no'}"
        )
        return cls(name=root.name, files=files, manifests=manifests, readme=readme)

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def has_subdirectories(self) -> bool:
        return any("/" in f for f in self.files)

    def is_flat(self, threshold: int) -> bool:
        """Tiny single-directory project: heuristics are enough."""
        return self.file_count < threshold and not self.has_subdirectories

    def top_level_dirs(self) -> Dict[str, int]:
        """Top-level directory -> number of files beneath it."""
        counts: Counter = Counter(f.split("/", 1)[0] for f in self.files if "/" in f)
        return dict(sorted(counts.items()))

    def language_counts(self) -> Dict[str, int]:
        counts: Counter = Counter(detect_language(f) for f in self.files)
        counts.pop("", None)
        return dict(counts.most_common())

    def listing(self, limit: int = MAX_LISTING_FILES) -> str:
        shown = "\n".join(self.files[:limit])
        if self.file_count > limit:
            shown += f"\n... ({self.file_count - limit} more files)"
        return shown

    def prompt_block(self) -> str:
        parts = [f"Project directory: {self.name}", f"Files ({self.file_count}):\n{self.listing()}"]
        for name, content in self.manifests.items():
            parts.append(f"Manifest {name}:\n{content}")
        if self.readme:
            parts.append(f"README excerpt:\n{self.readme}")
        return "\n\n".join(parts)


def _read_excerpt(path: Path, limit: int) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")[:limit]
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return ""
