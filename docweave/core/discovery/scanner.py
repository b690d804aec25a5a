"""Phase 2: walk the project and register source files for analysis.

Each recognized source file gets a file_tracking row with its SHA-256
content hash, line count and language. Binary, empty or undecodable
files are recorded as 'unanalyzed' so they are visible but never
scheduled. Re-running discovery refreshes metadata and leaves each
file's analysis status untouched.
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from ..constants import DEFAULT_EXCLUDE_DIRS, FILE_DISCOVERED, FILE_UNANALYZED
from ..parsing import detect_language

logger = logging.getLogger(__name__)

_BINARY_PROBE_BYTES = 8192


@dataclass
class DiscoveredFile:
    path: str                 # project-relative, forward slashes
    content_hash: str
    line_count: int
    language: str
    status: str = FILE_DISCOVERED
    reason: Optional[str] = None

    def to_tracking_row(self) -> Dict[str, object]:
        return {
            "path": self.path,
            "content_hash": self.content_hash,
            "line_count": self.line_count,
            "language": self.language,
            "status": self.status,
        }


class FileScanner:
    """Walks a project root, honoring excluded directories and size limits."""

    def __init__(
        self,
        project_root: str,
        exclude_dirs: Sequence[str] = DEFAULT_EXCLUDE_DIRS,
        max_file_bytes: int = 512 * 1024,
    ):
        self.root = Path(project_root).expanduser().resolve()
        self.exclude_dirs = set(exclude_dirs)
        self.max_file_bytes = max_file_bytes

    def iter_paths(self) -> Iterator[str]:
        """Relative paths of candidate source files, sorted per directory."""
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(
                d for d in dirnames
                if d not in self.exclude_dirs and not d.startswith(".")
            )
            for name in sorted(filenames):
                if not detect_language(name):
                    continue
                full = Path(dirpath) / name
                rel = full.relative_to(self.root).as_posix()
                try:
                    size = full.stat().st_size
                except OSError as e:
                    logger.warning(f"Cannot stat {rel}: {e}")
                    continue
                if size > self.max_file_bytes:
                    logger.info(f"Skipping {rel}: {size} bytes exceeds {self.max_file_bytes}")
                    continue
                yield rel

    def inspect(self, rel_path: str) -> DiscoveredFile:
        """Hash, count and classify one file."""
        language = detect_language(rel_path)
        try:
            data = (self.root / rel_path).read_bytes()
        except OSError as e:
            return DiscoveredFile(rel_path, "", 0, language, FILE_UNANALYZED, f"unreadable: {e}")

        digest = hashlib.sha256(data).hexdigest()
        if not data.strip():
            return DiscoveredFile(rel_path, digest, 0, language, FILE_UNANALYZED, "empty file")
        if b"\x00" in data[:_BINARY_PROBE_BYTES]:
            return DiscoveredFile(rel_path, digest, 0, language, FILE_UNANALYZED, "binary content")
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return DiscoveredFile(rel_path, digest, 0, language, FILE_UNANALYZED, "not valid UTF-8")

        return DiscoveredFile(rel_path, digest, len(text.splitlines()), language)

    def scan(self) -> List[DiscoveredFile]:
        return [self.inspect(rel) for rel in self.iter_paths()]

    def read_source(self, rel_path: str) -> str:
        return (self.root / rel_path).read_text(encoding="utf-8")


def run_discovery(store, session_id: str, scanner: FileScanner) -> int:
    """Scan, persist tracking rows and complete phase 2.

    Returns the number of files scheduled for analysis.
    """
    logger.info(f"File Discovery: scanning {scanner.root}")
    discovered = scanner.scan()
    skipped = [f for f in discovered if f.status == FILE_UNANALYZED]
    for f in skipped:
        logger.info(f"File Discovery: {f.path} marked unanalyzed ({f.reason})")

    total = store.track_files(session_id, [f.to_tracking_row() for f in discovered])
    store.mark_phase_complete(session_id, 2, {"discovery_complete": True})
    logger.info(
        f"File Discovery: {total} files to analyze, {len(skipped)} skipped"
    )
    return total
