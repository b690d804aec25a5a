"""File discovery (phase 2).

Exports:
    FileScanner: project walk with exclusions, hashing and language detection
    DiscoveredFile: one scanned file
    run_discovery: scan and persist tracking rows
"""

from .scanner import DiscoveredFile, FileScanner, run_discovery

__all__ = ["DiscoveredFile", "FileScanner", "run_discovery"]
