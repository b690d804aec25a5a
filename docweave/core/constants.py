"""Shared constants for docweave.

This module contains constants that are used across multiple modules
to avoid duplication and ensure consistency.
"""

# =============================================================================
# Session / File Status Values
# =============================================================================

SESSION_PENDING = "pending"
SESSION_RUNNING = "running"
SESSION_COMPLETED = "completed"
SESSION_FAILED = "failed"

FILE_DISCOVERED = "discovered"
FILE_ANALYZING = "analyzing"
FILE_ANALYZED = "analyzed"
FILE_FAILED = "failed"
FILE_UNANALYZED = "unanalyzed"

# =============================================================================
# Characterization Agents
# =============================================================================

TURN1_AGENTS = ("structure", "dependency", "entry_point")
TURN2_AGENTS = ("purpose", "technical", "terminology")
TURN3_AGENTS = ("section_discovery",)

# =============================================================================
# Top-Down
# =============================================================================

# module_summaries.module_path prefix for top-down agent rows
TOP_DOWN_PREFIX = "top_down:"

# =============================================================================
# Budgets
# =============================================================================

CHILD_CONTEXT_TOKEN_BUDGET = 2000
CHILD_SUMMARY_MAX_CHARS = 300
MAX_DIAGRAM_FIX_ATTEMPTS = 2
MAX_DOMAIN_CONCURRENCY = 3
TRUNCATION_MARKER = "\n\n*[Content truncated to fit token budget]*"

# Files whose basename marks them as program entry points
ENTRY_POINT_NAMES = frozenset({
    "main.rs", "lib.rs", "mod.rs",
    "index.ts", "index.js", "index.tsx", "index.jsx",
    "__init__.py", "main.py", "__main__.py",
    "main.go", "main.java",
    "app.py", "app.ts", "app.js",
    "server.ts", "server.js",
    "main.c", "main.cpp",
})

LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".rs": "rust",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".go": "go",
    ".java": "java",
    ".kt": "kotlin",
    ".rb": "ruby",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".sh": "bash",
    ".php": "php",
    ".swift": "swift",
    ".scala": "scala",
}

DEFAULT_EXCLUDE_DIRS = (
    ".git", ".hg", ".svn", "node_modules", "target", "__pycache__",
    ".venv", "venv", "dist", "build", ".idea", ".vscode", ".docweave",
    ".mypy_cache", ".pytest_cache", ".tox", "vendor",
)

MANIFEST_FILES = (
    "pyproject.toml", "setup.py", "setup.cfg", "requirements.txt",
    "Cargo.toml", "package.json", "go.mod", "pom.xml", "build.gradle",
    "Gemfile", "composer.json",
)
