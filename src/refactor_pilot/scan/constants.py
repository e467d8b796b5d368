"""Scanner limits and file filters."""

from __future__ import annotations

STATE_DIR_NAME = ".refactor-pilot"

SOURCE_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".ts",
        ".tsx",
        ".js",
        ".jsx",
        ".mjs",
        ".cjs",
        ".py",
        ".go",
        ".rs",
        ".swift",
        ".java",
        ".kt",
        ".kts",
        ".cs",
    },
)

SCAN_SKIP_DIRS: frozenset[str] = frozenset(
    {
        ".git",
        "node_modules",
        ".next",
        "dist",
        "build",
        "coverage",
        ".turbo",
        "target",
        ".venv",
        "venv",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        ".tox",
        "Pods",
        ".idea",
        ".vscode",
        ".npm-cache",
        STATE_DIR_NAME,
    },
)

MONOLITH_LINE_THRESHOLD = 320
MONOLITH_COMPLEXITY_THRESHOLD = 12
MAX_BYTES_PER_FILE = 512_000

DEFAULT_MAX_FILES = 20_000
MIN_MAX_FILES = 80
MAX_MAX_FILES = 120_000
AUTO_SCAN_LIMITS: tuple[int, ...] = (20_000, 40_000, 80_000, 120_000)

LARGEST_FILES_LIMIT = 12
MONOLITH_CANDIDATES_LIMIT = 24
COMMENT_CANDIDATES_LIMIT = 24
COUPLING_CANDIDATES_LIMIT = 16
DEBT_CANDIDATES_LIMIT = 16
