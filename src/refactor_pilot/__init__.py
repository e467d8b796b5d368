"""Multi-pass refactor driver for external CLI coding agents.

The package scans a repository for refactor-worthy files, turns the scan into
a scored backlog, and drives bounded, resumable passes of an external agent
(codex or claude) until the backlog is no longer actionable.
"""

__version__ = "0.4.0"
