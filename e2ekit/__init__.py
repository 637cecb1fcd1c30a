"""Helpers for end-to-end test suites: shell commands, run state, retries and artifact downloads."""

__version__ = "0.1.0"

__all__ = [
    "buckets",
    "fetch",
    "releases",
    "retry",
    "shell",
    "state",
    "systemd",
    "utils",
    "versions",
]