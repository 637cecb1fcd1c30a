"""Command lines for managing systemd units."""

from __future__ import annotations


def log_cmds(unit: str) -> list[str]:
    """Command reading a unit's logs from all available journals."""
    return ["journalctl", "-m", "-u", unit]


def restart_cmds(unit: str) -> list[str]:
    """Command restarting a unit."""
    return ["systemctl", "restart", unit]


def start_cmds(unit: str) -> list[str]:
    """Command starting a unit."""
    return ["systemctl", "start", unit]