"""Persisted state of a run, stored as YAML in a work directory."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import yaml

logger = logging.getLogger(__name__)


@dataclass
class Service:
    """A service taking part in a run."""

    name: str = ""


@dataclass
class CurrentRun:
    """State of a run: its id, optional profile, environment and services."""

    id: str = ""
    profile: Service = field(default_factory=Service)
    env: dict[str, str] = field(default_factory=dict)
    services: list[Service] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "profile": {"name": self.profile.name},
            "env": dict(self.env),
            "services": [{"name": service.name} for service in self.services],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CurrentRun":
        profile = data.get("profile") or {}
        services = data.get("services") or []
        env = data.get("env") or {}
        return cls(
            id=str(data.get("id") or ""),
            profile=Service(name=str(profile.get("name") or "")),
            env={str(key): str(value) for key, value in env.items()},
            services=[Service(name=str((item or {}).get("name") or "")) for item in services],
        )


def _state_file(run_id: str, workdir: str) -> str:
    return os.path.join(workdir, f"{run_id}.run")


def recover(run_id: str, workdir: str) -> CurrentRun:
    """Load the state of a run; an empty run is returned when none can be read."""
    state_file = _state_file(run_id, workdir)
    try:
        with open(state_file, "rb") as handle:
            content = handle.read()
    except OSError:
        return CurrentRun()

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        logger.error("Could not unmarshal state %s", state_file)
        return CurrentRun()

    if not isinstance(data, Mapping):
        if data is not None:
            logger.error("Could not unmarshal state %s", state_file)
        return CurrentRun()

    try:
        return CurrentRun.from_dict(data)
    except (AttributeError, TypeError):
        logger.error("Could not unmarshal state %s", state_file)
        return CurrentRun()


def destroy(run_id: str, workdir: str) -> None:
    """Remove the state file of a run, logging a warning when it cannot be removed."""
    state_file = _state_file(run_id, workdir)
    try:
        os.remove(state_file)
    except OSError as exc:
        logger.warning("Could not destroy state %s: %s", state_file, exc)
        return
    logger.debug("State destroyed: %s", state_file)


def update(
    run_id: str,
    workdir: str,
    compose_file_paths: Sequence[str],
    env: Mapping[str, str],
) -> None:
    """Write the state of a run to ``<workdir>/<run_id>.run``.

    For ids ending in ``-profile`` the first compose file names the profile;
    every later compose file names a service, by its parent directory.
    """
    state_file = _state_file(run_id, workdir)
    logger.debug("Updating state %s", state_file)

    run = CurrentRun(id=run_id, env=dict(env))
    if run_id.endswith("-profile"):
        run.profile = Service(name=os.path.basename(os.path.dirname(compose_file_paths[0])))
    run.services = [
        Service(name=os.path.basename(os.path.dirname(path))) for path in compose_file_paths[1:]
    ]

    content = yaml.safe_dump(run.to_dict(), sort_keys=False)
    try:
        with open(state_file, "w", encoding="utf-8") as handle:
            handle.write(content)
    except OSError as exc:
        logger.error("Could not create state file %s: %s", state_file, exc)
        return

    logger.debug("State updated: %s", state_file)