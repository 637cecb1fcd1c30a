"""Running local commands and reading typed environment variables."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from typing import IO, Mapping, Union

logger = logging.getLogger(__name__)

StdinSource = Union[str, bytes, IO, None]

_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class MissingSoftwareError(RuntimeError):
    """A required binary could not be found on the PATH."""

    def __init__(self, binary: str, required: tuple[str, ...]):
        super().__init__(
            f"The program cannot be run because {binary} are not installed. "
            f"Required: {list(required)}"
        )
        self.binary = binary
        self.required = required


class CommandError(RuntimeError):
    """A command could not be started or exited with a non-zero status."""

    def __init__(
        self,
        command: str,
        args: tuple[str, ...],
        returncode: int | None,
        stderr: str,
        reason: str = "",
    ):
        detail = reason or f"exit status {returncode}"
        super().__init__(f"executing {command}: {detail}")
        self.command = command
        self.args_ = args
        self.returncode = returncode
        self.stderr = stderr


def check_installed_software(*binaries: str) -> list[str]:
    """Ensure every binary is on the PATH; return their resolved paths."""
    logger.debug("Validating required tools: %s", list(binaries))
    paths = []
    for binary in binaries:
        path = shutil.which(binary)
        if path is None:
            logger.error("Required binary is not present: %s", binary)
            raise MissingSoftwareError(binary, binaries)
        logger.debug("Binary %s is present at %s", binary, path)
        paths.append(path)
    return paths


def execute(workspace: str, command: str, *args: str) -> str:
    """Run a command in ``workspace`` and return its trimmed output."""
    return execute_with_env(workspace, command, {}, *args)


def execute_with_env(
    workspace: str, command: str, env: Mapping[str, str], *args: str
) -> str:
    """Run a command with extra environment variables added to the current ones."""
    return execute_with_stdin(workspace, None, command, env, *args)


def _stdin_kwargs(stdin: StdinSource) -> dict:
    if stdin is None:
        return {}
    if isinstance(stdin, str):
        return {"input": stdin.encode()}
    if isinstance(stdin, bytes):
        return {"input": stdin}
    try:
        stdin.fileno()
    except (AttributeError, OSError, ValueError):
        data = stdin.read()
        return {"input": data.encode() if isinstance(data, str) else data}
    return {"stdin": stdin}


def execute_with_stdin(
    workspace: str,
    stdin: StdinSource,
    command: str,
    env: Mapping[str, str],
    *args: str,
) -> str:
    """Run a command feeding ``stdin`` to it and return its trimmed output."""
    logger.debug("Executing command %s %s (env=%s)", command, list(args), dict(env))

    environment = None
    if env:
        environment = dict(os.environ)
        environment.update(env)

    try:
        completed = subprocess.run(
            [command, *args],
            cwd=workspace,
            env=environment,
            capture_output=True,
            check=False,
            **_stdin_kwargs(stdin),
        )
    except OSError as exc:
        logger.error("Error executing command %s in %s: %s", command, workspace, exc)
        raise CommandError(command, args, None, "", str(exc)) from exc

    stderr = completed.stderr.decode(errors="replace")
    if completed.returncode != 0:
        logger.error(
            "Error executing command %s %s in %s: exit %d, stderr=%s",
            command,
            list(args),
            workspace,
            completed.returncode,
            stderr,
        )
        raise CommandError(command, args, completed.returncode, stderr)

    output = completed.stdout.decode(errors="replace").strip("\n")
    logger.debug("Output: %s", output)
    return output


def get_env(name: str, default: str) -> str:
    """Return the variable's value, or ``default`` when unset or empty."""
    value = os.environ.get(name)
    return value if value else default


def get_env_bool(name: str) -> bool:
    """Return the variable as a boolean; unset or unparsable values are False."""
    return os.environ.get(name, "") in _TRUE_VALUES


def get_env_int(name: str, default: int) -> int:
    """Return the variable as an integer, or ``default`` when unset or invalid."""
    value = os.environ.get(name)
    if value is not None and _INTEGER_PATTERN.fullmatch(value):
        number = int(value)
        if _INT64_MIN <= number <= _INT64_MAX:
            return number
    return default