"""Small helpers: architecture detection, downloads, commit checks and strings."""

from __future__ import annotations

import contextlib
import logging
import os
import platform
import random
import re
import string
import tempfile
import time
import uuid
from dataclasses import dataclass

import requests

from e2ekit.retry import Permanent, get_exponential_backoff, retry

logger = logging.getLogger(__name__)

_CHARSET = string.ascii_lowercase + string.ascii_uppercase + string.digits
_COMMIT_PATTERN = re.compile(r"^\b[0-9a-f]{5,40}\b", re.ASCII)
_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}
_CHUNK_SIZE = 64 * 1024


@dataclass
class DownloadRequest:
    """Where to download from and where the downloaded file ended up."""

    url: str
    download_path: str = ""
    unsanitized_file_path: str = ""


def get_architecture() -> str:
    """Return the target architecture: GOARCH if set, else the machine's own."""
    arch = os.environ.get("GOARCH")
    if arch is None:
        machine = platform.machine().lower()
        arch = _ARCH_ALIASES.get(machine, machine)
    logger.debug("Architecture is (%s)", arch)
    return arch


def download_file(request: DownloadRequest) -> None:
    """Download ``request.url`` into a freshly named file, streaming it to disk.

    With no ``download_path`` a new temporary directory is created and
    ``download_path`` is set to the file's path. The file's path is stored in
    ``unsanitized_file_path``. A 404 raises :class:`FileNotFoundError` at once.
    """
    if not request.download_path:
        parent = os.path.join(tempfile.gettempdir(), str(uuid.uuid4()))
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as exc:
            raise OSError(f"creating directory: {exc}") from exc
        file_path = os.path.join(parent, str(uuid.uuid4()))
        request.download_path = file_path
    else:
        file_path = os.path.join(request.download_path, str(uuid.uuid4()))

    try:
        handle = open(file_path, "wb")
    except OSError as exc:
        raise OSError(f"creating file: {exc}") from exc

    with handle:
        request.unsanitized_file_path = file_path

        def _fetch() -> requests.Response:
            try:
                response = requests.get(request.url, stream=True)
            except requests.RequestException as exc:
                raise ConnectionError(f"downloading file {request.url}: {exc}") from exc
            if response.status_code == 404:
                response.close()
                raise Permanent(FileNotFoundError(f"{request.url} not found"))
            return response

        response = retry(_fetch, get_exponential_backoff(3))
        with response:
            try:
                for chunk in response.iter_content(_CHUNK_SIZE):
                    handle.write(chunk)
            except (requests.RequestException, OSError) as exc:
                raise OSError(f"writing file {file_path}: {exc}") from exc

    with contextlib.suppress(OSError):
        os.chmod(file_path, 0o666)


def is_commit(s: str) -> bool:
    """Return True when ``s`` starts with something shaped like a git commit."""
    return _COMMIT_PATTERN.search(s) is not None


def random_string(length: int) -> str:
    """Return a random string of ASCII letters and digits."""
    return "".join(random.choices(_CHARSET, k=length))


def remove_quotes(s: str) -> str:
    """Strip one leading and one trailing double quote, if present."""
    if s.startswith('"'):
        s = s[1:]
    if s.endswith('"'):
        s = s[:-1]
    return s


def sleep(duration: float) -> None:
    """Wait ``duration`` seconds, logging the wait."""
    logger.debug("Waiting %ss", duration)
    time.sleep(duration)