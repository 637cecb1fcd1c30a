"""Elastic version strings, their aliases, and artifact naming."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

import requests

from e2ekit.retry import Permanent, get_exponential_backoff, retry
from e2ekit.shell import get_env

logger = logging.getLogger(__name__)

_ALIAS_PATTERN = re.compile(r"([0-9]+)(\.[0-9]+)(-SNAPSHOT)?")
_COMMIT_IN_VERSION = re.compile(r"-\b[0-9a-f]{5,40}\b", re.ASCII)
_COMMIT_HASH = re.compile(r"-(\w+)-", re.ASCII)
_SNAPSHOT_WITH_COMMIT = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)(-\b[0-9a-f]{5,40}\b)(-SNAPSHOT)", re.ASCII
)
_VERSIONS_URL = "https://artifacts-api.elastic.co/v1/versions/{version}/?x-elastic-no-kpi=true"


@dataclass
class Settings:
    """Process-wide knobs deciding where artifacts come from."""

    beats_local_path: str = ""
    github_commit_sha1: str = ""
    github_repository: str = "elastic-agent"


settings = Settings(beats_local_path=get_env("BEATS_LOCAL_PATH", ""))
if settings.beats_local_path:
    logger.warning(
        "Beats local path usage is deprecated and not used to fetch the local binaries "
        "anymore. Please use the packaging job to generate the artifacts to be consumed "
        "by these tests."
    )

#: Resolved versions, keyed by the URL the version was asked for.
ELASTIC_VERSIONS_CACHE: dict[str, str] = {}
#: Downloaded files, keyed by the URL they were downloaded from.
BINARIES_CACHE: dict[str, str] = {}


class ArtifactNotFoundError(LookupError):
    """An artifact, version or download could not be found."""


@dataclass(frozen=True)
class ElasticVersion:
    """The forms of one version, e.g. 8.0.0 / 8.0.0-abcdef-SNAPSHOT / 8.0.0-abcdef / 8.0.0-SNAPSHOT."""

    version: str
    full_version: str
    hashed_version: str
    snapshot_version: str


def clear_caches() -> None:
    """Forget every cached version and downloaded binary."""
    ELASTIC_VERSIONS_CACHE.clear()
    BINARIES_CACHE.clear()


def parse_version(version: str) -> ElasticVersion:
    """Split a version into its forms, resolving aliases such as 8.2-SNAPSHOT first."""
    if is_alias(version):
        try:
            version = get_elastic_artifact_version(version)
        except Exception as exc:
            logger.error("Failed to get version %s: %s", version, exc)
            raise
    else:
        logger.debug("Version %s is not an alias.", version)

    without_commit = remove_commit_from_snapshot(version)
    return ElasticVersion(
        version=without_commit.replace("-SNAPSHOT", ""),
        full_version=version,
        hashed_version=version.replace("-SNAPSHOT", ""),
        snapshot_version=without_commit,
    )


def check_pr_version(version: str, fallback_version: str) -> str:
    """Return ``fallback_version`` when building for a commit, else ``version``."""
    if settings.github_commit_sha1:
        return fallback_version
    return version


def get_elastic_artifact_version(version: str) -> str:
    """Return the latest concrete version for ``version`` from the artifacts API.

    Versions that already carry a commit are returned unchanged. Results are cached.
    """
    cache_key = _VERSIONS_URL.format(version=version)
    cached = ELASTIC_VERSIONS_CACHE.get(cache_key)
    if cached is not None:
        logger.debug("Retrieving version %s from local cache (%s)", cached, cache_key)
        return cached

    if snapshot_has_commit(version):
        ELASTIC_VERSIONS_CACHE[cache_key] = version
        return version

    def _fetch() -> bytes:
        try:
            response = requests.get(cache_key)
        except requests.RequestException as exc:
            raise ConnectionError(f"error getting {cache_key}: {exc}") from exc
        with response:
            if response.status_code == 404:
                raise Permanent(
                    ArtifactNotFoundError(f"version {version} not found at {cache_key}")
                )
            try:
                return response.content
            except requests.RequestException as exc:
                raise Permanent(exc) from exc

    body = retry(_fetch, get_exponential_backoff(60))

    try:
        parsed = json.loads(body)
    except ValueError as exc:
        raise ValueError(f"parsing JSON body {body!r}: {exc}") from exc

    latest = parsed["version"]["builds"][0]["version"]
    logger.debug("Latest version for %s is %s", version, latest)
    ELASTIC_VERSIONS_CACHE[cache_key] = latest
    return latest


def get_commit_version(version: str) -> str:
    """The version with its commit but without SNAPSHOT."""
    return parse_version(version).hashed_version


def get_full_version(version: str) -> str:
    """The version with its commit and SNAPSHOT."""
    return parse_version(version).full_version


def get_snapshot_version(version: str) -> str:
    """The version with SNAPSHOT but without its commit."""
    return parse_version(version).snapshot_version


def get_version(version: str) -> str:
    """The bare version, without commit or SNAPSHOT."""
    return parse_version(version).version


def is_alias(version: str) -> bool:
    """Return True for alias versions such as ``8.2-SNAPSHOT``."""
    return _ALIAS_PATTERN.fullmatch(version) is not None


def remove_commit_from_snapshot(s: str) -> str:
    """Remove ``-<commit>`` parts from a version or artifact name."""
    return _COMMIT_IN_VERSION.sub("", s)


def extract_commit_hash(text: str) -> str:
    """Return the first ``-word-`` part of ``text``; raise ValueError if there is none."""
    match = _COMMIT_HASH.search(text)
    if match is None:
        raise ValueError("commit hash not found")
    return match.group(1)


def snapshot_has_commit(s: str) -> bool:
    """Return True for versions shaped like ``X.Y.Z-<commit>-SNAPSHOT``."""
    return _SNAPSHOT_WITH_COMMIT.match(s) is not None


def use_ci_snapshots(repository: str) -> bool:
    """Return True when a commit is set and it belongs to ``repository``."""
    logger.debug(
        "Use CI snapshot? repository=%s gitRepo=%s gitSha1=%s",
        repository,
        settings.github_repository,
        settings.github_commit_sha1,
    )
    return bool(settings.github_commit_sha1) and (
        settings.github_repository.casefold() == repository.casefold()
    )


def use_beats_ci_snapshots() -> bool:
    """CI snapshots are used for commits of the beats repository."""
    return use_ci_snapshots("beats")


def use_elastic_agent_ci_snapshots() -> bool:
    """CI snapshots are used for commits of the elastic-agent repository."""
    return use_ci_snapshots("elastic-agent")


def build_artifact_name(
    artifact: str,
    version: str,
    os_name: str,
    arch: str,
    extension: str,
    is_docker: bool,
) -> str:
    """Build the file name of an artifact from its coordinates."""
    extension = extension.lower()
    version = get_snapshot_version(version)
    from_ci = bool(settings.github_commit_sha1)

    docker = ""
    if is_docker:
        docker = ".docker" if from_ci else "-docker-image"

    if is_docker and not from_ci:
        return f"{artifact}-{version}{docker}-{os_name}-{arch}.{extension}"
    if extension in ("deb", "rpm"):
        return f"{artifact}-{version}-{arch}{docker}.{extension}"
    return f"{artifact}-{version}-{os_name}-{arch}{docker}.{extension}"