"""Resolvers for download URLs of released, unified-snapshot and project-snapshot artifacts."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

import requests

from e2ekit.retry import Permanent, get_exponential_backoff, retry
from e2ekit.versions import (
    ELASTIC_VERSIONS_CACHE,
    ArtifactNotFoundError,
    extract_commit_hash,
    get_commit_version,
    get_elastic_artifact_version,
    get_version,
    remove_commit_from_snapshot,
    snapshot_has_commit,
)

logger = logging.getLogger(__name__)

SNAPSHOT_HOST = "https://artifacts-snapshot.elastic.co"
_SEARCH_URL = "https://artifacts-api.elastic.co/v1/search/{version}/{artifact}?x-elastic-no-kpi=true"
_RELEASE_URL = "https://artifacts.elastic.co/downloads/{project}/{name}/{full_name}"


class DownloadURLResolver(ABC):
    """Finds the download URL of an artifact and of its SHA512 file."""

    @abstractmethod
    def resolve(self) -> tuple[str, str]:
        """Return ``(url, sha_url)``; raise when the artifact cannot be found."""

    @abstractmethod
    def kind(self) -> str:
        """A short description of the resolver, for logs."""


def _get_body(url: str, describe: str) -> bytes:
    """GET ``url`` with retries; a 404 stops at once with ArtifactNotFoundError."""
    attempt = 0

    def _fetch() -> bytes:
        nonlocal attempt
        attempt += 1
        try:
            response = requests.get(url)
        except requests.RequestException as exc:
            logger.warning("%s failed (retry %d, %s): %s", describe, attempt, url, exc)
            raise
        with response:
            body = response.content
            if response.status_code == 404:
                raise Permanent(ArtifactNotFoundError(f"not found for url {url}"))
            return body

    return retry(_fetch, get_exponential_backoff(60))


@dataclass
class ArtifactURLResolver(DownloadURLResolver):
    """Resolves artifacts in development through the artifacts search API."""

    full_name: str
    name: str
    version: str

    def kind(self) -> str:
        return f"Unified snapshot resolver: {self.full_name}"

    def resolve(self) -> tuple[str, str]:
        try:
            resolved = get_elastic_artifact_version(self.version)
        except Exception as exc:
            raise ArtifactNotFoundError(f"failed to get version {self.version}: {exc}") from exc
        self.version = resolved

        artifact_name = self.full_name
        artifact = self.name
        version = self.version

        search_version = version
        has_commit = snapshot_has_commit(version)
        if has_commit:
            # The search API accepts commits in versions, but without the SNAPSHOT suffix.
            search_version = get_commit_version(version)

        url = _SEARCH_URL.format(version=search_version, artifact=artifact)
        try:
            body = _get_body(url, self.kind())
        except Exception:
            logger.error(
                "Failed to get artifact %s (%s) version %s", artifact, artifact_name, search_version
            )
            raise

        try:
            parsed = json.loads(body)
        except ValueError:
            logger.error(
                "Could not parse the response body for the artifact %s (%s)",
                artifact,
                artifact_name,
            )
            raise

        if has_commit:
            artifact_name = remove_commit_from_snapshot(artifact_name)

        packages = parsed.get("packages") if isinstance(parsed, Mapping) else None
        package = packages.get(artifact_name) if isinstance(packages, Mapping) else None
        if package is None:
            logger.error("Object %s not found in Artifact API (version %s)", artifact_name, version)
            raise ArtifactNotFoundError("object not found in Artifact API")

        download_url = package.get("url") if isinstance(package, Mapping) else None
        if not isinstance(download_url, str):
            raise ArtifactNotFoundError(f"key 'url' does not exist for artifact {artifact}")
        sha_url = package.get("sha_url")
        if not isinstance(sha_url, str):
            raise ArtifactNotFoundError(f"key 'sha_url' does not exist for artifact {artifact}")
        return download_url, sha_url


@dataclass
class ArtifactsSnapshotVersion:
    """Looks up the latest build of a SNAPSHOT version on a snapshots host."""

    host: str = SNAPSHOT_HOST

    def get_snapshot_artifact_version(self, project: str, version: str) -> str:
        """Return ``X.Y.Z-<hash>-SNAPSHOT`` for ``version``; commit versions pass through."""
        cache_key = f"{self.host}/{project}/latest/{version}.json"
        cached = ELASTIC_VERSIONS_CACHE.get(cache_key)
        if cached is not None:
            logger.debug("Retrieving version %s from local cache (%s)", cached, cache_key)
            return cached

        if snapshot_has_commit(version):
            ELASTIC_VERSIONS_CACHE[cache_key] = version
            return version

        body = _get_body(cache_key, "ArtifactsSnapshotVersion")

        try:
            data = json.loads(body)
            if not isinstance(data, Mapping):
                raise ValueError("expected a JSON object")
            build_id = data.get("build_id", "")
            if not isinstance(build_id, str):
                raise ValueError("build_id is not a string")
        except ValueError as exc:
            logger.error("Could not parse the response body to retrieve the version %s", version)
            raise ValueError(
                f"could not parse the response body to retrieve the version: {exc}"
            ) from exc

        parts = build_id.split("-")
        if len(parts) < 2 or parts[1] == "":
            logger.error("Could not parse the build_id %s to retrieve the version hash", build_id)
            raise ValueError(
                f"could not parse the build_id to retrieve the version hash: {build_id}"
            )

        latest = f"{parts[0]}-{parts[1]}-SNAPSHOT"
        logger.debug("Latest version for %s is %s", version, latest)
        ELASTIC_VERSIONS_CACHE[cache_key] = latest
        return latest


@dataclass
class ArtifactsSnapshotURLResolver(DownloadURLResolver):
    """Resolves artifacts staged for the next unified snapshot from a project manifest."""

    full_name: str
    name: str
    version: str
    project: str
    snapshot_api_host: str = SNAPSHOT_HOST

    def kind(self) -> str:
        return f"Project snapshot resolver: {self.full_name}"

    def resolve(self) -> tuple[str, str]:
        try:
            commit = extract_commit_hash(self.version)
        except ValueError:
            logger.info(
                "Version %s of %s does not contain a commit hash, it is not a snapshot",
                self.version,
                self.full_name,
            )
            raise
        sem_ver = get_version(self.version)

        url = (
            f"{self.snapshot_api_host}/{self.project}/{sem_ver}-{commit}"
            f"/manifest-{sem_ver}-SNAPSHOT.json"
        )
        body = _get_body(url, self.kind())

        try:
            manifest = json.loads(body)
        except ValueError:
            logger.error(
                "Could not parse the response body for the artifact %s (%s)",
                self.name,
                self.full_name,
            )
            raise
        if not isinstance(manifest, Mapping):
            raise ValueError("manifest is not a JSON object")

        return find_snapshot_package(manifest, self.full_name)


def find_snapshot_package(manifest: Mapping[str, Any], full_name: str) -> tuple[str, str]:
    """Return ``(url, sha_url)`` of ``full_name`` from any project of a manifest."""
    projects = manifest.get("projects")
    if not isinstance(projects, Mapping):
        raise ArtifactNotFoundError("key 'projects' does not exist")

    for project in projects.values():
        if not isinstance(project, Mapping):
            continue
        packages = project.get("packages")
        if not isinstance(packages, Mapping):
            continue
        package = packages.get(full_name)
        if not isinstance(package, Mapping):
            continue
        return package["url"], package["sha_url"]

    raise ArtifactNotFoundError(f"package {full_name} not found")


def artifact_snapshot_url_resolver(
    full_name: str,
    name: str,
    project: str,
    version: str,
    host: str = SNAPSHOT_HOST,
) -> ArtifactsSnapshotURLResolver | None:
    """Build a project snapshot resolver, resolving version aliases; None if that fails."""
    try:
        resolved = ArtifactsSnapshotVersion(host).get_snapshot_artifact_version(project, version)
    except Exception as exc:
        logger.debug("Could not resolve snapshot version %s: %s", version, exc)
        return None
    return ArtifactsSnapshotURLResolver(
        full_name=full_name,
        name=name,
        version=resolved,
        project=project,
        snapshot_api_host=host,
    )


@dataclass
class ReleaseURLResolver(DownloadURLResolver):
    """Resolves downloads already published as official releases."""

    project: str
    full_name: str
    name: str

    def kind(self) -> str:
        return f"Official release resolver: {self.full_name}"

    def resolve(self) -> tuple[str, str]:
        url = _RELEASE_URL.format(project=self.project, name=self.name, full_name=self.full_name)
        sha_url = f"{url}.sha512"
        attempt = 0

        def _check() -> None:
            nonlocal attempt
            attempt += 1
            try:
                response = requests.head(url)
            except requests.RequestException as exc:
                logger.debug("%s failed (retry %d, %s): %s", self.kind(), attempt, url, exc)
                raise
            with response:
                if response.status_code == 404:
                    raise Permanent(ArtifactNotFoundError(f"not found for url {url}"))
            logger.info("Download was found in the Elastic downloads API: %s", url)

        retry(_check, get_exponential_backoff(60))
        return url, sha_url