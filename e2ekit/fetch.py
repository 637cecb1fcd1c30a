"""Fetching Elastic artifacts from releases, the artifacts API or CI storage buckets."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Mapping, Optional, Sequence

import requests

from e2ekit import versions
from e2ekit.buckets import (
    BEATS_CI_ARTIFACTS_BASE,
    FLEET_CI_ARTIFACTS_BASE,
    BeatsLegacyURLResolver,
    BeatsURLResolver,
    BucketURLResolver,
    ProjectURLResolver,
)
from e2ekit.releases import (
    ArtifactURLResolver,
    DownloadURLResolver,
    ReleaseURLResolver,
    artifact_snapshot_url_resolver,
)
from e2ekit.retry import TIMEOUT_FACTOR, get_exponential_backoff, retry
from e2ekit.utils import DownloadRequest, download_file
from e2ekit.versions import BINARIES_CACHE, ArtifactNotFoundError, build_artifact_name

logger = logging.getLogger(__name__)

_STORAGE_URL = "https://storage.googleapis.com/storage/v1/b/{bucket}/o?prefix={prefix}{page}"


def get_elastic_artifact_url(artifact_name: str, artifact: str, version: str) -> tuple[str, str]:
    """Return ``(url, sha_url)`` of an artifact from the artifacts API."""
    return ArtifactURLResolver(artifact_name, artifact, version).resolve()


def fetch_elastic_artifact(
    artifact: str,
    version: str,
    os_name: str,
    arch: str,
    extension: str,
    is_docker: bool,
    xpack: bool,
) -> tuple[str, str]:
    """Download an artifact; return its file name and local path."""
    use_ci = bool(versions.settings.github_commit_sha1)
    return fetch_elastic_artifact_for_snapshots(
        use_ci, artifact, version, os_name, arch, extension, is_docker, xpack
    )


def fetch_elastic_artifact_for_snapshots(
    use_ci_snapshots: bool,
    artifact: str,
    version: str,
    os_name: str,
    arch: str,
    extension: str,
    is_docker: bool,
    xpack: bool,
) -> tuple[str, str]:
    """Download an artifact, from CI snapshots if asked; return its name and local path."""
    binary_name = build_artifact_name(artifact, version, os_name, arch, extension, is_docker)
    try:
        binary_path = fetch_project_binary_for_snapshots(
            use_ci_snapshots,
            artifact,
            binary_name,
            artifact,
            version,
            TIMEOUT_FACTOR,
            xpack,
            "",
            False,
        )
    except Exception as exc:
        logger.error(
            "Could not download the binary for the Elastic artifact %s %s (%s/%s, %s): %s",
            artifact,
            version,
            os_name,
            arch,
            extension,
            exc,
        )
        raise
    return binary_name, binary_path


def fetch_beats_binary(
    artifact_name: str,
    artifact: str,
    version: str,
    timeout_factor: int,
    xpack: bool,
    download_path: str,
    download_sha_file: bool,
) -> str:
    """Download a Beats binary and return its local path."""
    return fetch_project_binary(
        "beats",
        artifact_name,
        artifact,
        version,
        timeout_factor,
        xpack,
        download_path,
        download_sha_file,
    )


def fetch_project_binary(
    project: str,
    artifact_name: str,
    artifact: str,
    version: str,
    timeout_factor: int,
    xpack: bool,
    download_path: str,
    download_sha_file: bool,
) -> str:
    """Download a project binary, from CI snapshots when a commit is set."""
    use_ci = bool(versions.settings.github_commit_sha1)
    return fetch_project_binary_for_snapshots(
        use_ci,
        project,
        artifact_name,
        artifact,
        version,
        timeout_factor,
        xpack,
        download_path,
        download_sha_file,
    )


def _handle_download(url: str, artifact_name: str, download_path: str) -> str:
    cached = BINARIES_CACHE.get(url)
    if cached is not None:
        logger.debug("Retrieving binary %s from local cache (%s)", cached, url)
        return cached

    request = DownloadRequest(url=url, download_path=download_path)
    download_file(request)

    name = f"{artifact_name}.sha512" if url.endswith(".sha512") else artifact_name
    # Name the file after the artifact so URL parameters do not end up in it.
    unsanitized = request.unsanitized_file_path
    sanitized = os.path.join(os.path.dirname(unsanitized), name)
    try:
        os.replace(unsanitized, sanitized)
    except OSError:
        logger.warning(
            "Could not sanitize downloaded file name %s as %s. Keeping old name",
            unsanitized,
            sanitized,
        )
        sanitized = unsanitized

    BINARIES_CACHE[url] = sanitized
    return sanitized


def _bucket_resolvers(
    project: str, artifact: str, file_name: str, variant: str
) -> list[BucketURLResolver]:
    # Look up the project layout first, then the beats layout, then the legacy one.
    return [
        ProjectURLResolver(FLEET_CI_ARTIFACTS_BASE, project, file_name, variant),
        ProjectURLResolver(BEATS_CI_ARTIFACTS_BASE, project, file_name, variant),
        BeatsURLResolver(artifact, file_name, variant),
        BeatsLegacyURLResolver(artifact, file_name, variant),
    ]


def fetch_project_binary_for_snapshots(
    use_ci_snapshots: bool,
    project: str,
    artifact_name: str,
    artifact: str,
    version: str,
    timeout_factor: int,
    xpack: bool,
    download_path: str,
    download_sha_file: bool,
) -> str:
    """Download a project binary and return its local path.

    With ``use_ci_snapshots`` the binary comes from the CI storage buckets for the
    configured commit; otherwise releases, unified snapshots and project snapshots
    are tried in that order.
    """
    if versions.settings.beats_local_path:
        raise RuntimeError(
            "Beats local path usage is deprecated and not used to fetch the binaries. "
            "Please use the packaging job to generate the artifacts to be consumed by these tests"
        )

    if use_ci_snapshots:
        logger.debug("Using CI snapshots for %s", artifact)
        max_timeout = timeout_factor * 60.0
        variant = "ubi8" if artifact.endswith("-ubi8") else ""

        download_url = object_url_from_resolvers(
            _bucket_resolvers(project, artifact, artifact_name, variant), max_timeout
        )
        location = _handle_download(download_url, artifact_name, download_path)
        if not download_sha_file:
            return location

        sha_name = f"{artifact_name}.sha512"
        sha_url = object_url_from_resolvers(
            _bucket_resolvers(project, artifact, sha_name, variant), max_timeout
        )
        return _handle_download(sha_url, artifact_name, download_path)

    namespace = "beats" if project.casefold() == "elastic-agent" else project
    resolvers: list[Optional[DownloadURLResolver]] = [
        ReleaseURLResolver(namespace, artifact_name, artifact),
        ArtifactURLResolver(artifact_name, artifact, version),
        artifact_snapshot_url_resolver(artifact_name, artifact, project, version),
    ]
    download_url, sha_url = download_url_from_resolvers(resolvers)
    print(f"Downloading from {download_url}")
    location = _handle_download(download_url, artifact_name, download_path)
    if download_sha_file and sha_url:
        location = _handle_download(sha_url, artifact_name, download_path)
    return location


def bucket_search_next_page_param(page: Mapping[str, Any]) -> str:
    """Return the query parameter for the next page of a bucket listing, or ''."""
    token = page.get("nextPageToken")
    if token is None:
        return ""
    return f"&pageToken={token}"


def download_url_from_resolvers(
    resolvers: Sequence[Optional[DownloadURLResolver]],
) -> tuple[str, str]:
    """Return ``(url, sha_url)`` from the first resolver that succeeds.

    Missing resolvers are skipped; when the last one fails its error is raised.
    """
    last = len(resolvers) - 1
    for index, resolver in enumerate(resolvers):
        if resolver is None:
            continue
        logger.info("Trying resolver %s.", resolver.kind())
        try:
            return resolver.resolve()
        except Exception:
            if index < last:
                logger.warning("Object not found with %s.", resolver.kind())
                continue
            logger.error("Object not found with %s. All resolvers failed", resolver.kind())
            raise
    raise ArtifactNotFoundError("the artifact was not found")


def object_url_from_resolvers(
    resolvers: Sequence[BucketURLResolver], max_timeout: float
) -> str:
    """Return the media link of the first resolver whose object exists in its bucket."""
    last = len(resolvers) - 1
    for index, resolver in enumerate(resolvers):
        bucket, prefix, object_name = resolver.resolve()
        try:
            return object_url_from_bucket(bucket, prefix, object_name, max_timeout)
        except Exception:
            if index < last:
                logger.warning(
                    "Object not found with %r. Trying with another artifact resolver", resolver
                )
                continue
            logger.error("Object not found. There is no other artifact resolver")
            raise
    raise ArtifactNotFoundError("the artifact was not found")


def object_url_from_bucket(
    bucket: str, prefix: str, object_name: str, max_timeout: float
) -> str:
    """Search a storage bucket page by page for an object and return its media link."""
    current_page = 0
    page_param = ""
    attempt = 1

    def _search() -> str:
        nonlocal current_page, page_param, attempt
        url = _STORAGE_URL.format(bucket=bucket, prefix=prefix, page=page_param)
        try:
            response = requests.get(url)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning(
                "Storage API is not available yet (bucket=%s prefix=%s object=%s retry=%d): %s",
                bucket,
                prefix,
                object_name,
                attempt,
                exc,
            )
            attempt += 1
            raise

        try:
            page = json.loads(response.content)
        except ValueError:
            logger.warning(
                "Could not parse the response body for the object %s (bucket=%s prefix=%s)",
                object_name,
                bucket,
                prefix,
            )
            attempt += 1
            raise

        try:
            link = process_bucket_search_page(page, current_page, bucket, prefix, object_name)
        except ArtifactNotFoundError as exc:
            logger.warning("%s", exc)
        else:
            logger.debug("Media link found for the object %s: %s", object_name, link)
            return link

        page_param = bucket_search_next_page_param(page)
        if not page_param:
            logger.warning(
                "Reached the end of the pages and the object %s was not found", object_name
            )
            return ""

        current_page += 1
        logger.warning("Object %s not found in current page. Continuing", object_name)
        raise ArtifactNotFoundError(
            f"the {object_name} object could not be found in the current page "
            f"({current_page}) the {bucket} bucket and {prefix} prefix"
        )

    media_link = retry(_search, get_exponential_backoff(max_timeout))
    if not media_link:
        raise ArtifactNotFoundError(
            f"reached the end of the pages and the {object_name} object was not found "
            f"for the {bucket} bucket and {prefix} prefix"
        )
    return media_link


def process_bucket_search_page(
    page: Mapping[str, Any],
    current_page: int,
    bucket: str,
    prefix: str,
    object_name: str,
) -> str:
    """Return the media link of ``object_name`` in one page of a bucket listing."""
    items = page.get("items") or []
    logger.debug(
        "Objects found: %d (bucket=%s prefix=%s object=%s)",
        len(items),
        bucket,
        prefix,
        object_name,
    )

    object_path = f"{bucket}/{prefix}/{object_name}/"
    for item in items:
        if item["id"].startswith(object_path):
            media_link = item["mediaLink"]
            logger.info("medialink: %s", media_link)
            return media_link

    raise ArtifactNotFoundError(
        f"the {object_name} object could not be found in the current page ({current_page}) "
        f"in the {bucket} bucket and {prefix} prefix"
    )