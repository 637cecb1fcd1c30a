"""Resolvers locating CI artifacts in the storage buckets filled by CI builds."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from e2ekit import versions

logger = logging.getLogger(__name__)

#: Bucket holding the artifacts built by the Beats CI.
BEATS_CI_ARTIFACTS_BASE = "beats-ci-artifacts"
#: Bucket holding the artifacts built by the Fleet CI.
FLEET_CI_ARTIFACTS_BASE = "fleet-ci-artifacts"

_ELASTIC_AGENT = "elastic-agent"
_UBI8 = "ubi8"


class BucketURLResolver(ABC):
    """Works out where in a bucket an artifact lives."""

    @abstractmethod
    def resolve(self) -> tuple[str, str, str]:
        """Return ``(bucket, prefix, object)`` for the artifact."""


def _strip_variant(artifact: str, variant: str) -> str:
    if variant.casefold() == _UBI8:
        return artifact.replace("-ubi8", "")
    return artifact


def _ci_snapshots_check(artifact: str) -> Callable[[], bool]:
    if artifact.casefold() == _ELASTIC_AGENT:
        return versions.use_elastic_agent_ci_snapshots
    return versions.use_beats_ci_snapshots


def _beats_layout(
    beat: str, file_name: str, variant: str, root: str
) -> tuple[str, str]:
    artifact = _strip_variant(beat, variant)
    prefix = f"{root}snapshots/{artifact}"
    object_name = file_name
    # The commit SHA identifies the artifact uniquely in the bucket.
    if _ci_snapshots_check(artifact)():
        prefix = f"{root}commits/{versions.settings.github_commit_sha1}"
        object_name = f"{artifact}/{file_name}"
    return prefix, object_name


@dataclass
class BeatsLegacyURLResolver(BucketURLResolver):
    """Resolver for the legacy Beats bucket layout (``snapshots/`` and ``commits/``)."""

    beat: str
    file_name: str
    variant: str = ""
    bucket: str = BEATS_CI_ARTIFACTS_BASE

    def resolve(self) -> tuple[str, str, str]:
        prefix, object_name = _beats_layout(self.beat, self.file_name, self.variant, "")
        logger.debug(
            "Resolving URL from Beats Legacy resolver: beat=%s bucket=%s fileName=%s "
            "object=%s prefix=%s variant=%s",
            self.beat,
            self.bucket,
            self.file_name,
            object_name,
            prefix,
            self.variant,
        )
        return self.bucket, prefix, object_name


@dataclass
class BeatsURLResolver(BucketURLResolver):
    """Resolver for the Beats bucket layout under ``beats/``."""

    beat: str
    file_name: str
    variant: str = ""
    bucket: str = BEATS_CI_ARTIFACTS_BASE

    def resolve(self) -> tuple[str, str, str]:
        prefix, object_name = _beats_layout(self.beat, self.file_name, self.variant, "beats/")
        logger.debug(
            "Resolving URL from Beats resolver: beat=%s bucket=%s fileName=%s "
            "object=%s prefix=%s variant=%s",
            self.beat,
            self.bucket,
            self.file_name,
            object_name,
            prefix,
            self.variant,
        )
        return self.bucket, prefix, object_name


@dataclass
class ProjectURLResolver(BucketURLResolver):
    """Resolver for project layouts such as elastic-agent or fleet-server."""

    bucket: str
    project: str
    file_name: str
    variant: str = ""

    def resolve(self) -> tuple[str, str, str]:
        artifact = _strip_variant(self.project, self.variant)
        prefix = f"{artifact}/snapshots"
        if _ci_snapshots_check(artifact)():
            prefix = f"{artifact}/commits/{versions.settings.github_commit_sha1}"
        logger.info(
            "Resolving URL from Project resolver: bucket=%s object=%s prefix=%s project=%s",
            self.bucket,
            self.file_name,
            prefix,
            artifact,
        )
        return self.bucket, prefix, self.file_name