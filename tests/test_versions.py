import pytest
import responses

from e2ekit import versions
from e2ekit.versions import (
    ArtifactNotFoundError,
    ElasticVersion,
    build_artifact_name,
    check_pr_version,
    clear_caches,
    extract_commit_hash,
    get_commit_version,
    get_elastic_artifact_version,
    get_full_version,
    get_snapshot_version,
    get_version,
    is_alias,
    parse_version,
    remove_commit_from_snapshot,
    snapshot_has_commit,
    use_beats_ci_snapshots,
    use_ci_snapshots,
    use_elastic_agent_ci_snapshots,
)

TEST_VERSION = "BEATS_VERSION"
VERSION_PREFIX = "elastic-agent-" + TEST_VERSION
UBI8_VERSION_PREFIX = "elastic-agent-ubi8-" + TEST_VERSION
OS_NAME = "linux"


def versions_url(version):
    return f"https://artifacts-api.elastic.co/v1/versions/{version}/?x-elastic-no-kpi=true"


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    clear_caches()
    monkeypatch.setattr(versions.settings, "github_commit_sha1", "")
    monkeypatch.setattr(versions.settings, "github_repository", "elastic-agent")
    monkeypatch.setattr(versions.settings, "beats_local_path", "")
    yield
    clear_caches()


@pytest.fixture
def ci_commit(monkeypatch):
    monkeypatch.setattr(versions.settings, "github_commit_sha1", "0123456789")


@pytest.fixture
def local_path(monkeypatch):
    monkeypatch.setattr(versions.settings, "beats_local_path", "/tmp")


def test_build_artifact_name_with_commit_in_version():
    expected = "elastic-agent-1.2.3-SNAPSHOT-x86_64.rpm"
    for ext in ("rpm", "RPM"):
        assert build_artifact_name("elastic-agent", "1.2.3-abcdef-SNAPSHOT", OS_NAME, "x86_64", ext, False) == expected


@pytest.mark.parametrize(
    ("arch", "extension", "expected"),
    [
        ("x86_64", "rpm", VERSION_PREFIX + "-x86_64.rpm"),
        ("aarch64", "rpm", VERSION_PREFIX + "-aarch64.rpm"),
        ("amd64", "deb", VERSION_PREFIX + "-amd64.deb"),
        ("arm64", "deb", VERSION_PREFIX + "-arm64.deb"),
        ("x86_64", "tar.gz", VERSION_PREFIX + "-linux-x86_64.tar.gz"),
        ("arm64", "tar.gz", VERSION_PREFIX + "-linux-arm64.tar.gz"),
    ],
)
def test_build_artifact_name_packages(arch, extension, expected):
    assert build_artifact_name("elastic-agent", TEST_VERSION, OS_NAME, arch, extension, False) == expected
    assert build_artifact_name("elastic-agent", TEST_VERSION, OS_NAME, arch, extension.upper(), False) == expected


DOCKER_ELASTIC_CASES = [
    ("elastic-agent", "amd64", VERSION_PREFIX + "-docker-image-linux-amd64.tar.gz"),
    ("elastic-agent", "arm64", VERSION_PREFIX + "-docker-image-linux-arm64.tar.gz"),
    ("elastic-agent-ubi8", "amd64", UBI8_VERSION_PREFIX + "-docker-image-linux-amd64.tar.gz"),
    ("elastic-agent-ubi8", "arm64", UBI8_VERSION_PREFIX + "-docker-image-linux-arm64.tar.gz"),
]


@pytest.mark.parametrize(("artifact", "arch", "expected"), DOCKER_ELASTIC_CASES)
def test_build_artifact_name_docker_from_elastic_repository(artifact, arch, expected):
    assert build_artifact_name(artifact, TEST_VERSION, OS_NAME, arch, "tar.gz", True) == expected
    assert build_artifact_name(artifact, TEST_VERSION, OS_NAME, arch, "TAR.GZ", True) == expected


@pytest.mark.parametrize(("artifact", "arch", "expected"), DOCKER_ELASTIC_CASES)
def test_build_artifact_name_docker_from_local_repository(local_path, artifact, arch, expected):
    assert build_artifact_name(artifact, TEST_VERSION, OS_NAME, arch, "tar.gz", True) == expected
    assert build_artifact_name(artifact, TEST_VERSION, OS_NAME, arch, "TAR.GZ", True) == expected


@pytest.mark.parametrize(
    ("artifact", "arch", "expected"),
    [
        ("elastic-agent", "amd64", VERSION_PREFIX + "-linux-amd64.docker.tar.gz"),
        ("elastic-agent", "arm64", VERSION_PREFIX + "-linux-arm64.docker.tar.gz"),
        ("elastic-agent-ubi8", "amd64", UBI8_VERSION_PREFIX + "-linux-amd64.docker.tar.gz"),
        ("elastic-agent-ubi8", "arm64", UBI8_VERSION_PREFIX + "-linux-arm64.docker.tar.gz"),
    ],
)
def test_build_artifact_name_docker_from_ci(ci_commit, artifact, arch, expected):
    assert build_artifact_name(artifact, TEST_VERSION, OS_NAME, arch, "tar.gz", True) == expected
    assert build_artifact_name(artifact, TEST_VERSION, OS_NAME, arch, "TAR.GZ", True) == expected


def test_check_pr_version_returns_version():
    assert check_pr_version(TEST_VERSION, TEST_VERSION) == TEST_VERSION
    assert check_pr_version("1.2.3", "fallback") == "1.2.3"


def test_check_pr_version_with_commit_returns_fallback(ci_commit):
    assert check_pr_version(TEST_VERSION, TEST_VERSION) == TEST_VERSION
    assert check_pr_version("1.2.3", "fallback") == "fallback"


def test_is_alias():
    assert is_alias("1.2.3-SNAPSHOT") is False
    assert is_alias("1.2-SNAPSHOT") is True
    assert is_alias("8.2") is True
    assert is_alias("8.2-SNAPSHOT\n") is False


def test_parse_version_without_commit():
    assert parse_version("1.2.3-SNAPSHOT") == ElasticVersion(
        version="1.2.3",
        full_version="1.2.3-SNAPSHOT",
        hashed_version="1.2.3",
        snapshot_version="1.2.3-SNAPSHOT",
    )


def test_parse_version_with_commit():
    assert parse_version("1.2.3-abcdef-SNAPSHOT") == ElasticVersion(
        version="1.2.3",
        full_version="1.2.3-abcdef-SNAPSHOT",
        hashed_version="1.2.3-abcdef",
        snapshot_version="1.2.3-SNAPSHOT",
    )


def test_parse_version_resolves_alias():
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.GET,
            versions_url("8.2-SNAPSHOT"),
            json={"version": {"builds": [{"version": "8.2.0-abcdef12-SNAPSHOT"}, {"version": "8.2.0-SNAPSHOT"}]}},
        )
        parsed = parse_version("8.2-SNAPSHOT")
    assert parsed.full_version == "8.2.0-abcdef12-SNAPSHOT"
    assert parsed.version == "8.2.0"
    assert parsed.snapshot_version == "8.2.0-SNAPSHOT"


def test_parse_version_alias_not_found_raises():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, versions_url("9.9-SNAPSHOT"), status=404)
        with pytest.raises(ArtifactNotFoundError, match="not found"):
            parse_version("9.9-SNAPSHOT")


def test_get_elastic_artifact_version_with_commit_skips_api():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        assert get_elastic_artifact_version("8.0.0-a12345-SNAPSHOT") == "8.0.0-a12345-SNAPSHOT"
        assert len(rsps.calls) == 0


def test_get_elastic_artifact_version_is_cached():
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.GET,
            versions_url("8.1-SNAPSHOT"),
            json={"version": {"builds": [{"version": "8.1.0-fedcba98-SNAPSHOT"}]}},
        )
        first = get_elastic_artifact_version("8.1-SNAPSHOT")
        second = get_elastic_artifact_version("8.1-SNAPSHOT")
        assert len(rsps.calls) == 1
    assert first == second == "8.1.0-fedcba98-SNAPSHOT"


def test_get_elastic_artifact_version_invalid_json_raises():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, versions_url("8.3-SNAPSHOT"), body="not json")
        with pytest.raises(ValueError, match="parsing JSON body"):
            get_elastic_artifact_version("8.3-SNAPSHOT")


def test_get_commit_version():
    assert get_commit_version("1.2.3-SNAPSHOT") == "1.2.3"
    assert get_commit_version("1.2.3-abcdef-SNAPSHOT") == "1.2.3-abcdef"


def test_get_full_version():
    assert get_full_version("1.2.3-SNAPSHOT") == "1.2.3-SNAPSHOT"
    assert get_full_version("1.2.3-abcdef-SNAPSHOT") == "1.2.3-abcdef-SNAPSHOT"


def test_get_snapshot_version():
    assert get_snapshot_version("1.2.3-SNAPSHOT") == "1.2.3-SNAPSHOT"
    assert get_snapshot_version("1.2.3-abcdef-SNAPSHOT") == "1.2.3-SNAPSHOT"


def test_get_version():
    assert get_version("1.2.3-SNAPSHOT") == "1.2.3"
    assert get_version("1.2.3-abcdef-SNAPSHOT") == "1.2.3"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("elastic-agent-8.0.0-abcdef-SNAPSHOT-darwin-x86_64.tar.gz", "elastic-agent-8.0.0-SNAPSHOT-darwin-x86_64.tar.gz"),
        ("8.0.0-a12345-SNAPSHOT", "8.0.0-SNAPSHOT"),
        ("7.14.x-a12345-SNAPSHOT", "7.14.x-SNAPSHOT"),
        ("8.0.0-SNAPSHOT", "8.0.0-SNAPSHOT"),
        ("7.14.x-SNAPSHOT", "7.14.x-SNAPSHOT"),
    ],
)
def test_remove_commit_from_snapshot(value, expected):
    assert remove_commit_from_snapshot(value) == expected


def test_snapshot_has_commit():
    assert snapshot_has_commit("8.0.0-a12345-SNAPSHOT") is True
    assert snapshot_has_commit("7.14.x-SNAPSHOT") is False
    assert snapshot_has_commit("8.0.0-SNAPSHOT") is False


def test_extract_commit_hash():
    assert extract_commit_hash("8.9.0-b6405422-SNAPSHOT") == "b6405422"


def test_extract_commit_hash_missing_raises():
    with pytest.raises(ValueError, match="commit hash not found"):
        extract_commit_hash("8.9.0")


def test_use_ci_snapshots_without_commit():
    assert use_ci_snapshots("elastic-agent") is False
    assert use_elastic_agent_ci_snapshots() is False


def test_use_ci_snapshots_with_commit(ci_commit):
    assert use_elastic_agent_ci_snapshots() is True
    assert use_ci_snapshots("Elastic-Agent") is True
    assert use_beats_ci_snapshots() is False


def test_use_beats_ci_snapshots_with_beats_repository(ci_commit, monkeypatch):
    monkeypatch.setattr(versions.settings, "github_repository", "beats")
    assert use_beats_ci_snapshots() is True
    assert use_elastic_agent_ci_snapshots() is False