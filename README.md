# e2ekit

Building blocks for end-to-end test suites that install and exercise
released or snapshot software artifacts.

## Installation

```
pip install e2ekit
pip install "e2ekit[test]"   # with the test dependencies
```

## What is inside

- `e2ekit.shell` runs commands (`execute`, `execute_with_env`,
  `execute_with_stdin`) and returns their output with surrounding newlines
  trimmed; a command that cannot start or exits non-zero raises
  `CommandError`. `check_installed_software` returns the paths of the given
  binaries or raises `MissingSoftwareError`. `get_env`, `get_env_bool` and
  `get_env_int` read typed environment variables with fallbacks.
- `e2ekit.retry` holds an exponential back-off policy (`ExponentialBackOff`,
  `get_exponential_backoff`) and `retry`, which re-runs an operation until it
  returns, raises `Permanent`, or the policy runs out of time.
  `TIMEOUT_FACTOR` is read from the environment variable of that name when
  the module is imported (default 3).
- `e2ekit.state` stores the state of a run as YAML in
  `<workdir>/<run_id>.run` (`update`, `recover`, `destroy`), as `CurrentRun`
  and `Service` objects.
- `e2ekit.systemd` builds `journalctl` and `systemctl` command lines
  (`log_cmds`, `restart_cmds`, `start_cmds`).
- `e2ekit.utils` downloads files (`DownloadRequest`, `download_file`) and
  offers small helpers: `get_architecture` (the `GOARCH` variable, else the
  machine's architecture), `is_commit`, `random_string`, `remove_quotes`,
  `sleep`.
- `e2ekit.versions` parses and normalises versions (`parse_version`,
  `get_version`, `get_snapshot_version`, `get_commit_version`,
  `get_full_version`, `is_alias`, `snapshot_has_commit`,
  `remove_commit_from_snapshot`, `extract_commit_hash`), resolves aliases
  through the artifacts API (`get_elastic_artifact_version`) and builds
  artifact file names (`build_artifact_name`). Resolved versions and
  downloaded files are cached per URL; `clear_caches` empties both caches.
- `e2ekit.releases` resolves download URLs from official releases
  (`ReleaseURLResolver`), the artifacts search API (`ArtifactURLResolver`)
  and snapshot manifests (`ArtifactsSnapshotVersion`,
  `ArtifactsSnapshotURLResolver`, `artifact_snapshot_url_resolver`,
  `find_snapshot_package`).
- `e2ekit.buckets` works out where an artifact lives in the CI storage
  buckets (`ProjectURLResolver`, `BeatsURLResolver`,
  `BeatsLegacyURLResolver`).
- `e2ekit.fetch` ties it together: `fetch_elastic_artifact`,
  `fetch_project_binary` and `fetch_beats_binary` pick the resolvers,
  download the binary (and optionally its `.sha512` file), rename it after
  the artifact and return its local path.

## Example

```python
from e2ekit import shell, versions, fetch

shell.check_installed_software("tar")

print(versions.get_snapshot_version("8.0.0-abcdef-SNAPSHOT"))  # 8.0.0-SNAPSHOT

name, path = fetch.fetch_elastic_artifact(
    "elastic-agent", "8.9.0-SNAPSHOT", "linux", "x86_64", "tar.gz", False, True
)
print(name, path)
```

## Choosing CI snapshots

Where artifacts come from is decided by `versions.settings`, a
`versions.Settings` object:

- `github_commit_sha1`: when set, artifacts are taken from the CI storage
  buckets for that commit.
- `github_repository` (default `elastic-agent`): the repository the commit
  belongs to, which decides the bucket layout.
- `beats_local_path`: read from `BEATS_LOCAL_PATH` at import; when set,
  fetching raises `RuntimeError`, as local builds are no longer used.

The commit and repository are not read from the environment; assign them in
code:

```python
from e2ekit import versions

versions.settings.github_commit_sha1 = "0123456789"
versions.settings.github_repository = "beats"
```

## What it does not do

- There is no command-line interface; everything is used from Python.
- It does not start, deploy or inspect services, containers or processes;
  it only builds `systemctl`/`journalctl` command lines and runs local
  commands you give it.
- Downloaded `.sha512` files are fetched but not checked against the
  downloaded binary.

## Running the tests

```
pytest
```