"""Configuration sources that supply new desired-state revisions."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName

from genswap.errors import FetchError
from genswap.models.generation import Revision, content_hash

logger = logging.getLogger(__name__)


class GitConfigurationSource:
    """Reads revisions from a local git checkout of the system configuration.

    The revision id is the HEAD commit sha. Components and extra payload come
    from ``components.yaml`` at that commit::

        components: [nginx, postgresql]
        dependencies: [openssl]
        options: {services.nginx.enable: true}

    Without that file the top-level directories of the tree are used as the
    component set.
    """

    def __init__(
        self,
        repo_path: str | Path,
        branch: str = "",
        remote: str = "origin",
        pull: bool = False,
        components_file: str = "components.yaml",
    ):
        self.repo_path = Path(repo_path)
        self.branch = branch
        self.remote = remote
        self.pull = pull
        self.components_file = components_file

    def fetch_latest(self) -> Revision:
        try:
            repo = Repo(self.repo_path)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise FetchError(f"not a git repository: {self.repo_path}") from exc

        if self.pull:
            self._pull(repo)

        try:
            commit = repo.commit(self.branch) if self.branch else repo.head.commit
        except (BadName, ValueError, GitCommandError) as exc:
            raise FetchError(f"could not resolve {self.branch or 'HEAD'}: {exc}") from exc

        manifest = self._read_manifest(commit)
        components = manifest.pop("components", None)
        if components is None:
            components = [t.name for t in commit.tree.trees]
        if not isinstance(components, list):
            raise FetchError(f"{self.components_file}: 'components' must be a list")

        payload = {
            "commit": commit.hexsha,
            "message": commit.message.strip().split("\n")[0],
            **manifest,
        }
        logger.info("fetched revision %s from %s", commit.hexsha[:12], self.repo_path)
        return Revision(
            id=commit.hexsha,
            components=tuple(sorted(str(c) for c in components)),
            payload=payload,
            source_ref=f"{self.repo_path}@{commit.hexsha}",
        )

    def _pull(self, repo: Repo) -> None:
        try:
            repo.remotes[self.remote].fetch()
            if self.branch:
                repo.git.merge("--ff-only", f"{self.remote}/{self.branch}")
        except (IndexError, GitCommandError) as exc:
            raise FetchError(f"could not fetch from {self.remote}: {exc}") from exc

    def _read_manifest(self, commit) -> dict:
        try:
            blob = commit.tree / self.components_file
        except KeyError:
            return {}
        try:
            data = yaml.safe_load(blob.data_stream.read()) or {}
        except yaml.YAMLError as exc:
            raise FetchError(f"invalid {self.components_file}: {exc}") from exc
        if not isinstance(data, dict):
            raise FetchError(f"{self.components_file} must contain a mapping")
        return data


class FileConfigurationSource:
    """Reads a revision described by a YAML file.

    ::

        id: 2024-06-01.1        # optional, content hash when absent
        components: [nginx]
        payload: {dependencies: []}
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def fetch_latest(self) -> Revision:
        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as exc:
            raise FetchError(f"could not read revision file {self.path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise FetchError(f"invalid revision file {self.path}: {exc}") from exc

        if not isinstance(data, dict):
            raise FetchError(f"revision file {self.path} must contain a mapping")

        components = tuple(sorted(str(c) for c in data.get("components", [])))
        payload = data.get("payload", {}) or {}
        revision_id = str(data.get("id") or content_hash(payload, components))
        return Revision(
            id=revision_id,
            components=components,
            payload=payload,
            source_ref=str(self.path),
        )
