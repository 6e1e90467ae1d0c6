"""Cloning a repository together with its overlay history.

The git objects come from the peer's git endpoint, the mapping table from its
metadata endpoint. The overlay is rebuilt from the two and the peer is saved
as ``remote.url`` so later ``fetch-mappings`` runs need no arguments.
"""

from pathlib import Path
from typing import Optional

import httpx
import structlog
from git import GitCommandError, Repo

from mgit.core.config import load_config, save_config
from mgit.core.errors import IOFailureError, MGitError
from mgit.core.hashing import HashScheme
from mgit.core.mappings import MappingStore
from mgit.core.reconstruct import ReconstructionEngine
from mgit.core.remote import DEFAULT_TIMEOUT, fetch_and_store, split_repo_url
from mgit.core.source import SourceRepository
from mgit.core.storage import ObjectStore
from mgit.models.report import ReconstructionReport

log = structlog.get_logger(__name__)

GIT_PATH = "/api/mgit/repos/{repo_id}"


def default_destination(url: str) -> str:
    """Directory name for a clone: the last URL segment without ``.git``."""
    name = url.rstrip("/").rsplit("/", 1)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name


def git_url_for(url: str) -> str:
    base_url, repo_id = split_repo_url(url)
    return base_url + GIT_PATH.format(repo_id=repo_id)


def clone_repository(
    url: str,
    destination: Path,
    token: str,
    git_url: Optional[str] = None,
    client: Optional[httpx.Client] = None,
    timeout: float = DEFAULT_TIMEOUT,
    scheme: Optional[HashScheme] = None,
) -> ReconstructionReport:
    """Clone ``url`` into ``destination`` and rebuild its overlay.

    ``git_url`` overrides where the git objects are fetched from; by default
    it is derived from ``url``. Failing to clone or to fetch the mapping table
    raises ``IOFailureError``. A failed reconstruction only adds a warning to
    the report, since the git checkout is usable without it.
    """
    destination = Path(destination)
    git_url = git_url or git_url_for(url)
    log.info("clone_started", url=url, git_url=git_url, destination=str(destination))

    try:
        Repo.clone_from(
            git_url,
            destination,
            allow_unsafe_options=True,
            config=f"http.extraHeader=Authorization: Bearer {token}",
        )
    except GitCommandError as e:
        raise IOFailureError(f"error cloning {git_url}: {e.stderr.strip() or e}") from e

    source = SourceRepository.open(destination)
    head = source.head_reference()
    store = ObjectStore.for_worktree(destination)
    config = load_config(store.root)
    if head.is_symbolic and head.branch_name:
        config.default_branch = head.branch_name
    if scheme is not None:
        config.hash_scheme = scheme
    config.remote.url = url
    config.remote.token = token
    config.http_timeout = timeout

    store.default_branch = config.default_branch
    store.initialize()
    save_config(store.root, config)

    table = fetch_and_store(url, token, MappingStore(store.root), client=client, timeout=timeout)

    engine = ReconstructionEngine(store, config.hash_scheme)
    try:
        report = engine.reconstruct(source, table)
    except MGitError as e:
        log.warning("clone_reconstruction_failed", error=str(e))
        report = ReconstructionReport(warnings=[f"could not reconstruct overlay: {e}"])

    log.info("clone_finished", destination=str(destination), mappings=len(table))
    return report
