"""Fetching a peer's mapping table over HTTP.

The server authenticates with an opaque bearer token obtained by the identity
layer; it is forwarded unchanged. There is one request per fetch, with no
retry.
"""

from typing import Optional

import httpx
import structlog

from mgit.core.errors import IOFailureError
from mgit.core.mappings import MappingStore, MappingTable

log = structlog.get_logger(__name__)

METADATA_PATH = "/api/mgit/repos/{repo_id}/metadata"
DEFAULT_TIMEOUT = 30.0


def split_repo_url(url: str):
    """Split ``http://host/api/mgit/repos/<id>`` or ``http://host/<id>``.

    Returns ``(server_base_url, repo_id)``.
    """
    url = url.rstrip("/")
    if url.endswith(".git"):
        url = url[: -len(".git")]
    marker = "/api/mgit/repos/"
    if marker in url:
        base, _, repo_id = url.partition(marker)
        return base, repo_id.split("/", 1)[0]
    base, _, repo_id = url.rpartition("/")
    return base, repo_id


def fetch_mappings(
    base_url: str,
    repo_id: str,
    token: str,
    client: Optional[httpx.Client] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> MappingTable:
    """Download the mapping table for ``repo_id`` from a peer."""
    url = base_url.rstrip("/") + METADATA_PATH.format(repo_id=repo_id)
    headers = {"Authorization": f"Bearer {token}"}

    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout)
    try:
        response = client.get(url, headers=headers)
    except httpx.HTTPError as e:
        raise IOFailureError(f"error fetching mappings from {url}: {e}") from e
    finally:
        if owns_client:
            client.close()

    if response.status_code != httpx.codes.OK:
        raise IOFailureError(
            f"error response from server ({response.status_code}): {response.text}"
        )

    table = MappingTable.from_json(response.text)
    log.info("mappings_fetched", url=url, count=len(table))
    return table


def fetch_and_store(
    url: str,
    token: str,
    store: MappingStore,
    client: Optional[httpx.Client] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> MappingTable:
    """Fetch a peer's table for a repository URL and save it locally."""
    base_url, repo_id = split_repo_url(url)
    table = fetch_mappings(base_url, repo_id, token, client=client, timeout=timeout)
    store.save(table)
    return table
