"""Tests for fetching mapping tables from a peer over HTTP."""

import json

import httpx
import pytest

from mgit.core.errors import InvalidRecordError, IOFailureError
from mgit.core.remote import fetch_and_store, fetch_mappings, split_repo_url

MAPPINGS = [
    {"git_hash": "a" * 40, "mgit_hash": "1" * 40, "pubkey": "npub1alice"},
    {"git_hash": "b" * 40, "mgit_hash": "2" * 40, "pubkey": "npub1bob"},
]


def make_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    "url, expected",
    [
        ("http://peer:8080/api/mgit/repos/proj", ("http://peer:8080", "proj")),
        ("http://peer:8080/api/mgit/repos/proj/", ("http://peer:8080", "proj")),
        ("https://peer/proj.git", ("https://peer", "proj")),
        ("https://peer/base/proj", ("https://peer/base", "proj")),
    ],
)
def test_split_repo_url(url, expected):
    assert split_repo_url(url) == expected


def test_fetch_mappings_sends_bearer_token():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, text=json.dumps(MAPPINGS))

    table = fetch_mappings("http://peer:8080/", "proj", "tok123", client=make_client(handler))

    assert seen["url"] == "http://peer:8080/api/mgit/repos/proj/metadata"
    assert seen["auth"] == "Bearer tok123"
    assert len(table) == 2
    assert table.lookup_identity("b" * 40) == "npub1bob"


def test_fetch_mappings_error_status():
    def handler(request):
        return httpx.Response(403, text="forbidden")

    with pytest.raises(IOFailureError, match="403"):
        fetch_mappings("http://peer", "proj", "bad", client=make_client(handler))


def test_fetch_mappings_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(IOFailureError):
        fetch_mappings("http://peer", "proj", "tok", client=make_client(handler))


def test_fetch_mappings_bad_body():
    def handler(request):
        return httpx.Response(200, text='[{"git_hash": "abc"}]')

    with pytest.raises(InvalidRecordError):
        fetch_mappings("http://peer", "proj", "tok", client=make_client(handler))


def test_fetch_and_store(mapping_store):
    def handler(request):
        return httpx.Response(200, text=json.dumps(MAPPINGS))

    fetch_and_store(
        "http://peer/api/mgit/repos/proj", "tok", mapping_store, client=make_client(handler)
    )

    assert mapping_store.load().lookup_overlay("a" * 40) == "1" * 40
    assert json.loads(mapping_store.legacy_path.read_text()) == MAPPINGS
