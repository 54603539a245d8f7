import json
from typing import Callable

import httpx
import pytest

from logitrack import storage
from logitrack.errors import RemoteStoreError
from logitrack.storage import RestRemoteStore


def _install_transport(
    monkeypatch: pytest.MonkeyPatch, handler: Callable[[httpx.Request], httpx.Response]
) -> None:
    real_client = httpx.Client

    def _client(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(storage.httpx, "Client", _client)


def test_select_sends_auth_headers_and_order(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "r1"}, "noise"])

    _install_transport(monkeypatch, handler)
    store = RestRemoteStore("https://project.supabase.co", "anon-key")

    rows = store.select("requests", "created_at")

    assert rows == [{"id": "r1"}]
    request = seen[0]
    assert request.url.path == "/rest/v1/requests"
    assert request.url.params["order"] == "created_at.desc"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"


def test_update_filters_on_identity_field(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    _install_transport(monkeypatch, handler)
    store = RestRemoteStore("https://project.supabase.co", "anon-key")

    store.update("rates", {"category": "MOTO", "base_fee": 6.0}, "category")

    request = seen[0]
    assert request.method == "PATCH"
    assert request.url.params["category"] == "eq.MOTO"
    assert json.loads(request.content) == {"category": "MOTO", "base_fee": 6.0}


def test_http_errors_become_remote_store_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    _install_transport(monkeypatch, lambda request: httpx.Response(503))
    store = RestRemoteStore("https://project.supabase.co", "anon-key")

    with pytest.raises(RemoteStoreError, match="503"):
        store.insert("drivers", {"id": "d1"})


def test_missing_credentials_are_rejected() -> None:
    with pytest.raises(ValueError):
        RestRemoteStore("", "key")
