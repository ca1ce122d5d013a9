from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import pytest
import requests
import responses

from mangadex_client import MANGADEX_AUTH_URL, USER_AGENT, AuthError, MangaDexClient

API = "https://api.mangadex.org"

CREDS = {
    "grant_type": "password",
    "username": "reader",
    "password": "hunter2",
    "client_id": "personal-client-abc",
    "client_secret": "s3cret",
}


def test_authenticate_sets_bearer(responses_mock: responses.RequestsMock):
    responses_mock.add(responses.POST, MANGADEX_AUTH_URL, json={"access_token": "tok", "refresh_token": "r"}, status=200)
    client = MangaDexClient()
    assert client.authenticate(CREDS) == "tok"
    assert client.headers["Authorization"] == "Bearer tok"
    body = parse_qs(responses_mock.calls[0].request.body)
    assert body["grant_type"] == ["password"]
    assert body["client_id"] == ["personal-client-abc"]
    assert responses_mock.calls[0].request.headers["User-Agent"] == USER_AGENT


@pytest.mark.parametrize(
    "kwargs",
    [
        {"status": 401, "json": {"error": "invalid_grant"}},
        {"status": 200, "json": {"token_type": "bearer"}},
        {"status": 200, "body": "not json"},
    ],
)
def test_authenticate_failures_raise(responses_mock: responses.RequestsMock, kwargs):
    responses_mock.add(responses.POST, MANGADEX_AUTH_URL, **kwargs)
    client = MangaDexClient()
    with pytest.raises(AuthError):
        client.authenticate(CREDS)
    assert "Authorization" not in client.headers


def test_authenticate_connection_error_raises(responses_mock: responses.RequestsMock):
    responses_mock.add(responses.POST, MANGADEX_AUTH_URL, body=requests.ConnectionError("down"))
    with pytest.raises(AuthError):
        MangaDexClient().authenticate(CREDS)


def test_search_manga_sends_query(responses_mock: responses.RequestsMock, search_attack_on_titan):
    responses_mock.add(responses.GET, f"{API}/manga", json=search_attack_on_titan, status=200)
    client = MangaDexClient()
    items = client.search_manga("attack,titan")
    assert len(items) == 3
    query = parse_qs(urlparse(responses_mock.calls[0].request.url).query)
    assert query == {"limit": ["100"], "title": ["attack,titan"]}


def test_search_manga_raises_on_http_error(responses_mock: responses.RequestsMock):
    responses_mock.add(responses.GET, f"{API}/manga", status=503)
    with pytest.raises(requests.HTTPError):
        MangaDexClient().search_manga("berserk")


def test_update_status_posts_json(responses_mock: responses.RequestsMock):
    responses_mock.add(responses.POST, f"{API}/manga/abc/status", json={"result": "ok"}, status=200)
    client = MangaDexClient()
    assert client.update_status("abc", "completed") is True
    assert json.loads(responses_mock.calls[0].request.body) == {"status": "completed"}


def test_update_status_clear_sends_null(responses_mock: responses.RequestsMock):
    responses_mock.add(responses.POST, f"{API}/manga/abc/status", json={"result": "ok"}, status=200)
    assert MangaDexClient().update_status("abc", None) is True
    assert json.loads(responses_mock.calls[0].request.body) == {"status": None}


def test_update_status_http_error_returns_false(responses_mock: responses.RequestsMock):
    responses_mock.add(responses.POST, f"{API}/manga/abc/status", json={"result": "error"}, status=500)
    client = MangaDexClient()
    assert client.update_status("abc", "reading") is False
    assert client.last_status == 500


def test_update_status_connection_error_returns_false(responses_mock: responses.RequestsMock):
    responses_mock.add(responses.POST, f"{API}/manga/abc/status", body=requests.ConnectionError("reset"))
    assert MangaDexClient().update_status("abc", "reading") is False


@pytest.mark.parametrize("body", ["null", "[]", '"ok"', '{"data": null}', '{"data": {"id": "x"}}'])
def test_search_manga_non_object_payload_is_empty(responses_mock: responses.RequestsMock, body: str):
    responses_mock.add(responses.GET, f"{API}/manga", body=body, status=200, content_type="application/json")
    assert MangaDexClient().search_manga("berserk") == []


@pytest.mark.parametrize("body", ["null", "[]", '"ok"'])
def test_update_status_non_object_payload_returns_false(responses_mock: responses.RequestsMock, body: str):
    responses_mock.add(responses.POST, f"{API}/manga/abc/status", body=body, status=200, content_type="application/json")
    assert MangaDexClient().update_status("abc", "reading") is False
