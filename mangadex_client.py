from typing import Any, Dict, List, Optional

import requests

MANGADEX_API = "https://api.mangadex.org"
MANGADEX_AUTH_URL = "https://auth.mangadex.org/realms/mangadex/protocol/openid-connect/token"

APP_NAME = "Fire-Export/Import"
APP_VERSION = "1.0.0"
USER_AGENT = f"{APP_NAME} {APP_VERSION}"


def truncate_text(t: str, limit: int = 200) -> str:
    t = (t or "").replace('\n', ' ')[:limit]
    return t + ("..." if len(t) == limit else "")


class AuthError(RuntimeError):
    """Token exchange with the MangaDex auth realm failed."""


class MangaDexClient:
    def __init__(self, base_url: str = MANGADEX_API, auth_url: str = MANGADEX_AUTH_URL, user_agent: str = USER_AGENT, request_timeout: float = 20.0, search_limit: int = 100):
        self.base_url = base_url.rstrip('/')
        self.auth_url = auth_url
        self.sess = requests.Session()
        self.headers: Dict[str, str] = {"User-Agent": user_agent}
        self.timeout = request_timeout
        self.search_limit = search_limit
        self.access_token: Optional[str] = None
        self.last_status: Optional[int] = None

    def authenticate(self, creds: Dict[str, str]) -> str:
        """Exchange password-grant credentials for a bearer token."""
        try:
            r = self.sess.post(
                self.auth_url,
                data=creds,
                headers={"Content-Type": "application/x-www-form-urlencoded", **self.headers},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AuthError(f"Authentication request failed: {e}") from e
        if r.status_code != 200:
            raise AuthError(f"Authentication failed: HTTP {r.status_code}: {truncate_text(r.text)}")
        try:
            token = r.json().get("access_token")
        except ValueError as e:
            raise AuthError("Authentication response was not JSON") from e
        if not token:
            raise AuthError("No access_token in authentication response")
        self.access_token = token
        self.headers["Authorization"] = f"Bearer {token}"
        return token

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        headers = dict(self.headers)
        headers.update(kwargs.pop("headers", {}) or {})
        if 'timeout' not in kwargs:
            kwargs['timeout'] = self.timeout
        resp = self.sess.request(method, url, headers=headers, **kwargs)
        self.last_status = resp.status_code
        return resp

    def search_manga(self, query: str) -> List[Dict[str, Any]]:
        """Title search. Raises on transport or HTTP errors."""
        r = self.request(
            "GET",
            "/manga",
            params={"limit": self.search_limit, "title": query},
            headers={"Content-Type": "application/json"},
        )
        r.raise_for_status()
        payload = r.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            return []
        return [x for x in data if isinstance(x, dict)]

    def update_status(self, manga_id: str, status: Optional[str]) -> bool:
        """Set (or clear, with None) the reading status. Returns False on any failure."""
        try:
            r = self.request("POST", f"/manga/{manga_id}/status", json={"status": status})
        except requests.RequestException as e:
            print(f"FAIL status {manga_id}: {e}", flush=True)
            return False
        if r.status_code != 200:
            print(f"FAIL status {manga_id}: HTTP {r.status_code}: {truncate_text(r.text, 120)}", flush=True)
            return False
        try:
            payload = r.json()
        except ValueError:
            return False
        if not isinstance(payload, dict):
            print(f"FAIL status {manga_id}: unexpected response {truncate_text(r.text, 120)}", flush=True)
            return False
        return payload.get("result") == "ok"
