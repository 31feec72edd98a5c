import requests
from typing import Optional


class SyncError(Exception):
    """Base class for failures talking to the remote store."""

    kind = "sync"


class TransientNetworkError(SyncError):
    kind = "transient-network"


class QuotaExceededError(SyncError):
    kind = "quota-exceeded"


class AuthExpiredError(SyncError):
    kind = "auth-expired"


class RemoteConflictError(SyncError):
    kind = "conflict"


class SyncTimeoutError(SyncError):
    kind = "timeout"


class RemoteStoreClient:
    """Simple REST client for the remote record store."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_token: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_token:
            self.session.headers["Authorization"] = f"Bearer {api_token}"

    def _request(self, method: str, path: str, allow_missing: bool = False, **kwargs) -> requests.Response:
        try:
            resp = self.session.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(str(e)) from e
        status = resp.status_code
        if status in (401, 403):
            raise AuthExpiredError(f"{method} {path} was rejected with {status}")
        if status == 409:
            raise RemoteConflictError(f"{method} {path} conflicts with a newer remote copy")
        if status in (429, 507):
            raise QuotaExceededError(f"{method} {path} exceeded the remote quota")
        if status >= 500:
            raise TransientNetworkError(f"{method} {path} failed with {status}")
        if status == 404 and allow_missing:
            return resp
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise SyncError(str(e)) from e
        return resp

    def push(self, record: dict) -> None:
        """Create or replace one record remotely."""
        self._request("PUT", f"/records/{record['kind']}/{record['id']}", json=record)

    def pull(self, since_cursor: Optional[str] = None) -> tuple[list, Optional[str]]:
        """Return records changed after ``since_cursor`` and the next cursor."""
        params = {"since": since_cursor} if since_cursor else {}
        resp = self._request("GET", "/records", params=params)
        try:
            data = resp.json()
        except ValueError as e:
            raise SyncError("remote store returned invalid JSON") from e
        if not isinstance(data, dict) or not isinstance(data.get("records", []), list):
            raise SyncError("remote store returned an unexpected payload")
        return data.get("records", []), data.get("cursor")

    def delete(self, kind: str, entity_id: str) -> None:
        """Remove a record remotely; an already missing record counts as deleted."""
        self._request("DELETE", f"/records/{kind}/{entity_id}", allow_missing=True)
