"""HTTP client for the Depthwise API.

Thin wrapper over :class:`httpx.Client`; non-2xx responses are raised as the
matching :class:`~depthwise.errors.DepthwiseError` subclass so callers handle
remote and in-process failures the same way.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from depthwise.config import settings
from depthwise.errors import ServerError, error_from_payload


class DepthwiseClient:
    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        token: Optional[str] = None,
        client_id: Optional[str] = None,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.client_id = client_id
        self._http = http or httpx.Client(timeout=settings.request_timeout)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "DepthwiseClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.client_id:
            headers["X-Client-Id"] = self.client_id
        return headers

    def _request(self, method: str, path: str, json: Optional[dict[str, Any]] = None) -> Any:
        try:
            response = self._http.request(
                method, f"{self.base_url}{path}", json=json, headers=self._headers()
            )
        except httpx.TimeoutException as exc:
            raise ServerError("Request timed out", kind="unavailable") from exc
        except httpx.TransportError as exc:
            raise ServerError(f"Cannot reach {self.base_url}", kind="unavailable") from exc

        if response.is_success:
            return response.json() if response.content else None
        try:
            payload = response.json()
        except ValueError:
            payload = {"error": response.text or response.reason_phrase}
        if not isinstance(payload, dict):
            payload = {"error": str(payload)}
        raise error_from_payload(payload, status_code=response.status_code)

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def create_session(self, query: str) -> dict[str, Any]:
        return self._request(
            "POST", "/create-session", {"query": query, "clientId": self.client_id}
        )

    def expand_node(
        self,
        session_id: str,
        parent_id: str,
        is_anonymous: bool,
        explore_type: Optional[str] = None,
        focus_term: Optional[str] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "sessionId": session_id,
            "parentId": parent_id,
            "isAnonymous": is_anonymous,
            "clientId": self.client_id,
        }
        if explore_type:
            body["exploreType"] = explore_type
        if focus_term:
            body["focusTerm"] = focus_term
        return self._request("POST", "/expand-node", body)

    def migrate_session(self, anonymous_session_id: str) -> dict[str, Any]:
        return self._request(
            "POST", "/migrate-session", {"anonymousSessionId": anonymous_session_id}
        )

    def list_sessions(self) -> list[dict[str, Any]]:
        return self._request("GET", "/sessions")["sessions"]

    def get_session(self, session_id: str) -> dict[str, Any]:
        return self._request("GET", f"/sessions/{session_id}")

    def delete_session(self, session_id: str) -> None:
        self._request("DELETE", f"/sessions/{session_id}")

    def share_session(self, session_id: str, is_public: bool) -> dict[str, Any]:
        return self._request("POST", f"/sessions/{session_id}/share", {"isPublic": is_public})

    def get_shared(self, session_id: str) -> dict[str, Any]:
        return self._request("GET", f"/share/{session_id}")

    def usage(self) -> dict[str, Any]:
        return self._request("GET", "/user/usage")

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")
