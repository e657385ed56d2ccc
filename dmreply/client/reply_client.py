import logging
from typing import Optional

import httpx

from dmreply.store.schemas import ReplyItem

logger = logging.getLogger(__name__)


class ReplyApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ReplyApiClient:
    """
    HTTP client for the replies API.

    Results are returned to the caller, which decides what to push into a
    ``ReplyStore``.
    """

    def __init__(
        self,
        base_url: str,
        id_token: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {id_token}"} if id_token else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _request(self, method: str, path: str, fallback_message: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"ReplyApiClient: {method} {path} failed - {e}")
            raise ReplyApiError(0, fallback_message) from e

        if response.is_error:
            message = fallback_message
            try:
                body = response.json()
                message = body.get("details") or body.get("error") or fallback_message
            except ValueError:
                pass
            raise ReplyApiError(response.status_code, message)
        return response

    def fetch_recent(self, limit: int = 10) -> list[ReplyItem]:
        response = self._request("GET", "/api/replies/recent", "Failed to fetch recent replies",
                                 params={"limit": limit})
        return [ReplyItem.model_validate(item) for item in response.json()]

    def fetch_all(self, reply_type: Optional[str] = None) -> list[ReplyItem]:
        params = {"type": reply_type} if reply_type else None
        response = self._request("GET", "/api/replies", "Failed to fetch replies", params=params)
        return [ReplyItem.model_validate(item) for item in response.json()]

    def create(self, data: dict) -> ReplyItem:
        response = self._request("POST", "/api/replies", "Failed to create reply", json=data)
        return ReplyItem.model_validate(response.json())

    def update(self, reply_id: int, data: dict) -> ReplyItem:
        response = self._request("PUT", f"/api/replies/{reply_id}", "Failed to update reply", json=data)
        return ReplyItem.model_validate(response.json())

    def delete(self, reply_id: int):
        self._request("DELETE", f"/api/replies/{reply_id}", "Failed to delete reply")
