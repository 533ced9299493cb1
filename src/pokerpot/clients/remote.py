"""Remote data service client (PostgREST-compatible REST API)."""

import logging
from datetime import datetime
from typing import Any, Protocol

import httpx

from ..exceptions import RemoteAPIError

logger = logging.getLogger(__name__)


class RemoteDataService(Protocol):
    """What the sync reconciler and join flow need from the remote store."""

    def fetch_changes_since(self, entity: str, since: datetime) -> list[dict[str, Any]]: ...

    def upsert(self, entity: str, records: list[dict[str, Any]]) -> None: ...

    def delete(self, entity: str, record_ids: list[str]) -> None: ...

    def fetch_by_join_code(self, join_code: str) -> dict[str, Any] | None: ...

    def fetch_by_session(self, entity: str, session_id: str) -> list[dict[str, Any]]: ...

    def ping(self) -> bool: ...


class RemoteDataClient:
    """Client for the remote ledger tables exposed over PostgREST."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 30.0):
        """Initialize the remote client."""
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=f"{self.base_url}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteAPIError(
                f"{method} {path} failed with {e.response.status_code}: "
                f"{e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteAPIError(f"{method} {path} failed: {e}") from e
        return response

    def fetch_changes_since(self, entity: str, since: datetime) -> list[dict[str, Any]]:
        """
        Get records of one table updated at or after a timestamp.

        Args:
            entity: Table name
            since: Watermark; records with updated_at >= since are returned

        Returns:
            Raw records as dictionaries
        """
        response = self._request(
            "GET",
            f"/{entity}",
            params={
                "select": "*",
                "updated_at": f"gte.{since.isoformat()}",
                "order": "updated_at.asc",
            },
        )
        records: list[dict[str, Any]] = response.json()
        logger.debug(f"Fetched {len(records)} {entity} changed since {since}")
        return records

    def upsert(self, entity: str, records: list[dict[str, Any]]) -> None:
        """Insert or overwrite records by primary key (remote copy is replaced)."""
        if not records:
            return
        self._request(
            "POST",
            f"/{entity}",
            params={"on_conflict": "id"},
            json=records,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.debug(f"Upserted {len(records)} {entity}")

    def delete(self, entity: str, record_ids: list[str]) -> None:
        """Delete records by primary key."""
        if not record_ids:
            return
        self._request(
            "DELETE",
            f"/{entity}",
            params={"id": f"in.({','.join(record_ids)})"},
        )
        logger.debug(f"Deleted {len(record_ids)} {entity}")

    def fetch_by_join_code(self, join_code: str) -> dict[str, Any] | None:
        """Look up a session by join code."""
        response = self._request(
            "GET",
            "/sessions",
            params={"select": "*", "join_code": f"eq.{join_code}", "limit": 1},
        )
        rows: list[dict[str, Any]] = response.json()
        return rows[0] if rows else None

    def fetch_by_session(self, entity: str, session_id: str) -> list[dict[str, Any]]:
        """Get every record of one table belonging to a session."""
        response = self._request(
            "GET",
            f"/{entity}",
            params={"select": "*", "session_id": f"eq.{session_id}"},
        )
        records: list[dict[str, Any]] = response.json()
        return records

    def ping(self) -> bool:
        """Check whether the remote service is reachable."""
        try:
            response = self.client.get("/", timeout=5.0)
        except httpx.HTTPError as e:
            logger.debug(f"Remote unreachable: {e}")
            return False
        return response.status_code < 500
