"""
Glide API client for reading tables and their column metadata.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from ..config import (
    GLIDE_API_URL,
    GLIDE_REQUEST_TIMEOUT,
    MAX_RETRIES,
    BACKOFF_BASE_SECONDS,
    BACKOFF_MAX_SECONDS,
)
from .models import ErrorType, GlConnection, GlidePage

logger = logging.getLogger(__name__)


class GlideApiError(RuntimeError):
    """Raised when a Glide request fails after all retries."""

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType = ErrorType.API_ERROR,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.retryable = retryable

    def details(self) -> Dict[str, Any]:
        return {
            "error_type": self.error_type.value,
            "status_code": self.status_code,
        }


class GlideClient:
    """Client for the Glide tables API."""

    def __init__(
        self,
        api_key: str,
        app_id: str,
        *,
        session: Optional[requests.Session] = None,
        base_url: str = GLIDE_API_URL,
        timeout: int = GLIDE_REQUEST_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        backoff_max: float = BACKOFF_MAX_SECONDS,
    ):
        """
        Initialize Glide client.

        Args:
            api_key: Glide API token for the app
            app_id: Glide application id
            session: Optional requests session, a new one is created if omitted
            max_retries: Retries after the first attempt for throttled or failed calls
        """
        if not api_key or not app_id:
            raise ValueError("Glide API key and app id are required")

        self.api_key = api_key
        self.app_id = app_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        self.session = session or requests.Session()

    @classmethod
    def from_connection(cls, connection: GlConnection) -> "GlideClient":
        return cls(connection.api_key, connection.app_id)

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_max, self.backoff_base * (2 ** attempt))

    @staticmethod
    def _retry_after(response: requests.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if not value:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            return None

    def _post(self, endpoint: str, payload: Dict[str, Any], max_retries: Optional[int] = None) -> Any:
        """
        POST to a Glide function endpoint with retry and backoff.

        Args:
            endpoint: Function name, e.g. ``queryTables``
            payload: JSON body
            max_retries: Override of the client's retry ceiling

        Returns:
            Decoded JSON response

        Raises:
            GlideApiError: When the last attempt still fails. Throttling is
                classified RATE_LIMIT, transport failures NETWORK_ERROR and
                any other non-2xx response API_ERROR.
        """
        url = f"{self.base_url}/{endpoint}"
        retries = self.max_retries if max_retries is None else max_retries
        last_error: Optional[GlideApiError] = None

        for attempt in range(retries + 1):
            delay = self._backoff_delay(attempt)
            try:
                response = self.session.post(
                    url,
                    json=payload,
                    headers=self.headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                last_error = GlideApiError(
                    f"Network error calling Glide {endpoint}: {e}",
                    error_type=ErrorType.NETWORK_ERROR,
                )
            else:
                if 200 <= response.status_code < 300:
                    return response.json()

                snippet = (response.text or "")[:300]
                if response.status_code == 429:
                    last_error = GlideApiError(
                        f"Glide rate limit exceeded on {endpoint}",
                        error_type=ErrorType.RATE_LIMIT,
                        status_code=429,
                    )
                    hinted = self._retry_after(response)
                    if hinted is not None:
                        delay = hinted
                else:
                    last_error = GlideApiError(
                        f"Glide API error {response.status_code} on {endpoint}: {snippet}",
                        error_type=ErrorType.API_ERROR,
                        status_code=response.status_code,
                    )

            if attempt >= retries:
                break

            logger.warning(
                "Glide %s attempt %s/%s failed (%s), retrying in %.1fs",
                endpoint, attempt + 1, retries + 1, last_error, delay,
            )
            time.sleep(delay)

        logger.error(f"Glide {endpoint} failed after {retries + 1} attempts: {last_error}")
        raise last_error

    def fetch_page(self, table_name: str, continuation_token: Optional[str] = None) -> GlidePage:
        """
        Fetch one page of rows from a Glide table.

        Args:
            table_name: Glide table id, e.g. ``native-table-abc``
            continuation_token: Opaque ``next`` value from the previous page

        Returns:
            GlidePage with the rows and the token for the following page
        """
        query: Dict[str, Any] = {"tableName": table_name, "utc": True}
        if continuation_token:
            query["startAt"] = continuation_token

        data = self._post("queryTables", {"appID": self.app_id, "queries": [query]})

        result = data[0] if isinstance(data, list) and data else {}
        rows = result.get("rows") or []
        next_token = result.get("next") or None
        logger.debug(f"Fetched {len(rows)} rows from {table_name} (next={next_token})")
        return GlidePage(rows=rows, next_token=next_token)

    def list_tables(self) -> List[str]:
        """List the table ids of the app."""
        data = self._post("queryTables", {"appID": self.app_id, "queries": [{"listTables": True}]})

        if isinstance(data, list):
            data = data[0] if data else {}
        tables = []
        for table in data.get("tables") or []:
            if isinstance(table, dict):
                name = table.get("id") or table.get("name")
            else:
                name = table
            if name:
                tables.append(str(name))
        return tables

    def get_table_columns(self, table_name: str) -> List[Dict[str, str]]:
        """
        Get column metadata for a table.

        Falls back to the keys of the first row when Glide returns no
        column metadata, inferring the type from the value.
        """
        data = self._post(
            "queryTables",
            {"appID": self.app_id, "queries": [{"tableName": table_name, "utc": True}]},
        )
        result = data[0] if isinstance(data, list) and data else {}

        columns = result.get("columns") or []
        if columns:
            return [
                {
                    "id": str(col.get("id") or col.get("name")),
                    "name": str(col.get("name") or col.get("id")),
                    "type": str(col.get("type") or "string"),
                }
                for col in columns
            ]

        rows = result.get("rows") or []
        if not rows:
            return []
        return [
            {"id": key, "name": key, "type": _infer_type(value)}
            for key, value in rows[0].items()
        ]

    def test_connection(self) -> bool:
        """
        Check the credentials with a single unretried request.

        Raises:
            GlideApiError: If Glide rejects the request
        """
        self._post("queryTables", {"appID": self.app_id, "queries": []}, max_retries=0)
        logger.info(f"Glide connection OK for app {self.app_id}")
        return True


def _infer_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"
