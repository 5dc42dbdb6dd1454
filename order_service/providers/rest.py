import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from .. import config
from ..errors import (DataProviderError, ErrorKind, VersionConflictError,
                      message_from_body, translate_database_error)
from ..schemas import sanitize_values
from .base import DataProvider, Filter, Pagination

logger = logging.getLogger(__name__)

# Managed by the data service itself, never sent on update.
SERVER_MANAGED_FIELDS = ("created_by", "edited_by", "created_at", "updated_at")


def encode_filter(f: Filter) -> str:
    """``field=op.value`` query parameter value."""
    if f.operator == "in":
        return "in.(" + ",".join(str(v) for v in f.value) + ")"
    if f.value is None:
        return f"{f.operator}.null"
    if isinstance(f.value, bool):
        return f"{f.operator}.{str(f.value).lower()}"
    return f"{f.operator}.{f.value}"


class RestDataProvider(DataProvider):
    """
    DataProvider over the hosted JSON data API.

    POST /{resource}, PATCH and DELETE /{resource}/{id} and
    GET /{resource}?field=op.value&limit=&offset=.
    """

    def __init__(self, base_url: str = None, token: str = None,
                 timeout: float = None, session: Optional[requests.Session] = None):
        self.base_url = (base_url or config.DATA_API_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        token = token if token is not None else config.DATA_API_TOKEN
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    # --- Transport ---

    def _request(self, method: str, resource: str, path: str = "", **kwargs) -> Any:
        url = f"{self.base_url}/{resource}{path}"
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
            response.raise_for_status()  # Raises an exception for 4xx/5xx status codes
        except requests.exceptions.HTTPError as e:
            raise self._http_error(e.response, resource) from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise DataProviderError(ErrorKind.NETWORK, f"Data service unreachable: {e}",
                                    resource=resource) from e
        except requests.exceptions.RequestException as e:
            raise DataProviderError(ErrorKind.UNKNOWN, str(e), resource=resource) from e

        if response.status_code == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise DataProviderError(ErrorKind.UNKNOWN, "Malformed response from data service",
                                    response.status_code, resource) from e

        # Some gateways answer 200 with an error list.
        if isinstance(body, dict) and body.get("errors"):
            message = translate_database_error(message_from_body(body) or "Request rejected")
            raise DataProviderError(ErrorKind.VALIDATION, message, response.status_code, resource)
        return body

    def _http_error(self, response: requests.Response, resource: str) -> DataProviderError:
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = response.text
        message = translate_database_error(message_from_body(body) or response.reason or f"HTTP {status}")

        if status == 409:
            return VersionConflictError(message, resource)
        if status in (400, 404, 422):
            kind = ErrorKind.VALIDATION
        elif status >= 500:
            kind = ErrorKind.NETWORK
        else:
            kind = ErrorKind.UNKNOWN
        logger.warning("Data service %s rejected request on %s: %s", status, resource, message)
        return DataProviderError(kind, message, status, resource)

    @staticmethod
    def _unwrap(body: Any) -> Any:
        if isinstance(body, dict) and "data" in body:
            body = body["data"]
        return body

    # --- DataProvider ---

    def create(self, resource: str, values: Dict[str, Any]) -> Dict[str, Any]:
        id_col = self.id_column(resource)
        # The service assigns the identity; cleared fields go out as explicit nulls.
        payload = {k: v for k, v in sanitize_values(values).items()
                   if k != id_col and k not in SERVER_MANAGED_FIELDS}
        record = self._unwrap(self._request("POST", resource, json=payload))
        if isinstance(record, list):
            record = record[0] if record else None
        if not record:
            raise DataProviderError(ErrorKind.UNKNOWN, f"Create on {resource} returned no record",
                                    resource=resource)
        return record

    def update(self, resource: str, id: int, values: Dict[str, Any]) -> Dict[str, Any]:
        id_col = self.id_column(resource)
        payload = {k: v for k, v in sanitize_values(values).items()
                   if k != id_col and k not in SERVER_MANAGED_FIELDS}
        record = self._unwrap(self._request("PATCH", resource, f"/{id}", json=payload))
        if isinstance(record, list):
            record = record[0] if record else None
        if not record:
            raise DataProviderError(ErrorKind.VALIDATION, f"{resource} {id} not found",
                                    404, resource)
        return record

    def delete_one(self, resource: str, id: int) -> None:
        self._request("DELETE", resource, f"/{id}")

    def get_list(self, resource: str, filters: Optional[Sequence[Filter]] = None,
                 pagination: Optional[Pagination] = None) -> List[Dict[str, Any]]:
        params = {f.field: encode_filter(f) for f in filters or ()}
        pagination = pagination or Pagination()
        if pagination.limit is not None:
            params["limit"] = pagination.limit
            params["offset"] = pagination.offset
        rows = self._unwrap(self._request("GET", resource, params=params))
        return list(rows or [])
