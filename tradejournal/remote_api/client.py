# tradejournal/remote_api/client.py
#
#
# Imports
import json
from typing import Optional, Dict, Any, List, Sequence, Union
#
# 3rd-party Libraries
import httpx
from loguru import logger
#
# Local Imports
from .exceptions import APIConnectionError, APIRequestError, APIResponseError, AuthenticationError
from .utils import build_filter_params, build_order_param
#
########################################################################################################################
#
# Functions:

REST_PREFIX = "/rest/v1"


class RemoteRelationalClient:
    """
    Async client for a PostgREST-style relational service (e.g. Supabase).

    Every method is table-scoped. Inserts that ask for the created rows get them back
    in submission order; upserts declare their conflict key. There is no per-call
    timeout unless one is configured: a hung call stalls only the awaiting task.
    """

    def __init__(self, base_url: str, api_key: str, access_token: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        bearer = self.access_token or self.api_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def set_access_token(self, access_token: Optional[str]) -> None:
        """Swaps the bearer token used for row-level security when the signed-in user changes."""
        self.access_token = access_token
        if self._client is not None and not self._client.is_closed:
            self._client.headers.update(self._headers())
            if not access_token and not self.api_key:
                self._client.headers.pop("Authorization", None)

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[List[tuple]] = None,
        json_body: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None,
        prefer: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        client = await self._get_client()
        endpoint = f"{REST_PREFIX}/{table}"
        headers = {"Prefer": prefer} if prefer else None

        try:
            response = await client.request(method, endpoint, params=params, json=json_body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_detail = str(e)
            response_data = None
            try:
                response_data = e.response.json()
                if isinstance(response_data, dict):
                    error_detail = response_data.get("message") or response_data.get("detail") or error_detail
            except ValueError:
                pass

            status = e.response.status_code
            logger.debug(f"{method} {endpoint} failed with {status}: {error_detail}")
            if status == 401:
                raise AuthenticationError(f"Authentication failed: {error_detail}")
            if status in (400, 404, 406, 409, 422):
                # Unknown column/table, malformed filter or constraint violation
                raise APIRequestError(f"Request rejected ({status}): {error_detail}", response_data=response_data)
            raise APIResponseError(status, error_detail, response_data=response_data)
        except httpx.RequestError as e:
            raise APIConnectionError(f"Connection error to {self.base_url}{endpoint}: {e}")

        if not response.content:
            return []
        try:
            payload = response.json()
        except json.JSONDecodeError:
            raise APIResponseError(response.status_code, "Failed to decode JSON response", response_data={"raw_text": response.text})
        if isinstance(payload, dict):
            return [payload]
        return payload

    # --- Table operations ---
    async def select(self, table: str, columns: str = "*", filters: Optional[Dict[str, Any]] = None,
                     order: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = [("select", columns)] + build_filter_params(filters)
        order_param = build_order_param(order)
        if order_param:
            params.append(("order", order_param))
        if limit is not None:
            params.append(("limit", str(limit)))
        return await self._request("GET", table, params=params)

    async def insert(self, table: str, rows: Sequence[Dict[str, Any]], returning: bool = False) -> List[Dict[str, Any]]:
        """Inserts rows in one request. With `returning`, the created rows come back in submission order."""
        if not rows:
            return []
        prefer = "return=representation" if returning else "return=minimal"
        return await self._request("POST", table, json_body=list(rows), prefer=prefer)

    async def upsert(self, table: str, rows: Sequence[Dict[str, Any]], on_conflict: Sequence[str],
                     returning: bool = False) -> List[Dict[str, Any]]:
        """Inserts or merges rows that collide on the `on_conflict` columns."""
        if not rows:
            return []
        prefer = "resolution=merge-duplicates," + ("return=representation" if returning else "return=minimal")
        params = [("on_conflict", ",".join(on_conflict))]
        return await self._request("POST", table, params=params, json_body=list(rows), prefer=prefer)

    async def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("update() requires at least one filter")
        return await self._request("PATCH", table, params=build_filter_params(filters), json_body=values,
                                   prefer="return=minimal")

    async def delete(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Deletes matching rows. Unfiltered deletes are refused client-side."""
        if not filters:
            raise ValueError("delete() requires at least one filter")
        return await self._request("DELETE", table, params=build_filter_params(filters), prefer="return=minimal")

#
# End of tradejournal/remote_api/client.py
########################################################################################################################
