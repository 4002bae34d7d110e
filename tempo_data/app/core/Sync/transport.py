# Sync/transport.py
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx
from loguru import logger

from .exceptions import SyncConfigurationError, TransportError
from .models import TimestampCodec, epoch_ms_to_iso


class RemoteServiceClient(ABC):
    """
    Remote side of a sync cycle. Records go in and come out in the local shape
    (epoch-ms timestamps); implementations own any conversion to the wire format.
    """

    @abstractmethod
    async def upsert_batch(self, table: str, records: Sequence[Mapping[str, Any]]) -> List[str]:
        """
        Inserts or replaces records keyed by `id`.

        Returns:
            The ids the remote actually wrote.

        Raises:
            TransportError: If the call fails.
        """
        pass

    @abstractmethod
    async def delete_by_key(self, table: str, record_id: str) -> None:
        pass

    @abstractmethod
    async def fetch_modified_since(self, table: str, since_ms: int) -> List[Dict[str, Any]]:
        """Records whose updated_at >= since_ms, oldest first, each marked synced."""
        pass

    async def close(self) -> None:
        return None


class SupabaseRestClient(RemoteServiceClient):
    """PostgREST (Supabase) implementation on a shared httpx.AsyncClient."""

    def __init__(self, base_url: Optional[str], api_key: Optional[str], timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None, codec: Optional[TimestampCodec] = None):
        if not base_url or not api_key:
            raise SyncConfigurationError("Remote sync requires both a service URL and an API key")
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.codec = codec or TimestampCodec()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        logger.info(f"Remote client initialized for URL: {self.base_url}")

    def _get_headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    async def _request(self, method: str, table: str, **kwargs) -> httpx.Response:
        url = self._table_url(table)
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            body = e.response.text[:500]
            logger.error(f"Remote {method} {table} failed: {e.response.status_code} - {body}")
            raise TransportError(
                f"Remote {method} on '{table}' rejected: {body or e}",
                status_code=e.response.status_code,
                table=table,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Remote {method} {table} failed: {e}")
            raise TransportError(f"Remote {method} on '{table}' failed: {e}", table=table) from e

    async def upsert_batch(self, table: str, records: Sequence[Mapping[str, Any]]) -> List[str]:
        if not records:
            return []
        payload = [self.codec.prepare_outbound(record, table) for record in records]
        response = await self._request(
            "POST",
            table,
            params={"on_conflict": "id"},
            headers=self._get_headers("resolution=merge-duplicates,return=representation"),
            json=payload,
        )
        try:
            body = response.json() if response.content else None
        except ValueError as e:
            raise TransportError(f"Invalid JSON response from upsert on '{table}': {e}", table=table) from e
        if isinstance(body, list):
            return [str(row["id"]) for row in body if isinstance(row, dict) and row.get("id")]
        # 2xx without a representation: everything sent was accepted.
        return [str(record["id"]) for record in payload]

    async def delete_by_key(self, table: str, record_id: str) -> None:
        await self._request(
            "DELETE",
            table,
            params={"id": f"eq.{record_id}"},
            headers=self._get_headers(),
        )
        logger.debug(f"Remote delete on '{table}' for id {record_id}")

    async def fetch_modified_since(self, table: str, since_ms: int) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET",
            table,
            params={
                "select": "*",
                "updated_at": f"gte.{epoch_ms_to_iso(since_ms)}",
                "order": "updated_at.asc",
            },
            headers=self._get_headers(),
        )
        try:
            rows = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON response from select on '{table}': {e}", table=table) from e
        if not isinstance(rows, list):
            raise TransportError(f"Invalid response format from select on '{table}': expected list, got {type(rows)}",
                                 table=table)
        records = []
        for row in rows:
            try:
                records.append(self.codec.prepare_inbound(row, table))
            except (ValueError, TypeError, AttributeError) as e:
                logger.error(f"Skipping malformed remote row on '{table}': {row}. Error: {e}")
        logger.info(f"Fetched {len(records)} remote change(s) for '{table}'")
        return records

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
