"""Hosted message store: PostgREST for queries and inserts, realtime for pushes.

Only filters and row translation live here. Every value interpolated into
a query is validated first, and every transport failure leaves this
module as a StoreReadError or StoreWriteError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from ...models.message import ChatMessage, OutgoingMessage, SenderRole
from ...utils.async_helpers import StoreReadError, StoreWriteError, create_retry
from ...utils.security import validate_filter_value
from .realtime import RealtimeChannel, RealtimeClient

if TYPE_CHECKING:
    from ...config.schema import RetryConfig, SupabaseConfig
    from ...interfaces.store import DropCallback, EventCallback, InsertFilter

log = structlog.get_logger()


class SupabaseMessageStore:
    """MessageStore backed by a Supabase project.

    Example:
        config = SupabaseConfig(url="https://abc.supabase.co", anon_key="...")
        store = SupabaseMessageStore(config)
        messages = await store.fetch_session_seed_messages()
        await store.aclose()
    """

    def __init__(
        self,
        config: SupabaseConfig,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        realtime: RealtimeClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: Project URL, key and table.
            retry_config: Backoff for transient read failures. Inserts are
                never retried; a duplicate insert is a duplicate message.
            transport: Optional httpx transport (tests pass a MockTransport).
            realtime: Optional change-feed client. If None, creates one.
        """
        self._config = config
        self._table = config.table
        self._client = httpx.AsyncClient(
            base_url=f"{config.base_url}/rest/v1",
            headers={
                "apikey": config.anon_key,
                "Authorization": f"Bearer {config.anon_key}",
                "Accept-Profile": config.schema_name,
                "Content-Profile": config.schema_name,
            },
            timeout=config.request_timeout,
            transport=transport,
        )
        self._realtime = realtime or RealtimeClient(config)

        if retry_config is not None:
            retrying = create_retry(
                retry_config.max_attempts,
                retry_config.initial_delay,
                retry_config.max_delay,
            )
        else:
            retrying = create_retry()
        self._get_rows = retrying(self._get_rows_once)

    async def fetch_session_seed_messages(self) -> list[ChatMessage]:
        rows = await self._select(
            {
                "select": "*",
                "sender_type": f"eq.{SenderRole.CUSTOMER.value}",
                "order": "created_at.desc",
            },
            operation="fetch_seed",
        )
        return self._parse_rows(rows)

    async def fetch_thread(self, session_id: str) -> list[ChatMessage]:
        validate_filter_value(session_id)
        rows = await self._select(
            {
                "select": "*",
                "or": f"(sender_id.eq.{session_id},receiver_id.eq.{session_id})",
                "order": "created_at.asc",
            },
            operation="fetch_thread",
        )
        return self._parse_rows(rows)

    async def append_message(self, message: OutgoingMessage) -> None:
        try:
            response = await self._client.post(
                f"/{self._table}",
                json=message.to_row(),
                headers={"Prefer": "return=minimal"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreWriteError(
                f"Insert rejected ({e.response.status_code}): {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise StoreWriteError(f"Insert failed: {e}") from e

        log.debug("store_insert_ok", sender_type=message.sender_role.value)

    async def subscribe_inserts(
        self,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        on_drop: DropCallback | None = None,
    ) -> RealtimeChannel:
        return await self._realtime.subscribe(insert_filter, on_event, on_drop)

    async def aclose(self) -> None:
        try:
            await self._realtime.aclose()
        finally:
            await self._client.aclose()

    async def _select(self, params: dict[str, str], operation: str) -> list[dict[str, Any]]:
        try:
            return await self._get_rows(params)
        except httpx.HTTPStatusError as e:
            raise StoreReadError(
                f"{operation} failed ({e.response.status_code}): {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise StoreReadError(f"{operation} failed: {e}") from e

    async def _get_rows_once(self, params: dict[str, str]) -> list[dict[str, Any]]:
        response = await self._client.get(f"/{self._table}", params=params)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list):
            raise ValueError("expected a JSON array of rows")
        return data

    def _parse_rows(self, rows: list[dict[str, Any]]) -> list[ChatMessage]:
        messages: list[ChatMessage] = []
        for row in rows:
            try:
                messages.append(ChatMessage.from_row(row))
            except (KeyError, ValueError) as e:
                log.warning("store_row_invalid", row_id=row.get("id"), error=str(e))
        return messages
