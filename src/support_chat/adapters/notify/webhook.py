"""Admin alert webhook client.

Posts the first message of a new chat to the store's ``notify-admin``
function (or any URL configured under ``alerts.url``), which forwards it
to the on-call admin.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from ...utils.async_helpers import AdminAlertError, create_retry
from ...utils.security import mask_phone

if TYPE_CHECKING:
    from ...config.schema import AlertConfig, RetryConfig
    from ...interfaces.notify import AdminAlert

log = structlog.get_logger()


class WebhookAdminAlertService:
    """AdminAlertService that POSTs JSON to a webhook.

    Body sent:
        {"userName": ..., "userPhone": ..., "message": ..., "chatId": ...}
    """

    def __init__(
        self,
        url: str,
        config: AlertConfig,
        retry_config: RetryConfig | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key

        self._url = url
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=config.timeout,
            transport=transport,
        )
        if retry_config is not None:
            retrying = create_retry(
                retry_config.max_attempts,
                retry_config.initial_delay,
                retry_config.max_delay,
            )
        else:
            retrying = create_retry()
        self._post = retrying(self._post_once)

    @property
    def url(self) -> str:
        return self._url

    async def send_alert(self, alert: AdminAlert) -> None:
        body = {
            "userName": alert.customer_name,
            "userPhone": alert.customer_phone,
            "message": alert.message,
            "chatId": alert.chat_id,
        }
        try:
            await self._post(body)
        except httpx.HTTPStatusError as e:
            raise AdminAlertError(f"Alert webhook returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise AdminAlertError(f"Alert webhook failed: {e}") from e

        log.debug(
            "admin_alert_delivered",
            chat_id=alert.chat_id,
            phone=mask_phone(alert.customer_phone),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post_once(self, body: dict[str, str]) -> None:
        response = await self._client.post(self._url, json=body)
        response.raise_for_status()
