from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import aiohttp
from aiolimiter import AsyncLimiter
from pydantic import BaseModel, Field

from tradebook.utils.config import get_settings
from tradebook.utils.exceptions import BrokerError
from tradebook.utils.logger import get_logger, sanitize_log_data

logger = get_logger(__name__)

AUTH_FUNCTION = "ctrader-auth"
IMPORT_FUNCTION = "ctrader-import"
SYNC_FUNCTION = "ctrader-sync"


class AuthLink(BaseModel):
    auth_url: str = Field(alias="authUrl")
    state: str = ""


class AccountInfo(BaseModel):
    balance: float = 0.0
    equity: float = 0.0
    currency: str = ""


class SyncResult(BaseModel):
    success: bool = True
    trades_imported: int = Field(default=0, alias="tradesImported")
    open_positions: int = Field(default=0, alias="openPositions")
    account_info: Optional[AccountInfo] = Field(default=None, alias="accountInfo")
    sync_type: str = Field(default="incremental", alias="syncType")

    model_config = {"populate_by_name": True}


class BrokerClient:
    """
    Calls the remote broker functions (initiate auth, import, sync).
    Each call either resolves with a result or raises BrokerError; there is
    no retry and no cancellation.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None) -> None:
        self._settings = get_settings()
        self._base_url = (base_url if base_url is not None else self._settings.broker_functions_url).rstrip("/")
        self._api_key = api_key if api_key is not None else self._settings.broker_api_key
        self._session: Optional[aiohttp.ClientSession] = None
        self._limiter = AsyncLimiter(self._settings.broker_rate_limit, 1)

    @property
    def configured(self) -> bool:
        return bool(self._base_url)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._settings.broker_timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _invoke(self, function: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.configured:
            raise BrokerError("Broker functions URL is not configured")

        url = f"{self._base_url}/{function}"
        logger.info("broker_invoke", function=function, payload=sanitize_log_data(payload))
        try:
            async with self._limiter:
                session = await self._get_session()
                async with session.post(url, json=payload, headers=self._headers()) as response:
                    try:
                        body = await response.json(content_type=None)
                    except (aiohttp.ContentTypeError, ValueError):
                        body = {"error": await response.text()}

                    if response.status != 200:
                        error_msg = (body or {}).get("error") or f"{function} failed"
                        logger.error("broker_failed", function=function,
                                     status=response.status, error=error_msg)
                        raise BrokerError(error_msg, response.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("broker_network_error", function=function, error=str(e))
            raise BrokerError(f"{function} request failed: {e}") from e

        if not isinstance(body, dict):
            raise BrokerError(f"{function} returned an unexpected payload")
        if body.get("error"):
            raise BrokerError(str(body["error"]))
        return body

    async def initiate_auth(self, trading_account_id: str, account_number: str = "") -> AuthLink:
        data = await self._invoke(AUTH_FUNCTION, {
            "tradingAccountId": trading_account_id,
            "accountNumber": account_number,
        })
        if not data.get("authUrl"):
            raise BrokerError("No authorization URL returned")
        return AuthLink(**data)

    async def import_trades(
        self,
        trading_account_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> int:
        """Pull historical trades; returns how many were imported."""
        to_date = to_date or datetime.now(timezone.utc)
        from_date = from_date or to_date - timedelta(days=self._settings.default_import_days)
        data = await self._invoke(IMPORT_FUNCTION, {
            "tradingAccountId": trading_account_id,
            "fromDate": from_date.isoformat(),
            "toDate": to_date.isoformat(),
        })
        count = data.get("tradesCount", data.get("inserted", 0))
        logger.info("broker_trades_imported", account_id=trading_account_id, count=count)
        return int(count or 0)

    async def sync(self, trading_account_id: str, full_sync: bool = False) -> SyncResult:
        data = await self._invoke(SYNC_FUNCTION, {
            "tradingAccountId": trading_account_id,
            "fullSync": full_sync,
        })
        result = SyncResult(**data)
        logger.info("broker_synced", account_id=trading_account_id,
                    trades=result.trades_imported, sync_type=result.sync_type)
        return result
