from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional, Union

import httpx

from auth import InvestecAuth, describe_http_error
from config import Settings, get_settings
from schemas import Account, AccountBalance


logger = logging.getLogger(__name__)

API_PREFIX = "/za/pb/v1"

DateLike = Union[date, str, None]


class BankApiError(RuntimeError):
    pass


def _date_param(value: DateLike) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _page_transactions(payload: dict[str, Any]) -> list[dict[str, Any]]:
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise BankApiError("Failed to fetch transactions: malformed data section")
    transactions = data.get("transactions") or []
    if not isinstance(transactions, list) or not all(
        isinstance(item, dict) for item in transactions
    ):
        raise BankApiError("Failed to fetch transactions: malformed transaction list")
    return transactions


def _total_pages(payload: dict[str, Any]) -> Optional[int]:
    meta = payload.get("meta") or {}
    raw = meta.get("totalPages") if isinstance(meta, dict) else None
    if not raw:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise BankApiError(
            f"Failed to fetch transactions: invalid totalPages {raw!r}"
        ) from exc


class InvestecClient:
    def __init__(
        self,
        auth: InvestecAuth,
        client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
    ) -> None:
        self.auth = auth
        self.client = client
        self.settings = settings or get_settings()

    @property
    def base_url(self) -> str:
        return self.settings.investec_base_url.rstrip("/") + API_PREFIX

    async def _get(self, path: str, what: str, params: Optional[dict] = None) -> Any:
        token = await self.auth.get_access_token()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        try:
            response = await self.client.get(
                self.base_url + path, params=params, headers=headers
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise BankApiError(
                f"Failed to fetch {what}: {describe_http_error(exc)}"
            ) from exc
        except ValueError as exc:
            raise BankApiError(f"Failed to fetch {what}: invalid JSON") from exc
        if not isinstance(payload, dict):
            raise BankApiError(f"Failed to fetch {what}: unexpected response body")
        return payload

    async def get_accounts(self) -> list[Account]:
        payload = await self._get("/accounts", "accounts")
        accounts = (payload.get("data") or {}).get("accounts") or []
        return [Account.model_validate(item) for item in accounts]

    async def get_account_balance(self, account_id: str) -> AccountBalance:
        payload = await self._get(f"/accounts/{account_id}/balance", "balance")
        return AccountBalance.model_validate(payload.get("data") or {})

    async def get_transactions(
        self,
        account_id: str,
        from_date: DateLike = None,
        to_date: DateLike = None,
    ) -> list[dict[str, Any]]:
        """Fetch every page of transactions for one account, in page order.

        The page count starts at 1 and is replaced by ``meta.totalPages``
        whenever a response carries it.
        """
        collected: list[dict[str, Any]] = []
        current_page = 1
        total_pages = 1
        base_params: dict[str, str] = {}
        if _date_param(from_date):
            base_params["fromDate"] = _date_param(from_date)
        if _date_param(to_date):
            base_params["toDate"] = _date_param(to_date)

        while current_page <= total_pages:
            payload = await self._get(
                f"/accounts/{account_id}/transactions",
                "transactions",
                params={**base_params, "page": str(current_page)},
            )
            collected.extend(_page_transactions(payload))
            reported = _total_pages(payload)
            if reported:
                total_pages = reported
            current_page += 1

        logger.info(
            f"fetch_transactions: account={account_id} pages={current_page - 1} "
            f"records={len(collected)}"
        )
        return collected

    async def get_all_transactions(
        self, from_date: DateLike = None, to_date: DateLike = None
    ) -> list[dict[str, Any]]:
        accounts = await self.get_accounts()
        collected: list[dict[str, Any]] = []
        for account in accounts:
            try:
                collected.extend(
                    await self.get_transactions(account.account_id, from_date, to_date)
                )
            except BankApiError:
                logger.exception(
                    f"fetch_transactions_failed: account={account.account_id}"
                )
        return collected
