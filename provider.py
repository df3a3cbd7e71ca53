from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

import plaid
import urllib3
from plaid.api import plaid_api
from plaid.exceptions import ApiException
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.transactions_sync_request import TransactionsSyncRequest

from config import Settings, get_settings
from errors import ProviderError, ProviderRejected, ProviderUnavailable
from schemas import (
    AccountSnapshot,
    LinkMetadata,
    RemovedTransaction,
    TransactionDelta,
    TransactionSnapshot,
)

logger = logging.getLogger(__name__)

PLAID_ENV_HOSTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

# Error codes that mean the stored credential is no longer usable.
REJECTED_ERROR_CODES = frozenset(
    {
        "ITEM_LOGIN_REQUIRED",
        "INVALID_ACCESS_TOKEN",
        "ITEM_NOT_FOUND",
        "ACCESS_NOT_GRANTED",
        "USER_PERMISSION_REVOKED",
        "INVALID_CREDENTIALS",
        "ITEM_LOCKED",
    }
)


class ProviderClient(Protocol):
    def fetch_accounts(self, credential: str) -> list[AccountSnapshot]: ...

    def fetch_transaction_delta(
        self, credential: str, cursor: Optional[str], count: int = 100
    ) -> TransactionDelta: ...

    def fetch_link_metadata(self, credential: str) -> LinkMetadata: ...


def account_snapshot(data: dict[str, Any]) -> AccountSnapshot:
    balances = data.get("balances") or {}
    return AccountSnapshot(
        account_id=data["account_id"],
        name=data.get("name") or data.get("official_name") or "Account",
        mask=data.get("mask"),
        type=str(data.get("type") or "other"),
        subtype=str(data["subtype"]) if data.get("subtype") else None,
        current_balance=balances.get("current"),
        available_balance=balances.get("available"),
        iso_currency_code=balances.get("iso_currency_code"),
        unofficial_currency_code=balances.get("unofficial_currency_code"),
    )


def transaction_snapshot(data: dict[str, Any]) -> TransactionSnapshot:
    category = data.get("personal_finance_category") or {}
    return TransactionSnapshot(
        transaction_id=data["transaction_id"],
        account_id=data.get("account_id") or "",
        amount=data["amount"],
        date=data["date"],
        authorized_date=data.get("authorized_date"),
        pending=bool(data.get("pending", False)),
        pending_transaction_id=data.get("pending_transaction_id"),
        payment_channel=data.get("payment_channel"),
        name=data.get("name") or "",
        merchant_name=data.get("merchant_name"),
        primary_category=category.get("primary"),
        detailed_category=category.get("detailed"),
        iso_currency_code=data.get("iso_currency_code"),
        unofficial_currency_code=data.get("unofficial_currency_code"),
        raw=data,
    )


def translate_api_error(exc: ApiException) -> ProviderError:
    code: Optional[str] = None
    message = str(exc.reason or exc)
    try:
        body = json.loads(exc.body or "{}")
    except (TypeError, ValueError):
        body = {}
    if isinstance(body, dict):
        code = body.get("error_code")
        message = body.get("error_message") or message
    if code in REJECTED_ERROR_CODES:
        return ProviderRejected(message, code=code)
    return ProviderUnavailable(message, code=code or str(exc.status or ""))


class PlaidProviderClient:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        configuration = plaid.Configuration(
            host=PLAID_ENV_HOSTS[self.settings.plaid_env],
            api_key={
                "clientId": self.settings.plaid_client_id,
                "secret": self.settings.plaid_secret,
            },
        )
        self._api = plaid_api.PlaidApi(plaid.ApiClient(configuration))

    def _call(self, operation: str, fn, request):
        try:
            return fn(request)
        except ApiException as exc:
            error = translate_api_error(exc)
            logger.warning(
                f"provider_error: operation={operation} kind={error.kind} code={error.code}"
            )
            raise error from exc
        except (urllib3.exceptions.HTTPError, OSError) as exc:
            logger.warning(f"provider_error: operation={operation} network={exc}")
            raise ProviderUnavailable(f"{operation} failed: {exc}") from exc

    def fetch_accounts(self, credential: str) -> list[AccountSnapshot]:
        response = self._call(
            "accounts_get",
            self._api.accounts_get,
            AccountsGetRequest(access_token=credential),
        )
        return [account_snapshot(acct) for acct in response.to_dict()["accounts"]]

    def fetch_transaction_delta(
        self, credential: str, cursor: Optional[str], count: int = 100
    ) -> TransactionDelta:
        params: dict[str, Any] = {"access_token": credential, "count": count}
        if cursor:
            params["cursor"] = cursor
        response = self._call(
            "transactions_sync",
            self._api.transactions_sync,
            TransactionsSyncRequest(**params),
        ).to_dict()
        return TransactionDelta(
            added=[transaction_snapshot(tx) for tx in response.get("added", [])],
            modified=[transaction_snapshot(tx) for tx in response.get("modified", [])],
            removed=[
                RemovedTransaction(transaction_id=tx["transaction_id"])
                for tx in response.get("removed", [])
            ],
            next_cursor=response["next_cursor"],
            has_more=bool(response.get("has_more", False)),
        )

    def fetch_link_metadata(self, credential: str) -> LinkMetadata:
        item = self._call(
            "item_get", self._api.item_get, ItemGetRequest(access_token=credential)
        ).to_dict()["item"]
        institution_id = item.get("institution_id")
        if not institution_id:
            return LinkMetadata()
        try:
            institution = self._call(
                "institutions_get_by_id",
                self._api.institutions_get_by_id,
                InstitutionsGetByIdRequest(
                    institution_id=institution_id,
                    country_codes=[
                        CountryCode(code) for code in self.settings.plaid_country_codes
                    ],
                ),
            ).to_dict()["institution"]
        except ProviderUnavailable:
            return LinkMetadata(
                institution_id=institution_id, institution_name=institution_id
            )
        return LinkMetadata(
            institution_id=institution_id, institution_name=institution.get("name")
        )
