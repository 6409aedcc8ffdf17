"""Plaid API client.

Wraps the plaid-python SDK for the calls this application makes: Link
token creation, public-token exchange, account/balance lookup, the
cursor-based ``/transactions/sync`` feed, and Item removal.

Plaid uses per-institution access tokens (Items); every data call takes
the access token of the institution it concerns.
"""

import json
import logging

from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from plaid.model.transactions_sync_request_options import TransactionsSyncRequestOptions

from config import settings
from integrations.exceptions import (
    InvalidAccessTokenError,
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
)
from integrations.parsing_utils import to_decimal
from integrations.provider_protocol import ProviderAccount, RawSyncPage

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Plaid"

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
# Plaid's Development environment is deprecated; only sandbox and production
# are supported.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

ACCESS_TOKEN_PREFIXES: tuple[str, ...] = (
    "access-sandbox-",
    "access-development-",
    "access-production-",
)

_AUTH_ERROR_CODES = frozenset(
    {
        "INVALID_ACCESS_TOKEN",
        "ITEM_LOGIN_REQUIRED",
        "INVALID_API_KEYS",
        "ITEM_NOT_FOUND",
        "ACCESS_NOT_GRANTED",
    }
)


def is_valid_access_token(token: str | None) -> bool:
    """Return True if the token carries a known Plaid environment prefix."""
    return bool(token) and token.startswith(ACCESS_TOKEN_PREFIXES)


def validate_access_token(token: str | None) -> None:
    """Raise InvalidAccessTokenError unless the token looks like a Plaid access token."""
    if not is_valid_access_token(token):
        raise InvalidAccessTokenError(
            "Invalid access token format", provider_name=PROVIDER_NAME
        )


def _to_plain(value):
    """Convert an SDK model (or list/dict of models) into plain Python values."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_plain(v) for v in value]
    return value


class PlaidClient:
    """Wrapper around the Plaid API."""

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                env_key,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    # ------------------------------------------------------------------
    # Link Token & Token Exchange
    # ------------------------------------------------------------------

    def create_link_token(self, client_user_id: str) -> str:
        """Create a Plaid Link token for the browser-based auth flow.

        Args:
            client_user_id: Stable identifier for the end user.

        Returns:
            The link_token string to be passed to Plaid Link.
        """
        api = self._get_api()
        kwargs = {
            "user": LinkTokenCreateRequestUser(client_user_id=client_user_id),
            "client_name": settings.PLAID_CLIENT_NAME,
            "products": [Products("transactions")],
            "country_codes": [CountryCode(c) for c in settings.country_codes],
            "language": "en",
        }
        if settings.PLAID_WEBHOOK_URL:
            kwargs["webhook"] = settings.PLAID_WEBHOOK_URL
        if settings.PLAID_REDIRECT_URI:
            kwargs["redirect_uri"] = settings.PLAID_REDIRECT_URI

        try:
            response = api.link_token_create(LinkTokenCreateRequest(**kwargs))
        except ApiException as e:
            raise self._map_plaid_error(e) from e
        return response["link_token"]

    def exchange_public_token(self, public_token: str) -> dict:
        """Exchange a Plaid Link public_token for a permanent access_token.

        Returns:
            Dict with ``access_token`` and ``item_id``.
        """
        api = self._get_api()
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        try:
            response = api.item_public_token_exchange(request)
        except ApiException as e:
            raise self._map_plaid_error(e) from e
        return {
            "access_token": response["access_token"],
            "item_id": response["item_id"],
        }

    def remove_item(self, access_token: str) -> None:
        """Revoke an access token by calling Plaid's /item/remove endpoint."""
        api = self._get_api()
        try:
            api.item_remove(ItemRemoveRequest(access_token=access_token))
        except ApiException as e:
            raise self._map_plaid_error(e) from e

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Fetch accounts and current balances for a single Item."""
        validate_access_token(access_token)
        api = self._get_api()
        try:
            response = api.accounts_get(AccountsGetRequest(access_token=access_token))
        except ApiException as e:
            raise self._map_plaid_error(e) from e

        accounts: list[ProviderAccount] = []
        for acct in _to_plain(response.get("accounts", [])) or []:
            account = self._map_account(acct)
            if account:
                accounts.append(account)
        return accounts

    @staticmethod
    def _map_account(acct: dict) -> ProviderAccount | None:
        """Map a single Plaid account dict to a ProviderAccount."""
        acct_id = acct.get("account_id")
        if not acct_id:
            return None
        balances = acct.get("balances") or {}
        return ProviderAccount(
            id=acct_id,
            name=acct.get("name") or acct.get("official_name") or "Plaid Account",
            type=str(acct.get("type") or "other"),
            subtype=str(acct["subtype"]) if acct.get("subtype") else None,
            official_name=acct.get("official_name"),
            mask=acct.get("mask"),
            current_balance=to_decimal(balances.get("current")),
            available_balance=to_decimal(balances.get("available")),
        )

    # ------------------------------------------------------------------
    # Transactions sync
    # ------------------------------------------------------------------

    def sync_transactions(
        self,
        access_token: str,
        cursor: str | None = None,
        count: int = 500,
    ) -> RawSyncPage:
        """Fetch one page of Plaid's ``/transactions/sync`` feed.

        Args:
            access_token: The Item's access token.
            cursor: Cursor from the previous page, or None for the first page.
            count: Maximum records per page (1-500).

        Returns:
            RawSyncPage with plain-dict records.

        Raises:
            ProviderError: On any API failure (mapped from ApiException).
        """
        api = self._get_api()
        kwargs = {
            "access_token": access_token,
            "count": count,
            "options": TransactionsSyncRequestOptions(
                include_personal_finance_category=True,
            ),
        }
        if cursor:
            kwargs["cursor"] = cursor

        try:
            response = api.transactions_sync(TransactionsSyncRequest(**kwargs))
        except ApiException as e:
            raise self._map_plaid_error(e) from e

        data = _to_plain(response)
        return RawSyncPage(
            added=list(data.get("added") or []),
            modified=list(data.get("modified") or []),
            removed=list(data.get("removed") or []),
            next_cursor=data.get("next_cursor") or "",
            has_more=bool(data.get("has_more")),
        )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _map_plaid_error(exc: ApiException) -> ProviderError:
        """Map a Plaid ApiException to the provider exception hierarchy."""
        status = exc.status or 0
        message = str(exc)

        # Try to extract error_code from the body
        error_code = ""
        try:
            body = json.loads(exc.body) if exc.body else {}
            error_code = body.get("error_code", "") or ""
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"
        except (TypeError, ValueError, AttributeError):
            logger.debug("Unparseable Plaid error body", exc_info=True)

        if status in (401, 403) or error_code in _AUTH_ERROR_CODES:
            return ProviderAuthError(message, provider_name=PROVIDER_NAME)
        if status == 0:
            return ProviderConnectionError(message, provider_name=PROVIDER_NAME)
        return ProviderAPIError(
            message,
            provider_name=PROVIDER_NAME,
            status_code=status,
            error_code=error_code,
        )
