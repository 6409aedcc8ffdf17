"""Transaction feed adapter over Plaid's ``/transactions/sync``.

Turns one raw sync page into ledger-shaped entries. Plaid's category
payload differs between its products: the modern
``personal_finance_category`` object, the legacy ``category`` list, or a
plain string from older fixtures. All of them are normalized here so the
rest of the application only sees :class:`CategoryInfo`.
"""

import logging
from decimal import Decimal

from config import settings
from integrations.exceptions import ProviderDataError
from integrations.parsing_utils import parse_date, to_decimal
from integrations.provider_protocol import (
    CategoryInfo,
    FeedPage,
    LedgerEntry,
    TransactionSyncClient,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"

# Checked in order; the first field yielding a category wins.
_CATEGORY_FIELDS = ("personal_finance_category", "category")


def _normalize_category(value) -> CategoryInfo | None:
    """Normalize one category payload shape, or return None if it carries nothing."""
    if isinstance(value, dict):
        primary = value.get("primary")
        if primary and str(primary).strip():
            detailed = value.get("detailed")
            return CategoryInfo(
                primary=str(primary).strip(),
                detailed=str(detailed).strip() if detailed else None,
            )
        return None

    if isinstance(value, (list, tuple)):
        parts = [str(v).strip() for v in value if v is not None and str(v).strip()]
        if not parts:
            return None
        return CategoryInfo(
            primary=parts[0],
            detailed=parts[1] if len(parts) > 1 else None,
        )

    if isinstance(value, str) and value.strip():
        return CategoryInfo(primary=value.strip())

    return None


def classify_category(raw: dict) -> CategoryInfo:
    """Derive a ``(primary, detailed)`` category pair from a raw transaction.

    ``personal_finance_category`` is preferred, then the legacy ``category``
    field. Accepted shapes are an object with ``primary``, a non-empty list
    (first element primary, second detailed), or a non-empty string.

    Returns:
        CategoryInfo whose ``primary`` is never empty; ``"Uncategorized"``
        when no field matches any shape.
    """
    for field_name in _CATEGORY_FIELDS:
        info = _normalize_category(raw.get(field_name))
        if info is not None:
            return info
    return CategoryInfo(primary=UNCATEGORIZED)


def entry_type(amount: Decimal) -> str:
    """Plaid amounts are positive for money leaving the account."""
    return "expense" if amount > 0 else "income"


def to_ledger_entry(raw: dict, institution_id: int) -> LedgerEntry:
    """Map a raw Plaid transaction to a :class:`LedgerEntry`.

    Raises:
        ProviderDataError: If the record is not an object, or its id, amount,
            or date is missing or invalid.
    """
    if not isinstance(raw, dict):
        raise ProviderDataError(
            f"Transaction record is not an object: {type(raw).__name__}",
            provider_name="Plaid",
        )

    transaction_id = raw.get("transaction_id")
    if not transaction_id:
        raise ProviderDataError("Transaction is missing transaction_id", provider_name="Plaid")

    amount = to_decimal(raw.get("amount"))
    if amount is None:
        raise ProviderDataError(
            f"Transaction {transaction_id} has invalid amount {raw.get('amount')!r}",
            provider_name="Plaid",
        )

    txn_date = parse_date(raw.get("date")) or parse_date(raw.get("authorized_date"))
    if txn_date is None:
        raise ProviderDataError(
            f"Transaction {transaction_id} has invalid date {raw.get('date')!r}",
            provider_name="Plaid",
        )

    category = classify_category(raw)
    merchant_name = raw.get("merchant_name") or None

    return LedgerEntry(
        transaction_id=str(transaction_id),
        institution_id=institution_id,
        account_id=raw.get("account_id") or None,
        amount=amount,
        date=txn_date,
        name=raw.get("name") or merchant_name or "Unknown",
        merchant_name=merchant_name,
        category_primary=category.primary,
        category_detailed=category.detailed,
        type=entry_type(amount),
        pending=bool(raw.get("pending", False)),
    )


def _removed_id(ref) -> str | None:
    if isinstance(ref, dict):
        return ref.get("transaction_id") or None
    if isinstance(ref, str) and ref:
        return ref
    return None


class TransactionFeed:
    """Fetches and maps pages of one institution's transaction feed."""

    def __init__(self, client: TransactionSyncClient, page_size: int | None = None):
        self._client = client
        self._page_size = page_size or settings.SYNC_PAGE_SIZE

    def fetch_page(
        self,
        access_token: str,
        cursor: str | None,
        institution_id: int,
    ) -> FeedPage:
        """Fetch one page and map its records.

        Malformed records are logged and skipped; the rest of the page is
        still returned. Errors from the API call itself propagate.
        """
        raw_page = self._client.sync_transactions(
            access_token, cursor=cursor, count=self._page_size
        )

        page = FeedPage(next_cursor=raw_page.next_cursor, has_more=raw_page.has_more)

        for bucket, target in (
            (raw_page.added, page.added),
            (raw_page.modified, page.modified),
        ):
            for raw in bucket:
                try:
                    target.append(to_ledger_entry(raw, institution_id))
                except ProviderDataError as e:
                    logger.warning("Skipping malformed transaction: %s", e)
                    page.skipped += 1

        for ref in raw_page.removed:
            txn_id = _removed_id(ref)
            if txn_id is None:
                logger.warning("Skipping removed reference without transaction_id: %r", ref)
                page.skipped += 1
                continue
            page.removed.append(txn_id)

        logger.debug(
            "Feed page for institution %d: %d added, %d modified, %d removed, %d skipped, has_more=%s",
            institution_id,
            len(page.added),
            len(page.modified),
            len(page.removed),
            page.skipped,
            page.has_more,
        )
        return page
