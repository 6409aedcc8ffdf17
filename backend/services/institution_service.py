"""Institution service - linking, balances, health, and removal of Plaid Items."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ProviderError
from integrations.plaid_client import PlaidClient
from integrations.provider_protocol import AccountsClient, ProviderAccount
from models import Account, Institution, Transaction

logger = logging.getLogger(__name__)


class InstitutionNotFoundError(LookupError):
    """No institution has the requested id."""


class AccountNotFoundError(LookupError):
    """No account has the requested Plaid account id."""


@dataclass
class BalanceSyncResult:
    updated_accounts: int = 0
    succeeded: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored timestamps are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class InstitutionService:
    """Manages linked institutions and their accounts."""

    def __init__(self, client: Optional[AccountsClient] = None):
        self._client = client

    @property
    def client(self) -> AccountsClient:
        if self._client is None:
            self._client = PlaidClient()
        return self._client

    # ------------------------------------------------------------------
    # Linking and accounts
    # ------------------------------------------------------------------

    def _upsert_accounts(
        self,
        db: Session,
        institution: Institution,
        remote_accounts: list[ProviderAccount],
    ) -> int:
        """Create or update Account rows from provider data.

        Returns:
            Number of accounts upserted (flushed, not committed).
        """
        new_count = 0
        for remote in remote_accounts:
            account = db.query(Account).filter(Account.account_id == remote.id).first()
            if account is None:
                account = Account(account_id=remote.id, institution_id=institution.id)
                db.add(account)
                new_count += 1
            account.institution_id = institution.id
            account.name = remote.name
            account.official_name = remote.official_name
            account.type = remote.type
            account.subtype = remote.subtype
            account.mask = remote.mask
            account.current_balance = remote.current_balance
            account.available_balance = remote.available_balance

        db.flush()
        logger.info(
            "%s: accounts upserted (%d new, %d existing)",
            institution.name, new_count, len(remote_accounts) - new_count,
        )
        return len(remote_accounts)

    def link_institution(
        self,
        db: Session,
        public_token: str,
        institution_id: str,
        name: str,
    ) -> Institution:
        """Exchange a Link public_token and store the institution and its accounts.

        Re-linking an institution that already exists replaces its access
        token and reactivates it.

        Raises:
            ProviderError: If the exchange or account fetch fails. Nothing is
                committed in that case.
        """
        exchanged = self.client.exchange_public_token(public_token)

        institution = (
            db.query(Institution)
            .filter(Institution.institution_id == institution_id)
            .first()
        )
        if institution is None:
            institution = Institution(institution_id=institution_id, name=name)
            db.add(institution)
            logger.info("Linking new institution %s", name)
        else:
            logger.info("Re-linking institution %s", name)
        institution.name = name
        institution.access_token = exchanged["access_token"]
        institution.item_id = exchanged["item_id"]
        institution.is_active = True
        db.flush()

        remote_accounts = self.client.get_accounts(institution.access_token)
        self._upsert_accounts(db, institution, remote_accounts)
        db.commit()
        db.refresh(institution)
        return institution

    @staticmethod
    def list_connected(db: Session) -> list[dict]:
        """Active institutions with their account counts, oldest first."""
        rows = (
            db.query(Institution, func.count(Account.id))
            .outerjoin(Account, Account.institution_id == Institution.id)
            .filter(Institution.is_active.is_(True))
            .group_by(Institution.id)
            .order_by(Institution.created_at, Institution.id)
            .all()
        )
        return [
            {
                "id": inst.id,
                "institutionId": inst.institution_id,
                "name": inst.name,
                "isActive": inst.is_active,
                "accountCount": count,
                "createdAt": inst.created_at,
                "updatedAt": inst.updated_at,
            }
            for inst, count in rows
        ]

    @staticmethod
    def list_accounts(db: Session) -> list[tuple[Account, str]]:
        """Accounts of active institutions, paired with the institution name."""
        return (
            db.query(Account, Institution.name)
            .join(Institution, Account.institution_id == Institution.id)
            .filter(Institution.is_active.is_(True))
            .order_by(Institution.name, Account.name)
            .all()
        )

    @staticmethod
    def _account_with_institution(db: Session, account_id: str) -> tuple[Account, str]:
        row = (
            db.query(Account, Institution.name)
            .join(Institution, Account.institution_id == Institution.id)
            .filter(Account.account_id == account_id)
            .first()
        )
        if row is None:
            raise AccountNotFoundError(f"Account not found: {account_id}")
        return row

    @staticmethod
    def set_nickname(db: Session, account_id: str, nickname: str | None) -> tuple[Account, str]:
        """Set or clear an account's display nickname.

        Whitespace is trimmed and a blank nickname is stored as NULL. Balance
        refreshes never overwrite it.

        Raises:
            AccountNotFoundError: If no account has this Plaid account id.
        """
        account, institution_name = InstitutionService._account_with_institution(db, account_id)
        account.nickname = (nickname or "").strip() or None
        db.commit()
        db.refresh(account)
        logger.info("Account nickname updated: %s", account.account_id)
        return account, institution_name

    @staticmethod
    def set_visibility(db: Session, account_id: str, is_visible: bool) -> tuple[Account, str]:
        """Show or hide an account in the dashboard overview.

        Raises:
            AccountNotFoundError: If no account has this Plaid account id.
        """
        account, institution_name = InstitutionService._account_with_institution(db, account_id)
        account.is_visible = is_visible
        db.commit()
        db.refresh(account)
        logger.info("Account %s visibility set to %s", account.account_id, is_visible)
        return account, institution_name

    def refresh_accounts(self, db: Session, institution: Institution) -> int:
        """Re-fetch one institution's accounts and balances.

        Returns:
            Number of accounts updated (flushed, not committed).
        """
        remote_accounts = self.client.get_accounts(institution.access_token)
        count = self._upsert_accounts(db, institution, remote_accounts)
        institution.updated_at = datetime.now(timezone.utc)
        db.flush()
        return count

    def sync_balances(self, db: Session) -> BalanceSyncResult:
        """Refresh balances for every active institution.

        A failure is recorded and rolled back for that institution only.
        """
        result = BalanceSyncResult()
        institutions = (
            db.query(Institution)
            .filter(Institution.is_active.is_(True))
            .order_by(Institution.id)
            .all()
        )
        for institution in institutions:
            name = institution.name
            try:
                result.updated_accounts += self.refresh_accounts(db, institution)
                db.commit()
                result.succeeded.append(name)
            except ProviderError as e:
                db.rollback()
                logger.warning("Balance refresh failed for %s: %s", name, e)
                result.failed.append({"name": name, "error": str(e)})
        return result

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @staticmethod
    def check_health(
        db: Session,
        now: datetime | None = None,
        stale_hours: int | None = None,
    ) -> dict:
        """Classify active institutions by how recently they synced.

        An institution is healthy when ``updated_at`` is younger than
        ``stale_hours`` (HEALTH_STALE_HOURS by default). Linking stamps
        ``updated_at``, so a freshly linked institution starts out healthy.

        Returns:
            Dict with ``overallHealth`` (``healthy``, ``degraded`` or
            ``unhealthy``), ``healthy`` and ``unhealthy`` name lists, and
            per-institution detail in ``institutions``.
        """
        now = _as_utc(now) or datetime.now(timezone.utc)
        threshold = timedelta(hours=stale_hours or settings.HEALTH_STALE_HOURS)

        institutions = (
            db.query(Institution)
            .filter(Institution.is_active.is_(True))
            .order_by(Institution.id)
            .all()
        )

        healthy: list[str] = []
        unhealthy: list[str] = []
        details: list[dict] = []
        for inst in institutions:
            last_sync = _as_utc(inst.updated_at)
            age = now - last_sync
            is_healthy = age < threshold
            (healthy if is_healthy else unhealthy).append(inst.name)
            details.append(
                {
                    "id": inst.id,
                    "name": inst.name,
                    "status": "healthy" if is_healthy else "unhealthy",
                    "lastSync": last_sync.isoformat(),
                    "hoursSinceSync": round(age.total_seconds() / 3600, 1),
                }
            )

        if not unhealthy:
            overall = "healthy"
        elif not healthy:
            overall = "unhealthy"
        else:
            overall = "degraded"

        return {
            "overallHealth": overall,
            "healthy": healthy,
            "unhealthy": unhealthy,
            "institutions": details,
        }

    def check_connections(self, db: Session) -> dict:
        """Call Plaid for every active institution and report which respond.

        Returns:
            ``{"healthy": [name, ...], "unhealthy": [{"name", "error"}, ...]}``
        """
        healthy: list[str] = []
        unhealthy: list[dict] = []
        institutions = db.query(Institution).filter(Institution.is_active.is_(True)).all()
        for inst in institutions:
            try:
                self.client.get_accounts(inst.access_token)
                healthy.append(inst.name)
            except ProviderError as e:
                logger.warning("Connection check failed for %s: %s", inst.name, e)
                unhealthy.append({"name": inst.name, "error": str(e)})
        return {"healthy": healthy, "unhealthy": unhealthy}

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove_institution(self, db: Session, institution_id: int, revoke: bool = True) -> str:
        """Delete an institution with its accounts and transactions.

        The Item is revoked with Plaid first on a best-effort basis. The
        three deletes then run in one transaction: any failure rolls all of
        them back and re-raises.

        Returns:
            The removed institution's name.

        Raises:
            InstitutionNotFoundError: If no institution has this id.
        """
        institution = db.query(Institution).filter(Institution.id == institution_id).first()
        if institution is None:
            raise InstitutionNotFoundError(f"Institution not found: {institution_id}")
        name = institution.name

        if revoke and institution.access_token:
            try:
                self.client.remove_item(institution.access_token)
            except ProviderError as e:
                logger.warning("Failed to revoke Plaid item for %s (removing locally anyway): %s", name, e)

        try:
            txn_count = (
                db.query(Transaction)
                .filter(Transaction.institution_id == institution_id)
                .delete(synchronize_session=False)
            )
            account_count = (
                db.query(Account)
                .filter(Account.institution_id == institution_id)
                .delete(synchronize_session=False)
            )
            db.query(Institution).filter(Institution.id == institution_id).delete(
                synchronize_session=False
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.error("Failed to remove institution %s, rolled back", name, exc_info=True)
            raise

        db.expire_all()
        logger.info(
            "Removed institution %s (%d accounts, %d transactions)",
            name, account_count, txn_count,
        )
        return name
