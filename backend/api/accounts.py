"""Accounts API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from models import Account
from schemas import (
    AccountNicknameUpdate,
    AccountResponse,
    AccountVisibilityUpdate,
    BalanceRefreshResponse,
)
from services.institution_service import AccountNotFoundError, InstitutionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


def get_institution_service() -> InstitutionService:
    """Dependency for the institution service (overridable in tests)."""
    return InstitutionService()


def _account_response(account: Account, institution_name: str) -> dict:
    return {
        "id": account.id,
        "account_id": account.account_id,
        "institution_id": account.institution_id,
        "institution_name": institution_name,
        "name": account.name,
        "official_name": account.official_name,
        "type": account.type,
        "subtype": account.subtype,
        "mask": account.mask,
        "current_balance": account.current_balance,
        "available_balance": account.available_balance,
        "nickname": account.nickname,
        "is_visible": account.is_visible,
        "updated_at": account.updated_at,
    }


@router.get("", response_model=list[AccountResponse])
def list_accounts(db: Session = Depends(get_db)):
    """List accounts of active institutions with their latest balances."""
    return [
        _account_response(account, institution_name)
        for account, institution_name in InstitutionService.list_accounts(db)
    ]


@router.put("/{account_id}/nickname", response_model=AccountResponse)
def update_nickname(
    account_id: str,
    body: AccountNicknameUpdate,
    db: Session = Depends(get_db),
):
    """Set the account's display nickname; a blank value clears it."""
    try:
        account, institution_name = InstitutionService.set_nickname(db, account_id, body.nickname)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _account_response(account, institution_name)


@router.put("/{account_id}/visibility", response_model=AccountResponse)
def update_visibility(
    account_id: str,
    body: AccountVisibilityUpdate,
    db: Session = Depends(get_db),
):
    """Show or hide the account in the dashboard overview."""
    try:
        account, institution_name = InstitutionService.set_visibility(
            db, account_id, body.isVisible
        )
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _account_response(account, institution_name)


@router.post("/refresh", response_model=BalanceRefreshResponse)
def refresh_balances(
    db: Session = Depends(get_db),
    service: InstitutionService = Depends(get_institution_service),
):
    """Re-fetch balances from Plaid for every active institution.

    Failures are reported per institution in the response body.
    """
    try:
        result = service.sync_balances(db)
    except Exception:
        logger.error("Unexpected error refreshing balances", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to refresh balances")
    return BalanceRefreshResponse(
        updated_accounts=result.updated_accounts,
        succeeded=result.succeeded,
        failed=result.failed,
    )
