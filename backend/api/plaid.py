"""Plaid Link API endpoints.

Provides the server-side endpoints for the Plaid Link browser-based
authentication flow: creating link tokens and exchanging public tokens
for a linked institution.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from integrations.exceptions import ProviderAuthError, ProviderError
from integrations.plaid_client import PlaidClient
from schemas import ExchangeTokenRequest, ExchangeTokenResponse, LinkTokenResponse
from services.institution_service import InstitutionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["plaid"])

# Single local user; Plaid only needs a stable id per end user.
CLIENT_USER_ID = "finance-dashboard-user"


def _get_plaid_client() -> PlaidClient:
    """Dependency for injecting the Plaid client (overridable in tests)."""
    return PlaidClient()


@router.post("/link-token", response_model=LinkTokenResponse)
def create_link_token(
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Create a Plaid Link token for the frontend."""
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")

    try:
        link_token = client.create_link_token(CLIENT_USER_ID)
        return LinkTokenResponse(link_token=link_token)
    except ProviderAuthError:
        hint = (
            "Plaid rejected the credentials. Check that PLAID_ENVIRONMENT "
            "matches your keys (sandbox or production). "
            "Each environment has different secrets."
        )
        logger.error("Plaid credentials rejected: %s", hint)
        raise HTTPException(status_code=400, detail=hint)
    except ProviderError as e:
        logger.error("Failed to create Plaid link token: %s", e)
        raise HTTPException(status_code=502, detail="Failed to create link token")


@router.post("/exchange-token", response_model=ExchangeTokenResponse)
def exchange_token(
    body: ExchangeTokenRequest,
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Exchange a Plaid Link public_token and store the institution and its accounts."""
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")

    service = InstitutionService(client)
    try:
        institution = service.link_institution(
            db,
            public_token=body.public_token,
            institution_id=body.institution_id,
            name=body.institution_name,
        )
    except ProviderError as e:
        db.rollback()
        logger.error("Failed to link %s: %s", body.institution_name, e)
        raise HTTPException(status_code=502, detail="Failed to exchange token")

    return ExchangeTokenResponse(
        id=institution.id,
        institution_id=institution.institution_id,
        institution_name=institution.name,
        account_count=len(institution.accounts),
    )
