"""
api/routes/balances.py -- Balance lookup endpoint.

Routes:
  GET /api/get-balance/{user_id} -- {success, balances: {crypto: amount}}

Auth policy:
  Public by default, matching the existing mobile client. With
  BALANCE_REQUIRES_AUTH=true the route requires a Bearer session token whose
  userId equals the path id (401 without a token, 403 for an invalid token or
  someone else's id).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from api.models import BalanceResponse
from auth.dependencies import require_session
from balances.store import BalanceStore

logger = logging.getLogger("cryptify.api.balances")

router = APIRouter()


@router.get("/get-balance/{user_id}", response_model=BalanceResponse)
async def get_balance(request: Request, user_id: str) -> BalanceResponse:
    """Return every crypto balance held by the user."""
    user_id = user_id.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")

    if request.app.state.settings.balance_requires_auth:
        claims = require_session(request)
        if claims.user_id != user_id:
            raise HTTPException(status_code=403, detail="Invalid or expired token")

    store: BalanceStore = request.app.state.balance_store
    try:
        balances = await store.get_balances(user_id)
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Error fetching user balance: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to fetch balance") from exc

    if not balances:
        raise HTTPException(status_code=404, detail="No balances found for this user")
    return BalanceResponse(balances=balances)
