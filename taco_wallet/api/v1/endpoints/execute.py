"""
Execute API Endpoint - Cohort-signed transfers from a user's smart account.

The request is answered only after the relay reports settlement, or fails
with a typed error. Rendering of typed errors happens in the app's
exception handlers.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from taco_wallet.api.deps import get_container
from taco_wallet.container import ServiceContainer
from taco_wallet.schemas.execute import ExecuteRequest, ExecuteResponse
from taco_wallet.services.signing import AuthorizationContext

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ExecuteResponse, response_model_by_alias=True)
async def execute_transfer(
    request: ExecuteRequest,
    chain: Optional[str] = Query(None, description="Chain key or label; overrides the body"),
    container: ServiceContainer = Depends(get_container),
):
    auth_context = None
    if request.has_proof:
        auth_context = AuthorizationContext.create(
            timestamp=request.discord_timestamp,
            signature=request.discord_signature,
            payload=request.discord_payload,
        )
    else:
        logger.warning("Execute request for user %s carries no interaction proof", request.user_id)

    chain_key = container.chains.resolve_key(chain or request.chain)
    result = await container.orchestrator.transfer(
        user_id=request.user_id,
        target=request.to,
        amount=str(request.amount_eth),
        chain_key=chain_key,
        auth_context=auth_context,
    )
    return ExecuteResponse(
        sender_smart_account=result.sender,
        receiver=result.target,
        amount_eth=result.amount_eth,
        user_op_hash=result.user_op_hash,
        transaction_hash=result.transaction_hash,
    )
