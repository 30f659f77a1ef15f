import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from taco_wallet.api.deps import get_container
from taco_wallet.container import ServiceContainer
from taco_wallet.schemas.account import AccountResponse, BalanceResponse, CreateAccountRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=AccountResponse)
async def create_account(
    request: CreateAccountRequest,
    chain: Optional[str] = Query(None, description="Chain key or label; overrides the body"),
    container: ServiceContainer = Depends(get_container),
):
    """
    Derive the smart account address for a user.

    Nothing is deployed; the address is counterfactual and identical to the
    sender address a later transfer for this user resolves to.
    """
    chain_key = container.chains.resolve_key(chain or request.chain)
    account = await container.wallet.create_account(request.user_id, chain_key)
    return AccountResponse(address=account.address, threshold=account.threshold, deployed=False)


@router.get("/{address}/balance", response_model=BalanceResponse)
async def get_balance(
    address: str,
    chain: Optional[str] = Query(None, description="Chain key or label"),
    container: ServiceContainer = Depends(get_container),
):
    chain_key = container.chains.resolve_key(chain)
    balance = await container.wallet.get_balance(address, chain_key)
    return BalanceResponse(address=address, balance=format(balance.normalize(), "f"))
