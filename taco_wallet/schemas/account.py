"""
account.py - Pydantic schemas for the account API.

Wire names are camelCase; Python attributes are snake_case aliases.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateAccountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1, description="Discord user id")
    chain: Optional[str] = Field(None, description="Chain key or label (default base-sepolia)")


class AccountResponse(BaseModel):
    address: str = Field(..., description="Counterfactual smart account address")
    threshold: int = Field(..., description="Cohort signatures required")
    deployed: bool = Field(False, description="Always false; accounts are never deployed here")


class BalanceResponse(BaseModel):
    address: str
    balance: str = Field(..., description="Balance in ether, decimal string")
    symbol: str = "ETH"
