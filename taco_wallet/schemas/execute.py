"""
execute.py - Pydantic schemas for the execute API.

The three discord* fields form the interaction proof. They are optional at
the schema level so that a request with no proof at all is rejected by the
orchestrator's authorization gate rather than by field validation.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1, description="Sender's Discord user id")
    to: str = Field(..., min_length=1, description="Receiver address")
    amount_eth: Union[str, float, int] = Field(..., alias="amountEth", description="Amount in ether")
    discord_timestamp: Optional[Union[str, int]] = Field(None, alias="discordTimestamp")
    discord_signature: Optional[str] = Field(None, alias="discordSignature")
    discord_payload: Optional[Any] = Field(None, alias="discordPayload")
    chain: Optional[str] = Field(None, description="Chain key or label (default base-sepolia)")

    @property
    def has_proof(self) -> bool:
        return any(
            value is not None
            for value in (self.discord_timestamp, self.discord_signature, self.discord_payload)
        )


class ExecuteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = Field("submitted", description="Always 'submitted' on success")
    sender_smart_account: str = Field(..., alias="senderSmartAccount")
    receiver: str
    amount_eth: str = Field(..., alias="amountEth")
    user_op_hash: str = Field(..., alias="userOpHash")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
