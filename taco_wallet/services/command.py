"""
command.py - Typed extraction of a transfer sub-command from a Discord interaction.

The interaction payload is opaque to the signing path; it is only parsed
here, against an explicit schema, to let a slash command such as
`/wallet send receiver:@bob amount:0.01` override the caller-supplied
receiver and amount.

Result is either an ExecuteCommand or None ("no override"). Anything that
does not fit the schema raises PayloadParseError.
"""

import json
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaValidationError

from taco_wallet.errors import PayloadParseError
from taco_wallet.services.units import to_wei

SUB_COMMAND = 1
SUB_COMMAND_GROUP = 2

TRANSFER_COMMAND_NAMES = ("execute", "send", "transfer")

RECEIVER_OPTION_NAMES = ("receiver", "recipient", "to", "user")
AMOUNT_OPTION_NAMES = ("amount",)

_MENTION = re.compile(r"^<@!?(\d+)>$")


class InteractionOption(BaseModel):
    name: str
    type: int
    value: Optional[Union[str, int, float, bool]] = None
    options: List["InteractionOption"] = Field(default_factory=list)


class InteractionData(BaseModel):
    name: Optional[str] = None
    options: List[InteractionOption] = Field(default_factory=list)


class Interaction(BaseModel):
    """The subset of a Discord application-command interaction we read."""

    type: Optional[int] = None
    data: InteractionData


@dataclass(frozen=True)
class ExecuteCommand:
    receiver_id: Optional[str] = None
    amount: Optional[Decimal] = None


def _find_sub_command(options: List[InteractionOption]) -> Optional[InteractionOption]:
    for option in options:
        if option.type == SUB_COMMAND and option.name.lower() in TRANSFER_COMMAND_NAMES:
            return option
        if option.type == SUB_COMMAND_GROUP:
            nested = _find_sub_command(option.options)
            if nested is not None:
                return nested
    return None


def _option_value(options: List[InteractionOption], names) -> Any:
    for option in options:
        if option.name.lower() in names and option.value is not None:
            return option.value
    return None


def _receiver_id(value: Any) -> str:
    text = str(value).strip()
    match = _MENTION.match(text)
    if match:
        return match.group(1)
    if not text:
        raise PayloadParseError("Sub-command receiver is empty")
    return text


def _amount(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise PayloadParseError("Sub-command amount must be numeric", details={"amount": value})
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise PayloadParseError(
            "Sub-command amount must be numeric", details={"amount": str(value)}
        ) from e
    if not amount.is_finite() or amount < 0:
        raise PayloadParseError(
            "Sub-command amount must be a non-negative number", details={"amount": str(value)}
        )
    try:
        to_wei(amount)
    except ValueError as e:
        raise PayloadParseError(
            "Sub-command amount has more than 18 decimal places", details={"amount": str(value)}
        ) from e
    return amount


def parse_execute_command(payload: Union[str, bytes, dict, None]) -> Optional[ExecuteCommand]:
    """
    Parse an interaction payload into an ExecuteCommand.

    Args:
        payload: Raw interaction, as a JSON string/bytes or an already decoded dict

    Returns:
        ExecuteCommand when a sub-command names a receiver and/or an amount,
        None when the interaction carries no such sub-command.

    Raises:
        PayloadParseError: payload is not JSON or does not match the schema
    """
    if payload is None:
        return None

    if isinstance(payload, (str, bytes)):
        try:
            decoded = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise PayloadParseError("Interaction payload is not valid JSON") from e
    else:
        decoded = payload

    try:
        interaction = Interaction.model_validate(decoded)
    except SchemaValidationError as e:
        raise PayloadParseError(
            "Interaction payload does not match schema",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    sub_command = _find_sub_command(interaction.data.options)
    if sub_command is None:
        return None

    raw_receiver = _option_value(sub_command.options, RECEIVER_OPTION_NAMES)
    raw_amount = _option_value(sub_command.options, AMOUNT_OPTION_NAMES)
    if raw_receiver is None and raw_amount is None:
        return None

    return ExecuteCommand(
        receiver_id=_receiver_id(raw_receiver) if raw_receiver is not None else None,
        amount=_amount(raw_amount) if raw_amount is not None else None,
    )
