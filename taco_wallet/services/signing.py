"""
signing.py - Authorization and signing context for the TACo cohort.

TRUST BOUNDARY:
The interaction proof (timestamp, signature, raw payload) is never verified
here. It is bound into the signing context as named parameters so the
cohort's own condition evaluator checks it at signing time. Without a proof
no signing context can be built, so nothing unauthorized reaches the cohort.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

import httpx
from eth_utils import to_checksum_address

from taco_wallet.chains import ChainConfig
from taco_wallet.errors import (
    CohortUnavailableError,
    MissingAuthorizationError,
    SigningFailure,
    UpstreamUnavailableError,
    ValidationError,
)
from taco_wallet.services import contracts
from taco_wallet.services.cohort import CohortDescriptor
from taco_wallet.services.operation import UserOperation

if TYPE_CHECKING:
    from taco_wallet.services.clients import ClientRegistry

logger = logging.getLogger(__name__)

TIMESTAMP_PARAM = ":timestamp"
SIGNATURE_PARAM = ":signature"
PAYLOAD_PARAM = ":discordPayload"

_HEX = re.compile(r"^[0-9a-fA-F]+$")


def normalize_signature(signature: str) -> str:
    """Strip a 0x prefix and check the remainder is even-length hex."""
    value = (signature or "").strip()
    if value[:2] in ("0x", "0X"):
        value = value[2:]
    if not value or len(value) % 2 or not _HEX.match(value):
        raise ValidationError(
            "discordSignature must be a hex string", details={"field": "discordSignature"}
        )
    return value


@dataclass(frozen=True)
class AuthorizationContext:
    """External interaction proof. Payload is opaque and never executed."""

    timestamp: str
    signature: str
    payload: Union[str, Dict[str, Any], List[Any]]

    @classmethod
    def create(cls, timestamp: Any, signature: str, payload: Any) -> "AuthorizationContext":
        if timestamp is None or str(timestamp).strip() == "":
            raise ValidationError("discordTimestamp is required", details={"field": "discordTimestamp"})
        if not signature:
            raise ValidationError("discordSignature is required", details={"field": "discordSignature"})
        if payload is None:
            raise ValidationError("discordPayload is required", details={"field": "discordPayload"})
        return cls(
            timestamp=str(timestamp),
            signature=normalize_signature(signature),
            payload=payload,
        )

    @property
    def serialized_payload(self) -> str:
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload, separators=(",", ":"))


@dataclass(frozen=True)
class SigningContext:
    domain: str
    cohort_id: int
    chain_id: int
    conditions: Optional[Dict[str, Any]]
    parameters: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "cohortId": self.cohort_id,
            "chainId": self.chain_id,
            "conditions": self.conditions,
            "parameters": dict(self.parameters),
        }


class SigningContextBuilder:
    def __init__(self, clients: "ClientRegistry", timeout: float):
        self.clients = clients
        self.timeout = timeout

    async def _cohort_conditions(self, config: ChainConfig) -> Optional[Dict[str, Any]]:
        if not config.signing_coordinator_address:
            logger.debug("No root coordinator for %s; signing without base conditions", config.key)
            return None

        clients = await self.clients.get(config)
        coordinator = contracts.signing_coordinator(
            clients.coordinator, config.signing_coordinator_address
        )
        raw = await contracts.read_contract(
            coordinator.functions.getSigningCohortConditions(config.cohort_id, config.chain_id).call(),
            f"getSigningCohortConditions({config.cohort_id}, {config.chain_id})",
            self.timeout,
        )
        if not raw:
            return None
        try:
            return json.loads(bytes(raw).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CohortUnavailableError(
                "Cohort signing conditions are not valid JSON",
                details={"chain": config.key, "cohort_id": config.cohort_id},
            ) from e

    async def build(
        self, config: ChainConfig, auth_context: Optional[AuthorizationContext]
    ) -> SigningContext:
        """
        Build the condition context the cohort evaluates before co-signing.

        Raises:
            MissingAuthorizationError: auth_context is None (checked before any I/O)
        """
        if auth_context is None:
            raise MissingAuthorizationError(
                "Interaction proof (discordTimestamp, discordSignature, discordPayload) is required"
            )

        conditions = await self._cohort_conditions(config)
        return SigningContext(
            domain=config.taco_domain,
            cohort_id=config.cohort_id,
            chain_id=config.chain_id,
            conditions=conditions,
            parameters={
                TIMESTAMP_PARAM: auth_context.timestamp,
                SIGNATURE_PARAM: auth_context.signature,
                PAYLOAD_PARAM: auth_context.serialized_payload,
            },
        )


def aggregate_signatures(cohort: CohortDescriptor, signatures: Dict[str, bytes]) -> bytes:
    """
    Concatenate `threshold` signer signatures ordered by ascending signer address.

    Signatures from addresses outside the cohort are ignored.

    Raises:
        SigningFailure: fewer than `threshold` cohort signatures
    """
    members = {signer.lower() for signer in cohort.signers}
    valid = {addr.lower(): sig for addr, sig in signatures.items() if addr.lower() in members}
    if len(valid) < cohort.threshold:
        raise SigningFailure(
            f"Cohort returned {len(valid)} of {cohort.threshold} required signatures",
            details={"received": len(valid), "threshold": cohort.threshold},
        )
    ordered = sorted(valid, key=lambda addr: int(addr, 16))[: cohort.threshold]
    return b"".join(valid[addr] for addr in ordered)


class PorterSigningClient:
    """
    Requests cohort signatures through a Porter gateway.

    Porter fans the request out to the cohort's nodes and returns the
    individual signatures; this client only checks quorum and aggregates.
    """

    def __init__(self, http_client: httpx.AsyncClient, porter_url: str, aa_version: str = "mdt"):
        self.http_client = http_client
        self.porter_url = porter_url.rstrip("/")
        self.aa_version = aa_version

    async def sign_user_operation(
        self,
        cohort: CohortDescriptor,
        user_op: UserOperation,
        context: SigningContext,
    ) -> bytes:
        request = {
            "domain": context.domain,
            "cohortId": context.cohort_id,
            "chainId": context.chain_id,
            "aaVersion": self.aa_version,
            "userOp": user_op.to_rpc(),
            "context": context.to_dict(),
        }
        body = {
            "signing_requests": {signer: request for signer in cohort.signers},
            "threshold": cohort.threshold,
        }

        try:
            response = await self.http_client.post(f"{self.porter_url}/sign", json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError("Porter signing request timed out") from e
        except httpx.NetworkError as e:
            raise UpstreamUnavailableError(f"Porter unreachable: {e}") from e
        except httpx.HTTPStatusError as e:
            raise SigningFailure(
                f"Porter rejected signing request with HTTP {e.response.status_code}",
                details={"status": e.response.status_code},
            ) from e
        except ValueError as e:
            raise SigningFailure("Porter returned a non-JSON body") from e

        results = (data.get("result") or {}).get("signing_results") or {}
        errors = results.get("errors") or {}
        if errors:
            logger.warning("Porter reported %d node errors: %s", len(errors), errors)

        signatures: Dict[str, bytes] = {}
        for node, entry in (results.get("signatures") or {}).items():
            try:
                signer, signature_hex = entry
                signatures[to_checksum_address(signer)] = bytes.fromhex(normalize_signature(signature_hex))
            except (TypeError, ValueError, ValidationError):
                logger.warning("Discarding malformed signature entry from node %s", node)

        aggregated = aggregate_signatures(cohort, signatures)
        logger.info(
            "Collected %d/%d cohort signatures for %s",
            min(len(signatures), cohort.threshold),
            cohort.threshold,
            user_op.sender,
        )
        return aggregated
