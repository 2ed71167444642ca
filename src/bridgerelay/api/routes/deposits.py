"""Deposit address and stats endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from bridgerelay.config import get_settings
from bridgerelay.registry import AddressRegistry

router = APIRouter()


class DepositAddressResponse(BaseModel):
    """Deposit address handed to a client. Never includes the key."""

    model_config = ConfigDict(populate_by_name=True)

    deposit_address: str = Field(..., alias="depositAddress")
    network: str
    chain_id: int = Field(..., alias="chainId")
    supported_tokens: list[str] = Field(..., alias="supportedTokens")
    created_at: datetime = Field(..., alias="createdAt")


class StatsResponse(BaseModel):
    """Tracked deposit addresses."""

    model_config = ConfigDict(populate_by_name=True)

    total_addresses: int = Field(..., alias="totalAddresses")
    tracked_addresses: list[str] = Field(..., alias="trackedAddresses")


def _registry(request: Request) -> AddressRegistry:
    return request.app.state.registry


@router.get(
    "/deposit-address",
    response_model=DepositAddressResponse,
    response_model_by_alias=True,
)
async def get_deposit_address(
    request: Request,
    owner: Optional[str] = Query(None, max_length=80, description="Destination-chain address"),
    user_wallet: Optional[str] = Query(None, alias="userWallet", max_length=80),
):
    """Get or create the caller's deposit address."""
    owner_id = owner or user_wallet
    if not owner_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="owner query parameter is required",
        )

    # InvalidOwnerError -> 400, RegistryError -> 500 (see app exception handlers)
    record = await _registry(request).get_or_create(owner_id)

    settings = get_settings()
    return DepositAddressResponse(
        deposit_address=record.deposit_address,
        network=settings.source_network_name,
        chain_id=settings.source_chain_id,
        supported_tokens=settings.token_labels,
        created_at=record.created_at,
    )


@router.get("/stats", response_model=StatsResponse, response_model_by_alias=True)
async def get_stats(request: Request):
    """Get relayer statistics."""
    addresses = await _registry(request).list_addresses()
    return StatsResponse(total_addresses=len(addresses), tracked_addresses=addresses)
