"""Wallet API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from kmsgate.errors import InvalidField
from kmsgate.evm.address import normalize_address
from kmsgate.services.signing_service import SigningService, get_signing_service

logger = logging.getLogger(__name__)

router = APIRouter()


class WalletResponse(BaseModel):
    """Wallet as exposed to clients."""
    model_config = ConfigDict(populate_by_name=True)

    address: str
    key_id: str = Field(..., alias="keyId")


@router.post("/wallet", response_model=WalletResponse, response_model_by_alias=True)
async def create_wallet(service: SigningService = Depends(get_signing_service)) -> WalletResponse:
    """Create a KMS key and register the wallet derived from it."""
    wallet = await service.create_wallet()
    return WalletResponse(address=wallet.address, key_id=wallet.key_id)


@router.get("/wallets", response_model=list[WalletResponse], response_model_by_alias=True)
async def list_wallets(service: SigningService = Depends(get_signing_service)) -> list[WalletResponse]:
    """Snapshot of all registered wallets."""
    wallets = await service.list_wallets()
    return [WalletResponse(address=w.address, key_id=w.key_id) for w in wallets]


@router.get("/wallets/{address}", response_model=WalletResponse, response_model_by_alias=True)
async def get_wallet(
    address: str, service: SigningService = Depends(get_signing_service)
) -> WalletResponse:
    """Look up one registered wallet."""
    try:
        normalized = normalize_address(address, "address")
    except InvalidField:
        raise HTTPException(status_code=400, detail="Invalid address")

    wallet = await service.registry.get_wallet(normalized)
    if wallet is None:
        raise HTTPException(status_code=404, detail="Wallet not found")
    return WalletResponse(address=wallet.address, key_id=wallet.key_id)
