"""Transaction signing endpoint."""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from kmsgate.evm.transaction import SignRequest
from kmsgate.services.signing_service import SigningService, get_signing_service

logger = logging.getLogger(__name__)

router = APIRouter()


class SignTransactionRequest(BaseModel):
    """Sign request body.

    Numerics are base-10 strings so they survive JSON without precision loss.
    """
    model_config = ConfigDict(populate_by_name=True)

    wallet_address: str = Field(..., alias="walletAddress")
    key_id: str = Field(..., alias="keyId")
    nonce: str
    to: str
    value: str
    gas_limit: str = Field(..., alias="gasLimit")
    gas_price: str = Field(..., alias="gasPrice")
    data: Optional[str] = ""
    chain_id: Union[int, str] = Field(..., alias="chainId")

    def to_sign_request(self) -> SignRequest:
        return SignRequest(
            wallet_address=self.wallet_address,
            key_id=self.key_id,
            nonce=self.nonce,
            to=self.to,
            value=self.value,
            gas_limit=self.gas_limit,
            gas_price=self.gas_price,
            data=self.data,
            chain_id=self.chain_id,
        )


class SignTransactionResponse(BaseModel):
    """Broadcast-ready signed transaction."""
    model_config = ConfigDict(populate_by_name=True)

    signed_transaction: str = Field(..., alias="signedTransaction")
    tx_hash: str = Field(..., alias="txHash")


@router.post("/sign", response_model=SignTransactionResponse, response_model_by_alias=True)
async def sign_transaction(
    request: SignTransactionRequest,
    service: SigningService = Depends(get_signing_service),
) -> SignTransactionResponse:
    """Run the signing pipeline; errors are rendered by the GatewayError handler."""
    logger.debug(f"Sign request for {request.wallet_address} chain={request.chain_id}")
    result = await service.sign_transaction(request.to_sign_request())
    return SignTransactionResponse(
        signed_transaction=result.signed_transaction,
        tx_hash=result.tx_hash,
    )
