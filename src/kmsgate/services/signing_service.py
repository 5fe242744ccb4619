"""Transaction signing pipeline.

Each sign request walks these stages exactly once, in order:

    IDLE -> VALIDATING -> BUILDING -> HASHING -> AWAITING_SIGNATURE
         -> DECODING -> NORMALIZING -> ENCODING -> DONE | FAILED

VALIDATING parses every field into an UnsignedTransaction before any custody
call, then checks that the key id really belongs to the wallet address.
BUILDING only serializes the parsed transaction into the signing payload.
Only AWAITING_SIGNATURE is retried, and only on transient custody failures.
A failure anywhere returns nothing: the request is all-or-nothing.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from kmsgate.config import Settings, get_settings
from kmsgate.errors import AddressMismatch, EncodingError, GatewayError, InvalidField
from kmsgate.evm.address import address_from_der, keccak256, normalize_address
from kmsgate.evm.signature import (
    Signature,
    decode_der_signature,
    enforce_low_s,
    find_recovery_id,
    pad32,
)
from kmsgate.evm.transaction import (
    SignRequest,
    UnsignedTransaction,
    build_transaction,
    decode_signed_transaction,
    encode_signed_transaction,
    recover_sender,
    signing_payload,
    to_hex,
)
from kmsgate.signing.base import SIGNING_ALGORITHM_ECDSA_SHA_256, CustodyBackend
from kmsgate.signing.retry import with_retry
from kmsgate.wallets.registry import Wallet, WalletRegistry

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Sign request lifecycle."""
    IDLE = "idle"
    VALIDATING = "validating"
    BUILDING = "building"
    HASHING = "hashing"
    AWAITING_SIGNATURE = "awaiting_signature"
    DECODING = "decoding"
    NORMALIZING = "normalizing"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"


_ORDER = [
    PipelineStage.IDLE,
    PipelineStage.VALIDATING,
    PipelineStage.BUILDING,
    PipelineStage.HASHING,
    PipelineStage.AWAITING_SIGNATURE,
    PipelineStage.DECODING,
    PipelineStage.NORMALIZING,
    PipelineStage.ENCODING,
    PipelineStage.DONE,
]


@dataclass
class PipelineRun:
    """Stage tracker for one sign request."""
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    stage: PipelineStage = PipelineStage.IDLE
    history: list[PipelineStage] = field(default_factory=lambda: [PipelineStage.IDLE])
    failure: Optional[str] = None

    def advance(self, stage: PipelineStage) -> None:
        """Move strictly forward by one stage."""
        if self.stage in (PipelineStage.DONE, PipelineStage.FAILED):
            raise RuntimeError(f"pipeline {self.request_id} already finished")
        expected = _ORDER[_ORDER.index(self.stage) + 1]
        if stage != expected:
            raise RuntimeError(f"illegal transition {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.history.append(stage)
        logger.debug(f"[{self.request_id}] -> {stage.value}")

    def fail(self, error: GatewayError) -> None:
        logger.warning(
            f"[{self.request_id}] failed in {self.stage.value}: {error.kind}: {error.message}"
        )
        self.failure = error.kind
        self.stage = PipelineStage.FAILED
        self.history.append(PipelineStage.FAILED)


@dataclass(frozen=True)
class SigningResult:
    """Outcome of a successful sign request.

    Attributes:
        signed_transaction: "0x"-prefixed RLP of the signed transaction
        tx_hash: keccak256 of the signed transaction (the network tx hash)
        signature: Canonical signature that was applied
        sender: Address the transaction recovers to
    """
    signed_transaction: str
    tx_hash: str
    signature: Signature
    sender: str


class SigningService:
    """Wallet creation and transaction signing against a custody backend."""

    def __init__(
        self,
        custody: CustodyBackend,
        registry: Optional[WalletRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.custody = custody
        self.registry = registry or WalletRegistry(custody)
        self.settings = settings or get_settings()

    async def create_wallet(self, timeout: Optional[float] = None) -> Wallet:
        return await self.registry.create_wallet(timeout=timeout)

    async def list_wallets(self) -> list[Wallet]:
        return await self.registry.list_wallets()

    async def verify_key_ownership(
        self, key_id: str, wallet_address: str, timeout: Optional[float] = None
    ) -> str:
        """Check that key_id's public key derives to wallet_address.

        Returns:
            The derived (canonical) address

        Raises:
            AddressMismatch: If the key belongs to a different address
        """
        der_key = await self.custody.get_public_key(key_id, timeout=timeout)
        derived = address_from_der(der_key)
        if derived != wallet_address:
            raise AddressMismatch(f"key {key_id} does not match wallet {wallet_address}")
        return derived

    async def sign_transaction(
        self,
        request: SignRequest,
        timeout: Optional[float] = None,
        run: Optional[PipelineRun] = None,
    ) -> SigningResult:
        """Run the full signing pipeline for one request.

        Args:
            request: Untrusted sign request
            timeout: Per custody call timeout (None = configured default)
            run: Optional stage tracker, for callers that want the history

        Raises:
            GatewayError: Any pipeline failure; nothing is returned on failure
        """
        run = run or PipelineRun()
        try:
            return await self._run(request, timeout, run)
        except GatewayError as e:
            run.fail(e)
            raise

    async def _run(self, request: SignRequest, timeout: Optional[float], run: PipelineRun) -> SigningResult:
        run.advance(PipelineStage.VALIDATING)
        wallet_address = normalize_address(request.wallet_address, "walletAddress")
        if not isinstance(request.key_id, str) or not request.key_id.strip():
            raise InvalidField("keyId", "keyId is required")
        key_id = request.key_id.strip()
        tx = build_transaction(request)
        await self.verify_key_ownership(key_id, wallet_address, timeout)
        logger.info(
            f"[{run.request_id}] signing for {wallet_address} chain={tx.chain_id} nonce={tx.nonce}"
        )

        run.advance(PipelineStage.BUILDING)
        payload = signing_payload(tx)

        run.advance(PipelineStage.HASHING)
        digest = keccak256(payload)
        logger.debug(f"[{run.request_id}] signing digest 0x{digest.hex()}")

        run.advance(PipelineStage.AWAITING_SIGNATURE)
        der_signature = await with_retry(
            lambda: self.custody.sign_digest(
                key_id,
                digest,
                algorithm=SIGNING_ALGORITHM_ECDSA_SHA_256,
                timeout=timeout,
            ),
            attempts=self.settings.custody_retry_attempts,
            base_delay=self.settings.custody_retry_base_delay,
            max_delay=self.settings.custody_retry_max_delay,
            operation=f"[{run.request_id}] KMS sign",
        )

        run.advance(PipelineStage.DECODING)
        r, s = decode_der_signature(der_signature)

        run.advance(PipelineStage.NORMALIZING)
        s = enforce_low_s(s)
        recovery_id = find_recovery_id(digest, r, s, wallet_address)
        signature = Signature(r=pad32(r), s=pad32(s), recovery_id=recovery_id)

        run.advance(PipelineStage.ENCODING)
        raw = encode_signed_transaction(tx, signature)
        sender = self._check_sender(raw, tx, wallet_address)

        run.advance(PipelineStage.DONE)
        tx_hash = to_hex(keccak256(raw))
        logger.info(f"[{run.request_id}] signed transaction {tx_hash}")

        return SigningResult(
            signed_transaction=to_hex(raw),
            tx_hash=tx_hash,
            signature=signature,
            sender=sender,
        )

    @staticmethod
    def _check_sender(raw: bytes, tx: UnsignedTransaction, wallet_address: str) -> str:
        """Re-decode the encoded bytes and confirm they recover to the wallet."""
        decoded = decode_signed_transaction(raw)
        if decoded.unsigned() != tx:
            raise EncodingError("encoded transaction does not round-trip")
        sender = recover_sender(decoded)
        if sender != wallet_address:
            raise EncodingError(f"encoded transaction recovers to {sender}, expected {wallet_address}")
        return sender


_service_instance: Optional[SigningService] = None


def get_signing_service() -> SigningService:
    """Get the process-wide signing service (singleton)."""
    global _service_instance

    if _service_instance is None:
        from kmsgate.signing.factory import get_custody_backend
        _service_instance = SigningService(get_custody_backend())

    return _service_instance


def set_signing_service(service: Optional[SigningService]) -> None:
    """Install or clear the process-wide service (for testing)."""
    global _service_instance
    _service_instance = service


def get_existing_signing_service() -> Optional[SigningService]:
    """Return the process-wide service only if one was already built."""
    return _service_instance
