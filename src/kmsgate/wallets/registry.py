"""In-memory wallet registry.

Maps derived account addresses to custody key ids. The registry is the only
owner of this mapping; callers get immutable Wallet values and list snapshots.

Custody calls happen outside the lock, only the insert is serialized, so a
slow KMS create never blocks list_wallets().
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from kmsgate.errors import DuplicateWalletError
from kmsgate.evm.address import address_from_der
from kmsgate.signing.base import DEFAULT_KEY_DESCRIPTION, CustodyBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Wallet:
    """Custodial wallet.

    Attributes:
        address: Lowercase "0x" account address derived from the key
        key_id: Custody service key handle
    """
    address: str
    key_id: str


class WalletRegistry:
    """Address -> key id mapping guarded by an asyncio.Lock.

    Example:
        registry = WalletRegistry(custody)
        wallet = await registry.create_wallet()
        wallets = await registry.list_wallets()
    """

    def __init__(self, custody: CustodyBackend):
        self.custody = custody
        self._wallets: dict[str, Wallet] = {}
        self._lock = asyncio.Lock()

    async def create_wallet(
        self,
        description: str = DEFAULT_KEY_DESCRIPTION,
        timeout: Optional[float] = None,
    ) -> Wallet:
        """Create a custody key, derive its address and register it.

        Raises:
            CustodyServiceError: If creating the key or fetching its public key fails
            InvalidPublicKey: If the custody public key is not secp256k1
            DuplicateWalletError: If the derived address is already registered
        """
        key_id = await self.custody.create_key(description=description, timeout=timeout)
        der_key = await self.custody.get_public_key(key_id, timeout=timeout)
        address = address_from_der(der_key)

        wallet = Wallet(address=address, key_id=key_id)
        await self.add(wallet)

        logger.info(f"Created wallet {address} (key {key_id})")
        return wallet

    async def add(self, wallet: Wallet) -> None:
        """Register an existing wallet."""
        async with self._lock:
            if wallet.address in self._wallets:
                raise DuplicateWalletError(f"wallet {wallet.address} already registered")
            self._wallets[wallet.address] = wallet

    async def list_wallets(self) -> list[Wallet]:
        """Snapshot of all wallets in creation order."""
        async with self._lock:
            return list(self._wallets.values())

    async def get_wallet(self, address: str) -> Optional[Wallet]:
        """Look up a wallet by address (case-insensitive)."""
        async with self._lock:
            return self._wallets.get(address.lower())
