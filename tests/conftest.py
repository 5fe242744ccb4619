"""Pytest configuration and fixtures."""

import asyncio
import hashlib
import os
import uuid
from typing import Optional

import pytest
import pytest_asyncio
from ecdsa import SECP256k1, SigningKey
from ecdsa.util import sigencode_der
from eth_keys import keys

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ["AWS_REGION"] = "us-east-1"

from kmsgate.config import Settings
from kmsgate.errors import KeyNotFound
from kmsgate.services.signing_service import SigningService, set_signing_service
from kmsgate.signing.base import (
    DEFAULT_KEY_DESCRIPTION,
    SIGNING_ALGORITHM_ECDSA_SHA_256,
    CustodyBackend,
    CustodyType,
)
from kmsgate.signing.factory import reset_custody_backend
from kmsgate.wallets.registry import WalletRegistry

SEPOLIA_CHAIN_ID = 11155111


def address_for_secret(secret_exponent: int) -> str:
    """Reference address computed with eth_keys, independent of kmsgate."""
    private_key = keys.PrivateKey(secret_exponent.to_bytes(32, "big"))
    return "0x" + private_key.public_key.to_canonical_address().hex()


class FakeCustody(CustodyBackend):
    """Deterministic in-process stand-in for KMS.

    Signs with RFC 6979 nonces, so the same digest always yields the same
    DER signature. ``high_s`` returns the malleable (r, N - s) twin instead.
    """

    def __init__(self, high_s: bool = False):
        super().__init__(CustodyType.KMS)
        self.high_s = high_s
        self.keys: dict[str, SigningKey] = {}
        self.public_key_overrides: dict[str, bytes] = {}
        self.sign_errors: list[Exception] = []
        self.create_errors: list[Exception] = []
        self.calls = {"create_key": 0, "get_public_key": 0, "sign": 0}
        self.timeouts: list[Optional[float]] = []
        self._next_secret = 1000
        self.closed = False

    def add_key(self, key_id: str, secret_exponent: int) -> str:
        """Register a key and return its address."""
        self.keys[key_id] = SigningKey.from_secret_exponent(secret_exponent, curve=SECP256k1)
        return address_for_secret(secret_exponent)

    def _sigencode(self, r: int, s: int, order: int) -> bytes:
        if self.high_s and s <= order // 2:
            s = order - s
        elif not self.high_s and s > order // 2:
            s = order - s
        return sigencode_der(r, s, order)

    async def create_key(self, description: str = DEFAULT_KEY_DESCRIPTION, timeout=None) -> str:
        self.calls["create_key"] += 1
        self.timeouts.append(timeout)
        await asyncio.sleep(0)
        if self.create_errors:
            raise self.create_errors.pop(0)
        key_id = str(uuid.uuid4())
        self.add_key(key_id, self._next_secret)
        self._next_secret += 1
        return key_id

    async def get_public_key(self, key_id: str, timeout=None) -> bytes:
        self.calls["get_public_key"] += 1
        self.timeouts.append(timeout)
        await asyncio.sleep(0)
        if key_id in self.public_key_overrides:
            return self.public_key_overrides[key_id]
        if key_id not in self.keys:
            raise KeyNotFound(f"key {key_id} not found", operation="get_public_key", code="NotFoundException")
        return self.keys[key_id].get_verifying_key().to_der()

    async def sign_digest(
        self,
        key_id: str,
        digest: bytes,
        algorithm: str = SIGNING_ALGORITHM_ECDSA_SHA_256,
        timeout=None,
    ) -> bytes:
        self.calls["sign"] += 1
        self.timeouts.append(timeout)
        await asyncio.sleep(0)
        if self.sign_errors:
            raise self.sign_errors.pop(0)
        if key_id not in self.keys:
            raise KeyNotFound(f"key {key_id} not found", operation="sign", code="NotFoundException")
        return self.keys[key_id].sign_digest_deterministic(
            digest,
            hashfunc=hashlib.sha256,
            sigencode=self._sigencode,
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def test_settings() -> Settings:
    """Settings with instant retries."""
    return Settings(
        custody_retry_attempts=3,
        custody_retry_base_delay=0.0,
        custody_retry_max_delay=0.0,
    )


@pytest.fixture
def custody() -> FakeCustody:
    return FakeCustody()


@pytest.fixture
def funded_key(custody: FakeCustody) -> tuple[str, str]:
    """A known key in the fake custody service: (key_id, address)."""
    key_id = "test-key-1"
    address = custody.add_key(key_id, 0xC0FFEE)
    return key_id, address


@pytest.fixture
def registry(custody: FakeCustody) -> WalletRegistry:
    return WalletRegistry(custody)


@pytest_asyncio.fixture
async def service(custody: FakeCustody, registry: WalletRegistry, test_settings: Settings):
    """Signing service installed as the process-wide instance."""
    svc = SigningService(custody, registry=registry, settings=test_settings)
    set_signing_service(svc)
    yield svc
    set_signing_service(None)
    reset_custody_backend()


@pytest.fixture
def make_custody():
    """Factory for extra fake custody services (e.g. high-S signers)."""
    return FakeCustody
