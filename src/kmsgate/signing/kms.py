"""AWS KMS custody backend.

Uses AWS Key Management Service for key storage and signing.
KMS keys never leave AWS - signing happens in the cloud.

Keys are created as:
- KeySpec: ECC_SECG_P256K1 (secp256k1)
- KeyUsage: SIGN_VERIFY
and digests are signed with ECDSA_SHA_256 / MessageType=DIGEST, so KMS signs
the 32 bytes it is given instead of hashing them again.

boto3 is blocking, so every call runs on a bounded thread pool. A semaphore
caps calls in flight and asyncio.wait_for enforces the per-call timeout. A
call that times out keeps its slot until its worker thread returns, so the
cap counts threads actually talking to KMS.

Reference:
- https://docs.aws.amazon.com/kms/latest/developerguide/asymmetric-key-specs.html
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from kmsgate.config import Settings, get_settings
from kmsgate.errors import (
    AccessDenied,
    CustodyServiceError,
    KeyNotFound,
    ServiceUnavailable,
    Throttled,
)
from kmsgate.signing.base import (
    DEFAULT_KEY_DESCRIPTION,
    DIGEST_LENGTH,
    KEY_SPEC_SECP256K1,
    KEY_USAGE_SIGN_VERIFY,
    SIGNING_ALGORITHM_ECDSA_SHA_256,
    CustodyBackend,
    CustodyType,
)

logger = logging.getLogger(__name__)

# KMS error code -> gateway error class
_ERROR_CODES: dict[str, type[CustodyServiceError]] = {
    "NotFoundException": KeyNotFound,
    "AccessDeniedException": AccessDenied,
    "ThrottlingException": Throttled,
    "LimitExceededException": Throttled,
    "KMSInternalException": ServiceUnavailable,
    "DependencyTimeoutException": ServiceUnavailable,
    "KMSInvalidStateException": ServiceUnavailable,
    "KeyUnavailableException": ServiceUnavailable,
}


def map_client_error(operation: str, error: ClientError) -> CustodyServiceError:
    """Translate a botocore ClientError into the gateway taxonomy."""
    code = error.response.get("Error", {}).get("Code", "Unknown")
    message = error.response.get("Error", {}).get("Message", str(error))
    error_cls = _ERROR_CODES.get(code, CustodyServiceError)
    return error_cls(f"KMS {operation} failed ({code}): {message}", operation=operation, code=code)


class KMSCustody(CustodyBackend):
    """AWS KMS custody backend.

    Keys are identified by:
    - AWS KMS Key ID (e.g., "1234abcd-12ab-34cd-56ef-1234567890ab")
    - AWS KMS Key ARN
    - AWS KMS Key Alias (e.g., "alias/my-signing-key")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[Any] = None,
    ):
        """Initialize KMS custody backend.

        Args:
            settings: Application settings (defaults to get_settings())
            client: Pre-built boto3 KMS client (tests inject a stubbed one)
        """
        super().__init__(CustodyType.KMS)
        self.settings = settings or get_settings()
        self.region = self.settings.aws_region
        self.timeout = self.settings.custody_timeout_seconds
        self._client = client
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.custody_max_concurrency,
            thread_name_prefix="kms",
        )
        self._semaphore = asyncio.Semaphore(self.settings.custody_max_concurrency)

    @property
    def client(self):
        """Lazily create the boto3 KMS client."""
        if self._client is None:
            session = boto3.session.Session(
                aws_access_key_id=self.settings.aws_access_key_id,
                aws_secret_access_key=self.settings.aws_secret_access_key,
                aws_session_token=self.settings.aws_session_token,
                region_name=self.region,
            )
            self._client = session.client(
                "kms",
                endpoint_url=self.settings.kms_endpoint_url,
                config=Config(
                    connect_timeout=self.timeout,
                    read_timeout=self.timeout,
                    # Retries belong to the caller, see kmsgate.signing.retry
                    retries={"total_max_attempts": 1, "mode": "standard"},
                    max_pool_connections=self.settings.custody_max_concurrency,
                ),
            )
            logger.info(f"Created KMS client for region {self.region}")
        return self._client

    def _release_slot(self, future: asyncio.Future) -> None:
        self._semaphore.release()
        if not future.cancelled():
            # Mark the result retrieved; timed-out callers never await it
            future.exception()

    async def _call(self, operation: str, func: Callable[[], dict], timeout: Optional[float]) -> dict:
        """Run a blocking KMS call on the pool with a timeout."""
        timeout = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()

        async def invoke() -> dict:
            await self._semaphore.acquire()
            try:
                future = loop.run_in_executor(self._executor, func)
            except RuntimeError:
                self._semaphore.release()
                raise
            future.add_done_callback(self._release_slot)
            # A timed-out call keeps its slot until the worker thread returns
            return await asyncio.shield(future)

        try:
            return await asyncio.wait_for(invoke(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"KMS {operation} timed out after {timeout}s")
            raise ServiceUnavailable(
                f"KMS {operation} timed out after {timeout}s",
                operation=operation,
                code="Timeout",
            ) from e
        except ClientError as e:
            mapped = map_client_error(operation, e)
            logger.error(f"KMS {operation} error: {mapped.message}")
            raise mapped from e
        except BotoCoreError as e:
            logger.error(f"KMS {operation} transport error: {e}")
            raise ServiceUnavailable(f"KMS {operation} failed: {e}", operation=operation) from e

    async def create_key(
        self,
        description: str = DEFAULT_KEY_DESCRIPTION,
        timeout: Optional[float] = None,
    ) -> str:
        """Create a secp256k1 SIGN_VERIFY key in KMS."""
        response = await self._call(
            "create_key",
            lambda: self.client.create_key(
                Description=description,
                KeyUsage=KEY_USAGE_SIGN_VERIFY,
                KeySpec=KEY_SPEC_SECP256K1,
            ),
            timeout,
        )
        key_id = response.get("KeyMetadata", {}).get("KeyId")
        if not key_id:
            raise CustodyServiceError("KMS create_key returned no key id", operation="create_key")

        logger.info(f"Created KMS key {key_id}")
        return key_id

    async def get_public_key(self, key_id: str, timeout: Optional[float] = None) -> bytes:
        """Get DER-encoded public key from KMS."""
        response = await self._call(
            "get_public_key",
            lambda: self.client.get_public_key(KeyId=key_id),
            timeout,
        )
        public_key = response.get("PublicKey")
        if not public_key:
            raise CustodyServiceError(
                f"KMS get_public_key returned no key for {key_id}",
                operation="get_public_key",
            )
        return bytes(public_key)

    async def sign_digest(
        self,
        key_id: str,
        digest: bytes,
        algorithm: str = SIGNING_ALGORITHM_ECDSA_SHA_256,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Sign a 32-byte digest using KMS."""
        if len(digest) != DIGEST_LENGTH:
            raise ValueError(f"digest must be {DIGEST_LENGTH} bytes, got {len(digest)}")

        response = await self._call(
            "sign",
            lambda: self.client.sign(
                KeyId=key_id,
                Message=digest,
                MessageType="DIGEST",
                SigningAlgorithm=algorithm,
            ),
            timeout,
        )
        signature = response.get("Signature")
        if not signature:
            raise CustodyServiceError(f"KMS sign returned no signature for {key_id}", operation="sign")
        return bytes(signature)

    async def health_check(self) -> bool:
        """Check if KMS is accessible."""
        try:
            # Minimal permission check
            await self._call("list_keys", lambda: self.client.list_keys(Limit=1), None)
            return True
        except CustodyServiceError as e:
            logger.warning(f"KMS health check failed: {e}")
            return False

    async def close(self) -> None:
        self._executor.shutdown(wait=False)
