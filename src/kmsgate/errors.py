"""Error taxonomy for the signing gateway.

Every failure raised by the pipeline is a GatewayError. The HTTP layer maps
``status_code`` and ``kind`` straight into the response, so a request either
yields a full signed transaction or one of these errors - never partial output.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway failures."""

    kind: str = "GatewayError"
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class InvalidField(GatewayError):
    """Malformed numeric or hex input in a sign request."""

    kind = "InvalidField"
    status_code = 400

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"invalid {field}")
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class InvalidPublicKey(GatewayError):
    """Custody service returned a public key we cannot use."""

    kind = "InvalidPublicKey"
    status_code = 502


class AddressMismatch(GatewayError):
    """Key id does not belong to the requested wallet address."""

    kind = "AddressMismatch"
    status_code = 401


class SignatureDecodeError(GatewayError):
    kind = "SignatureDecodeError"
    status_code = 500


class EncodingError(GatewayError):
    kind = "EncodingError"
    status_code = 500


class DuplicateWalletError(GatewayError):
    kind = "DuplicateWallet"
    status_code = 409


class CustodyServiceError(GatewayError):
    """A create/fetch/sign call against the custody service failed.

    Attributes:
        operation: Custody operation that failed (create_key, get_public_key, sign)
        code: Error code reported by the service, if any
        transient: Whether the caller may retry the call
    """

    kind = "CustodyServiceError"
    status_code = 502
    transient = False

    def __init__(self, message: str, operation: str = "", code: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.code = code

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.operation:
            data["operation"] = self.operation
        return data


class ServiceUnavailable(CustodyServiceError):
    transient = True


class Throttled(CustodyServiceError):
    transient = True


class KeyNotFound(CustodyServiceError):
    pass


class AccessDenied(CustodyServiceError):
    pass
