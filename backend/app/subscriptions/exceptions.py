"""Errors raised by the subscription entitlement engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class SubscriptionError(Exception):
    """Domain error carrying a stable code for API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class NotFoundError(SubscriptionError):
    """A referenced subscription does not exist."""

    def __init__(self, message: str, *, code: str = "subscription_not_found", **detail: Any) -> None:
        super().__init__(code=code, message=message, status_code=status.HTTP_404_NOT_FOUND, detail=detail or None)


class UnknownPayerError(NotFoundError):
    """The payer identity is not known to the account store."""

    def __init__(self, payer_id: str) -> None:
        super().__init__(f"Unknown payer {payer_id}", code="payer_not_found", payer_id=payer_id)


class DuplicatePaymentError(SubscriptionError):
    """Storage rejected a payment reference that no readable record carries.

    A legitimate replay never surfaces as this error; the engine resolves it to
    the record the reference was applied to.
    """

    def __init__(self, payment_reference: Optional[str]) -> None:
        super().__init__(
            code="duplicate_payment",
            message="Payment reference violates storage uniqueness",
            status_code=status.HTTP_409_CONFLICT,
            detail={"payment_reference": payment_reference},
        )


class InvalidWebhookSignatureError(SubscriptionError):
    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(code="invalid_signature", message=message, status_code=status.HTTP_401_UNAUTHORIZED)


class InvalidWebhookPayloadError(SubscriptionError):
    def __init__(self, message: str = "Invalid payment data") -> None:
        super().__init__(code="invalid_payload", message=message, status_code=status.HTTP_400_BAD_REQUEST)
