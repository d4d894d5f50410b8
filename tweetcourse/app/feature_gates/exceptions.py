"""Custom exceptions used for feature gating enforcement."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional

from fastapi import HTTPException, status


class RejectionReason(str, Enum):
    """Distinguishable reasons an entitlement check can reject an action."""

    QUOTA_EXCEEDED = "quota_exceeded"
    FEATURE_NOT_ENTITLED = "feature_not_entitled"


@dataclass
class FeatureGateError(Exception):
    """Represents an actionable gating failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None

    reason: ClassVar[Optional[RejectionReason]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.reason is not None:
            base_detail["reason"] = self.reason.value
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


@dataclass
class QuotaExceededError(FeatureGateError):
    """The account's monthly generation quota is exhausted."""

    code: str = "quota_exceeded"
    message: str = "Monthly generation limit reached."
    status_code: int = status.HTTP_402_PAYMENT_REQUIRED
    detail: Optional[Mapping[str, Any]] = None

    reason: ClassVar[Optional[RejectionReason]] = RejectionReason.QUOTA_EXCEEDED


@dataclass
class FeatureNotEntitledError(FeatureGateError):
    """The account's tier does not include the requested feature."""

    code: str = "feature_not_entitled"
    message: str = "Your plan does not include this feature."
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None

    reason: ClassVar[Optional[RejectionReason]] = RejectionReason.FEATURE_NOT_ENTITLED
