"""User visible response envelope.

Internal exception detail is logged, never returned.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from cctp_bridge.cctp.errors import BridgeError
from cctp_bridge.utils import native_datetime_utc_now

logger = logging.getLogger(__name__)

#: Error code for anything that is not a :py:class:`BridgeError`
INTERNAL_ERROR_CODE = "internal_error"


@dataclass(slots=True, frozen=True)
class ErrorInfo:
    code: str
    message: str


@dataclass(slots=True, frozen=True)
class ApiResponse:
    """Result of a use case call."""

    success: bool

    data: Any = None

    error: ErrorInfo | None = None

    timestamp: datetime.datetime = field(default_factory=native_datetime_utc_now)

    @classmethod
    def ok(cls, data: Any) -> "ApiResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, message: str) -> "ApiResponse":
        return cls(success=False, error=ErrorInfo(code=code, message=message))

    def to_dict(self) -> dict:
        out = {"success": self.success, "timestamp": self.timestamp.isoformat()}
        if self.success:
            out["data"] = self.data
        else:
            out["error"] = {"code": self.error.code, "message": self.error.message}
        return out


def call_use_case(fn: Callable, *args, **kwargs) -> ApiResponse:
    """Run a use case and wrap the outcome.

    - :py:class:`BridgeError` becomes its code and message
    - Anything else becomes ``internal_error`` with a generic message
    """
    try:
        return ApiResponse.ok(fn(*args, **kwargs))
    except BridgeError as e:
        logger.exception("Use case %s failed: %s", getattr(fn, "__name__", fn), e)
        return ApiResponse.fail(e.code, str(e))
    except Exception as e:
        logger.exception("Use case %s crashed: %s", getattr(fn, "__name__", fn), e)
        return ApiResponse.fail(INTERNAL_ERROR_CODE, "Internal error")
