"""Exception types raised by portwarden"""

from typing import Any, Optional


class PortwardenError(Exception):
    """Base class for portwarden errors"""


class LLMProviderError(PortwardenError):
    """
    The LLM provider rejected or failed a request

    Carries the provider's HTTP status and error payload so the generation
    pipeline can relay them to its caller.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 502,
        reason: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.reason = reason
        self.payload = payload or {}
