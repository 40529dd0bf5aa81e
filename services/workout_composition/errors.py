"""
Workout composition error taxonomy.

ClientError and ResponseValidationError are recovered inside the composer
(retry, then local fallback). Only ComposerError ever reaches a caller.
"""

from enum import Enum
from typing import Optional


class ClientErrorCode(str, Enum):
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_RESPONSE = "invalid_response"
    HTTP_ERROR = "http_error"
    DECODING_ERROR = "decoding_error"


class ValidationErrorCode(str, Enum):
    INVALID_JSON = "invalid_json"
    MISSING_PHASES = "missing_phases"
    PHASE_COUNT_MISMATCH = "phase_count_mismatch"
    UNKNOWN_PHASE_KIND = "unknown_phase_kind"
    EXERCISE_COUNT_OUT_OF_BOUNDS = "exercise_count_out_of_bounds"
    REP_RANGE_VIOLATION = "rep_range_violation"


class ComposerErrorCode(str, Enum):
    NO_COMPATIBLE_BLOCKS = "no_compatible_blocks"
    ALL_ATTEMPTS_EXHAUSTED = "all_attempts_exhausted"


class ClientError(Exception):
    """Transport/protocol failure talking to the generative service.

    `status` is the HTTP status for HTTP_ERROR, 0 when the request never got
    a response (timeout, connection refused).
    """

    def __init__(
        self,
        code: ClientErrorCode,
        message: str = "",
        status: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.detail = detail
        super().__init__(self._describe())

    def _describe(self) -> str:
        if self.code == ClientErrorCode.HTTP_ERROR:
            return f"http_error({self.status}): {self.message}"
        if self.code == ClientErrorCode.DECODING_ERROR:
            return f"decoding_error: {self.detail or self.message}"
        return f"{self.code.value}: {self.message}" if self.message else self.code.value

    @property
    def retryable(self) -> bool:
        """Missing keys and client-side 4xx will fail the same way again."""
        if self.code == ClientErrorCode.MISSING_CREDENTIAL:
            return False
        if self.code == ClientErrorCode.HTTP_ERROR and self.status:
            return not (400 <= self.status < 500) or self.status in (408, 429)
        return True

    @classmethod
    def missing_credential(cls, message: str = "API key not configured") -> "ClientError":
        return cls(ClientErrorCode.MISSING_CREDENTIAL, message)

    @classmethod
    def invalid_response(cls, message: str) -> "ClientError":
        return cls(ClientErrorCode.INVALID_RESPONSE, message)

    @classmethod
    def http_error(cls, status: int, message: str) -> "ClientError":
        return cls(ClientErrorCode.HTTP_ERROR, message, status=status)

    @classmethod
    def decoding_error(cls, detail: str) -> "ClientError":
        return cls(ClientErrorCode.DECODING_ERROR, detail=detail)


class ResponseValidationError(Exception):
    """The generated reply broke the blueprint contract; the whole reply is discarded."""

    def __init__(self, code: ValidationErrorCode, detail: str = ""):
        self.code = code
        self.detail = detail
        super().__init__(f"{code.value}: {detail}" if detail else code.value)


class ComposerError(Exception):
    """Terminal failure: no plan could be produced."""

    def __init__(self, code: ComposerErrorCode, detail: str = ""):
        self.code = code
        self.detail = detail
        super().__init__(f"{code.value}: {detail}" if detail else code.value)
