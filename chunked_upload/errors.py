from http import HTTPStatus

import httpx

INTEGRITY_STATUS_CODES = {412, 416}
INTEGRITY_ERROR_CODES = {"sha1_mismatch", "digest_mismatch", "range_mismatch", "invalid_digest"}


def _error_code_for_status(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        412: "precondition_failed",
        416: "range_not_satisfiable",
        429: "throttled",
        500: "internal_error",
    }
    return mapping.get(status_code, f"http_{status_code}")


def _status_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown Status"


class UploadError(Exception):
    """Base class for every error raised by this package."""


class TransportError(UploadError):
    """The request never produced an HTTP response."""

    status_code = None

    def __init__(self, method: str, url: str, cause: Exception) -> None:
        super().__init__(f"{method} {url} failed: {cause}")
        self.method = method
        self.url = url
        self.cause = cause


class ResponseStatusError(UploadError):
    def __init__(
        self,
        status_code: int,
        message: str = "Unexpected API Response",
        *,
        request_id: str | None = None,
        api_code: str | None = None,
        api_message: str | None = None,
        body: object = None,
    ) -> None:
        detail = f"{message} [{status_code} {_status_phrase(status_code)}"
        if request_id:
            detail += f" | {request_id}"
        detail += "]"
        if api_code:
            detail += f" {api_code}"
        if api_message:
            detail += f" - {api_message}"
        super().__init__(detail)
        self.status_code = status_code
        self.request_id = request_id
        self.api_code = api_code
        self.api_message = api_message
        self.body = body

    @property
    def error_code(self) -> str:
        return self.api_code or _error_code_for_status(self.status_code)

    @classmethod
    def from_response(cls, response: httpx.Response, message: str = "Unexpected API Response") -> "ResponseStatusError":
        body: object = None
        try:
            body = response.json()
        except ValueError:
            body = response.text or None

        request_id = api_code = api_message = None
        if isinstance(body, dict):
            request_id = body.get("request_id")
            api_code = body.get("code")
            api_message = body.get("message")

        error_cls = cls
        if response.status_code in INTEGRITY_STATUS_CODES or (api_code or "").lower() in INTEGRITY_ERROR_CODES:
            error_cls = IntegrityError
        return error_cls(
            response.status_code,
            message,
            request_id=request_id,
            api_code=api_code,
            api_message=api_message,
            body=body,
        )


class IntegrityError(ResponseStatusError):
    """The server rejected a digest or byte range."""


class CommitTimeoutError(UploadError, TimeoutError):
    def __init__(self, session_id: str, attempts: int, waited_seconds: float) -> None:
        super().__init__(
            f"upload session {session_id} still processing after {attempts} commit attempts "
            f"and {waited_seconds:.1f}s of waiting"
        )
        self.session_id = session_id
        self.attempts = attempts
        self.waited_seconds = waited_seconds


class UploadFailedError(UploadError):
    def __init__(self, session, cause: BaseException) -> None:
        super().__init__(f"chunked upload failed for session {session.id}: {cause}")
        self.session = session
        self.cause = cause

    @property
    def status_code(self) -> int | None:
        return getattr(self.cause, "status_code", None)


class UploadCancelledError(UploadError):
    def __init__(self, session_id: str | None) -> None:
        super().__init__(f"chunked upload cancelled (session {session_id})")
        self.session_id = session_id
