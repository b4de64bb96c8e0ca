# Service error kinds and the HTTP status each one maps to.


class ServiceError(Exception):
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str = "", **payload):
        super().__init__(message or self.error)
        self.message = message
        self.payload = payload

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.message:
            body["message"] = self.message
        body.update(self.payload)
        return body


class InvalidInput(ServiceError):
    status_code = 400
    error = "invalid_input"

    def __init__(self, message: str = "", error: str | None = None, **payload):
        super().__init__(message, **payload)
        if error:
            self.error = error


class NotFound(ServiceError):
    status_code = 404
    error = "not_found"


class SessionTimeout(ServiceError):
    status_code = 504

    def __init__(self, error: str = "timeout", message: str = ""):
        super().__init__(message)
        self.error = error


class UpstreamClosed(ServiceError):
    """The link client closed the connection before the session succeeded."""

    status_code = 500
    error = "connection_closed"

    def __init__(self, message: str = "", reason_code: int | None = None):
        # 401 = logged out
        super().__init__(
            details=message,
            statusCode=reason_code,
            shouldReconnect=reason_code != 401,
        )


class PairCodeFailed(ServiceError):
    """The link client rejected the pairing-code request."""

    status_code = 500
    error = "pair_code_error"

    def __init__(self, details: str = ""):
        super().__init__(details=details)


class RateLimited(ServiceError):
    status_code = 429
    error = "rate_limited"


class InternalError(ServiceError):
    status_code = 500
    error = "internal_error"

    def __init__(self, details: str = ""):
        super().__init__(details=details)
