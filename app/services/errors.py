class ServiceError(Exception):
    """Base for domain errors raised by services. Mapped to an HTTP response in app.main."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = 400


class AuthorizationError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class UpstreamError(ServiceError):
    """A payment processor, CMS or other dependency failed."""

    status_code = 500


class RateLimitError(ServiceError):
    status_code = 429
