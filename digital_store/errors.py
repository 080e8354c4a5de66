class DigitalStoreError(Exception):
    """Base error; carries the HTTP status the API layer responds with."""

    status_code = 500

    def __init__(self, message, details=None, status_code=None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(DigitalStoreError):
    status_code = 400

    def __init__(self, field, message):
        super().__init__(message, details={"field": field})
        self.field = field


class NotFoundError(DigitalStoreError):
    status_code = 404


class NotApprovedError(DigitalStoreError):
    status_code = 403

    def __init__(self, status):
        super().__init__("Payment has not been approved yet", details={"status": str(status)})
        self.status = status


class ExpiredError(DigitalStoreError):
    status_code = 410

    def __init__(self, message="Download link expired"):
        super().__init__(message)


class NoLinksError(DigitalStoreError):
    status_code = 404

    def __init__(self, message="No download links for this order"):
        super().__init__(message)


class GatewayError(DigitalStoreError):
    status_code = 500


class CatalogUnavailableError(DigitalStoreError):
    status_code = 503


class IllegalTransitionError(DigitalStoreError):
    status_code = 409

    def __init__(self, current, new):
        super().__init__(
            f"Illegal status transition {current} -> {new}",
            details={"current": str(current), "new": str(new)},
        )
        self.current = current
        self.new = new
