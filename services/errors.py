from typing import Optional


class BridgeError(Exception):
    """Base error rendered by the HTTP layer as {"error": message}."""

    status_code = 500
    message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class ClientInputError(BridgeError):
    status_code = 400
    message = "Invalid request"


class SignatureError(ClientInputError):
    message = "Invalid signature"


class NotFoundError(BridgeError):
    status_code = 404
    message = "Not found"


class ConflictError(BridgeError):
    status_code = 409
    message = "Conflict"


class UpstreamError(BridgeError):
    """Discord API, token endpoint or network failure."""

    status_code = 500
    message = "Upstream request failed"
