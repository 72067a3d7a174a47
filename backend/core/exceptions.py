"""Custom exception hierarchy for the session gateway.

Every error that can reach a client carries its wire code and whether
the client may retry the same request unchanged.
"""


class GatewayError(Exception):
    """Base error."""
    wire_code = 500
    retryable = False

    def __init__(self, message: str, code: str = "GATEWAY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class MalformedFrameError(GatewayError):
    """Unparseable JSON, bad envelope or bad params."""
    wire_code = 400

    def __init__(self, message: str = "Malformed frame"):
        super().__init__(message, code="MALFORMED_FRAME")


class SignatureError(GatewayError):
    """Signature malformed or not verifying against the user address."""
    wire_code = 401

    def __init__(self, message: str = "Signature verification failed"):
        super().__init__(message, code="SIGNATURE_ERROR")


class AuthError(GatewayError):
    """Credential invalid, expired, or issuer misconfigured."""
    wire_code = 401

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, code="AUTH_ERROR")


class UnknownMethodError(GatewayError):
    wire_code = 404

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Unknown method: {method}", code="UNKNOWN_METHOD")


class ReplayError(GatewayError):
    """Proposed nonce is not strictly greater than the stored one."""
    wire_code = 409

    def __init__(self, message: str = "Nonce already used"):
        super().__init__(message, code="NONCE_REPLAY")


class StoreError(GatewayError):
    """Durable store operation failed."""
    retryable = True

    def __init__(self, message: str = "Store operation failed"):
        super().__init__(message, code="STORE_ERROR")


class ExhaustedError(GatewayError):
    """Device id allocator ran out of attempts."""
    wire_code = 503
    retryable = True

    def __init__(self, message: str = "Device id allocation exhausted"):
        super().__init__(message, code="ALLOCATION_EXHAUSTED")


class TransportError(GatewayError):
    """Read or write on the connection failed. Never sent to the peer."""
    def __init__(self, message: str = "Transport error"):
        super().__init__(message, code="TRANSPORT_ERROR")


class InternalError(GatewayError):
    """Unexpected failure inside a handler."""
    retryable = True

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, code="INTERNAL_ERROR")
