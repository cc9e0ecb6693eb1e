from typing import Any, Optional


class GatewayError(Exception):
    code = "GATEWAY_ERROR"
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GatewayError):
    """Malformed or missing input from the caller."""
    code = "VALIDATION_ERROR"
    status = 400


class AuthError(GatewayError):
    code = "UNAUTHORIZED"
    status = 401


class NotFoundError(GatewayError):
    code = "NOT_FOUND"
    status = 404


class ConflictError(GatewayError):
    code = "CONFLICT"
    status = 409


class ArtifactNotReadyError(GatewayError):
    code = "ARTIFACT_NOT_READY"
    status = 400


class StoreError(GatewayError):
    code = "STORE_ERROR"
    status = 500


class UpstreamError(GatewayError):
    """Compute service answered with a non-2xx status or could not be reached."""
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, upstream_status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.body = body
        # 4xx/5xx from the engine pass through; transport failures surface as 502
        self.status = upstream_status if upstream_status and upstream_status >= 400 else 502


class ComputeTimeoutError(GatewayError):
    code = "UPSTREAM_TIMEOUT"
    status = 504

    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout


class BlobStoreError(GatewayError):
    code = "BLOB_STORE_ERROR"
    status = 502
