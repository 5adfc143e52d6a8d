"""Gateway error kinds.

Every failure an executor can surface is a ``GatewayError`` subclass carrying the
HTTP status the API layer answers with and an OpenAI-style error ``code``.
"""
from typing import Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""

    status_code: int = 500
    code: str = "gateway_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class Unauthorized(GatewayError):
    """Missing or invalid credential."""

    status_code = 401
    code = "unauthorized"


class UnknownModel(GatewayError):
    """Model alias is not in the provider's catalog."""

    status_code = 404
    code = "model_not_found"

    def __init__(self, alias: str, provider: Optional[str] = None):
        scope = f"{provider} " if provider else ""
        super().__init__(f"unknown {scope}model: {alias}")
        self.alias = alias
        self.provider = provider


class InvalidRequest(GatewayError):
    """Canonical request failed validation."""

    status_code = 400
    code = "invalid_request"


class UpstreamHTTPError(GatewayError):
    """Upstream answered with a non-2xx status."""

    code = "upstream_http_error"

    def __init__(self, status_code: int, body: str, provider: Optional[str] = None):
        detail = body[:500] if body else ""
        super().__init__(f"upstream returned status {status_code}: {detail}", status_code=status_code)
        self.body = body
        self.provider = provider


class UpstreamProtocolError(GatewayError):
    """Malformed upstream event stream or transport read failure."""

    status_code = 502
    code = "upstream_protocol_error"


class AssetUploadError(GatewayError):
    """One of the asset upload steps failed."""

    status_code = 422
    code = "asset_upload_failed"


class AssetCorrelationTimeout(AssetUploadError):
    """Uploaded asset never became referenceable within the allowed polls."""

    code = "asset_correlation_timeout"


class Unsupported(GatewayError):
    """Capability not offered by the provider."""

    status_code = 501
    code = "unsupported"


class StreamCancelled(GatewayError):
    """Stream was closed by the consumer before the upstream finished."""

    status_code = 499
    code = "stream_cancelled"
