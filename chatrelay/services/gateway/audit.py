"""Upstream request/response audit recorder.

The recorder is diagnostic only: ``SafeAuditRecorder`` logs and drops any failure
so a broken recorder never interrupts an upstream call.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

_SECRET_HEADERS = {"cookie", "authorization", "x-pixelpunk-key"}
_SECRET_FIELDS = {"x-amz-credential", "x-amz-signature", "policy"}


@dataclass
class UpstreamRequestLog:
    """Outbound request metadata."""
    url: str
    method: str
    provider: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    auth_id: str = ""
    auth_label: str = ""
    auth_type: str = ""
    auth_value: str = ""


class AuditRecorder(Protocol):
    def record_request(self, entry: UpstreamRequestLog) -> None:
        ...

    def record_response(self, status_code: int, headers: Mapping[str, str]) -> None:
        ...

    def append_chunk(self, chunk: bytes) -> None:
        ...

    def record_error(self, error: BaseException) -> None:
        ...


def mask_secret(value: str) -> str:
    """Mask a secret for logging, keeping only a short prefix."""
    if not value:
        return ""
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...***"


def mask_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        key: (mask_secret(value) if key.lower() in _SECRET_HEADERS else value)
        for key, value in headers.items()
    }


def mask_storage_field(key: str, value: str) -> str:
    """Mask signed storage form fields; shorten long values."""
    if key.strip().lower() in _SECRET_FIELDS:
        return "<redacted>"
    trimmed = value.strip()
    if len(trimmed) <= 80:
        return trimmed
    return f"{trimmed[:40]}...{trimmed[-12:]}"


class LoggingAuditRecorder:
    """Writes upstream traffic to the ``chatrelay.audit`` logger at DEBUG level."""

    def __init__(self, max_body_bytes: int = 2048):
        self.max_body_bytes = max_body_bytes
        self._log = logging.getLogger("chatrelay.audit")

    def record_request(self, entry: UpstreamRequestLog) -> None:
        body = entry.body[: self.max_body_bytes].decode("utf-8", errors="replace")
        self._log.debug(
            f"upstream request provider={entry.provider} {entry.method} {entry.url} "
            f"auth={entry.auth_label or entry.auth_id or '-'} headers={mask_headers(entry.headers)} body={body}"
        )

    def record_response(self, status_code: int, headers: Mapping[str, str]) -> None:
        self._log.debug(f"upstream response status={status_code} headers={mask_headers(headers)}")

    def append_chunk(self, chunk: bytes) -> None:
        self._log.debug(f"upstream chunk: {chunk[: self.max_body_bytes].decode('utf-8', errors='replace')}")

    def record_error(self, error: BaseException) -> None:
        self._log.debug(f"upstream error: {type(error).__name__}: {error}")


class NullAuditRecorder:
    """Recorder used when request logging is disabled."""

    def record_request(self, entry: UpstreamRequestLog) -> None:
        pass

    def record_response(self, status_code: int, headers: Mapping[str, str]) -> None:
        pass

    def append_chunk(self, chunk: bytes) -> None:
        pass

    def record_error(self, error: BaseException) -> None:
        pass


class SafeAuditRecorder:
    """Wraps a recorder so its failures are logged instead of raised."""

    def __init__(self, inner: Optional[AuditRecorder] = None):
        self.inner = inner or NullAuditRecorder()

    def _call(self, name: str, *args: Any) -> None:
        try:
            getattr(self.inner, name)(*args)
        except Exception as e:
            logger.warning(f"Audit recorder {name} failed: {e}")

    def record_request(self, entry: UpstreamRequestLog) -> None:
        self._call("record_request", entry)

    def record_response(self, status_code: int, headers: Mapping[str, str]) -> None:
        self._call("record_response", status_code, headers)

    def append_chunk(self, chunk: bytes) -> None:
        self._call("append_chunk", chunk)

    def record_error(self, error: BaseException) -> None:
        self._call("record_error", error)


def build_audit_recorder(enabled: bool) -> SafeAuditRecorder:
    return SafeAuditRecorder(LoggingAuditRecorder() if enabled else NullAuditRecorder())
