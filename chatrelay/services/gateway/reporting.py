"""Usage reporting collaborator.

Executors never meter usage themselves; they notify a ``UsageReporter`` once per
call through a ``UsageTracker``.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from chatrelay.services.gateway.models import Credential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageRecord:
    """Outcome of one executor call."""
    provider: str
    model: str
    success: bool
    auth_id: str = ""
    auth_label: str = ""
    account_type: str = ""
    account_value: str = ""
    error: str = ""


class UsageReporter(Protocol):
    def publish(self, record: UsageRecord) -> None:
        ...


class LoggingUsageReporter:
    """Default reporter that writes one log line per call."""

    def publish(self, record: UsageRecord) -> None:
        if record.success:
            logger.info(f"usage: provider={record.provider} model={record.model} auth={record.auth_label or record.auth_id or '-'} success")
        else:
            logger.warning(
                f"usage: provider={record.provider} model={record.model} "
                f"auth={record.auth_label or record.auth_id or '-'} failure: {record.error}"
            )


class UsageTracker:
    """Per-call guard that publishes to the reporter exactly once."""

    def __init__(
        self,
        reporter: UsageReporter,
        provider: str,
        model: str,
        credential: Optional[Credential] = None,
    ):
        self.reporter = reporter
        self.provider = provider
        self.model = model
        self.credential = credential
        self.published = False

    def success(self) -> None:
        self._publish(True)

    def failure(self, error: BaseException) -> None:
        self._publish(False, f"{type(error).__name__}: {error}")

    def _publish(self, success: bool, error: str = "") -> None:
        if self.published:
            return
        self.published = True
        account_type, account_value = ("", "")
        if self.credential is not None:
            account_type, account_value = self.credential.account_info()
        record = UsageRecord(
            provider=self.provider,
            model=self.model,
            success=success,
            auth_id=self.credential.id if self.credential else "",
            auth_label=self.credential.label if self.credential else "",
            account_type=account_type,
            account_value=account_value,
            error=error,
        )
        try:
            self.reporter.publish(record)
        except Exception as e:
            logger.error(f"Usage reporter failed for {self.provider}/{self.model}: {e}", exc_info=True)
