"""
Audit Logger

DESIGN DECISION: Every significant action in the core is logged.
This provides:
1. Complete traceability of ingestion, mutation and family changes
2. Debugging capability
3. Cost observability for the vision model (api_usage)

The audit logger:
- Is async to fit the cooperative call model
- Gracefully handles failures (never breaks the main flow)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from familyspend.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    UsageRecord,
)
from familyspend.services.storage import UsageStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Audit events go to the structured local log. Usage records (one per
    vision model call) are appended to the api_usage table when usage
    storage is configured.
    """

    def __init__(
        self,
        usage_storage: Optional[UsageStorageInterface] = None,
    ):
        """
        Args:
            usage_storage: Where UsageRecords are appended.
                    If None, usage is only logged locally.
        """
        self._usage_storage = usage_storage
        self._logger = structlog.get_logger("familyspend.audit")

    async def log(self, event: AuditEvent) -> bool:
        """Log an audit event locally. Never raises."""
        try:
            log_dict = event.to_log_dict()
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
            return True
        except Exception as e:
            # Logging must not break the flow that produced the event
            self._logger.error("audit_log_failed", error=str(e))
            return False

    async def record_usage(self, record: UsageRecord) -> bool:
        """
        Append one UsageRecord.

        Returns False if the append failed; the failure is logged, never raised.
        """
        self._logger.info(
            "vision_model_usage",
            user_id=record.user_id,
            model=record.model,
            total_tokens=record.total_tokens,
            cost_usd=str(record.cost_usd),
        )
        if self._usage_storage is None:
            return True
        try:
            return await self._usage_storage.append_usage(record)
        except Exception as e:
            self._logger.error(
                "usage_storage_failed",
                error=str(e),
                user_id=record.user_id,
                model=record.model,
            )
            return False

    async def log_receipt_changed(
        self,
        event_type: AuditEventType,
        receipt_id: str,
        description: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log a receipt update, item change or deletion."""
        await self.log(AuditEventBuilder.receipt_changed(
            event_type=event_type,
            receipt_id=receipt_id,
            description=description,
            details=details,
        ))

    async def log_family_event(
        self,
        event_type: AuditEventType,
        family_id: str,
        description: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log a family, membership or invitation change."""
        await self.log(AuditEventBuilder.family_event(
            event_type=event_type,
            family_id=family_id,
            description=description,
            details=details,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., receipt upload).
    Pass it through all subsequent operations.
    """
    return uuid4()
