"""
Audit Models for Family Spend Tracker

Every significant action in the core is logged for audit purposes.
This provides:
1. Traceability of receipt ingestion and mutation
2. Debugging information when things go wrong
3. Cost observability for the external vision model (UsageRecord)

DESIGN DECISION: Audit records are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of ingestion, mutation and family management has its own type.
    """
    # Ingestion
    RECEIPT_IMAGE_RECEIVED = "receipt_image_received"
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTION_FAILED = "extraction_failed"
    DRAFT_PREPARED = "draft_prepared"

    # Transactions
    RECEIPT_CREATED = "receipt_created"
    RECEIPT_UPDATED = "receipt_updated"
    ITEMS_UPDATED = "items_updated"
    RECEIPT_DELETED = "receipt_deleted"
    SAVE_FAILED = "save_failed"

    # Families
    FAMILY_CREATED = "family_created"
    FAMILY_RENAMED = "family_renamed"
    FAMILY_DELETED = "family_deleted"
    INVITATION_SENT = "invitation_sent"
    INVITATION_CANCELLED = "invitation_cancelled"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DECLINED = "invitation_declined"
    MEMBER_REMOVED = "member_removed"
    FAMILY_LEFT = "family_left"

    # Scope and reads
    ACCOUNT_SELECTED = "account_selected"
    SUMMARY_LOAD_FAILED = "summary_load_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'receipt', 'family', 'invitation')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one ingestion)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class UsageRecord(BaseModel):
    """
    One call to the external vision model (api_usage row).

    Append-only; written once after a successful extraction call.
    """

    id: Optional[str] = None
    user_id: str
    family_id: Optional[str] = None
    function_name: str = Field(default="process-receipt")
    model: str
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    cost_usd: Decimal = Field(default=Decimal("0"), ge=0)
    receipt_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    def to_row(self) -> dict[str, Any]:
        """Insert payload for the api_usage table (id is server-generated)."""
        return self.model_dump(mode="json", exclude={"id"})


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.extraction_completed(model, tokens, item_count, correlation_id)
        event = AuditEventBuilder.receipt_created(receipt_id, vendor, amount, correlation_id)
    """

    @staticmethod
    def receipt_image_received(
        size_bytes: int,
        mime_type: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_IMAGE_RECEIVED,
            entity_type="image",
            correlation_id=correlation_id,
            description=f"Receipt image received ({mime_type}, {size_bytes} bytes)",
            details={
                "size_bytes": size_bytes,
                "mime_type": mime_type,
            },
            is_user_action=True,
        )

    @staticmethod
    def extraction_completed(
        model: str,
        total_tokens: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_COMPLETED,
            entity_type="extraction",
            correlation_id=correlation_id,
            description=f"Extraction completed by {model}",
            details={
                "model": model,
                "total_tokens": total_tokens,
            },
        )

    @staticmethod
    def extraction_failed(
        error_type: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="extraction",
            correlation_id=correlation_id,
            description=f"Extraction rejected: {error_type}",
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def draft_prepared(
        extraction_id: UUID,
        item_count: int,
        unresolved_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DRAFT_PREPARED,
            entity_type="extraction",
            entity_id=str(extraction_id),
            correlation_id=correlation_id,
            description=(
                f"Draft prepared with {item_count} items "
                f"({unresolved_count} without category)"
            ),
            details={
                "item_count": item_count,
                "unresolved_count": unresolved_count,
            },
        )

    @staticmethod
    def receipt_created(
        receipt_id: str,
        vendor: str,
        amount: str,
        item_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_CREATED,
            entity_type="receipt",
            entity_id=receipt_id,
            correlation_id=correlation_id,
            description=f"Receipt saved: {vendor} - {amount}",
            details={
                "vendor": vendor,
                "amount": amount,
                "item_count": item_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def receipt_changed(
        event_type: AuditEventType,
        receipt_id: str,
        description: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="receipt",
            entity_id=receipt_id,
            description=description,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def save_failed(
        operation: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Save failed: {operation}",
            error_message=error_message,
            details=details or {},
        )

    @staticmethod
    def family_event(
        event_type: AuditEventType,
        family_id: str,
        description: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="family",
            entity_id=family_id,
            description=description,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def account_selected(account_id: str, account_type: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_SELECTED,
            severity=AuditSeverity.DEBUG,
            entity_type="account",
            entity_id=account_id,
            description=f"Active account set to {account_id}",
            details={"account_type": account_type},
            is_user_action=True,
        )

    @staticmethod
    def summary_load_failed(
        account_id: str,
        window: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUMMARY_LOAD_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            description=f"Spending summary unavailable for {window}",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
