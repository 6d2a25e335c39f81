"""
Audit logging utilities.

Configuration changes and bookkeeping anomalies are written to audit_logs.
"""

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.audit import AuditAction, AuditLog

SYSTEM_ACTOR = "system"


async def log_action(
    db: AsyncSession,
    actor: str,
    action: AuditAction,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    action_metadata: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """
    Log an auditable action.

    Args:
        db: Database session
        actor: Administrator name, or "system" for automatic actions
        action: Type of action being performed
        target_type: Type of entity affected (e.g., "rule_set", "driver")
        target_id: ID of the affected entity
        action_metadata: Additional context about the action
        ip_address: Client IP address

    Returns:
        Created AuditLog entry
    """
    log_entry = AuditLog(
        actor=actor,
        action=action,
        target_type=target_type,
        target_id=target_id,
        action_metadata=action_metadata,
        ip_address=ip_address,
    )
    db.add(log_entry)
    # Note: commit should happen in the calling context
    return log_entry


def get_client_ip(request) -> Optional[str]:
    """
    Extract client IP from request.

    Handles X-Forwarded-For header for reverse proxy setups.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First IP in the list is the client
        return forwarded_for.split(",")[0].strip()

    if hasattr(request, "client") and request.client:
        return request.client.host

    return None


def get_actor(request) -> str:
    """Acting administrator, as forwarded by the gateway in X-Actor."""
    actor = request.headers.get("X-Actor", "").strip()
    return actor[:100] or SYSTEM_ACTOR
