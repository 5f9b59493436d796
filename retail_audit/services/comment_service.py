"""
Audit discussion thread.

Comments are append-only.  Internal comments are a DOT-tier channel: they
can only be written, and are only listed, for callers holding
add_internal_comments.
"""

from __future__ import annotations

import logging

from retail_audit.core.exceptions import ValidationError
from retail_audit.models.audit import AuditComment
from retail_audit.services import repository
from retail_audit.services.permission import (
    PermissionDenied,
    SessionContext,
    can_add_internal_comments,
    can_view_audit,
)

logger = logging.getLogger(__name__)


def add_comment(
    ctx: SessionContext,
    audit_id: int,
    content: str,
    *,
    is_internal: bool = False,
) -> AuditComment:
    if not can_view_audit(ctx):
        raise PermissionDenied(ctx.user_id, "comment")
    text = (content or "").strip()
    if not text:
        raise ValidationError("content is required", details={"content": "required"})

    internal = bool(is_internal) and can_add_internal_comments(ctx)
    comment = repository.create_comment(
        audit_id=audit_id,
        user_id=ctx.user_id,
        content=text,
        is_internal=internal,
        user_role=ctx.primary_role,
    )
    logger.info(
        "Comment added (internal=%s)", internal,
        extra={"audit_id": audit_id, "user_id": ctx.user_id},
    )
    return comment


def list_comments(ctx: SessionContext, audit_id: int) -> list[AuditComment]:
    comments = repository.get_comments(audit_id)
    if can_add_internal_comments(ctx):
        return comments
    return [c for c in comments if not c.is_internal]
