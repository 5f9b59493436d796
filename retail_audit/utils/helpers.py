"""Shared blueprint helpers.

parse_datetime:      ISO / DD.MM.YYYY input → aware datetime (None on bad input)
require_datetime:    same, raising ValidationError on bad input
db_commit_or_error:  commit with uniform rollback + error response
"""
import logging
from datetime import date, datetime, time, timezone

from retail_audit.core.exceptions import ValidationError
from retail_audit.models import db
from retail_audit.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def parse_datetime(value):
    """Parse a datetime or date string to a timezone-aware datetime.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DDTHH:MM:SS[+offset] (ISO, naive values taken as UTC)
    - YYYY-MM-DD (midnight UTC)
    - DD.MM.YYYY (European format, midnight UTC)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.strptime(text, "%d.%m.%Y")
            except ValueError:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def require_datetime(value, field: str):
    """Like parse_datetime, but a present-but-unparseable value is a ValidationError."""
    if value in (None, ""):
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid {field}. Use ISO 8601 or DD.MM.YYYY.",
            details={field: value},
        )
    return parsed


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure - ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError → 409 (duplicate / constraint violation)
    OperationalError → 500 (connection / lock issues)
    Other → 500 (unexpected)
    """
    from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return api_error(E.DATABASE, "Database error")
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return api_error(E.DATABASE, "Database error")
