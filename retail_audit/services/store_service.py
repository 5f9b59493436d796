"""
Store Service - users, stores and the DOT / Aderente assignments.

Assignment rules:
  - A store has at most one DOT; assigning a new DOT overwrites the old one.
  - The Aderente binding is 1:1: binding an Aderente to a store first
    releases them from any other store.
  - A DOT's effective store set is derived from ``Store.dot_user_id``,
    never from ``User.assigned_stores``.

Duplicate store codes and user emails raise ConflictError (HTTP 409).
"""

from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from retail_audit.core.exceptions import ConflictError, NotFoundError, ValidationError
from retail_audit.models import db
from retail_audit.models.activity_log import write_activity
from retail_audit.models.user import (
    ROLE_ADERENTE,
    ROLE_DOT,
    VALID_ROLES,
    Store,
    User,
    normalize_roles,
)
from retail_audit.services.permission import (
    CAP_ASSIGN_STORES,
    CAP_MANAGE_USERS,
    SessionContext,
    check_capability,
)

logger = logging.getLogger(__name__)

STORE_UPDATABLE_FIELDS = frozenset({"codehex", "brand", "size", "city", "gpslat", "gpslong"})
USER_UPDATABLE_FIELDS = frozenset({"email", "fullname", "roles", "amont_id", "assigned_stores"})


def _normalize_email(email: str) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": email})


def _validated_roles(roles) -> list[str]:
    tags = normalize_roles(roles)
    unknown = [r for r in tags if r not in VALID_ROLES]
    if unknown:
        raise ValidationError(
            f"Unknown role(s): {', '.join(unknown)}",
            details={"roles": sorted(VALID_ROLES)},
        )
    return tags


def _flush_or_conflict(resource: str, field: str, value) -> None:
    """Flush, translating a unique-key race into ConflictError."""
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(resource, field, value)


# ═════════════════════════════════════════════════════════════════════════════
# Users
# ═════════════════════════════════════════════════════════════════════════════


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def list_users(role: str | None = None) -> list[User]:
    users = User.query.order_by(User.fullname.asc(), User.id.asc()).all()
    if role:
        tag = role.strip().upper()
        users = [u for u in users if u.has_role(tag)]
    return users


def create_user(
    ctx: SessionContext,
    *,
    email: str,
    fullname: str = "",
    roles=None,
    amont_id: int | None = None,
) -> User:
    check_capability(ctx, CAP_MANAGE_USERS)
    email = _normalize_email(email)
    if User.query.filter(db.func.lower(User.email) == email.lower()).first():
        raise ConflictError("User", "email", email)
    if amont_id is not None:
        get_user(amont_id)

    user = User(
        email=email,
        fullname=(fullname or "").strip(),
        roles=_validated_roles(roles),
        amont_id=amont_id,
        assigned_stores=[],
    )
    db.session.add(user)
    _flush_or_conflict("User", "email", email)
    logger.info("User created", extra={"user_id": ctx.user_id, "action": "user.create"})
    return user


def update_user(ctx: SessionContext, user_id: int, **changes) -> User:
    check_capability(ctx, CAP_MANAGE_USERS)
    unknown = set(changes) - USER_UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields not updatable on a user: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)},
        )
    user = get_user(user_id)

    if "email" in changes:
        email = _normalize_email(changes["email"])
        clash = User.query.filter(
            db.func.lower(User.email) == email.lower(), User.id != user.id,
        ).first()
        if clash:
            raise ConflictError("User", "email", email)
        user.email = email
    if "fullname" in changes:
        user.fullname = (changes["fullname"] or "").strip()
    if "roles" in changes:
        user.roles = _validated_roles(changes["roles"])
    if "amont_id" in changes:
        if changes["amont_id"] is not None:
            get_user(changes["amont_id"])
        user.amont_id = changes["amont_id"]
    if "assigned_stores" in changes:
        user.assigned_stores = [int(s) for s in changes["assigned_stores"] or []]

    _flush_or_conflict("User", "email", user.email)
    return user


def delete_user(ctx: SessionContext, user_id: int) -> None:
    check_capability(ctx, CAP_MANAGE_USERS)
    user = get_user(user_id)
    Store.query.filter_by(dot_user_id=user.id).update({"dot_user_id": None})
    Store.query.filter_by(aderente_id=user.id).update({"aderente_id": None})
    db.session.delete(user)
    db.session.flush()
    logger.info("User deleted", extra={"user_id": ctx.user_id, "action": "user.delete"})


def get_dots_for_amont(amont_id: int) -> list[User]:
    """DOT users supervised by the given AMONT."""
    get_user(amont_id)
    candidates = (
        User.query.filter_by(amont_id=amont_id)
        .order_by(User.fullname.asc(), User.id.asc())
        .all()
    )
    return [u for u in candidates if u.has_role(ROLE_DOT)]


# ═════════════════════════════════════════════════════════════════════════════
# Stores
# ═════════════════════════════════════════════════════════════════════════════


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id) if store_id is not None else None
    if store is None:
        raise NotFoundError("Store", store_id)
    return store


def list_stores(*, dot_user_id: int | None = None, city: str | None = None) -> list[Store]:
    query = Store.query
    if dot_user_id is not None:
        query = query.filter_by(dot_user_id=dot_user_id)
    if city:
        query = query.filter(Store.city.ilike(city))
    return query.order_by(Store.codehex.asc()).all()


def get_stores_for_dot(dot_user_id: int) -> list[Store]:
    get_user(dot_user_id)
    return list_stores(dot_user_id=dot_user_id)


def get_store_for_aderente(aderente_id: int) -> Store | None:
    return Store.query.filter_by(aderente_id=aderente_id).first()


def _normalize_code(codehex: str) -> str:
    code = (codehex or "").strip()
    if not code:
        raise ValidationError("codehex is required", details={"codehex": "required"})
    return code


def create_store(
    ctx: SessionContext,
    *,
    codehex: str,
    brand: str = "",
    size: str | None = None,
    city: str | None = None,
    gpslat: float = 0,
    gpslong: float = 0,
) -> Store:
    check_capability(ctx, CAP_ASSIGN_STORES)
    code = _normalize_code(codehex)
    if Store.query.filter_by(codehex=code).first():
        raise ConflictError("Store", "codehex", code)

    store = Store(
        codehex=code,
        brand=brand or "",
        size=size,
        city=city,
        gpslat=float(gpslat or 0),
        gpslong=float(gpslong or 0),
    )
    db.session.add(store)
    _flush_or_conflict("Store", "codehex", code)
    logger.info("Store %s created", code, extra={"user_id": ctx.user_id})
    return store


def update_store(ctx: SessionContext, store_id: int, **changes) -> Store:
    check_capability(ctx, CAP_ASSIGN_STORES)
    unknown = set(changes) - STORE_UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields not updatable on a store: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)},
        )
    store = get_store(store_id)
    if "codehex" in changes:
        code = _normalize_code(changes.pop("codehex"))
        clash = Store.query.filter(Store.codehex == code, Store.id != store.id).first()
        if clash:
            raise ConflictError("Store", "codehex", code)
        store.codehex = code
    for field in ("gpslat", "gpslong"):
        if field in changes:
            changes[field] = float(changes[field] or 0)
    for field, value in changes.items():
        setattr(store, field, value)
    _flush_or_conflict("Store", "codehex", store.codehex)
    return store


def delete_store(ctx: SessionContext, store_id: int) -> None:
    check_capability(ctx, CAP_MANAGE_USERS)
    db.session.delete(get_store(store_id))
    db.session.flush()


# ═════════════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════════════


def assign_dot_to_store(ctx: SessionContext, store_id: int, dot_user_id: int | None) -> Store:
    """Set (or clear, with None) the DOT responsible for a store."""
    check_capability(ctx, CAP_ASSIGN_STORES)
    store = get_store(store_id)
    if dot_user_id is not None:
        dot = get_user(dot_user_id)
        if not dot.has_role(ROLE_DOT):
            raise ValidationError(
                f"User {dot.id} does not hold the DOT role",
                details={"dot_user_id": dot.id},
            )
    previous = store.dot_user_id
    store.dot_user_id = dot_user_id
    db.session.flush()
    write_activity(
        entity_type="store",
        entity_id=store.id,
        action="store.assign_dot",
        actor_user_id=ctx.user_id,
        diff={"dot_user_id": {"old": previous, "new": dot_user_id}},
    )
    logger.info(
        "Store %s DOT %s -> %s", store.codehex, previous, dot_user_id,
        extra={"user_id": ctx.user_id, "action": "store.assign_dot"},
    )
    return store


def assign_aderente_to_store(
    ctx: SessionContext, store_id: int, aderente_id: int | None,
) -> Store:
    """Bind an Aderente to a store, releasing them from any other store first."""
    check_capability(ctx, CAP_ASSIGN_STORES)
    store = get_store(store_id)
    released = []
    if aderente_id is not None:
        aderente = get_user(aderente_id)
        if not aderente.has_role(ROLE_ADERENTE):
            raise ValidationError(
                f"User {aderente.id} does not hold the ADERENTE role",
                details={"aderente_id": aderente.id},
            )
        for other in Store.query.filter(
            Store.aderente_id == aderente_id, Store.id != store.id,
        ).all():
            other.aderente_id = None
            released.append(other.id)
        # Clear before binding so the unique constraint never sees two rows
        db.session.flush()

    previous = store.aderente_id
    store.aderente_id = aderente_id
    db.session.flush()
    write_activity(
        entity_type="store",
        entity_id=store.id,
        action="store.assign_aderente",
        actor_user_id=ctx.user_id,
        diff={
            "aderente_id": {"old": previous, "new": aderente_id},
            "released_store_ids": released,
        },
    )
    logger.info(
        "Store %s Aderente %s -> %s", store.codehex, previous, aderente_id,
        extra={"user_id": ctx.user_id, "action": "store.assign_aderente"},
    )
    return store
