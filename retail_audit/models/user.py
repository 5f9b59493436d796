"""
Retail Audit Platform
People and places - User and Store models.

Models:
    - User:  identity + role tags (ADMIN, AMONT, DOT, ADERENTE, legacy tags)
    - Store: business unit audited by a DOT and answered by one Aderente
"""

from datetime import datetime, timezone

from retail_audit.models import db

# ── Role tags ────────────────────────────────────────────────────────────────

ROLE_ADMIN = "ADMIN"
ROLE_AMONT = "AMONT"
ROLE_DOT = "DOT"
ROLE_ADERENTE = "ADERENTE"

ACTIVE_ROLES = frozenset({ROLE_ADMIN, ROLE_AMONT, ROLE_DOT, ROLE_ADERENTE})

# Still found on imported user rows; they grant no capability.
LEGACY_ROLES = frozenset({"USER", "AUDITOR", "SUPERVISOR", "LEADER"})

VALID_ROLES = ACTIVE_ROLES | LEGACY_ROLES


def normalize_roles(roles) -> list[str]:
    """Upper-case, strip and de-duplicate role tags, preserving order."""
    if not roles:
        return []
    if isinstance(roles, str):
        roles = roles.split(",")
    seen: list[str] = []
    for role in roles:
        tag = str(role or "").strip().upper()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class User(db.Model):
    """
    Platform user.

    ``assigned_stores`` is informational only: the effective store set of a
    DOT is derived from ``Store.dot_user_id``.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    fullname = db.Column(db.String(255), nullable=False, default="")
    roles = db.Column(db.JSON, nullable=False, default=list)
    amont_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Supervising AMONT (DOT users only)",
    )
    assigned_stores = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def has_role(self, role: str) -> bool:
        return role in normalize_roles(self.roles)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "fullname": self.fullname,
            "roles": normalize_roles(self.roles),
            "amont_id": self.amont_id,
            "assigned_stores": list(self.assigned_stores or []),
        }

    def __repr__(self) -> str:
        return f"<User #{self.id} {self.email}>"


class Store(db.Model):
    """
    Audited store.

    Business rules:
    - ``codehex`` is unique across the network.
    - At most one DOT and at most one Aderente per store; the Aderente
      binding is 1:1, so ``aderente_id`` is unique as well.
    """

    __tablename__ = "stores"

    id = db.Column(db.Integer, primary_key=True)
    codehex = db.Column(db.String(50), nullable=False, unique=True)
    brand = db.Column(db.String(100), nullable=False, default="")
    size = db.Column(db.String(50), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    gpslat = db.Column(db.Float, nullable=False, default=0)
    gpslong = db.Column(db.Float, nullable=False, default=0)
    dot_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    aderente_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "codehex": self.codehex,
            "brand": self.brand,
            "size": self.size,
            "city": self.city,
            "gpslat": self.gpslat,
            "gpslong": self.gpslong,
            "dot_user_id": self.dot_user_id,
            "aderente_id": self.aderente_id,
        }

    def __repr__(self) -> str:
        return f"<Store #{self.id} {self.codehex}>"
