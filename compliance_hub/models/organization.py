"""
Organization Models — organizations and their users.

Only the identity the compliance engine consumes lives here: the owning
organization of templates and deliverables, and the acting user whose role
the Approval Gate checks.  Authentication itself is handled upstream.
"""

from datetime import datetime, timezone

from compliance_hub.models import db

# ── Roles ────────────────────────────────────────────────────────────────────

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"
VALID_ROLES = frozenset({ROLE_ADMIN, ROLE_MEMBER})


# ═══════════════════════════════════════════════════════════════
# 1. ORGANIZATIONS
# ═══════════════════════════════════════════════════════════════
class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    users = db.relationship("User", back_populates="organization", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Organization #{self.id} {self.slug}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    email = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(20), nullable=False, default=ROLE_MEMBER, comment="admin | member")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Same email can exist in different organizations
    __table_args__ = (
        db.UniqueConstraint("organization_id", "email", name="uq_user_org_email"),
    )

    organization = db.relationship("Organization", back_populates="users")

    @property
    def is_admin(self) -> bool:
        return self.is_active and self.role == ROLE_ADMIN

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<User #{self.id} {self.email} ({self.role})>"
