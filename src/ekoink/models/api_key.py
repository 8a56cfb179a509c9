"""API Key model."""

from sqlalchemy import Column, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from ..database import Base, new_id, utcnow


class APIKey(Base):
    """API key for external API callers. Only the SHA-256 hash is stored."""

    __tablename__ = "api_keys"

    id = Column(String, primary_key=True, default=new_id)
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"))

    key_prefix = Column(String, nullable=False)
    key_hash = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    scopes = Column(JSON, nullable=False, default=list)

    expires_at = Column(DateTime(timezone=True))
    revoked_at = Column(DateTime(timezone=True))
    revoked_by = Column(String)
    last_used_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    created_by = Column(String)

    account = relationship("Account")

    def __repr__(self):
        return f"<APIKey(id='{self.id}', name='{self.name}')>"

    def to_dict(self):
        """Public view of the key (never includes the hash)."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "user_id": self.user_id,
            "key_prefix": self.key_prefix,
            "name": self.name,
            "scopes": list(self.scopes or []),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
        }
