"""
User model.

Identity itself is owned by the external auth provider; this table only keeps
the profile fields the marketplace needs (names and contact details used on
review placeholders and connection emails).
"""

from sqlalchemy import Column, String, Boolean

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin


class User(Base, TimestampMixin):
    """Customer profile keyed by the auth provider's user id."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    display_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    mobile_number = Column(String(32), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"
