"""
Service provider profile.

Only the approved-provider fields the connection flow reads are modelled:
display name, category and the private contact details that an active
connection unlocks.
"""

import re
from typing import Optional

from sqlalchemy import Column, String, Boolean

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin

DEFAULT_COUNTRY_CODE = "91"


class Provider(Base, TimestampMixin):
    """An onboarded service provider."""

    __tablename__ = "providers"

    id = Column(String(255), primary_key=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    mobile_number = Column(String(32), nullable=True)
    work_category_name = Column(String(255), nullable=True)
    city = Column(String(255), nullable=True)
    area = Column(String(255), nullable=True)
    is_approved = Column(Boolean, nullable=False, default=False)

    @property
    def whatsapp_number(self) -> Optional[str]:
        """Mobile number normalized to an international digits-only form."""
        if not self.mobile_number:
            return None
        digits = re.sub(r"\D", "", self.mobile_number)
        if len(digits) == 10:
            return DEFAULT_COUNTRY_CODE + digits
        if len(digits) == 11 and digits.startswith("0"):
            return DEFAULT_COUNTRY_CODE + digits[1:]
        return digits or None

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, full_name={self.full_name})>"
