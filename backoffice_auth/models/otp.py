from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, text

from backoffice_auth.database import Base


class OtpEntry(Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True)
    contact = Column(String(255), nullable=False)
    contact_type = Column(String(16), nullable=False)
    code = Column(String(10), nullable=False)
    purpose = Column(String(32), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_otp_contact_purpose", "contact", "purpose"),
        Index("ix_otp_expires_at", "expires_at"),
        # At most one outstanding code per (contact, purpose).
        Index(
            "uq_otp_active_contact_purpose",
            "contact",
            "purpose",
            unique=True,
            sqlite_where=text("used = 0"),
            postgresql_where=text("used = false"),
        ),
    )
