"""
ConsentRecord model for the consent audit trail (GDPR Article 7).

Records each explicit consent decision by a visitor, providing a
timestamped history of what was granted under which policy version.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from app.database import Base


class ConsentRecord(Base):
    """
    One consent decision made by a visitor.

    Each row is a fact: repeated decisions by the same visitor are all kept.
    """

    __tablename__ = "consent_records"

    id = Column(Integer, primary_key=True, index=True)
    visitor_id = Column(String(64), nullable=False, index=True)
    policy_version = Column(String(20), nullable=False)
    marketing_granted = Column(Boolean, nullable=False, default=False)
    # Valid values: "accept_all", "reject_all", "update_marketing", "withdraw"
    action = Column(String(50), nullable=False)
    consented_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    # IPv6 addresses can be up to 39 chars; 45 allows for mapped IPv4 addresses
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)

    __table_args__ = (Index("idx_consent_visitor_version", "visitor_id", "policy_version"),)
