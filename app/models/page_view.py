"""Page view tracking model for first-party analytics."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from app.database import Base


class PageView(Base):
    __tablename__ = "page_views"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    # sha256("<user agent>-<day>"): counts unique visitors without storing identifiers
    visitor_hash = Column(String(64), nullable=False)
    user_id = Column(String(128), nullable=True)
    path = Column(String(2048), nullable=False)
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_term = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)
    referrer = Column(Text, nullable=True)
    locale = Column(String(10), nullable=False, default="en")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("idx_page_views_created", "created_at"),
        Index("idx_page_views_visitor_created", "visitor_hash", "created_at"),
    )
