"""
Database models — the "truth layer."

Design principles:
  - Links are created once; only the ledger counters and is_active change
  - clicks is append-only (no updates/deletes)
  - scheduled_stories rows are mutated only by the dispatch cycle,
    except that a pending row may be deleted by its owner
"""

from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


# Story lifecycle
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_POSTED = "posted"
STATUS_FAILED = "failed"

STORY_TYPE_IMAGE = "image"
STORY_TYPE_VIDEO = "video"


# ---------------------------------------------------------------------------
# Link ledger
# ---------------------------------------------------------------------------

class Link(Base):
    __tablename__ = "links"

    id = Column(Uuid, primary_key=True, default=uuid4)

    # Case-sensitive and never reused. The unique index closes the
    # check-then-insert race in the allocator.
    short_code = Column(String(32), nullable=False)
    original_url = Column(Text, nullable=False)
    title = Column(String(255), nullable=False, default="")

    is_affiliate = Column(Boolean, nullable=False, default=False)
    redirect_delay = Column(Integer, nullable=False, default=3)

    # Ledger: only ever moved by atomic_increment_link_stats
    total_clicks = Column(Integer, nullable=False, default=0)
    estimated_revenue = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    is_active = Column(Boolean, nullable=False, default=True)
    created_by_ip = Column(String(45), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    clicks = relationship("Click", back_populates="link")

    __table_args__ = (
        Index("ix_links_short_code", "short_code", unique=True),
    )


class Click(Base):
    """One row per resolved redirect. Never mutated."""
    __tablename__ = "clicks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    link_id = Column(Uuid, ForeignKey("links.id"), nullable=False)
    clicked_at = Column(DateTime(timezone=True), server_default=func.now())

    referrer = Column(Text, nullable=False, default="")
    user_agent = Column(Text, nullable=False, default="")
    ip_address = Column(String(45), nullable=True)
    device_type = Column(String(10), nullable=False)         # mobile, tablet, desktop

    # Per-click rate in effect for the link at visit time
    revenue_generated = Column(Numeric(12, 2), nullable=False)

    link = relationship("Link", back_populates="clicks")

    __table_args__ = (
        Index("ix_clicks_link_clicked", "link_id", "clicked_at"),
    )


# ---------------------------------------------------------------------------
# Story scheduling
# ---------------------------------------------------------------------------

class FacebookAccount(Base):
    __tablename__ = "facebook_accounts"

    id = Column(Uuid, primary_key=True, default=uuid4)
    owner_id = Column(String(100), nullable=False, index=True)
    facebook_user_id = Column(String(100), nullable=False, default="me")
    access_token = Column(Text, nullable=False)
    page_id = Column(String(100), nullable=True)             # publish target when set
    page_name = Column(String(255), nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    stories = relationship("ScheduledStory", back_populates="account")


class ScheduledStory(Base):
    __tablename__ = "scheduled_stories"

    id = Column(Uuid, primary_key=True, default=uuid4)
    account_id = Column(Uuid, ForeignKey("facebook_accounts.id"), nullable=False, index=True)

    story_type = Column(String(10), nullable=False, default=STORY_TYPE_IMAGE)
    media_url = Column(Text, nullable=False)
    caption = Column(Text, nullable=False, default="")
    scheduled_time = Column(DateTime(timezone=True), nullable=False)

    # pending → processing → posted | failed
    status = Column(String(20), nullable=False, default=STATUS_PENDING)
    posted_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    external_post_id = Column(String(255), nullable=True)    # set iff posted

    # Set on a transient failure; NULL means "wait for a manual requeue"
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    account = relationship("FacebookAccount", back_populates="stories")

    __table_args__ = (
        Index("ix_scheduled_stories_due", "status", "scheduled_time"),
        CheckConstraint("retry_count >= 0", name="ck_scheduled_stories_retry_count"),
        CheckConstraint(
            "(status = 'posted') = (external_post_id IS NOT NULL)",
            name="ck_scheduled_stories_posted_has_id",
        ),
    )
