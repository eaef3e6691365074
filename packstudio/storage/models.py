"""Database models for PackStudio."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def to_dict(row) -> Optional[dict]:
    """Column values of a model instance, keyed by column name, datetimes as ISO strings."""
    if row is None:
        return None
    result = {}
    for attr in inspect(row).mapper.column_attrs:
        value = getattr(row, attr.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        result[attr.columns[0].name] = value
    return result


# ============================================================================
# Users and credits
# ============================================================================


class User(Base):
    """Platform user as mirrored from the hosted auth service."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, index=True)
    full_name = Column(String)
    role = Column(String, default="creator")  # creator, supplier, admin
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    credit_sources = relationship("UserCredits", back_populates="user")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"


class UserCredits(Base):
    """One credit source: a subscription period or a one-time top-up."""

    __tablename__ = "user_credits"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    credits = Column(Integer, default=0, nullable=False)
    status = Column(String, default="active", index=True)  # active, expired
    plan_type = Column(String, default="one_time")  # one_time, subscription
    subscription_id = Column(String)
    membership = Column(String)  # free, pro
    payment_provider = Column(String)
    subscription_status_canceled = Column(Boolean, default=False)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="credit_sources")

    def __repr__(self):
        return f"<UserCredits(id={self.id}, user_id={self.user_id}, credits={self.credits}, status='{self.status}')>"


class ReservationRecord(Base):
    """Credits taken up-front for an operation, refundable until committed."""

    __tablename__ = "credit_reservations"

    id = Column(String, primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    reserved_from = Column(JSON)  # [{"id": source_id, "deducted": n}, ...]
    status = Column(String, default="reserved", index=True)  # reserved, committed, refunded
    reason = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    settled_at = Column(DateTime)

    def __repr__(self):
        return f"<ReservationRecord(id={self.id}, amount={self.amount}, status='{self.status}')>"


# ============================================================================
# Products, revisions and analysis cache
# ============================================================================


class ProductIdea(Base):
    """A product / tech pack owned by a creator."""

    __tablename__ = "product_ideas"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), index=True)
    title = Column(String, nullable=False)
    prompt = Column(Text)
    description = Column(Text)
    category = Column(String, index=True)
    tech_pack = Column(JSON)
    image_url = Column(String)
    status = Column(String, default="draft")
    is_public = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    revisions = relationship("MultiviewRevision", back_populates="product")
    comments = relationship("ProductComment", back_populates="product")
    likes = relationship("ProductLike", back_populates="product")

    def __repr__(self):
        return f"<ProductIdea(id={self.id}, title='{self.title}')>"


class MultiviewRevision(Base):
    """One versioned set of product view images."""

    __tablename__ = "product_multiview_revisions"

    id = Column(String(36), primary_key=True, default=new_id)
    product_idea_id = Column(
        String(36), ForeignKey("product_ideas.id"), index=True, nullable=False
    )
    user_id = Column(String(36), index=True)
    revision_number = Column(Integer, nullable=False)

    # {"front": {"imageUrl": ..., "thumbnailUrl": ...}, ...}
    views = Column(JSON, default=dict)

    edit_prompt = Column(Text)
    analysis_prompt = Column(Text)
    enhanced_prompt = Column(Text)
    edit_type = Column(String, default="ai_edit")
    ai_model = Column(String)
    ai_parameters = Column(JSON)
    generation_time_ms = Column(Integer)
    is_active = Column(Boolean, default=False, index=True)
    revision_metadata = Column("metadata", JSON)
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("ProductIdea", back_populates="revisions")

    __table_args__ = (
        UniqueConstraint("product_idea_id", "revision_number", name="uq_revision_number"),
    )

    def __repr__(self):
        return f"<MultiviewRevision(id={self.id}, product={self.product_idea_id}, n={self.revision_number})>"


class ImageAnalysisCache(Base):
    """Vision analysis of one image URL."""

    __tablename__ = "image_analysis_cache"

    id = Column(String(36), primary_key=True, default=new_id)
    image_url = Column(String, unique=True, nullable=False)
    image_hash = Column(String(32), index=True)
    analysis_data = Column(JSON, nullable=False)
    analysis_prompt = Column(Text)
    model_used = Column(String)
    product_idea_id = Column(String(36), index=True)
    revision_id = Column(String(36))
    revision_number = Column(Integer)
    tokens_used = Column(Integer)
    processing_time_ms = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, index=True)

    def __repr__(self):
        return f"<ImageAnalysisCache(id={self.id}, url='{self.image_url[:40]}')>"


# ============================================================================
# Suppliers, RFQs and quotes
# ============================================================================


class SupplierProfile(Base):
    """Manufacturer that can receive RFQs."""

    __tablename__ = "supplier_profile"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), index=True)
    company_name = Column(String)
    location = Column(String)
    company_logo = Column(String)
    manufacturing = Column(JSON)  # {"product_categories": [...], ...}
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<SupplierProfile(id={self.id}, company='{self.company_name}')>"


class Rfq(Base):
    """Request for quote issued by a creator for a tech pack."""

    __tablename__ = "rfq"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    product_idea = Column(Text)
    techpack_id = Column(String(36), ForeignKey("product_ideas.id"), index=True)
    creator_id = Column(String(36), index=True, nullable=False)
    timeline = Column(String)
    quantity = Column(String)
    target_price = Column(String, default="TBD")
    status = Column(String, default="open", index=True)  # draft, open, quotes_received, closed
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplier_links = relationship("SupplierRfq", back_populates="rfq")
    quotes = relationship("SupplierQuote", back_populates="rfq")

    def __repr__(self):
        return f"<Rfq(id={self.id}, title='{self.title}', status='{self.status}')>"


class SupplierRfq(Base):
    """Link between an RFQ and a supplier it was sent to."""

    __tablename__ = "supplier_rfqs"

    id = Column(Integer, primary_key=True)
    rfqs_id = Column(String(36), ForeignKey("rfq.id"), index=True, nullable=False)
    supplier_id = Column(
        String(36), ForeignKey("supplier_profile.id"), index=True, nullable=False
    )
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rfq = relationship("Rfq", back_populates="supplier_links")

    __table_args__ = (UniqueConstraint("rfqs_id", "supplier_id", name="uq_supplier_rfq"),)


class SupplierQuote(Base):
    """A supplier's answer to an RFQ."""

    __tablename__ = "supplier_rfqs_quotes"

    id = Column(String(36), primary_key=True, default=new_id)
    rfq_id = Column(String(36), ForeignKey("rfq.id"), index=True, nullable=False)
    supplier_id = Column(String(36), index=True, nullable=False)
    sample_price = Column(String)
    moq = Column(String)
    lead_time = Column(String)
    message = Column(Text)
    status = Column(String)  # responded, accepted, rejected, archived, ...
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rfq = relationship("Rfq", back_populates="quotes")

    __table_args__ = (UniqueConstraint("rfq_id", "supplier_id", name="uq_quote_per_supplier"),)

    def __repr__(self):
        return f"<SupplierQuote(id={self.id}, rfq={self.rfq_id}, supplier={self.supplier_id})>"


# ============================================================================
# Community: comments, likes, notifications
# ============================================================================


class ProductComment(Base):
    """Comment on a public product; ``user_id`` is empty for guests."""

    __tablename__ = "products_comments"

    id = Column(String(36), primary_key=True, default=new_id)
    product_id = Column(String(36), ForeignKey("product_ideas.id"), index=True, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), index=True)
    guest_name = Column(String)
    comment = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    product = relationship("ProductIdea", back_populates="comments")
    user = relationship("User")


class ProductLike(Base):
    __tablename__ = "product_likes"

    id = Column(Integer, primary_key=True)
    product_id = Column(String(36), ForeignKey("product_ideas.id"), index=True, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("ProductIdea", back_populates="likes")

    __table_args__ = (UniqueConstraint("product_id", "user_id", name="uq_like_per_user"),)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    sender_id = Column(String(36))
    receiver_id = Column(String(36), index=True, nullable=False)
    title = Column(String)
    message = Column(Text)
    type = Column(String)  # rfq_response, new_rfq, like, comment
    is_read = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<Notification(id={self.id}, type='{self.type}', read={self.is_read})>"


# ============================================================================
# AI operation log
# ============================================================================


class AILog(Base):
    """One AI provider call, for usage and cost reporting."""

    __tablename__ = "ai_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)
    function_name = Column(String, index=True)
    model = Column(String, index=True)
    provider = Column(String)  # openai, gemini, other
    operation_type = Column(String)  # text_generation, image_generation, vision_analysis
    input = Column(JSON)
    output = Column(JSON)
    total_tokens = Column(Integer, default=0)
    estimated_cost = Column(Float, default=0.0)
    duration_ms = Column(Integer, default=0)
    status = Column(String, default="success")  # success, error
    user_id = Column(String(36), index=True)
    context = Column(JSON)

    def __repr__(self):
        return f"<AILog(id={self.id}, fn='{self.function_name}', status='{self.status}')>"
