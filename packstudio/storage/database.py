"""Database operations and management"""

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, func
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    AILog,
    Base,
    ImageAnalysisCache,
    MultiviewRevision,
    ProductIdea,
    User,
)

logger = logging.getLogger(__name__)


class Database:
    """Database management class"""

    def __init__(self, db_url: str = "sqlite:///data/db/packstudio.db", echo: bool = False):
        self.db_url = db_url

        engine_kwargs = {"echo": echo}
        if db_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in db_url:
                # One shared connection so every session sees the same tables
                engine_kwargs["poolclass"] = StaticPool
            else:
                Path(db_url.split("///", 1)[-1]).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(db_url, **engine_kwargs)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(f"Database initialized: {db_url}")

    @contextmanager
    def session(self):
        """Context manager for database sessions"""
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Users and products
    # ------------------------------------------------------------------

    def ensure_user(
        self, user_id: str, email: Optional[str] = None, role: Optional[str] = None
    ) -> User:
        """Insert the user row if the auth service knows a user we have not seen."""
        with self.session() as session:
            user = session.get(User, user_id)
            if user is None:
                user = User(id=user_id, email=email, role=role or "creator")
                session.add(user)
                session.flush()
                logger.debug(f"Registered user {user_id}")
            elif email and user.email != email:
                user.email = email
            session.expunge(user)
            return user

    def create_product(self, user_id: str, title: str, **fields) -> ProductIdea:
        with self.session() as session:
            product = ProductIdea(user_id=user_id, title=title, **fields)
            session.add(product)
            session.flush()
            session.expunge(product)
            return product

    def get_product(self, product_id: str) -> Optional[ProductIdea]:
        """Get a single product by ID"""
        with self.session() as session:
            product = session.get(ProductIdea, product_id)
            if product:
                session.expunge(product)
            return product

    # ------------------------------------------------------------------
    # Multi-view revisions
    # ------------------------------------------------------------------

    def next_revision_number(self, product_id: str) -> int:
        """Highest existing revision number for the product, plus one."""
        with self.session() as session:
            current = (
                session.query(func.max(MultiviewRevision.revision_number))
                .filter(MultiviewRevision.product_idea_id == product_id)
                .scalar()
            )
            return (current or 0) + 1

    def create_revision(self, product_id: str, **fields) -> MultiviewRevision:
        """Insert a new active revision and deactivate all others for the product.

        Both changes happen in one transaction. ``revision_number`` is
        assigned here when the caller does not pass one.
        """
        with self.session() as session:
            session.query(MultiviewRevision).filter(
                MultiviewRevision.product_idea_id == product_id,
                MultiviewRevision.is_active == True,  # noqa: E712
            ).update({"is_active": False}, synchronize_session=False)

            if fields.get("revision_number") is None:
                current = (
                    session.query(func.max(MultiviewRevision.revision_number))
                    .filter(MultiviewRevision.product_idea_id == product_id)
                    .scalar()
                )
                fields["revision_number"] = (current or 0) + 1

            revision = MultiviewRevision(product_idea_id=product_id, is_active=True, **fields)
            session.add(revision)
            session.flush()
            session.expunge(revision)

            logger.info(
                f"Created revision {revision.revision_number} for product {product_id}"
            )
            return revision

    def get_revision(self, revision_id: str) -> Optional[MultiviewRevision]:
        with self.session() as session:
            revision = session.get(MultiviewRevision, revision_id)
            if revision:
                session.expunge(revision)
            return revision

    def get_revisions(self, product_id: str) -> list[MultiviewRevision]:
        """Get all revisions for a product, oldest first"""
        with self.session() as session:
            revisions = (
                session.query(MultiviewRevision)
                .filter(MultiviewRevision.product_idea_id == product_id)
                .order_by(MultiviewRevision.revision_number.asc())
                .all()
            )
            session.expunge_all()
            return revisions

    def get_active_revision(self, product_id: str) -> Optional[MultiviewRevision]:
        with self.session() as session:
            revision = (
                session.query(MultiviewRevision)
                .filter(
                    MultiviewRevision.product_idea_id == product_id,
                    MultiviewRevision.is_active == True,  # noqa: E712
                )
                .first()
            )
            if revision:
                session.expunge(revision)
            return revision

    def activate_revision(self, revision_id: str, product_id: str) -> bool:
        """Make one revision the active one. Returns False if it does not exist."""
        with self.session() as session:
            target = (
                session.query(MultiviewRevision)
                .filter(
                    MultiviewRevision.id == revision_id,
                    MultiviewRevision.product_idea_id == product_id,
                )
                .first()
            )
            if target is None:
                return False

            session.query(MultiviewRevision).filter(
                MultiviewRevision.product_idea_id == product_id
            ).update({"is_active": False}, synchronize_session=False)
            target.is_active = True
            return True

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup_expired_analyses(self, now: Optional[datetime] = None) -> int:
        """Remove analysis cache rows past their expiry"""
        now = now or datetime.utcnow()
        with self.session() as session:
            deleted = (
                session.query(ImageAnalysisCache)
                .filter(ImageAnalysisCache.expires_at < now)
                .delete(synchronize_session=False)
            )
            logger.info(f"Deleted {deleted} expired image analyses")
            return deleted

    def prune_ai_logs(self, cutoff: datetime) -> int:
        """Remove AI operation logs older than cutoff date"""
        with self.session() as session:
            deleted = (
                session.query(AILog)
                .filter(AILog.timestamp < cutoff)
                .delete(synchronize_session=False)
            )
            logger.info(f"Deleted {deleted} old AI logs")
            return deleted
