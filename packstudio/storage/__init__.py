"""Data storage and persistence layer"""

from .database import Database
from .models import (
    AILog,
    ImageAnalysisCache,
    MultiviewRevision,
    Notification,
    ProductComment,
    ProductIdea,
    ProductLike,
    ReservationRecord,
    Rfq,
    SupplierProfile,
    SupplierQuote,
    SupplierRfq,
    User,
    UserCredits,
)

__all__ = [
    "AILog",
    "Database",
    "ImageAnalysisCache",
    "MultiviewRevision",
    "Notification",
    "ProductComment",
    "ProductIdea",
    "ProductLike",
    "ReservationRecord",
    "Rfq",
    "SupplierProfile",
    "SupplierQuote",
    "SupplierRfq",
    "User",
    "UserCredits",
]
