"""Clients for the hosted auth and object storage services"""

from .auth import AuthClient, AuthUser
from .object_storage import ObjectStorage

__all__ = ["AuthClient", "AuthUser", "ObjectStorage"]
