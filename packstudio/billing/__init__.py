"""Credit bookkeeping"""

from .credits import CreditManager

__all__ = ["CreditManager"]
