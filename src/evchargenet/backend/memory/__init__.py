"""In-memory backend."""

from .api import Store
from .auth import IdentityProvider

__all__ = ["IdentityProvider", "Store"]
