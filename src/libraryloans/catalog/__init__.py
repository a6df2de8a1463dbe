"""Book catalog module.

Provides functionality for:
- Registering books under a unique ISBN
- Looking books up by id or ISBN
- Updating and deleting books
- Filtered, paginated catalog searches
"""

from .manager import BookCatalog

__all__ = ["BookCatalog"]
