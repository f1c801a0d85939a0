from cityboundary.db.base import Base  # noqa
from cityboundary.models.boundary import Boundary  # noqa

__all__ = ["Base", "Boundary"]
