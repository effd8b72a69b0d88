"""SQLAlchemy ORM models: base tables and the metadata catalog.

Import all models here so the model registry and test fixtures see them.
"""

from mviews.models.entity_type import EntityType
from mviews.models.session import Session
from mviews.models.user_extension import UserExtension

__all__ = [
    "EntityType",
    "Session",
    "UserExtension",
]
