"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from hookrelay.db.models.delivery import DeliveryRow

__all__ = ["DeliveryRow"]
