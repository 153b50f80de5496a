"""Provider model definitions."""

from sqlalchemy import JSON, Column, Integer, String

from slotbook.database import Base


class Provider(Base):
    """Represents a barber whose calendar clients book against."""
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True)
    timezone = Column(String, nullable=False, default="UTC")
    working_hours = Column(JSON, default=dict)
    pre_travel_minutes = Column(Integer)  # null falls back to the process default
    post_travel_minutes = Column(Integer)
