import enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class UserRole(str, enum.Enum):
    CLIENTE = "CLIENTE"
    TRABAJADOR = "TRABAJADOR"
    ADMIN = "ADMIN"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    role = Column(String(20), default=UserRole.CLIENTE.value, nullable=False)  # CLIENTE, TRABAJADOR, ADMIN
    created_at = Column(DateTime, server_default=func.now())

    services = relationship("Service", back_populates="owner")


class Service(Base):
    """A provider's published trade service (the catalog entry a budget targets)"""

    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # Provider
    trade_name = Column(String(120), nullable=False)  # Carpintero, Plomero, Electricista...
    description = Column(Text, nullable=True)
    hourly_rate = Column(Numeric(12, 2), nullable=True)
    # Weekly availability as stored by the provider profile:
    # {"lunes": "09:00-13:00,15:00-18:00"} or [{"dia": "LUNES", "horaInicio": ..., "horaFin": ...}]
    availability = Column(JSON, nullable=True)
    location = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="services")
