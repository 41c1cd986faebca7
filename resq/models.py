from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, Text

from .database import Base


class EmergencyRequest(Base):
    __tablename__ = "emergency_requests"
    id = Column(String, primary_key=True, index=True)
    location = Column(String, nullable=False)
    longitude = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)
    phone = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, default="pending", index=True, nullable=False)
    service_type = Column(String, nullable=True)
    mechanic_id = Column(String, index=True, nullable=True)
    user_id = Column(String, index=True, nullable=True)
    sms_opt_in = Column(Boolean, default=False, nullable=False)
    estimated_arrival_time = Column(DateTime(timezone=True), nullable=True)
    actual_arrival_time = Column(DateTime(timezone=True), nullable=True)
    completion_time = Column(DateTime(timezone=True), nullable=True)
    rating = Column(Integer, nullable=True)
    review = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Mechanic(Base):
    __tablename__ = "mechanics"
    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    rating = Column(Float, default=0.0, nullable=False)
    specialties = Column(JSON, default=list, nullable=False)
    status = Column(String, default="available", index=True, nullable=False)  # available / busy
    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)
    service_radius_km = Column(Float, default=15.0, nullable=False)
