"""
Setting Model - key/value JSON configuration rows
"""
from sqlalchemy import Column, String, DateTime, JSON

from app.db.database import Base, utcnow


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(50), primary_key=True)
    value = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
