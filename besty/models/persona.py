# besty/models/persona.py
import datetime
from typing import Any, Dict, Optional
from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from besty.core.database import Base


class Persona(Base):
    """SQLAlchemy model for the 'personas' table. One row per user."""
    __tablename__ = "personas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, unique=True, index=True)
    voice: Mapped[str] = mapped_column(String(20), nullable=False, default="female")
    mood: Mapped[str] = mapped_column(String(20), nullable=False, default="chill")
    custom_voice_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    custom_mood_settings: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Persona(id={self.id}, user_id={self.user_id}, voice='{self.voice}', mood='{self.mood}')>"
