"""User ORM model. Credentials are owned by the auth collaborator and stored opaque."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime

from matchmaker.database import Base


class User(Base):
    __tablename__ = "users"

    user_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    display_name = Column(String(100), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
