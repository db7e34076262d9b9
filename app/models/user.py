from sqlalchemy import Column, String, DateTime, Boolean
from app.models.base import Base, utcnow

class User(Base):
    __tablename__ = "users"

    username = Column(String(50), unique=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"
