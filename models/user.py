from sqlalchemy import Column, Integer, String
from models.base import Base, TimestampMixin

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"

class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    # Stable id issued by the identity provider
    external_id = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    photo = Column(String(1024), nullable=True)
    role = Column(String(20), default=ROLE_USER, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN
