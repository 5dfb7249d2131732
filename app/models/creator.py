"""Creator profile owned by the user-management service. Read-only here."""

from sqlalchemy import Column, DateTime, Integer, String, func

from app.models.base import Base
from app.utils.clock import utcnow


class Creator(Base):
    __tablename__ = "creator_profile"
    # Created and migrated by user management
    __table_args__ = {"info": {"external": True}}

    id = Column(String, primary_key=True)
    username = Column(String, nullable=False)
    email = Column(String, nullable=True)
    role = Column(String, nullable=False, default="creator")

    # Maintained by the catalog service: number of published workflows
    workflow_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    @property
    def is_creator(self) -> bool:
        return self.role == "creator"
