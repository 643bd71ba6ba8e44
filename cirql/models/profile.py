from sqlalchemy import Column, String, DateTime, func, JSON
from cirql.core.db import Base


class Profile(Base):
    __tablename__ = "profiles"

    user_id = Column(String, primary_key=True)

    display_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    headline = Column(String, nullable=True)
    bio = Column(String, nullable=True)
    profile_picture_url = Column(String, nullable=True)

    # interest tags like ["coffee","climbing","jazz"]
    interests = Column(JSON, nullable=True)

    updated_at = Column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
