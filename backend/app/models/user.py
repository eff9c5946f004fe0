from sqlalchemy import Column, String, Boolean
from .base import Base, TimestampMixin, generate_uuid


class Gender:
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"

    ALL = [MALE, FEMALE, OTHER]


class Language:
    ENGLISH = "en"
    HINDI = "hi"
    REGIONAL = "regional"

    ALL = [ENGLISH, HINDI, REGIONAL]


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String(200), nullable=False)
    age = Column(String(10), nullable=True)  # spoken answers arrive as text
    gender = Column(String(10), nullable=True)
    location = Column(String(200), nullable=True)
    language = Column(String(20), nullable=False, default=Language.ENGLISH)
    voice_profile_created = Column(Boolean, default=False, nullable=False)
    phone = Column(String(20), unique=True, nullable=True, index=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
