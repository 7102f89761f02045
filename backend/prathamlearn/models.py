from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from .db import Base


class CourseRecord(Base):
    __tablename__ = "courses"
    key = Column(String(64), primary_key=True, index=True)
    payload = Column(Text, nullable=False)  # JSON document of the course
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SessionRecord(Base):
    __tablename__ = "sessions"
    key = Column(String(64), primary_key=True, index=True)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class CourseArtifact(Base):
    __tablename__ = "course_artifacts"
    # Keyed as "<course_id>:<kind>" where kind is material, prompt or question_bank
    key = Column(String(128), primary_key=True, index=True)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


COLLECTIONS = {
    "courses": CourseRecord,
    "sessions": SessionRecord,
    "artifacts": CourseArtifact,
}
