from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from database import Base


class Track(Base):
    __tablename__ = "tracks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(200), unique=True, nullable=False)
    title = Column(String(300), nullable=False)
    summary = Column(Text, nullable=True)
    cover_url = Column(String(500), nullable=True)
    published_at = Column(DateTime, nullable=True)  # null = draft
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    sections = relationship(
        "TrackSection", back_populates="track",
        order_by="TrackSection.position", cascade="all, delete-orphan",
    )
    lessons = relationship(
        "Lesson", back_populates="track",
        order_by="Lesson.position", cascade="all, delete-orphan",
    )


class TrackSection(Base):
    __tablename__ = "track_sections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    track_id = Column(Integer, ForeignKey("tracks.id"), nullable=False)
    title = Column(String(300), nullable=False)
    position = Column(Integer, default=0)

    track = relationship("Track", back_populates="sections")
    lessons = relationship("Lesson", back_populates="section", order_by="Lesson.position")


class Lesson(Base):
    __tablename__ = "lessons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    track_id = Column(Integer, ForeignKey("tracks.id"), nullable=False)
    section_id = Column(Integer, ForeignKey("track_sections.id"), nullable=True)
    slug = Column(String(200), nullable=False)
    title = Column(String(300), nullable=False)
    position = Column(Integer, default=0)
    duration_min = Column(Integer, nullable=True)
    published_at = Column(DateTime, nullable=True)

    track = relationship("Track", back_populates="lessons")
    section = relationship("TrackSection", back_populates="lessons")
