"""
SQLite database ORM using SQLAlchemy.
"""

from sqlalchemy import create_engine, Column, String, Integer, Float, DateTime, Text, ForeignKey
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime
import logging
import uuid

from . import config

logger = logging.getLogger(__name__)

Base = declarative_base()


class Project(Base):
    """Project database model."""
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Character(Base):
    """Speaking role database model. project_id is NULL for global roles."""
    __tablename__ = "characters"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String, ForeignKey("projects.id"), nullable=True)
    name = Column(String, nullable=False)
    cv_name = Column(String, nullable=True)  # Voice talent identity
    created_at = Column(DateTime, default=datetime.utcnow)


class Chapter(Base):
    """Chapter database model."""
    __tablename__ = "chapters"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String, ForeignKey("projects.id"), nullable=False)
    title = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)  # Order inside the project
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AudioAsset(Base):
    """Audio asset database model (payload lives on disk)."""
    __tablename__ = "audio_assets"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    line_id = Column(String, nullable=True)  # Owning line at creation time, informational only
    audio_path = Column(String, nullable=False)
    duration = Column(Float, nullable=False, default=0.0)
    sample_rate = Column(Integer, nullable=False, default=0)
    channels = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)


class ScriptLine(Base):
    """Script line database model."""
    __tablename__ = "script_lines"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    chapter_id = Column(String, ForeignKey("chapters.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # Order inside the chapter
    text = Column(Text, nullable=False, default="")
    character_id = Column(String, ForeignKey("characters.id"), nullable=True)
    audio_asset_id = Column(String, ForeignKey("audio_assets.id"), nullable=True)
    sound_type = Column(String, nullable=True)


# Database setup will be initialized in init_db()
engine = None
SessionLocal = None
_db_path = None


def init_db():
    """Initialize database tables."""
    global engine, SessionLocal, _db_path

    _db_path = config.get_db_path()
    _db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{_db_path}",
        connect_args={"check_same_thread": False},
    )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        ensure_silent_character(db)
    finally:
        db.close()


def ensure_silent_character(db) -> Character:
    """Create the global silent-marker role if it doesn't exist."""
    silent = db.query(Character).filter(
        Character.name == config.SILENT_CHARACTER_NAME,
        Character.project_id.is_(None),
    ).first()
    if not silent:
        silent = Character(
            id=str(uuid.uuid4()),
            name=config.SILENT_CHARACTER_NAME,
            project_id=None,
        )
        db.add(silent)
        db.commit()
        logger.info("Created silent-marker character %s", silent.id)
    return silent


def get_db():
    """Get database session (generator for dependency injection)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
