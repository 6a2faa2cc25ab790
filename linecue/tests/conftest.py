"""
Pytest configuration for linecue tests.

Provides a throwaway SQLite database, a temporary asset store and helpers to
seed chapters whose lines hold generated tones.
"""

from typing import Dict, NamedTuple, Optional

import numpy as np
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from linecue import config
from linecue.assets import AssetStore
from linecue.database import (
    Base,
    AudioAsset,
    Chapter,
    Character,
    Project,
    ScriptLine,
    ensure_silent_character,
)
from linecue.utils.audio import AudioBuffer, encode_audio

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )


def tone(seconds: float, sample_rate: int = 44100, channels: int = 1, freq: float = 440.0) -> AudioBuffer:
    """Sine tone at half scale."""
    frames = int(round(seconds * sample_rate))
    t = np.arange(frames, dtype=np.float64) / sample_rate
    wave = (0.5 * np.sin(2 * np.pi * freq * t)).astype(np.float32)
    return AudioBuffer(np.tile(wave, (channels, 1)), sample_rate)


class SeededChapter(NamedTuple):
    project_id: str
    chapter_id: str
    buffers: Dict[str, AudioBuffer]


@pytest.fixture
def db_session(tmp_path):
    """Create a temporary test database."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    ensure_silent_character(session)

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def store(tmp_path):
    """Asset store rooted in a temp directory."""
    return AssetStore(tmp_path / "assets")


@pytest.fixture
def silent_role_id(db_session):
    return db_session.query(Character).filter_by(name=config.SILENT_CHARACTER_NAME).first().id


@pytest.fixture
def seed_chapter(db_session, store, silent_role_id):
    """
    Factory creating a project chapter.

    ``lines`` is a list of ``(line_id, role, audio)`` where role is a key of
    ``roles`` (or "silent", or None) and audio is None, a duration in seconds,
    or an AudioBuffer. Line ``L1`` with audio gets asset ``asset_L1``.
    """
    def _seed(
        lines,
        roles: Optional[Dict[str, tuple]] = None,
        chapter_id: str = "ch1",
        title: str = "Chapter 1",
        project_id: str = "p1",
        project_name: str = "Book",
        position: int = 0,
    ) -> SeededChapter:
        if db_session.get(Project, project_id) is None:
            db_session.add(Project(id=project_id, name=project_name))
        db_session.add(Chapter(id=chapter_id, project_id=project_id, title=title, position=position))

        role_ids = {"silent": silent_role_id}
        for key, (name, cv_name) in (roles or {}).items():
            role_id = f"role_{key}"
            if db_session.get(Character, role_id) is None:
                db_session.add(Character(id=role_id, project_id=project_id, name=name, cv_name=cv_name))
            role_ids[key] = role_id

        buffers = {}
        for position_in_chapter, (line_id, role, audio) in enumerate(lines):
            asset_id = None
            if audio is not None:
                buffer = audio if isinstance(audio, AudioBuffer) else tone(audio)
                asset_id = f"asset_{line_id}"
                store.put(asset_id, encode_audio(buffer))
                db_session.add(AudioAsset(
                    id=asset_id,
                    line_id=line_id,
                    audio_path=str(store.path_for(asset_id)),
                    duration=buffer.duration,
                    sample_rate=buffer.sample_rate,
                    channels=buffer.channels,
                ))
                buffers[line_id] = buffer
            db_session.add(ScriptLine(
                id=line_id,
                chapter_id=chapter_id,
                position=position_in_chapter,
                text=f"text {line_id}",
                character_id=role_ids[role] if role else None,
                audio_asset_id=asset_id,
            ))
        db_session.commit()
        return SeededChapter(project_id=project_id, chapter_id=chapter_id, buffers=buffers)

    return _seed
