"""
Chapter persistence: snapshot loading and atomic edit commits.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config
from .assets import AssetStore, get_asset_store
from .database import (
    AudioAsset as DBAudioAsset,
    Chapter as DBChapter,
    Character as DBCharacter,
    Project as DBProject,
    ScriptLine as DBScriptLine,
)
from .errors import FormatInvariantError, NotFoundError, StoreIOError
from .models import CharacterRef, ChapterSnapshot, EditResult, LineState

logger = logging.getLogger(__name__)


class PendingAsset(NamedTuple):
    """An asset produced in memory, not yet written."""
    asset_id: str
    line_id: Optional[str]
    payload: bytes
    duration: float
    sample_rate: int
    channels: int


def character_ref(character: DBCharacter) -> CharacterRef:
    """Build the chain-facing view of a role."""
    return CharacterRef(
        id=character.id,
        name=character.name,
        cv_name=character.cv_name or None,
        is_silent=character.name == config.SILENT_CHARACTER_NAME,
    )


def load_characters(character_ids: Iterable[str], db: Session) -> Dict[str, CharacterRef]:
    """Load roles by id."""
    ids = {cid for cid in character_ids if cid}
    if not ids:
        return {}
    rows = db.query(DBCharacter).filter(DBCharacter.id.in_(ids)).all()
    return {row.id: character_ref(row) for row in rows}


def load_chapter_snapshot(chapter_id: str, db: Session) -> ChapterSnapshot:
    """
    Load a chapter with its ordered lines.

    Args:
        chapter_id: Chapter ID
        db: Database session

    Returns:
        Immutable chapter snapshot

    Raises:
        NotFoundError: If the chapter doesn't exist
    """
    chapter = db.query(DBChapter).filter_by(id=chapter_id).first()
    if not chapter:
        raise NotFoundError(f"Chapter {chapter_id} not found")

    rows = (
        db.query(DBScriptLine)
        .filter_by(chapter_id=chapter_id)
        .order_by(DBScriptLine.position)
        .all()
    )
    characters = load_characters((row.character_id for row in rows), db)

    lines = tuple(
        LineState(
            id=row.id,
            text=row.text or "",
            character=characters.get(row.character_id),
            audio_asset_id=row.audio_asset_id,
            sound_type=row.sound_type,
        )
        for row in rows
    )
    return ChapterSnapshot(
        id=chapter.id,
        project_id=chapter.project_id,
        title=chapter.title,
        lines=lines,
    )


def list_project_chapter_ids(project_id: str, db: Session) -> List[str]:
    """
    Get a project's chapter ids in order.

    Raises:
        NotFoundError: If the project doesn't exist
    """
    project = db.query(DBProject).filter_by(id=project_id).first()
    if not project:
        raise NotFoundError(f"Project {project_id} not found")
    chapters = (
        db.query(DBChapter)
        .filter_by(project_id=project_id)
        .order_by(DBChapter.position)
        .all()
    )
    return [chapter.id for chapter in chapters]


def _unique(asset_ids: Iterable[Optional[str]]) -> List[str]:
    seen = []
    for asset_id in asset_ids:
        if asset_id and asset_id not in seen:
            seen.append(asset_id)
    return seen


def _check_references(
    before: ChapterSnapshot,
    lines: Sequence[LineState],
    new_assets: Sequence[PendingAsset],
    deleted: Sequence[str],
) -> None:
    """Refuse edits that would leave a line pointing at a missing asset."""
    known = {line.audio_asset_id for line in before.lines if line.audio_asset_id}
    known.update(asset.asset_id for asset in new_assets)
    for line in lines:
        if not line.audio_asset_id:
            continue
        if line.audio_asset_id in deleted:
            raise FormatInvariantError(
                f"Line {line.id} still references deleted asset {line.audio_asset_id}"
            )
        if line.audio_asset_id not in known:
            raise FormatInvariantError(
                f"Line {line.id} references unknown asset {line.audio_asset_id}"
            )


def _discard_written(store: AssetStore, written: Sequence[str], chapter_id: str) -> None:
    """Remove payloads of a failed commit without masking the failure."""
    try:
        store.bulk_delete(written)
    except StoreIOError as e:
        logger.warning("Cleanup of uncommitted assets failed for chapter %s: %s", chapter_id, e)


def commit_chapter_edit(
    before: ChapterSnapshot,
    lines: Sequence[LineState],
    db: Session,
    new_assets: Sequence[PendingAsset] = (),
    deleted_asset_ids: Iterable[Optional[str]] = (),
    store: Optional[AssetStore] = None,
) -> EditResult:
    """
    Persist a chapter edit computed in memory.

    New payloads are written first, then the database transaction (new asset
    rows, rewritten lines, removed asset rows) is committed, and orphaned
    payloads are unlinked last.

    Args:
        before: Snapshot the edit was computed from
        lines: Full new line sequence for the chapter
        db: Database session
        new_assets: Assets to create
        deleted_asset_ids: Assets no longer referenced
        store: Asset store (defaults to the shared one)

    Returns:
        EditResult with the new chapter snapshot
    """
    store = store or get_asset_store()
    deleted = _unique(deleted_asset_ids)
    lines = tuple(lines)
    _check_references(before, lines, new_assets, deleted)

    # 1. Payloads
    written = []
    try:
        for asset in new_assets:
            store.put(asset.asset_id, asset.payload)
            written.append(asset.asset_id)
    except StoreIOError:
        _discard_written(store, written, before.id)
        raise

    # 2. Records
    try:
        now = datetime.utcnow()
        for asset in new_assets:
            db.add(DBAudioAsset(
                id=asset.asset_id,
                line_id=asset.line_id,
                audio_path=str(store.path_for(asset.asset_id)),
                duration=asset.duration,
                sample_rate=asset.sample_rate,
                channels=asset.channels,
                created_at=now,
            ))

        rows = {
            row.id: row
            for row in db.query(DBScriptLine).filter_by(chapter_id=before.id).all()
        }
        kept = set()
        for position, line in enumerate(lines):
            row = rows.get(line.id)
            if row is None:
                raise NotFoundError(f"Line {line.id} not found in chapter {before.id}")
            row.position = position
            row.text = line.text
            row.audio_asset_id = line.audio_asset_id
            kept.add(line.id)
        for line_id, row in rows.items():
            if line_id not in kept:
                db.delete(row)

        if deleted:
            db.query(DBAudioAsset).filter(DBAudioAsset.id.in_(deleted)).delete(
                synchronize_session=False
            )

        chapter = db.query(DBChapter).filter_by(id=before.id).first()
        if chapter:
            chapter.updated_at = now
        project = db.query(DBProject).filter_by(id=before.project_id).first()
        if project:
            project.updated_at = now

        db.commit()
    except (SQLAlchemyError, NotFoundError) as e:
        db.rollback()
        _discard_written(store, written, before.id)
        if isinstance(e, NotFoundError):
            raise
        raise StoreIOError(f"Failed to commit chapter {before.id}: {e}") from e

    # 3. Orphans
    try:
        store.bulk_delete(deleted)
    except StoreIOError as e:
        # The records are gone, a stray file is harmless
        logger.warning("Orphaned asset cleanup failed for chapter %s: %s", before.id, e)

    logger.info(
        "Committed chapter %s: %d lines, %d assets created, %d deleted",
        before.id, len(lines), len(new_assets), len(deleted),
    )
    return EditResult(
        chapter=before.model_copy(update={"lines": lines}),
        created_asset_ids=[asset.asset_id for asset in new_assets],
        deleted_asset_ids=deleted,
    )
