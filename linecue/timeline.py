"""
Timeline edit operations: split, shift and merge line audio.

Every operation loads a chapter snapshot, computes the complete new line
sequence plus the assets to create and delete in memory, and only then
commits through projects.commit_chapter_edit. A failure before the commit
leaves persisted state untouched.
"""

import asyncio
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from . import config
from .assets import AssetStore, get_asset_store, new_asset_id
from .chains import find_next_same_role, resolve_shift_chain, ripple_down, ripple_up
from .errors import DecodeError, NotFoundError, ValidationError
from .models import ChainMember, ChapterSnapshot, EditResult, FilterMode, LineState
from .projects import PendingAsset, commit_chapter_edit, load_chapter_snapshot
from .utils.audio import AudioBuffer, AudioCodec, get_codec
from .utils.validation import validate_split_time

logger = logging.getLogger(__name__)


def _locate(chapter_id: str, line_id: str, db: Session) -> Tuple[ChapterSnapshot, int]:
    chapter = load_chapter_snapshot(chapter_id, db)
    index = chapter.index_of(line_id)
    if index == -1:
        raise NotFoundError(f"Line {line_id} not found in chapter {chapter_id}")
    return chapter, index


async def _decode_line_audio(line: LineState, store: AssetStore, codec: AudioCodec) -> AudioBuffer:
    payload = store.get(line.audio_asset_id)
    try:
        return await asyncio.to_thread(codec.decode, payload)
    except DecodeError as e:
        raise DecodeError(
            f"Audio of line {line.id} could not be decoded: {e}",
            asset_id=line.audio_asset_id,
            line_id=line.id,
        ) from e


async def _encode(
    buffer: AudioBuffer,
    line_id: Optional[str],
    codec: AudioCodec,
    prefix: str,
) -> PendingAsset:
    payload = await asyncio.to_thread(codec.encode, buffer)
    return PendingAsset(
        asset_id=new_asset_id(prefix),
        line_id=line_id,
        payload=payload,
        duration=buffer.duration,
        sample_rate=buffer.sample_rate,
        channels=buffer.channels,
    )


def _require_formats_match(first: AudioBuffer, second: AudioBuffer) -> None:
    if first.sample_rate != second.sample_rate or first.channels != second.channels:
        raise ValidationError(
            "Audio formats don't match, cannot merge "
            f"({first.sample_rate} Hz/{first.channels} ch vs "
            f"{second.sample_rate} Hz/{second.channels} ch)"
        )


async def split_at_time(
    chapter_id: str,
    line_id: str,
    split_seconds: float,
    filter_mode: FilterMode,
    db: Session,
    store: Optional[AssetStore] = None,
    codec: Optional[AudioCodec] = None,
) -> EditResult:
    """
    Split a line's audio and ripple the tail down the chain.

    The head stays on the line. The tail goes to the first eligible line after
    it, whose audio moves on to the next one, and so on; the audio pushed off
    the end of the chain is deleted. With an empty chain the tail is dropped.

    Args:
        chapter_id: Chapter ID
        line_id: Line whose audio is split
        split_seconds: Split point in seconds from the start of the audio
        filter_mode: Scope of the ripple
        db: Database session

    Returns:
        EditResult
    """
    store = store or get_asset_store()
    codec = codec or get_codec()

    if split_seconds <= 0:
        raise ValidationError("Split time must be greater than zero")

    chapter, index = _locate(chapter_id, line_id, db)
    line = chapter.lines[index]
    if not line.audio_asset_id:
        raise ValidationError(f"Line {line_id} has no audio to split")

    buffer = await _decode_line_audio(line, store, codec)
    is_valid, error_msg = validate_split_time(split_seconds, buffer.duration)
    if not is_valid:
        raise ValidationError(error_msg)

    split_frame = int(round(split_seconds * buffer.sample_rate))
    if split_frame <= 0 or split_frame >= buffer.frames:
        raise ValidationError(f"Split time {split_seconds:.3f}s leaves an empty part")

    head = codec.slice(buffer, 0, split_frame)
    tail = codec.slice(buffer, split_frame, buffer.frames)

    head_asset = await _encode(head, line.id, codec, "audio_split")
    lines = list(chapter.lines)
    lines[index] = line.with_audio(head_asset.asset_id)
    lines = tuple(lines)

    new_assets = [head_asset]
    deleted = [line.audio_asset_id]

    chain = resolve_shift_chain(chapter.lines, index + 1, filter_mode, line.character)
    if chain:
        tail_asset = await _encode(tail, chain[0].line.id, codec, "audio_split")
        lines, dropped = ripple_down(lines, chain, incoming=tail_asset.asset_id)
        new_assets.append(tail_asset)
        deleted.append(dropped)
    else:
        logger.debug("Split of line %s: no eligible line after it, tail discarded", line_id)

    logger.info(
        "Split line %s at frame %d/%d (%s chain of %d)",
        line_id, split_frame, buffer.frames, filter_mode.value, len(chain),
    )
    return commit_chapter_edit(chapter, lines, db, new_assets, deleted, store)


def _chain_from_line(chapter: ChapterSnapshot, index: int, filter_mode: FilterMode):
    line = chapter.lines[index]
    chain = resolve_shift_chain(chapter.lines, index, filter_mode, line.character)
    if not chain or chain[0].index != index:
        raise ValidationError(
            f"Line {line.id} is not eligible for a {filter_mode.value} shift"
        )
    return chain


async def shift_down(
    chapter_id: str,
    start_line_id: str,
    filter_mode: FilterMode,
    db: Session,
    store: Optional[AssetStore] = None,
) -> EditResult:
    """
    Move every asset of the chain one eligible line later.

    The first chain member ends up empty and the asset of the last one is
    deleted. A chain of at most one line just clears the start line and
    deletes its asset. A silent start line is left alone; the chain after it
    still ripples.

    Args:
        chapter_id: Chapter ID
        start_line_id: First line of the chain
        filter_mode: Scope of the ripple
        db: Database session

    Returns:
        EditResult
    """
    chapter, index = _locate(chapter_id, start_line_id, db)
    start = chapter.lines[index]
    chain = resolve_shift_chain(chapter.lines, index, filter_mode, start.character)

    if len(chain) <= 1:
        lines = list(chapter.lines)
        lines[index] = start.with_audio(None)
        logger.info("Cleared line %s, no %s chain to shift into", start_line_id, filter_mode.value)
        return commit_chapter_edit(chapter, lines, db, deleted_asset_ids=[start.audio_asset_id], store=store)

    lines, dropped = ripple_down(chapter.lines, chain)
    logger.info("Shifted down from line %s (%s chain of %d)", start_line_id, filter_mode.value, len(chain))
    return commit_chapter_edit(chapter, lines, db, deleted_asset_ids=[dropped], store=store)


async def shift_up(
    chapter_id: str,
    start_line_id: str,
    filter_mode: FilterMode,
    db: Session,
    store: Optional[AssetStore] = None,
) -> EditResult:
    """
    Move every asset of the chain one eligible line earlier.

    The start line's asset is deleted and the last chain member ends up empty.

    Args:
        chapter_id: Chapter ID
        start_line_id: First line of the chain
        filter_mode: Scope of the ripple
        db: Database session

    Returns:
        EditResult
    """
    chapter, index = _locate(chapter_id, start_line_id, db)
    chain = _chain_from_line(chapter, index, filter_mode)
    if len(chain) < 2:
        raise ValidationError(
            f"No next eligible line after {start_line_id} for a {filter_mode.value} shift"
        )

    lines, discarded = ripple_up(chapter.lines, chain)
    logger.info("Shifted up from line %s (%s chain of %d)", start_line_id, filter_mode.value, len(chain))
    return commit_chapter_edit(chapter, lines, db, deleted_asset_ids=[discarded], store=store)


async def merge_with_next_and_shift(
    chapter_id: str,
    line_id: str,
    filter_mode: FilterMode,
    db: Session,
    store: Optional[AssetStore] = None,
    codec: Optional[AudioCodec] = None,
) -> EditResult:
    """
    Merge a line with the next line of the same role.

    Audio and text of the next line are appended to the current line and the
    next line is removed. Lines from the vacated position on are then shifted
    up along the chain so the audio after the merge stays contiguous.

    Args:
        chapter_id: Chapter ID
        line_id: Line receiving the merge
        filter_mode: Scope of the follow-up shift
        db: Database session

    Returns:
        EditResult
    """
    store = store or get_asset_store()
    codec = codec or get_codec()

    chapter, index = _locate(chapter_id, line_id, db)
    current = chapter.lines[index]
    next_index = find_next_same_role(chapter.lines, index)
    if next_index == -1:
        raise ValidationError(f"No later line of the same role after {line_id}")
    following = chapter.lines[next_index]

    if not current.audio_asset_id or not following.audio_asset_id:
        raise ValidationError("Cannot merge: one of the lines has no audio")

    first = await _decode_line_audio(current, store, codec)
    second = await _decode_line_audio(following, store, codec)
    _require_formats_match(first, second)

    merged = codec.concat([first, second])
    merged_asset = await _encode(merged, current.id, codec, "audio_merged")
    merged_line = current.model_copy(update={
        "audio_asset_id": merged_asset.asset_id,
        "text": current.text + config.MERGE_TEXT_SEPARATOR + following.text,
    })

    remaining = (
        chapter.lines[:index]
        + (merged_line,)
        + chapter.lines[index + 1:next_index]
        + chapter.lines[next_index + 1:]
    )
    # Lines after the removed one moved up by one, so next_index is now the vacated slot
    chain = resolve_shift_chain(remaining, next_index, filter_mode, current.character)
    lines, discarded = ripple_up(remaining, chain)

    logger.info(
        "Merged line %s into %s (%d + %d frames), %s chain of %d",
        following.id, line_id, first.frames, second.frames, filter_mode.value, len(chain),
    )
    return commit_chapter_edit(
        chapter,
        lines,
        db,
        new_assets=[merged_asset],
        deleted_asset_ids=[current.audio_asset_id, following.audio_asset_id, discarded],
        store=store,
    )


async def merge_with_previous_and_shift(
    chapter_id: str,
    line_id: str,
    filter_mode: FilterMode,
    db: Session,
    store: Optional[AssetStore] = None,
    codec: Optional[AudioCodec] = None,
) -> EditResult:
    """
    Append a line's audio to the line right before it.

    Both lines must share a role. No line is removed: the current line pulls
    the audio of the next eligible line, and the chain shifts up behind it.

    Args:
        chapter_id: Chapter ID
        line_id: Line whose audio is appended to its predecessor
        filter_mode: Scope of the follow-up shift
        db: Database session

    Returns:
        EditResult
    """
    store = store or get_asset_store()
    codec = codec or get_codec()

    chapter, index = _locate(chapter_id, line_id, db)
    if index == 0:
        raise ValidationError("Cannot merge: this is the first line")

    previous = chapter.lines[index - 1]
    current = chapter.lines[index]
    if not previous.audio_asset_id or not current.audio_asset_id:
        raise ValidationError("Cannot merge: one of the lines has no audio")
    if previous.character_id != current.character_id:
        raise ValidationError("Cannot merge: the lines don't belong to the same role")

    first = await _decode_line_audio(previous, store, codec)
    second = await _decode_line_audio(current, store, codec)
    _require_formats_match(first, second)

    merged = codec.concat([first, second])
    merged_asset = await _encode(merged, previous.id, codec, "audio_merged")

    lines = list(chapter.lines)
    lines[index - 1] = previous.with_audio(merged_asset.asset_id)
    lines = tuple(lines)

    chain = [ChainMember(line=current, index=index)] + resolve_shift_chain(
        chapter.lines, index + 1, filter_mode, current.character
    )
    lines, _ = ripple_up(lines, chain)

    logger.info(
        "Merged audio of line %s into %s, %s chain of %d",
        line_id, previous.id, filter_mode.value, len(chain),
    )
    return commit_chapter_edit(
        chapter,
        lines,
        db,
        new_assets=[merged_asset],
        deleted_asset_ids=[previous.audio_asset_id, current.audio_asset_id],
        store=store,
    )


async def assign_audio_to_line(
    chapter_id: str,
    line_id: str,
    payload: bytes,
    db: Session,
    store: Optional[AssetStore] = None,
    codec: Optional[AudioCodec] = None,
) -> EditResult:
    """
    Store uploaded audio and point a line at it.

    The asset the line held before is deleted.

    Args:
        chapter_id: Chapter ID
        line_id: Line ID
        payload: Encoded audio in any container soundfile reads
        db: Database session

    Returns:
        EditResult
    """
    store = store or get_asset_store()
    codec = codec or get_codec()

    chapter, index = _locate(chapter_id, line_id, db)
    line = chapter.lines[index]

    try:
        buffer = await asyncio.to_thread(codec.decode, payload)
    except DecodeError as e:
        raise DecodeError(f"Uploaded audio for line {line_id} could not be decoded: {e}", line_id=line_id) from e

    asset = await _encode(buffer, line.id, codec, "audio")
    lines = list(chapter.lines)
    lines[index] = line.with_audio(asset.asset_id)

    return commit_chapter_edit(
        chapter,
        lines,
        db,
        new_assets=[asset],
        deleted_asset_ids=[line.audio_asset_id],
        store=store,
    )


async def clear_chapter_audio(
    chapter_id: str,
    db: Session,
    store: Optional[AssetStore] = None,
) -> EditResult:
    """
    Remove all audio from a chapter.

    Args:
        chapter_id: Chapter ID
        db: Database session

    Returns:
        EditResult (nothing committed if the chapter had no audio)
    """
    chapter = load_chapter_snapshot(chapter_id, db)
    asset_ids = [line.audio_asset_id for line in chapter.lines if line.audio_asset_id]
    if not asset_ids:
        return EditResult(chapter=chapter)

    lines = tuple(line.with_audio(None) for line in chapter.lines)
    return commit_chapter_edit(chapter, lines, db, deleted_asset_ids=asset_ids, store=store)
