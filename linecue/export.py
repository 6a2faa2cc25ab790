"""
WAV export with cue markers.

Builds one mono 16-bit 44.1 kHz RIFF/WAVE file out of an ordered list of line
recordings, with a `cue ` chunk and a `LIST`/`adtl` chunk of `labl` entries so
audio workstations can jump to the start of every line.
"""

import asyncio
import logging
import re
import struct
from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy.orm import Session

from . import config
from .assets import AssetStore, get_asset_store
from .database import Chapter as DBChapter, Project as DBProject
from .errors import DecodeError, FormatInvariantError, NotFoundError, ValidationError
from .models import LineState
from .projects import list_project_chapter_ids, load_chapter_snapshot
from .utils.audio import AudioBuffer, AudioCodec, get_codec, to_pcm16

logger = logging.getLogger(__name__)

CUE_RECORD_SIZE = 24
PCM_FORMAT_TAG = 1


class ExportPair(NamedTuple):
    """One line and the encoded audio it holds."""
    line: LineState
    payload: bytes


def _chunk(chunk_id: bytes, body: bytes) -> bytes:
    return chunk_id + struct.pack("<I", len(body)) + body


def _fmt_chunk() -> bytes:
    bytes_per_sample = config.EXPORT_BIT_DEPTH // 8
    body = struct.pack(
        "<HHIIHH",
        PCM_FORMAT_TAG,
        config.EXPORT_CHANNELS,
        config.EXPORT_SAMPLE_RATE,
        config.EXPORT_SAMPLE_RATE * config.EXPORT_CHANNELS * bytes_per_sample,
        config.EXPORT_CHANNELS * bytes_per_sample,
        config.EXPORT_BIT_DEPTH,
    )
    return _chunk(b"fmt ", body)


def _cue_chunk(cue_points: Sequence[int]) -> bytes:
    body = bytearray(struct.pack("<I", len(cue_points)))
    for cue_id, frame in enumerate(cue_points, start=1):
        body += struct.pack("<II4sIII", cue_id, frame, b"data", 0, 0, frame)
    if len(body) != 4 + CUE_RECORD_SIZE * len(cue_points):
        raise FormatInvariantError("cue chunk size doesn't match its record count")
    return _chunk(b"cue ", bytes(body))


def _label_chunk(cue_count: int) -> bytes:
    body = bytearray(b"adtl")
    for cue_id in range(1, cue_count + 1):
        text = str(cue_id).encode("ascii")
        data = struct.pack("<I", cue_id) + text + b"\x00"
        body += _chunk(b"labl", data)
        # Size field holds the unpadded length, the chunk itself is padded to even
        if (8 + len(data)) % 2:
            body += b"\x00"
    return _chunk(b"LIST", bytes(body))


def build_marker_wav(segments: Sequence[np.ndarray]) -> Tuple[bytes, List[int]]:
    """
    Assemble the WAV file from canonical PCM16 segments.

    Args:
        segments: Mono int16 sample arrays in output order

    Returns:
        Tuple of (wav_bytes, cue_points)
    """
    cue_points = []
    total = 0
    for segment in segments:
        cue_points.append(total)
        total += len(segment)

    if segments:
        pcm = np.concatenate(segments).astype("<i2", copy=False)
    else:
        pcm = np.zeros(0, dtype="<i2")
    if len(pcm) != total or len(cue_points) != len(segments):
        raise FormatInvariantError("PCM length doesn't match the segment offsets")
    if any(b < a for a, b in zip(cue_points, cue_points[1:])):
        raise FormatInvariantError("cue points are not ascending")

    body = (
        b"WAVE"
        + _fmt_chunk()
        + _chunk(b"data", pcm.tobytes())
        + _cue_chunk(cue_points)
        + _label_chunk(len(cue_points))
    )
    return b"RIFF" + struct.pack("<I", len(body)) + body, cue_points


def to_canonical_pcm(buffer: AudioBuffer, codec: AudioCodec) -> np.ndarray:
    """Resample a buffer to the export rate, keep one channel, convert to int16."""
    if buffer.sample_rate != config.EXPORT_SAMPLE_RATE or buffer.channels != config.EXPORT_CHANNELS:
        buffer = codec.resample(buffer, config.EXPORT_SAMPLE_RATE, config.EXPORT_CHANNELS)
    return to_pcm16(buffer.samples[0])


async def export_with_markers(
    pairs: Sequence[ExportPair],
    codec: Optional[AudioCodec] = None,
) -> bytes:
    """
    Render ordered (line, audio) pairs to a marked WAV file.

    Payloads are decoded concurrently; the output keeps the order of ``pairs``.

    Args:
        pairs: Lines with their audio, in output order

    Returns:
        WAV file bytes

    Raises:
        DecodeError: If any payload fails to decode (no output is produced)
    """
    codec = codec or get_codec()

    def _convert(position: int, pair: ExportPair) -> np.ndarray:
        try:
            buffer = codec.decode(pair.payload)
        except DecodeError as e:
            raise DecodeError(
                f"Audio #{position + 1} (line {pair.line.id}) could not be decoded: {e}",
                asset_id=pair.line.audio_asset_id,
                line_id=pair.line.id,
            ) from e
        return to_canonical_pcm(buffer, codec)

    segments = await asyncio.gather(
        *(asyncio.to_thread(_convert, position, pair) for position, pair in enumerate(pairs))
    )
    wav, cue_points = build_marker_wav(segments)
    logger.info("Exported %d markers, %d frames", len(cue_points), sum(len(s) for s in segments))
    return wav


def collect_export_pairs(
    chapter_ids: Sequence[str],
    db: Session,
    store: Optional[AssetStore] = None,
) -> List[ExportPair]:
    """
    Gather the lines holding audio in the given chapters.

    Chapters are taken in the order given, lines in chapter order; silent
    lines and lines without audio are skipped.

    Raises:
        ValidationError: If nothing in the selection has audio
    """
    store = store or get_asset_store()
    pairs = []
    for chapter_id in chapter_ids:
        chapter = load_chapter_snapshot(chapter_id, db)
        for line in chapter.lines:
            if not line.audio_asset_id:
                continue
            if line.character is not None and line.character.is_silent:
                continue
            pairs.append(ExportPair(line=line, payload=store.get(line.audio_asset_id)))
    if not pairs:
        raise ValidationError("No aligned audio in the selected chapters")
    return pairs


def export_filename(project_name: str, scope: str) -> str:
    """Download name for an export, e.g. ``Book_Chapter 1_Marked.wav``."""
    safe_scope = re.sub(r'[<>:"/\\|?*]+', "_", scope)
    safe_project = re.sub(r'[<>:"/\\|?*]+', "_", project_name)
    return f"{safe_project}_{safe_scope}_Marked.wav"


async def export_chapter(
    chapter_id: str,
    db: Session,
    store: Optional[AssetStore] = None,
    codec: Optional[AudioCodec] = None,
) -> Tuple[bytes, str]:
    """
    Export one chapter.

    Returns:
        Tuple of (wav_bytes, filename)
    """
    chapter = db.query(DBChapter).filter_by(id=chapter_id).first()
    if not chapter:
        raise NotFoundError(f"Chapter {chapter_id} not found")
    project = db.query(DBProject).filter_by(id=chapter.project_id).first()
    pairs = collect_export_pairs([chapter_id], db, store)
    wav = await export_with_markers(pairs, codec)
    return wav, export_filename(project.name if project else "project", chapter.title)


async def export_project(
    project_id: str,
    db: Session,
    store: Optional[AssetStore] = None,
    codec: Optional[AudioCodec] = None,
) -> Tuple[bytes, str]:
    """
    Export every chapter of a project.

    Returns:
        Tuple of (wav_bytes, filename)
    """
    chapter_ids = list_project_chapter_ids(project_id, db)
    project = db.query(DBProject).filter_by(id=project_id).first()
    pairs = collect_export_pairs(chapter_ids, db, store)
    wav = await export_with_markers(pairs, codec)
    return wav, export_filename(project.name, "AllChapters")
