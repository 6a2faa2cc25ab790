"""
Audio processing utilities.

Sample buffers are float32 arrays shaped (channels, frames) with values in
[-1, 1]. Payloads are whatever container soundfile can read.
"""

import io
from typing import NamedTuple, Protocol, Sequence

import librosa
import numpy as np
import soundfile as sf
from typing_extensions import runtime_checkable

from .. import config
from ..errors import DecodeError, ValidationError


class AudioBuffer(NamedTuple):
    """Decoded audio."""
    samples: np.ndarray
    sample_rate: int

    @property
    def channels(self) -> int:
        return self.samples.shape[0]

    @property
    def frames(self) -> int:
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / self.sample_rate


@runtime_checkable
class AudioCodec(Protocol):
    """Protocol for audio codec implementations."""

    def decode(self, payload: bytes) -> AudioBuffer:
        """Decode a payload into a sample buffer."""
        ...

    def resample(self, buffer: AudioBuffer, target_rate: int, target_channels: int) -> AudioBuffer:
        """Convert a buffer to another rate and channel count."""
        ...

    def slice(self, buffer: AudioBuffer, start: int, end: int) -> AudioBuffer:
        """Cut frames [start, end) out of a buffer."""
        ...

    def concat(self, buffers: Sequence[AudioBuffer]) -> AudioBuffer:
        """Join buffers sharing rate and channel count."""
        ...

    def encode(self, buffer: AudioBuffer) -> bytes:
        """Encode a buffer in the asset store's native format."""
        ...


def decode_audio(payload: bytes) -> AudioBuffer:
    """
    Decode an audio payload.

    Args:
        payload: Encoded audio bytes

    Returns:
        AudioBuffer with float32 samples

    Raises:
        DecodeError: If the payload isn't readable audio
    """
    if not payload:
        raise DecodeError("Audio payload is empty")
    try:
        data, sample_rate = sf.read(io.BytesIO(payload), dtype="float32", always_2d=True)
    except (sf.SoundFileError, RuntimeError, TypeError) as e:
        raise DecodeError(f"Could not decode audio: {e}") from e
    # soundfile gives (frames, channels)
    return AudioBuffer(np.ascontiguousarray(data.T), int(sample_rate))


def encode_audio(buffer: AudioBuffer) -> bytes:
    """
    Encode a buffer as a WAV payload.

    Args:
        buffer: Audio to encode

    Returns:
        WAV bytes
    """
    out = io.BytesIO()
    sf.write(
        out,
        buffer.samples.T,
        buffer.sample_rate,
        format=config.ASSET_FORMAT,
        subtype=config.ASSET_SUBTYPE,
    )
    return out.getvalue()


def resample_audio(
    buffer: AudioBuffer,
    target_rate: int,
    target_channels: int = 1,
) -> AudioBuffer:
    """
    Resample audio and adjust its channel count.

    Reducing channels keeps the leading channels; widening repeats the
    last one.

    Args:
        buffer: Input audio
        target_rate: Target sample rate
        target_channels: Target channel count

    Returns:
        Converted AudioBuffer
    """
    samples = buffer.samples
    if samples.shape[0] > target_channels:
        samples = samples[:target_channels]
    elif samples.shape[0] < target_channels:
        extra = np.repeat(samples[-1:], target_channels - samples.shape[0], axis=0)
        samples = np.concatenate([samples, extra], axis=0)

    if buffer.sample_rate != target_rate and samples.shape[1] > 0:
        samples = librosa.resample(
            samples,
            orig_sr=buffer.sample_rate,
            target_sr=target_rate,
            axis=-1,
        )

    return AudioBuffer(np.ascontiguousarray(samples, dtype=np.float32), target_rate)


def slice_audio(buffer: AudioBuffer, start: int, end: int) -> AudioBuffer:
    """
    Cut a frame range out of a buffer.

    Args:
        buffer: Input audio
        start: First frame (inclusive)
        end: Last frame (exclusive)

    Returns:
        AudioBuffer holding frames [start, end)
    """
    if start < 0 or end > buffer.frames or start > end:
        raise ValidationError(
            f"Invalid slice [{start}, {end}) for buffer of {buffer.frames} frames"
        )
    return AudioBuffer(buffer.samples[:, start:end].copy(), buffer.sample_rate)


def concat_audio(buffers: Sequence[AudioBuffer]) -> AudioBuffer:
    """
    Concatenate buffers in order.

    Args:
        buffers: Buffers with identical sample rate and channel count

    Returns:
        Joined AudioBuffer

    Raises:
        ValidationError: If the buffers' formats differ
    """
    if not buffers:
        raise ValidationError("Nothing to concatenate")
    first = buffers[0]
    for other in buffers[1:]:
        if other.sample_rate != first.sample_rate or other.channels != first.channels:
            raise ValidationError(
                "Audio formats don't match "
                f"({first.sample_rate} Hz/{first.channels} ch vs "
                f"{other.sample_rate} Hz/{other.channels} ch)"
            )
    samples = np.concatenate([b.samples for b in buffers], axis=1)
    return AudioBuffer(samples, first.sample_rate)


def to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Clip float samples and truncate them to signed 16-bit."""
    return (np.clip(samples, -1.0, 1.0) * 32767).astype("<i2")


class SoundfileCodec:
    """Default codec backed by soundfile and librosa."""

    def decode(self, payload: bytes) -> AudioBuffer:
        return decode_audio(payload)

    def resample(self, buffer: AudioBuffer, target_rate: int, target_channels: int) -> AudioBuffer:
        return resample_audio(buffer, target_rate, target_channels)

    def slice(self, buffer: AudioBuffer, start: int, end: int) -> AudioBuffer:
        return slice_audio(buffer, start, end)

    def concat(self, buffers: Sequence[AudioBuffer]) -> AudioBuffer:
        return concat_audio(buffers)

    def encode(self, buffer: AudioBuffer) -> bytes:
        return encode_audio(buffer)


_codec: AudioCodec = SoundfileCodec()


def get_codec() -> AudioCodec:
    """Get the active audio codec."""
    return _codec


def set_codec(codec: AudioCodec) -> None:
    """Replace the active audio codec."""
    global _codec
    _codec = codec
