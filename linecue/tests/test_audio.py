"""
Unit tests for the soundfile/librosa audio codec.
"""

import io

import numpy as np
import pytest
import soundfile as sf

from linecue.errors import DecodeError, ValidationError
from linecue.utils.audio import (
    AudioBuffer,
    AudioCodec,
    SoundfileCodec,
    concat_audio,
    decode_audio,
    encode_audio,
    get_codec,
    resample_audio,
    set_codec,
    slice_audio,
    to_pcm16,
)
from conftest import tone


class TestCodecProtocol:
    """Test SoundfileCodec conformance to the AudioCodec protocol."""

    def test_implements_audio_codec_protocol(self):
        assert isinstance(SoundfileCodec(), AudioCodec)

    def test_set_codec_replaces_active_codec(self):
        original = get_codec()
        replacement = SoundfileCodec()
        set_codec(replacement)
        try:
            assert get_codec() is replacement
        finally:
            set_codec(original)


class TestDecodeEncode:
    """Tests for decoding and encoding payloads."""

    def test_native_payload_is_sample_exact(self):
        buffer = tone(0.25, sample_rate=22050, channels=2)
        decoded = decode_audio(encode_audio(buffer))

        assert decoded.sample_rate == 22050
        assert decoded.channels == 2
        assert decoded.frames == buffer.frames
        np.testing.assert_array_equal(decoded.samples, buffer.samples)

    def test_decodes_pcm16_wav(self):
        out = io.BytesIO()
        sf.write(out, np.zeros(1000, dtype=np.int16), 16000, format="WAV", subtype="PCM_16")
        decoded = decode_audio(out.getvalue())

        assert decoded.sample_rate == 16000
        assert decoded.channels == 1
        assert decoded.frames == 1000
        assert decoded.samples.dtype == np.float32

    def test_empty_payload(self):
        with pytest.raises(DecodeError):
            decode_audio(b"")

    def test_garbage_payload(self):
        with pytest.raises(DecodeError):
            decode_audio(b"this is not audio at all" * 10)


class TestBufferOps:
    """Tests for slice, concat and resample."""

    def test_slice_then_concat_restores_buffer(self):
        buffer = tone(1.0)
        head = slice_audio(buffer, 0, 12345)
        tail = slice_audio(buffer, 12345, buffer.frames)

        assert head.frames + tail.frames == buffer.frames
        np.testing.assert_array_equal(concat_audio([head, tail]).samples, buffer.samples)

    def test_slice_out_of_range(self):
        with pytest.raises(ValidationError):
            slice_audio(tone(0.1), 0, 10 ** 6)

    def test_concat_rejects_rate_mismatch(self):
        with pytest.raises(ValidationError):
            concat_audio([tone(0.1, sample_rate=44100), tone(0.1, sample_rate=48000)])

    def test_concat_rejects_channel_mismatch(self):
        with pytest.raises(ValidationError):
            concat_audio([tone(0.1, channels=1), tone(0.1, channels=2)])

    def test_resample_scales_length(self):
        buffer = tone(1.0, sample_rate=22050)
        resampled = resample_audio(buffer, 44100, 1)

        assert resampled.sample_rate == 44100
        assert abs(resampled.frames - 44100) <= 1

    def test_resample_keeps_first_channel(self):
        left = np.full(100, 0.25, dtype=np.float32)
        right = np.full(100, -0.25, dtype=np.float32)
        buffer = AudioBuffer(np.stack([left, right]), 44100)

        mono = resample_audio(buffer, 44100, 1)
        assert mono.channels == 1
        np.testing.assert_array_equal(mono.samples[0], left)

    def test_resample_widens_channels(self):
        stereo = resample_audio(tone(0.1), 44100, 2)
        assert stereo.channels == 2
        np.testing.assert_array_equal(stereo.samples[0], stereo.samples[1])


class TestPcm16:
    """Tests for float to PCM16 conversion."""

    def test_clamps_and_truncates(self):
        samples = np.array([-2.0, -1.0, 0.0, 0.5, 1.0, 3.0], dtype=np.float32)
        pcm = to_pcm16(samples)

        assert pcm.dtype == np.dtype("<i2")
        assert pcm.tolist() == [-32767, -32767, 0, 16383, 32767, 32767]
