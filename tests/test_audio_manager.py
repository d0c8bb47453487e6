"""
Tests for the PyAudio device wrappers used by the local ``talk`` mode.

PyAudio itself is patched out; only the asyncio bridging is exercised.
"""

import asyncio
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

pyaudio = pytest.importorskip("pyaudio")

from src.realtime_relay.audio_manager import MicrophoneCapture, SpeakerPlayer  # noqa: E402
from src.realtime_relay.playback import PlayableAudioUnit  # noqa: E402


class TestMicrophoneCapture:
    @pytest.mark.asyncio
    async def test_callback_frames_reach_the_async_iterator(self):
        with patch("pyaudio.PyAudio", MagicMock()):
            mic = MicrophoneCapture()
            mic.start()

            mic._mic_callback(np.array([0.25, -0.5], dtype=np.float32).tobytes(), 2, None, 0)
            mic.stop()
            frames = [frame async for frame in mic.frames()]

        assert len(frames) == 1
        assert frames[0].tolist() == [0.25, -0.5]
        assert not mic.running

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        with patch("pyaudio.PyAudio", MagicMock()) as fake:
            mic = MicrophoneCapture()
            mic.start()
            mic.stop()
            mic.stop()

        fake.return_value.terminate.assert_called_once()


class TestSpeakerPlayer:
    @pytest.mark.asyncio
    async def test_play_writes_pcm_to_an_output_stream(self):
        with patch("pyaudio.PyAudio", MagicMock()) as fake:
            speaker = SpeakerPlayer()
            await asyncio.wait_for(speaker.play(PlayableAudioUnit(pcm=b"\x01\x02", sequence=1)), 1.0)

        stream = fake.return_value.open.return_value
        stream.write.assert_called_once_with(b"\x01\x02")
        stream.close.assert_called_once()
