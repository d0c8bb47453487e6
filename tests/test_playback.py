"""
Tests for response audio assembly and sequential playback.
"""

import asyncio
import logging
import wave

import pytest

from src.realtime_relay.playback import (
    AssemblerState,
    AudioPlaybackAssembler,
    NullAudioPlayer,
    PlayableAudioUnit,
    PlaybackQueue,
    WavFileRecorder,
)

LOGGER = logging.getLogger("tests.playback")


class GatedPlayer:
    """Mock player: each unit plays until the test releases it."""

    def __init__(self, fail_on=()):
        self.started = []
        self.finished = []
        self.playing = 0
        self.max_playing = 0
        self.fail_on = set(fail_on)
        self._gates = {}

    def gate(self, sequence):
        return self._gates.setdefault(sequence, asyncio.Event())

    def release(self, sequence):
        self.gate(sequence).set()

    async def play(self, unit):
        self.started.append(unit.sequence)
        self.playing += 1
        self.max_playing = max(self.max_playing, self.playing)
        try:
            await self.gate(unit.sequence).wait()
            if unit.sequence in self.fail_on:
                raise RuntimeError(f"device error on {unit.sequence}")
        finally:
            self.playing -= 1
        self.finished.append(unit.sequence)


def unit(sequence):
    return PlayableAudioUnit(pcm=b"\x00\x00" * 4, sequence=sequence)


class TestPlaybackQueue:
    @pytest.mark.asyncio
    async def test_units_play_one_at_a_time_in_order(self, settle):
        """U2 starts only after U1 ends, U3 only after U2."""
        player = GatedPlayer()
        queue = PlaybackQueue(player, LOGGER)

        for seq in (1, 2, 3):
            queue.enqueue(unit(seq))
        await settle()
        assert player.started == [1]
        assert queue.active.sequence == 1
        assert len(queue) == 3

        player.release(1)
        await settle()
        assert player.started == [1, 2]

        player.release(2)
        player.release(3)
        await asyncio.wait_for(queue.drain(), timeout=1.0)

        assert player.finished == [1, 2, 3]
        assert player.max_playing == 1
        assert queue.completed == [1, 2, 3]
        assert queue.active is None

    @pytest.mark.asyncio
    async def test_playback_error_moves_on_to_next_unit(self, settle, caplog):
        player = GatedPlayer(fail_on={1})
        queue = PlaybackQueue(player, LOGGER)
        queue.enqueue(unit(1))
        queue.enqueue(unit(2))

        with caplog.at_level(logging.ERROR, logger="tests.playback"):
            player.release(1)
            player.release(2)
            await asyncio.wait_for(queue.drain(), timeout=1.0)

        assert queue.failed == [1]
        assert queue.completed == [2]
        assert "Error during audio playback of unit 1" in caplog.text

    @pytest.mark.asyncio
    async def test_unit_enqueued_while_idle_starts_immediately(self, settle):
        player = GatedPlayer()
        queue = PlaybackQueue(player, LOGGER)
        queue.enqueue(unit(1))
        player.release(1)
        await queue.drain()

        queue.enqueue(unit(2))
        await settle()

        assert player.started == [1, 2]
        player.release(2)
        await asyncio.wait_for(queue.drain(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_cancel_drops_queued_units(self, settle):
        player = GatedPlayer()
        queue = PlaybackQueue(player, LOGGER)
        queue.enqueue(unit(1))
        queue.enqueue(unit(2))
        await settle()

        await queue.cancel()

        assert len(queue) == 0
        assert player.finished == []
        assert player.started == [1]
        await asyncio.wait_for(queue.drain(), timeout=1.0)


class TestAssembler:
    @pytest.mark.asyncio
    async def test_two_deltas_become_one_unit(self, settle):
        """QQ== and Qg== decode to A and B: a 44-byte header plus 2 bytes of PCM."""
        queue = PlaybackQueue(NullAudioPlayer(LOGGER), LOGGER)
        assembler = AudioPlaybackAssembler(queue, LOGGER)

        assert assembler.add_delta("QQ==")
        assert assembler.add_delta("Qg==")
        produced = assembler.finalize()
        await queue.drain()

        assert produced.pcm == b"AB"
        assert len(produced.wav_bytes) == 46
        assert produced.wav_bytes[-2:] == b"AB"
        assert produced.wav_bytes[:4] == b"RIFF"
        assert queue.completed == [1]

    @pytest.mark.asyncio
    async def test_malformed_delta_is_skipped(self):
        queue = PlaybackQueue(NullAudioPlayer(LOGGER), LOGGER)
        assembler = AudioPlaybackAssembler(queue, LOGGER)

        assert assembler.add_delta("QQ==")
        assert not assembler.add_delta("%%%")
        assert not assembler.add_delta("")
        assert assembler.buffered_bytes == 1

        assert assembler.finalize().pcm == b"A"
        await queue.drain()

    @pytest.mark.asyncio
    async def test_response_without_audio_produces_nothing(self):
        queue = PlaybackQueue(NullAudioPlayer(LOGGER), LOGGER)
        assembler = AudioPlaybackAssembler(queue, LOGGER)

        assert assembler.finalize() is None
        assert assembler.state is AssemblerState.FINALIZED
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_responses_are_numbered_and_not_mixed(self):
        queue = PlaybackQueue(NullAudioPlayer(LOGGER), LOGGER)
        assembler = AudioPlaybackAssembler(queue, LOGGER)

        assembler.add_delta("QQ==")
        first = assembler.finalize()
        assembler.add_delta("Qg==")
        assert assembler.state is AssemblerState.COLLECTING
        second = assembler.finalize()
        await queue.drain()

        assert (first.sequence, first.pcm) == (1, b"A")
        assert (second.sequence, second.pcm) == (2, b"B")
        assert queue.completed == [1, 2]


class TestWavFileRecorder:
    @pytest.mark.asyncio
    async def test_units_are_written_as_wav_files(self, tmp_path):
        recorder = WavFileRecorder(tmp_path / "out", prefix="answer")
        pcm = b"\x01\x00\xff\x7f"

        await recorder.play(PlayableAudioUnit(pcm=pcm, sequence=3))

        path = tmp_path / "out" / "answer_0003.wav"
        assert recorder.paths == [path]
        with wave.open(str(path), "rb") as wf:
            assert wf.getframerate() == 24000
            assert wf.readframes(wf.getnframes()) == pcm

    def test_duration(self):
        assert PlayableAudioUnit(pcm=b"\x00" * 48000, sequence=1).duration_seconds == 1.0
