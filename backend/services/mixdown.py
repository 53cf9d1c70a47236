"""
Offline mixdown of a multitrack session into a single WAV file.

Active tracks (effective gain above zero) are fetched concurrently, decoded
with pydub, summed at their start offsets into a stereo float buffer and
encoded as 16-bit PCM. Rendering is deterministic: identical decoded inputs
always give byte-identical output.
"""
import asyncio
import base64
import io
import logging
import math
import struct
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

import httpx
import numpy as np
from pydub import AudioSegment

from services.sessions import Track

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 44100
OUTPUT_CHANNELS = 2
WAV_HEADER_SIZE = 44
MAX_TRACK_BYTES = 200 * 1024 * 1024  # Prevent OOM on huge sources


class MixdownError(Exception):
    """The mix could not be rendered; no output is produced."""


@dataclass(frozen=True)
class DecodedAudio:
    samples: np.ndarray  # float64, shape (frames, channels), nominal range [-1, 1]
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate if self.sample_rate else 0.0


Decoder = Callable[[bytes, int, Optional[str]], DecodedAudio]


def _format_hint(url: str) -> Optional[str]:
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    if "." not in path.rsplit("/", 1)[-1]:
        return None
    return path.rsplit(".", 1)[-1].lower() or None


def decode_audio(data: bytes, sample_rate: int = DEFAULT_SAMPLE_RATE, format_hint: Optional[str] = None) -> DecodedAudio:
    """Decode any ffmpeg-readable payload into stereo float samples at ``sample_rate``."""
    try:
        segment = AudioSegment.from_file(io.BytesIO(data), format=format_hint)
    except Exception as e:
        raise MixdownError(f"Failed to decode audio: {type(e).__name__}") from e

    segment = segment.set_frame_rate(sample_rate).set_channels(OUTPUT_CHANNELS)
    samples = np.array(segment.get_array_of_samples(), dtype=np.float64)
    scale = float(1 << (8 * segment.sample_width - 1))
    return DecodedAudio(samples.reshape(-1, OUTPUT_CHANNELS) / scale, sample_rate)


def mix_layers(layers: Sequence[Tuple[float, float, DecodedAudio]], sample_rate: int = DEFAULT_SAMPLE_RATE) -> DecodedAudio:
    """Additively mix ``(start_position, gain, audio)`` layers.

    The output spans the union duration, ``ceil(total * sample_rate)`` frames.
    """
    if not layers:
        raise MixdownError("No active tracks to render")

    total_duration = max(start + audio.duration for start, _, audio in layers)
    frames = int(math.ceil(total_duration * sample_rate))
    output = np.zeros((frames, OUTPUT_CHANNELS), dtype=np.float64)

    for start, gain, audio in layers:
        if audio.sample_rate != sample_rate:
            raise MixdownError(f"Sample rate mismatch: {audio.sample_rate} != {sample_rate}")
        samples = audio.samples
        if samples.ndim == 1:
            samples = samples[:, None]
        if samples.shape[1] == 1:
            samples = np.repeat(samples, OUTPUT_CHANNELS, axis=1)
        offset = int(start * sample_rate)
        count = min(samples.shape[0], frames - offset)
        if count > 0:
            output[offset:offset + count] += samples[:count, :OUTPUT_CHANNELS] * gain

    return DecodedAudio(output, sample_rate)


def encode_wav(samples: np.ndarray, sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Encode float samples as a canonical 44-byte-header 16-bit PCM WAV."""
    samples = np.nan_to_num(np.asarray(samples, dtype=np.float64))
    if samples.ndim == 1:
        samples = samples[:, None]
    channels = samples.shape[1]

    clipped = np.clip(samples, -1.0, 1.0)
    # int16 is asymmetric: -1.0 -> -32768, 1.0 -> 32767
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    pcm = np.ascontiguousarray(np.round(scaled).astype("<i2"))
    data = pcm.tobytes()

    block_align = channels * 2
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        WAV_HEADER_SIZE - 8 + len(data),
        b"WAVE",
        b"fmt ",
        16,
        1,  # PCM
        channels,
        sample_rate,
        sample_rate * block_align,
        block_align,
        16,
        b"data",
        len(data),
    )
    return header + data


def to_data_url(data: bytes, content_type: str = "audio/wav") -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


class MixdownRenderer:
    def __init__(
        self,
        client: httpx.AsyncClient,
        decoder: Decoder = decode_audio,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        max_track_bytes: int = MAX_TRACK_BYTES,
    ):
        self.client = client
        self.decoder = decoder
        self.sample_rate = sample_rate
        self.max_track_bytes = max_track_bytes

    def _too_large(self, index: int) -> MixdownError:
        logger.warning(f"Track {index + 1} exceeds {self.max_track_bytes} bytes, aborting mixdown")
        return MixdownError(f"Track {index + 1} is too large to mix")

    async def _fetch(self, index: int, url: str) -> bytes:
        """Download a track, refusing anything over ``max_track_bytes`` before it is buffered."""
        chunks = []
        received = 0
        try:
            async with self.client.stream("GET", url) as response:
                response.raise_for_status()
                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > self.max_track_bytes:
                    raise self._too_large(index)
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_track_bytes:
                        raise self._too_large(index)
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            logger.warning(f"Mixdown fetch failed for track {index + 1} ({url[:100]}): {e}")
            raise MixdownError(f"Failed to fetch track {index + 1}") from e
        return b"".join(chunks)

    async def _load(self, index: int, track: Track) -> DecodedAudio:
        data = await self._fetch(index, track.source_url)
        try:
            return await asyncio.to_thread(self.decoder, data, self.sample_rate, _format_hint(track.source_url))
        except MixdownError as e:
            raise MixdownError(f"Failed to decode track {index + 1}: {e}") from e

    async def render(self, tracks: Sequence[Track], gains: Sequence[float]) -> DecodedAudio:
        """Render tracks with their effective gains; zero-gain tracks are never fetched."""
        if len(tracks) != len(gains):
            raise ValueError("tracks and gains must have the same length")

        active: List[Tuple[int, Track, float]] = [
            (index, track, gain) for index, (track, gain) in enumerate(zip(tracks, gains)) if gain > 0
        ]
        if not active:
            raise MixdownError("No active tracks to render")

        logger.info(f"Rendering mixdown of {len(active)}/{len(tracks)} track(s)")
        tasks = [asyncio.ensure_future(self._load(index, track)) for index, track, _ in active]
        try:
            decoded = await asyncio.gather(*tasks)
        except BaseException:
            # One failed track fails the mix; stop the rest
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        layers = [(track.start_position, gain, audio) for (_, track, gain), audio in zip(active, decoded)]
        return mix_layers(layers, self.sample_rate)

    async def render_wav(self, tracks: Sequence[Track], gains: Sequence[float]) -> bytes:
        mixed = await self.render(tracks, gains)
        return encode_wav(mixed.samples, mixed.sample_rate)
