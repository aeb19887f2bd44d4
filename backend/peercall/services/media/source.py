"""
Device Media Source - camera and microphone capture through ffmpeg.

Wraps aiortc's MediaPlayer. Opening a capture device may block (device
probing, OS permission prompt), so players are opened in the default
executor. Stopping every track of a player closes the underlying device.
"""
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from aiortc.contrib.media import MediaPlayer

from peercall.config.constants import (
    AUDIO_FORMAT_FALLBACKS,
    DEFAULT_VIDEO_FRAMERATE,
    DEFAULT_VIDEO_SIZE,
    VIDEO_FORMAT_BY_PLATFORM,
)
from peercall.services.call.exceptions import MediaAccessError
from peercall.services.protocols import MediaConstraints

logger = logging.getLogger(__name__)


@dataclass
class CapturedMedia:
    """Owns the media players so their tracks stay alive until release()."""

    players: List[MediaPlayer] = field(default_factory=list)
    tracks: List[Any] = field(default_factory=list)
    released: bool = False

    @property
    def audio_track(self):
        return next((t for t in self.tracks if t.kind == "audio"), None)

    @property
    def video_track(self):
        return next((t for t in self.tracks if t.kind == "video"), None)

    def release(self):
        if self.released:
            return
        self.released = True
        for track in self.tracks:
            track.stop()
        logger.info(f"[Media] Released {len(self.tracks)} track(s)")


class DeviceMediaSource:
    """MediaSource implementation for local capture devices."""

    def __init__(
        self,
        video_device: Optional[str] = None,
        video_format: Optional[str] = None,
        audio_device: str = "default",
        audio_format: Optional[str] = None,
        video_size: str = DEFAULT_VIDEO_SIZE,
        framerate: str = DEFAULT_VIDEO_FRAMERATE,
    ):
        self.video_device = video_device
        self.video_format = video_format
        self.audio_device = audio_device
        self.audio_format = audio_format
        self.video_size = video_size
        self.framerate = framerate

    @classmethod
    def from_settings(cls, settings) -> "DeviceMediaSource":
        return cls(
            video_device=settings.VIDEO_DEVICE,
            video_format=settings.VIDEO_FORMAT,
            audio_device=settings.AUDIO_DEVICE,
            audio_format=settings.AUDIO_FORMAT,
        )

    async def acquire(self, constraints: MediaConstraints) -> CapturedMedia:
        loop = asyncio.get_running_loop()
        media = await loop.run_in_executor(None, self._open, constraints)
        logger.info(
            f"[Media] Capturing audio={media.audio_track is not None} "
            f"video={media.video_track is not None}"
        )
        return media

    def release(self, handle: Optional[CapturedMedia]) -> None:
        if handle is None:
            return
        handle.release()

    def _open(self, constraints: MediaConstraints) -> CapturedMedia:
        media = CapturedMedia()
        try:
            if constraints.video:
                player = self._open_video()
                media.players.append(player)
                media.tracks.append(player.video)
            if constraints.audio:
                player = self._open_audio()
                media.players.append(player)
                media.tracks.append(player.audio)
        except MediaAccessError:
            media.release()
            raise
        return media

    def _video_source(self) -> Tuple[str, str]:
        default_device, default_format = VIDEO_FORMAT_BY_PLATFORM.get(
            sys.platform, VIDEO_FORMAT_BY_PLATFORM["linux"]
        )
        return self.video_device or default_device, self.video_format or default_format

    def _open_video(self) -> MediaPlayer:
        device, fmt = self._video_source()
        options = {"video_size": self.video_size, "framerate": self.framerate}
        try:
            player = MediaPlayer(device, format=fmt, options=options)
        except Exception as e:
            raise MediaAccessError(f"Camera {device!r} ({fmt}) unavailable: {e}") from e
        if player.video is None:
            raise MediaAccessError(f"Camera {device!r} ({fmt}) has no video stream")
        return player

    def _open_audio(self) -> MediaPlayer:
        formats = (self.audio_format,) if self.audio_format else AUDIO_FORMAT_FALLBACKS
        errors = []
        for fmt in formats:
            try:
                player = MediaPlayer(self.audio_device, format=fmt)
            except Exception as e:
                errors.append(f"{fmt}: {e}")
                continue
            if player.audio is not None:
                return player
            errors.append(f"{fmt}: no audio stream")
        raise MediaAccessError(f"Microphone {self.audio_device!r} unavailable ({'; '.join(errors)})")
