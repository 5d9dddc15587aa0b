"""
Media Use Case

Local microphone capture and remote audio output for one call attempt.
Capture and playback themselves are delegated to aiortc's media helpers.
"""

from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from duet.tools.errors import MediaAccessDenied
from duet.tools.logger import log_debug, log_info, log_warning
from typing import Optional
import platform

# Capture device and ffmpeg input format per platform
DEFAULT_CAPTURE_DEVICES = {
    "Linux": ("default", "pulse"),
    "Darwin": (":0", "avfoundation"),
    "Windows": ("audio=default", "dshow"),
}


class LocalMedia:
    """Handle on the local audio capture for one call attempt."""

    def __init__(self, player):
        self.player = player
        self._stopped = False

    @property
    def audio_track(self):
        return self.player.audio if self.player else None

    def stop(self):
        """Stop capture. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        track = self.audio_track
        if track is not None:
            track.stop()
            log_debug("Local audio track stopped")


class RemoteAudioSink:
    """Routes remote audio tracks to a recording file or discards them."""

    def __init__(self, record_to: Optional[str] = None):
        self.record_to = record_to
        self.recorder = MediaRecorder(record_to) if record_to else MediaBlackhole()
        self._started = False
        self._stopped = False

    async def attach(self, track):
        if self._stopped:
            return
        self.recorder.addTrack(track)
        if not self._started:
            self._started = True
            await self.recorder.start()
            log_info(
                f"Remote audio routed to {self.record_to}"
                if self.record_to
                else "Remote audio received (discarded, no output configured)"
            )

    async def stop(self):
        if self._stopped:
            return
        self._stopped = True
        if self._started:
            await self.recorder.stop()


def _default_capture_device():
    return DEFAULT_CAPTURE_DEVICES.get(platform.system(), ("default", "pulse"))


async def acquire_local_media(source: Optional[str] = None, media_format: Optional[str] = None) -> LocalMedia:
    """
    Open the local microphone (or an audio file/device given as source).

    Args:
        source: ffmpeg input (device name or file path); platform default if None
        media_format: ffmpeg input format (e.g. "pulse", "alsa"); inferred if None

    Returns:
        LocalMedia wrapping the capture player

    Raises:
        MediaAccessDenied: if the device cannot be opened or has no audio
    """
    if source is None:
        source, default_format = _default_capture_device()
        media_format = media_format or default_format

    log_info(f"Requesting audio capture from {source} ({media_format or 'auto'})")
    try:
        player = MediaPlayer(source, format=media_format) if media_format else MediaPlayer(source)
    except Exception as e:
        raise MediaAccessDenied(f"Cannot open audio source {source!r}: {e}") from e

    if player.audio is None:
        if player.video is not None:
            player.video.stop()
        raise MediaAccessDenied(f"Audio source {source!r} has no audio stream")

    log_info("Microphone stream active")
    return LocalMedia(player)


def release_local_media(media: Optional[LocalMedia]):
    if media is None:
        return
    try:
        media.stop()
    except Exception as e:
        log_warning(f"Error stopping local media: {e}")
