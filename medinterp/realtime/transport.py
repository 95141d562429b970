"""
Session Transport Module

Owns the realtime audio session with the remote interpreter service:
- Local capture track (microphone) sent to the service
- Peer connection negotiated with an SDP offer/answer exchange
- Reliable data channel ("side-channel") carrying protocol events
- Remote audio routed to a playback sink
- Periodic volume metering of both directions

State machine:
    IDLE -> ACQUIRING_PERMISSIONS -> FETCHING_CREDENTIAL -> NEGOTIATING
         -> ACTIVE -> STOPPING -> IDLE

Any failure tears down whatever was acquired and returns to IDLE.
close() is idempotent and only returns once every resource is released.
"""

import asyncio
import inspect
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import numpy as np
from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder

from medinterp.config import AudioConfig, RealtimeConfig, settings
from medinterp.core.realtime_api import (
    CaptureError,
    CredentialProvider,
    HttpCredentialProvider,
    NegotiationError,
    RealtimeNegotiator,
    TransportError,
)
from medinterp.logger import get_logger
from medinterp.messages import msg

logger = get_logger(__name__)

DATA_CHANNEL_LABEL = "response"

# Byte scaling of the analyser's frequency bins
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0

MessageCallback = Callable[[str], Awaitable[Any]]
ChannelOpenCallback = Callable[["SideChannel"], Union[None, Awaitable[None]]]
StatusCallback = Callable[[str], None]


class TransportState(str, Enum):
    """Lifecycle states of the transport."""
    IDLE = "idle"
    ACQUIRING_PERMISSIONS = "acquiring-permissions"
    FETCHING_CREDENTIAL = "fetching-credential"
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    STOPPING = "stopping"


# ============================================================================
# Metering
# ============================================================================

class AudioLevelMeter:
    """
    Fixed-size analyser over the most recent samples of a stream.

    Mirrors a browser analyser node: `fft_size` time-domain bytes centred
    on 128 and `fft_size / 2` frequency bins scaled to 0..255.
    """

    def __init__(self, fft_size: int = 256):
        if fft_size <= 0 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a positive power of two")
        self.fft_size = fft_size
        self._buffer = np.zeros(fft_size, dtype=np.float32)
        self._window = np.blackman(fft_size)

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def feed(self, samples: np.ndarray) -> None:
        """Push PCM samples (int16 or float in [-1, 1]) into the buffer."""
        data = np.asarray(samples)
        if np.issubdtype(data.dtype, np.integer):
            data = data.astype(np.float32) / 32768.0
        data = data.astype(np.float32, copy=False).ravel()
        if data.size == 0:
            return
        if data.size >= self.fft_size:
            self._buffer = data[-self.fft_size:].copy()
        else:
            self._buffer = np.concatenate((self._buffer[data.size:], data))

    def feed_frame(self, frame: Any) -> None:
        """Push an `av.AudioFrame`."""
        self.feed(frame.to_ndarray())

    def reset(self) -> None:
        self._buffer = np.zeros(self.fft_size, dtype=np.float32)

    def time_domain_data(self) -> np.ndarray:
        return np.clip(np.round(128.0 + self._buffer * 128.0), 0, 255).astype(np.uint8)

    def frequency_data(self) -> np.ndarray:
        spectrum = np.abs(np.fft.rfft(self._buffer * self._window))[: self.bin_count] / self.fft_size
        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(spectrum)
        scaled = (db - MIN_DECIBELS) * 255.0 / (MAX_DECIBELS - MIN_DECIBELS)
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def rms_volume(self) -> float:
        """Root-mean-square of the time-domain bytes, 0.0 for silence."""
        data = (self.time_domain_data().astype(np.float64) - 128.0) / 128.0
        return float(np.sqrt(np.mean(data * data)))

    def average_level(self) -> float:
        """Mean frequency byte, compared against the speaking threshold."""
        return float(np.mean(self.frequency_data()))


class MeteredAudioTrack(MediaStreamTrack):
    """Relays an audio track unchanged while feeding a level meter."""

    kind = "audio"

    def __init__(self, source: MediaStreamTrack, meter: AudioLevelMeter):
        super().__init__()
        self._source = source
        self._meter = meter

    async def recv(self):
        frame = await self._source.recv()
        try:
            self._meter.feed_frame(frame)
        except (AttributeError, ValueError) as e:
            logger.debug(f"Skipping unmeterable frame: {e}")
        return frame

    def stop(self) -> None:
        super().stop()
        self._source.stop()


# ============================================================================
# Side-channel
# ============================================================================

class SideChannel:
    """
    Non-owning view of the data channel used for protocol events.

    Sending on a closed channel logs and returns False.
    """

    def __init__(self, channel: Any):
        self._channel = channel

    @property
    def is_open(self) -> bool:
        return self._channel is not None and getattr(self._channel, "readyState", None) == "open"

    @property
    def label(self) -> str:
        return getattr(self._channel, "label", DATA_CHANNEL_LABEL)

    def send_event(self, event: Dict[str, Any]) -> bool:
        if not self.is_open:
            logger.warning(f"Data channel not open, cannot send {event.get('type')}")
            return False
        try:
            self._channel.send(json.dumps(event))
        except Exception as e:
            logger.error(f"Failed to send {event.get('type')}: {e}")
            return False
        logger.debug(f"Sent event: {event.get('type')}")
        return True

    def close(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.close()


# ============================================================================
# Default factories
# ============================================================================

def default_capture_factory(config: AudioConfig) -> MediaPlayer:
    return MediaPlayer(config.capture_device, format=config.capture_format)


def default_playback_factory(config: AudioConfig) -> Any:
    if config.playback_file:
        return MediaRecorder(config.playback_file)
    return MediaBlackhole()


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


# ============================================================================
# Transport
# ============================================================================

class SessionTransport:
    """
    Realtime audio session over WebRTC.

    Usage:
        transport = SessionTransport()
        channel = await transport.open(handler.handle_message, on_channel_open)
        ...
        await transport.close()
    """

    def __init__(
        self,
        credential_provider: Optional[CredentialProvider] = None,
        negotiator: Optional[RealtimeNegotiator] = None,
        audio_config: Optional[AudioConfig] = None,
        realtime_config: Optional[RealtimeConfig] = None,
        capture_factory: Optional[Callable[[AudioConfig], Any]] = None,
        peer_factory: Optional[Callable[[], Any]] = None,
        playback_factory: Optional[Callable[[AudioConfig], Any]] = None,
        on_status: Optional[StatusCallback] = None,
    ):
        self._audio = audio_config or settings.audio
        realtime = realtime_config or settings.realtime
        self._credentials = credential_provider or HttpCredentialProvider(config=realtime)
        self._negotiator = negotiator or RealtimeNegotiator(config=realtime)
        self._capture_factory = capture_factory or default_capture_factory
        self._peer_factory = peer_factory or RTCPeerConnection
        self._playback_factory = playback_factory or default_playback_factory
        self.on_status = on_status

        self.local_meter = AudioLevelMeter(self._audio.fft_size)
        self.remote_meter = AudioLevelMeter(self._audio.fft_size)

        self._state = TransportState.IDLE
        self._abort = False
        self._teardown_lock = asyncio.Lock()
        self._reset_handles()

    def _reset_handles(self) -> None:
        self._capture: Any = None
        self._local_track: Optional[MeteredAudioTrack] = None
        self._remote_tracks: list = []
        self._pc: Any = None
        self._playback: Any = None
        self._playback_started = False
        self._channel: Optional[SideChannel] = None
        self._inbound: Optional[asyncio.Queue] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._meter_task: Optional[asyncio.Task] = None
        self._on_message: Optional[MessageCallback] = None
        self._on_channel_open: Optional[ChannelOpenCallback] = None
        self._current_volume = 0.0
        self._local_speaking = False

    # ========================================================================
    # State
    # ========================================================================

    def _set_state(self, state: TransportState, label: Optional[str] = None) -> None:
        if state != self._state:
            logger.debug(f"Transport state: {self._state.value} -> {state.value}")
        self._state = state
        if label and self.on_status:
            self.on_status(label)

    def _check_aborted(self) -> None:
        if self._abort:
            raise TransportError("Session stopped before it was established")

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == TransportState.ACTIVE

    @property
    def channel(self) -> Optional[SideChannel]:
        return self._channel

    @property
    def current_volume(self) -> float:
        return self._current_volume

    @property
    def local_speaking(self) -> bool:
        return self._local_speaking

    # ========================================================================
    # Open
    # ========================================================================

    async def open(
        self,
        on_message: MessageCallback,
        on_channel_open: Optional[ChannelOpenCallback] = None,
    ) -> SideChannel:
        """
        Establish the session.

        Args:
            on_message: Awaited once per inbound side-channel message, in order
            on_channel_open: Called with the side-channel when it opens

        Returns:
            The side-channel (may not be open yet)

        Raises:
            TransportError: On any failure; resources are released first
        """
        if self._state != TransportState.IDLE:
            raise TransportError(f"Transport is busy ({self._state.value})")

        self._abort = False
        self._on_message = on_message
        self._on_channel_open = on_channel_open

        try:
            self._set_state(TransportState.ACQUIRING_PERMISSIONS, msg("status.requesting_microphone"))
            self._acquire_capture()

            self._set_state(TransportState.FETCHING_CREDENTIAL, msg("status.fetching_token"))
            token = await self._credentials.fetch()
            self._check_aborted()

            self._set_state(TransportState.NEGOTIATING, msg("status.establishing"))
            await self._negotiate(token)
            self._check_aborted()

            self._meter_task = asyncio.create_task(self._meter_loop())
            self._set_state(TransportState.ACTIVE)
            logger.info("Realtime session established")
            return self._channel
        except asyncio.CancelledError:
            await self._teardown()
            raise
        except TransportError as e:
            logger.error(f"Session setup failed: {e}")
            await self._teardown()
            raise
        except Exception as e:
            logger.error(f"Session setup failed: {e}")
            await self._teardown()
            raise NegotiationError(f"Connection failed: {e}") from e

    def _acquire_capture(self) -> None:
        try:
            self._capture = self._capture_factory(self._audio)
        except Exception as e:
            raise CaptureError(f"Could not access microphone: {e}") from e

        source = getattr(self._capture, "audio", None)
        if source is None:
            raise CaptureError("Capture device has no audio track")
        self._local_track = MeteredAudioTrack(source, self.local_meter)
        logger.debug(f"Capture acquired: {self._audio.capture_device} ({self._audio.capture_format})")

    async def _negotiate(self, token: str) -> None:
        pc = self._peer_factory()
        self._pc = pc
        self._playback = self._playback_factory(self._audio)
        pc.on("track", self._on_remote_track)

        self._inbound = asyncio.Queue()
        self._pump_task = asyncio.create_task(self._pump())

        data_channel = pc.createDataChannel(DATA_CHANNEL_LABEL)
        self._channel = SideChannel(data_channel)
        data_channel.on("open", self._handle_channel_open)
        data_channel.on("message", self._handle_channel_message)

        pc.addTrack(self._local_track)

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        self._check_aborted()

        answer = await self._negotiator.exchange(pc.localDescription.sdp, token)
        self._check_aborted()

        await pc.setRemoteDescription(RTCSessionDescription(sdp=answer, type="answer"))
        await self._playback.start()
        self._playback_started = True

    # ========================================================================
    # Peer callbacks
    # ========================================================================

    def _on_remote_track(self, track: Any) -> None:
        if getattr(track, "kind", None) != "audio":
            return
        logger.debug("Remote audio track received")
        metered = MeteredAudioTrack(track, self.remote_meter)
        self._remote_tracks.append(metered)
        if self._playback is not None:
            self._playback.addTrack(metered)

    def _handle_channel_open(self) -> None:
        logger.info("Data channel open")
        if self._on_channel_open is None or self._channel is None:
            return
        result = self._on_channel_open(self._channel)
        if inspect.isawaitable(result):
            asyncio.ensure_future(result)

    def _handle_channel_message(self, message: Union[str, bytes]) -> None:
        if self._inbound is not None:
            self._inbound.put_nowait(message)

    async def _pump(self) -> None:
        """Deliver inbound messages one at a time, in arrival order."""
        queue = self._inbound
        # A teardown run from inside the handler swaps the queue out; stop then.
        while self._inbound is queue:
            message = await queue.get()
            if self._on_message is None:
                continue
            try:
                await self._on_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Inbound message handler failed: {e}")

    async def _meter_loop(self) -> None:
        interval = self._audio.meter_interval_s
        threshold = self._audio.speaking_threshold
        while True:
            await asyncio.sleep(interval)
            self._local_speaking = self.local_meter.average_level() > threshold
            self._current_volume = self.remote_meter.rms_volume()

    # ========================================================================
    # Close
    # ========================================================================

    async def close(self) -> None:
        """Release every resource. Safe to call at any time, any number of times."""
        self._abort = True
        if self._state == TransportState.IDLE and self._pc is None and self._capture is None:
            return
        self._set_state(TransportState.STOPPING, msg("status.stopping"))
        await self._teardown()

    async def _teardown(self) -> None:
        async with self._teardown_lock:
            logger.info("Cleaning up session resources...")

            current = asyncio.current_task()
            for task in (self._meter_task, self._pump_task):
                if task is not None and task is not current and not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass

            if self._channel is not None:
                await self._release("data channel", self._channel.close)

            pc = self._pc
            if pc is not None:
                for transceiver in list(pc.getTransceivers()):
                    await self._release("transceiver", transceiver.stop)
                await self._release("peer connection", pc.close)

            if self._playback is not None and self._playback_started:
                await self._release("playback sink", self._playback.stop)

            for track in self._remote_tracks:
                await self._release("remote track", track.stop)
            if self._local_track is not None:
                await self._release("local track", self._local_track.stop)
            elif self._capture is not None and getattr(self._capture, "audio", None) is not None:
                await self._release("capture track", self._capture.audio.stop)

            self.local_meter.reset()
            self.remote_meter.reset()
            self._reset_handles()
            self._set_state(TransportState.IDLE)
            logger.info("Session resources released")

    @staticmethod
    async def _release(what: str, fn: Callable[[], Any]) -> None:
        try:
            await _maybe_await(fn())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error closing {what}: {e}")
