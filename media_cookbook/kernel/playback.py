"""
Synchronized A/V playback simulation.

Architecture:
  demux thread --video packets--> PacketQueue --> video thread (decode, wait for clock, present)
               --audio packets--> PacketQueue --> audio thread (decode, "play", publish AudioClock)

The audio thread is the master clock: after decoding a frame it stores the
frame's PTS (seconds) in the ``AudioClock`` and sleeps for the frame's
duration to simulate playback. The video thread compares each frame's PTS to
the clock before presenting it: if the frame is early it waits, if it is
late by more than ``settings.playback_lag_threshold`` it reports a lag.
Frames are never dropped.

The demuxer throttles while either queue is above its soft cap and, on end of
input, finishes both queues so the consumers wake up and exit. ``stop()``
aborts all three threads promptly.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import av

from media_cookbook.configs import settings
from media_cookbook.errors import BadParameterError, MediaError, translate_av_error
from media_cookbook.kernel.input_stage import DecoderState, InputStage
from media_cookbook.kernel.resources import ResourceRegistry
from media_cookbook.kernel.streams import to_seconds
from media_cookbook.schemas import MediaKind

logger = logging.getLogger(__name__)

_THROTTLE_SLEEP = 0.01  # Demuxer back-off while a queue is over its cap (seconds)
_CLOCK_POLL = 0.005  # Video wait granularity in media seconds


class PacketQueue:
    """
    Thread-safe FIFO of packets between the demuxer and one consumer.

    ``finish()`` marks the end of input: consumers drain what is left and then
    get ``None``. ``stop()`` aborts: consumers get ``None`` immediately.
    """

    def __init__(self) -> None:
        self._items: deque = deque()
        self._cond = threading.Condition()
        self._finished = False
        self._stopped = False

    def push(self, item) -> None:
        with self._cond:
            if self._stopped:
                return
            self._items.append(item)
            self._cond.notify()

    def pop(self):
        """Return the next item without waiting, or ``None`` when empty."""
        with self._cond:
            if self._stopped or not self._items:
                return None
            return self._items.popleft()

    def wait_and_pop(self, timeout: float | None = None):
        """Block until an item is available; ``None`` on end of input, stop, or timeout."""
        with self._cond:
            self._cond.wait_for(lambda: self._items or self._finished or self._stopped, timeout)
            if self._stopped or not self._items:
                return None
            return self._items.popleft()

    def finish(self) -> None:
        with self._cond:
            self._finished = True
            self._cond.notify_all()

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._items.clear()
            self._cond.notify_all()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def qsize(self) -> int:
        with self._cond:
            return len(self._items)


class AudioClock:
    """Playback position of the audio thread in seconds. Only ever moves forward."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0.0
        self._started = False

    def store(self, seconds: float) -> None:
        with self._lock:
            if not self._started or seconds > self._value:
                self._value = seconds
            self._started = True

    def load(self) -> float:
        with self._lock:
            return self._value

    @property
    def started(self) -> bool:
        return self._started


@dataclass(slots=True, frozen=True)
class PresentedFrame:
    pts: float  # Video frame PTS in seconds
    clock: float  # Audio clock when the frame was presented
    lagging: bool


@dataclass(slots=True)
class PlaybackStats:
    video_packets: int = 0
    audio_packets: int = 0
    audio_frames: int = 0
    decode_errors: int = 0
    lag_events: int = 0
    throttle_waits: int = 0
    presented: list[PresentedFrame] = field(default_factory=list)


class SyncPlayer:
    """
    Play a file's first video and audio streams against an audio master clock.

    Args:
        path: Input media path.
        speed: Playback speed factor; simulated sleeps are divided by it.
        sleep: Sleep function (injected by tests).
        on_present: Called with each ``PresentedFrame``, on the video thread.
        on_lag: Called with ``(pts, diff)`` when a frame is presented late.
    """

    def __init__(
        self,
        path: str | Path,
        speed: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        on_present: Callable[[PresentedFrame], None] | None = None,
        on_lag: Callable[[float, float], None] | None = None,
    ) -> None:
        if speed <= 0:
            raise BadParameterError(f"playback speed must be positive, got {speed}")
        self.path = Path(path)
        self.speed = speed
        self.on_present = on_present
        self.on_lag = on_lag
        self.clock = AudioClock()
        self.stats = PlaybackStats()
        self.video_queue = PacketQueue()
        self.audio_queue = PacketQueue()
        self._sleep = sleep
        self._audio_done = threading.Event()
        self._stop = threading.Event()
        self._errors: list[BaseException] = []
        self._errors_lock = threading.Lock()

    def stop(self) -> None:
        self._stop.set()
        self.video_queue.stop()
        self.audio_queue.stop()

    def run(self) -> PlaybackStats:
        registry = ResourceRegistry()
        try:
            stage = InputStage(registry).open(self.path)
            video = stage.open_decoder(stage.select_stream(MediaKind.VIDEO))
            audio = stage.open_decoder(stage.select_stream(MediaKind.AUDIO))
            logger.info("[playback] Starting %s at %.2fx", self.path.name, self.speed)

            threads = [
                threading.Thread(target=self._guard(loop), args=args, name=f"playback-{name}")
                for name, loop, args in (
                    ("demux", self._demux_loop, (stage, video, audio)),
                    ("audio", self._audio_loop, (audio,)),
                    ("video", self._video_loop, (video,)),
                )
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        finally:
            registry.release_all()

        if self._errors:
            raise self._errors[0]
        logger.info(
            "[playback] Finished: %d video frames presented, %d audio frames, %d lag events",
            len(self.stats.presented),
            self.stats.audio_frames,
            self.stats.lag_events,
        )
        return self.stats

    def _guard(self, target: Callable) -> Callable:
        def wrapper(*args):
            try:
                target(*args)
            except BaseException as e:
                if isinstance(e, av.error.FFmpegError | OSError) and not isinstance(e, MediaError):
                    e = translate_av_error(e, "playback failed")
                with self._errors_lock:
                    self._errors.append(e)
                logger.error("[playback] %s stopped: %s", threading.current_thread().name, e)
                self.stop()
                self._audio_done.set()

        return wrapper

    # --- Threads ------------------------------------------------------------

    def _demux_loop(self, stage: InputStage, video: DecoderState, audio: DecoderState) -> None:
        video_index = video.descriptor.index
        try:
            for packet in stage.packets([video_index, audio.descriptor.index]):
                if self._stop.is_set():
                    break
                while not self._stop.is_set() and self._should_throttle():
                    self.stats.throttle_waits += 1
                    time.sleep(_THROTTLE_SLEEP)
                if packet.stream.index == video_index:
                    self.stats.video_packets += 1
                    self.video_queue.push(packet)
                else:
                    self.stats.audio_packets += 1
                    self.audio_queue.push(packet)
        finally:
            self.video_queue.finish()
            self.audio_queue.finish()
            logger.debug("[playback] Demux finished")

    def _should_throttle(self) -> bool:
        video, audio = self.video_queue.qsize(), self.audio_queue.qsize()
        if video == 0 or audio == 0:
            # A starving consumer may be the one the other is waiting on
            return False
        return video > settings.playback_video_queue_cap or audio > settings.playback_audio_queue_cap

    def _decode(self, decoder: DecoderState, packet) -> list:
        try:
            return decoder.decode(packet)
        except av.error.FFmpegError as e:
            # A single bad packet is skipped
            self.stats.decode_errors += 1
            logger.warning("[playback] Decoder rejected packet (pts=%s): %s", packet.pts, e)
            return []

    def _packets_then_flush(self, queue: PacketQueue, decoder: DecoderState):
        while not self._stop.is_set():
            packet = queue.wait_and_pop()
            if packet is None:
                break
            yield from self._decode(decoder, packet)
        if not self._stop.is_set():
            yield from decoder.flush()

    def _audio_loop(self, decoder: DecoderState) -> None:
        time_base = decoder.descriptor.time_base
        try:
            for frame in self._packets_then_flush(self.audio_queue, decoder):
                seconds = to_seconds(frame.pts, frame.time_base or time_base)
                if seconds is not None:
                    self.clock.store(seconds)
                self.stats.audio_frames += 1
                self._sleep(frame.samples / frame.sample_rate / self.speed)
        finally:
            self._audio_done.set()

    def _video_loop(self, decoder: DecoderState) -> None:
        time_base = decoder.descriptor.time_base
        threshold = settings.playback_lag_threshold
        for frame in self._packets_then_flush(self.video_queue, decoder):
            pts = to_seconds(frame.pts, frame.time_base or time_base)
            if pts is None:
                continue
            while not self._stop.is_set() and not self._audio_done.is_set():
                diff = pts - self.clock.load()
                if diff <= 0:
                    break
                self._sleep(min(diff, _CLOCK_POLL) / self.speed)

            clock = self.clock.load()
            diff = pts - clock
            lagging = diff < -threshold
            if lagging:
                self.stats.lag_events += 1
                logger.warning(
                    "[playback] Video lagging behind! pts=%.3fs clock=%.3fs (%.0f ms)", pts, clock, diff * 1000
                )
                if self.on_lag is not None:
                    self.on_lag(pts, diff)
            presented = PresentedFrame(pts=pts, clock=clock, lagging=lagging)
            self.stats.presented.append(presented)
            if self.on_present is not None:
                self.on_present(presented)
