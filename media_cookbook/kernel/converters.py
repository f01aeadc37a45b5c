"""
Per-frame converters placed between decoder and encoder when no filter graph is used.

- Rescaler: pixel format and/or size conversion (swscale via VideoReformatter).
- Resampler: sample format / rate / layout conversion (swresample via AudioResampler).

The resampler may return fewer frames than it was fed (it buffers while
it has too few samples, or while flushing) or more (catching up on its
internal delay); callers must consume exactly what each call returns.
"""

import logging

import av
from av.audio.resampler import AudioResampler
from av.video.reformatter import VideoReformatter

from media_cookbook.errors import MalformedError, translate_av_error
from media_cookbook.kernel.resources import ResourceRegistry

logger = logging.getLogger(__name__)


class Rescaler:
    def __init__(self, registry: ResourceRegistry, width: int, height: int, pixel_format: str) -> None:
        self.width = width
        self.height = height
        self.pixel_format = pixel_format
        self._handle = registry.rescaler(VideoReformatter())
        self.frames_converted = 0

    def needed_for(self, frame: av.VideoFrame) -> bool:
        return (frame.width, frame.height, frame.format.name) != (self.width, self.height, self.pixel_format)

    def convert(self, frame: av.VideoFrame) -> av.VideoFrame:
        if not self.needed_for(frame):
            return frame
        try:
            out = self._handle.get().reformat(frame, width=self.width, height=self.height, format=self.pixel_format)
        except (av.error.FFmpegError, ValueError) as e:
            raise translate_av_error(e, "rescale failed", default=MalformedError) from e
        self.frames_converted += 1
        return out


class Resampler:
    def __init__(
        self,
        registry: ResourceRegistry,
        sample_format: str,
        channel_layout: str,
        sample_rate: int,
        frame_size: int | None = None,
    ) -> None:
        self.sample_format = sample_format
        self.channel_layout = channel_layout
        self.sample_rate = sample_rate
        resampler = AudioResampler(format=sample_format, layout=channel_layout, rate=sample_rate, frame_size=frame_size)
        self._handle = registry.resampler(resampler)
        self.samples_in = 0
        self.samples_out = 0
        self._flushed = False

    def needed_for(self, frame: av.AudioFrame) -> bool:
        return (frame.format.name, frame.layout.name, frame.sample_rate) != (
            self.sample_format,
            self.channel_layout,
            self.sample_rate,
        )

    def convert(self, frame: av.AudioFrame | None) -> list[av.AudioFrame]:
        """Convert one frame (``None`` flushes). Returns however many frames the resampler produced."""
        if frame is None:
            if self._flushed:
                return []
            self._flushed = True
        else:
            self.samples_in += frame.samples
        try:
            out = self._handle.get().resample(frame)
        except (av.error.FFmpegError, ValueError) as e:
            raise translate_av_error(e, "resample failed", default=MalformedError) from e
        self.samples_out += sum(f.samples for f in out)
        return out

    def flush(self) -> list[av.AudioFrame]:
        frames = self.convert(None)
        logger.debug("[resampler] Flushed: %d samples in, %d samples out", self.samples_in, self.samples_out)
        return frames
