"""
Hardware acceleration: runtime capability detection and frame-memory checks.

Detects available hardware encoders/decoders at first use and selects
the best available backend:
  - NVIDIA:         h264_nvenc / h264_cuvid (NVENC + CUDA)
  - Apple macOS:    h264_videotoolbox
  - Intel Linux:    h264_vaapi / h264_qsv
  - Fallback:       software encoder (libx264, or the first available fallback)

Decoding with a device is requested per input (``InputSpec.hwaccel``).
Frames produced by a hardware decoder live in device memory until they are
transferred; ``require_system_memory`` guards every CPU-side consumer
(filter graph, software encoder).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

import av
from av.codec.hwaccel import HWAccel, hwdevices_available

from media_cookbook.configs import settings
from media_cookbook.const import HW_DEVICE_PIXEL_FORMATS, HW_PIXEL_FORMATS, VIDEO_CODEC_FALLBACKS
from media_cookbook.errors import CodecUnavailableError, HardwareUnavailableError, MalformedError

logger = logging.getLogger(__name__)


class HWAccelType(Enum):
    NONE = "none"
    NVIDIA = "nvidia"
    VIDEOTOOLBOX = "videotoolbox"
    VAAPI = "vaapi"
    QSV = "qsv"


class FrameMemory(Enum):
    SYSTEM = "system"
    DEVICE = "device"


@dataclass
class HWCapability:
    """Detected hardware acceleration capability."""

    accel_type: HWAccelType = HWAccelType.NONE
    h264_encoder: str = "libx264"
    device_type: str | None = None  # Device type accepted by av.open(hwaccel=...)
    available_encoders: list[str] = field(default_factory=list)
    available_devices: list[str] = field(default_factory=list)


# Module-level singleton -- populated on first call to get_hw_capability()
_hw_capability: HWCapability | None = None


def probe_codec(name: str, mode: str = "w") -> bool:
    """
    Check if a PyAV codec is available by name.

    Args:
        name: Codec name (e.g. 'h264_videotoolbox').
        mode: 'w' for encoder, 'r' for decoder.
    """
    try:
        av.Codec(name, mode)
        return True
    except (ValueError, av.error.FFmpegError):
        return False


def resolve_video_encoder(preferred: str | None = None) -> str:
    """Return the preferred video encoder if present, else the first available fallback."""
    candidates = [preferred or settings.default_video_codec] + VIDEO_CODEC_FALLBACKS
    for name in candidates:
        if probe_codec(name, "w"):
            return name
    raise CodecUnavailableError(f"no video encoder available (tried {', '.join(candidates)})")


def _detect_hw_capability() -> HWCapability:
    """
    Probe the runtime environment for hardware encoder availability.

    Checks NVIDIA, Apple VideoToolbox, Intel VAAPI/QSV in priority order.
    Falls back to a software encoder.
    """
    cap = HWCapability()

    hw_encoders = [
        "h264_nvenc",
        "h264_videotoolbox",
        "h264_vaapi",
        "h264_qsv",
    ]
    cap.available_encoders = [c for c in hw_encoders if probe_codec(c, "w")]
    cap.available_devices = list(hwdevices_available())

    # Priority order: encoder name, accel type, device type used for decoding
    priorities = [
        ("h264_nvenc", HWAccelType.NVIDIA, "cuda"),
        ("h264_videotoolbox", HWAccelType.VIDEOTOOLBOX, "videotoolbox"),
        ("h264_vaapi", HWAccelType.VAAPI, "vaapi"),
        ("h264_qsv", HWAccelType.QSV, "qsv"),
    ]
    for encoder, accel_type, device_type in priorities:
        if encoder in cap.available_encoders and device_type in cap.available_devices:
            cap.accel_type = accel_type
            cap.h264_encoder = encoder
            cap.device_type = device_type
            return cap

    # Fallback: CPU
    cap.accel_type = HWAccelType.NONE
    cap.h264_encoder = resolve_video_encoder()
    return cap


def get_hw_capability() -> HWCapability:
    """Get the detected hardware acceleration capability (cached singleton)."""
    global _hw_capability
    if _hw_capability is None:
        _hw_capability = _detect_hw_capability()
        if _hw_capability.accel_type != HWAccelType.NONE:
            logger.info(
                "[hwaccel] GPU acceleration: %s (encoder=%s, device=%s)",
                _hw_capability.accel_type.value,
                _hw_capability.h264_encoder,
                _hw_capability.device_type,
            )
        else:
            logger.info(
                "[hwaccel] Using CPU encoder: %s (available HW: encoders=%s, devices=%s)",
                _hw_capability.h264_encoder,
                _hw_capability.available_encoders or "none",
                _hw_capability.available_devices or "none",
            )
    return _hw_capability


def require_device(device_type: str) -> HWAccel:
    """Build a hardware acceleration request for *device_type*, or fail if the device type is absent."""
    available = hwdevices_available()
    if device_type not in available:
        raise HardwareUnavailableError(
            f"hardware device type '{device_type}' is not available (available: {', '.join(available) or 'none'})"
        )
    return HWAccel(device_type=device_type, allow_software_fallback=True)


def negotiate_hw_format(offered: list[str], wanted: str | None) -> str | None:
    """
    Pick the decoder output format.

    Of the formats the decoder offers, return the first one equal to the
    negotiated hardware format. ``None`` means no match: the decoder falls
    back to software.
    """
    if wanted is None:
        return None
    for fmt in offered:
        if fmt == wanted:
            return fmt
    return None


def hw_format_for_device(device_type: str) -> str | None:
    return HW_DEVICE_PIXEL_FORMATS.get(device_type)


def offered_hw_formats(codec: av.Codec) -> list[str]:
    """Hardware pixel formats a decoder can produce, in the decoder's preference order."""
    return [config.format.name for config in codec.hardware_configs]


def is_device_frame(frame) -> bool:
    fmt = getattr(frame, "format", None)
    return fmt is not None and fmt.name in HW_PIXEL_FORMATS


def require_system_memory(frame):
    """Raise unless *frame* can be consumed by CPU-side code (filters, software encoders)."""
    if is_device_frame(frame):
        raise MalformedError(
            f"frame in device memory ({frame.format.name}) must be transferred to system memory before use"
        )
    return frame
