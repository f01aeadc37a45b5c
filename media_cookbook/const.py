VIDEO_CODEC_FALLBACKS = [
    "libx264",
    "h264",
    "libopenh264",
    "mpeg4",
]

# Map channel count -> FFmpeg layout name
CHANNEL_LAYOUT_MAP = {
    1: "mono",
    2: "stereo",
    3: "2.1",
    4: "quad",
    6: "5.1",
    8: "7.1",
}

# Pixel formats whose planes live in device memory
HW_PIXEL_FORMATS = frozenset(
    {
        "cuda",
        "vaapi",
        "qsv",
        "videotoolbox",
        "d3d11",
        "dxva2_vld",
        "vulkan",
        "drm_prime",
        "opencl",
        "mediacodec",
    }
)

# Device type -> hardware pixel format the decoder is asked to produce
HW_DEVICE_PIXEL_FORMATS = {
    "cuda": "cuda",
    "vaapi": "vaapi",
    "qsv": "qsv",
    "videotoolbox": "videotoolbox",
    "d3d11va": "d3d11",
    "dxva2": "dxva2_vld",
    "vulkan": "vulkan",
    "drm": "drm_prime",
    "opencl": "opencl",
}

STABILIZE_TRANSFORMS_FILENAME = "transforms.trf"

HLS_SEGMENT_PATTERN = "{stem}_%03d.ts"
