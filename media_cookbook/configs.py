from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    log_level: str = "INFO"  # The logging level to use.
    video_progress_interval: int = 30  # Emit a progress line every N video frames.
    audio_progress_interval: int = 100  # Emit a progress line every N audio frames.
    default_video_codec: str = "libx264"  # Preferred video encoder; falls back to h264 / mpeg4 when missing.
    default_pixel_format: str = "yuv420p"  # Pixel format used for video re-encodes.
    default_video_bitrate: str = "2M"  # Bitrate for video re-encodes (e.g. 2M, 800k).
    default_frame_rate: int = 30  # Frame rate used when the input does not declare one.
    default_gop_size: int = 10  # Keyframe interval for video re-encodes.
    default_max_b_frames: int = 1  # Maximum consecutive B-frames for video re-encodes.
    video_preset: str = "medium"  # libx264 preset.
    transcode_prefer_gpu: bool = False  # Whether to use a detected hardware encoder by default.
    remove_partial_output: bool = True  # Whether to delete the output file when a pipeline fails.
    decoder_threads: int = 0  # Decoder thread count; 0 lets the framework decide.
    playback_video_queue_cap: int = 10  # Demuxer throttles when the video queue grows past this.
    playback_audio_queue_cap: int = 20  # Demuxer throttles when the audio queue grows past this.
    playback_lag_threshold: float = 0.1  # Seconds behind the audio clock before a lag notice.

    class Config:
        env_file = ".env"
        env_prefix = "MEDIA_COOKBOOK_"
        extra = "ignore"


settings = Settings()
