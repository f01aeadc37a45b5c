"""
Command line interface (``media-cookbook``), built on tyro subcommands.

- app: Entry point, logging setup, dispatch and exit codes
- recipe_command: Subcommand dataclasses generated from recipe parameter models
- commands_audio: effect, normalize, convert, resample, to-wav, mix
- commands_video: transcode, resize, crop, rotate, speed, watermark, thumbnail, pip, gif, stabilize
- commands_stream: hls, subtitles, play
- commands_edit: info, silence, split, split-silence, concat, reverse, keyframes
"""
