"""
Recipes: each cookbook program reduced to parameters, presets and a pipeline plan.

- base: RecipePlan, parameter resolution and shared plan builders
- audio_effects: Reverb, chorus, flanger, tremolo, phaser, distortion, delay, pitch
- dynamics: Limiter, gate, compressor and level normalization
- factory: Effect registry and the generic effect runner
- conversion: Audio re-encode, resampling, mixing and WAV export
- video: Transcode, geometry, speed, watermark, picture-in-picture, thumbnails
- gif: Two-pass palette GIF creation
- stabilize: Two-pass vid.stab stabilization
- hls: HLS segmentation and playlist reading
- subtitles: SRT / WebVTT / ASS files, track extraction and burn-in
- analysis: Media information and silence detection
- editing: Split, concatenate, reverse and keyframe extraction
"""
