"""
Media pipeline kernel.

A single decode -> filter -> encode -> mux engine that every recipe runs on:

- resources: Resource registry and scoped handles for every framework object
- streams: Stream descriptors, source-pad parameters, timestamp rescaling
- input_stage: Container open, stream selection, decoder construction
- hwaccel: Hardware device probing and frame-memory checks
- filter_dsl: Parser and link planner for the filter-graph description language
- filter_stage: Configured filter graph with typed source pads and one sink
- converters: Rescaler and resampler used when no filter graph is in use
- output_stage: Output container, encoders, stream copy, header/trailer
- driver: The pipeline control loop and its drain phases
- playback: Three-thread synchronized A/V playback against an audio clock
"""
