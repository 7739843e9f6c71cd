"""Core — models, configuration, engine, and reliability primitives."""
