"""
Core module for the Visual Clutter pipeline.

Contains the typed messages, the event bus, the tensor decoders,
the pipeline stages and the protocol definitions for adapters.
"""
