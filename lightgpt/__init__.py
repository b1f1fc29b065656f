"""Transformer inference toolkit: GGUF inspection, attention, kernels and generation."""

__version__ = "1.0.0"