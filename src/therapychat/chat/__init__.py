"""Chat streaming core: normalize, load history, stream, persist."""
