"""Loom Core — configuration, logging, metrics."""
