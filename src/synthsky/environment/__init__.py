"""Time-evolving atmosphere and mount tracking models."""
