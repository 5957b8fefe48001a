"""Lazily expanding star catalog and celestial-to-pixel projection."""
