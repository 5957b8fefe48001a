"""Buffer pooling, photon accumulation and exposure orchestration."""
