"""Optics, photon flux, PSF synthesis and sensor physics."""
