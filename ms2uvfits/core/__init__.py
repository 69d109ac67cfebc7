"""
Core Conversion Components.

- Polarization mapping onto the random-groups STOKES axis
- Astrometry: sidereal time, baseline UVW, geometric delay
- Phase tracking correction
"""

from ms2uvfits.core.polarization import PolarizationLayout, map_polarizations
from ms2uvfits.core.astrometry import (
    local_apparent_sidereal_time,
    baseline_uvw,
    batch_uvw,
    itrf_to_celestial,
    geometric_delay,
)
from ms2uvfits.core.phase import reverse_phase_tracking, phase_rotation

__all__ = [
    "PolarizationLayout",
    "map_polarizations",
    "local_apparent_sidereal_time",
    "baseline_uvw",
    "batch_uvw",
    "itrf_to_celestial",
    "geometric_delay",
    "reverse_phase_tracking",
    "phase_rotation",
]
