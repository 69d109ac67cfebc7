"""
ms2uvfits - MeasurementSet to random-groups uvfits converter

Writes one uvfits file per spectral window, optionally undoing phase
tracking so legacy calibration pipelines see untracked visibilities.

Pipeline:
- Read metadata and visibility rows from the MeasurementSet
- Recompute baseline UVW toward the phase centre
- Rotate phases to zero delay (optional)
- Route rows to one writer per spectral window
"""

__version__ = "0.1.0"

from .errors import (
    ConversionError,
    InputNotFound,
    CorruptTable,
    UnsupportedLayout,
    AstrometryFailure,
    IoFailure,
    InvalidState,
)
from .pipeline.config_parser import ConversionConfig
from .pipeline.runner import ConversionResult, convert_ms

__all__ = [
    'convert_ms',
    'ConversionConfig',
    'ConversionResult',
    'ConversionError',
    'InputNotFound',
    'CorruptTable',
    'UnsupportedLayout',
    'AstrometryFailure',
    'IoFailure',
    'InvalidState',
]
