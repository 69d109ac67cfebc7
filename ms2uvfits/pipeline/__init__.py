"""Pipeline module."""

from ms2uvfits.pipeline.config_parser import ConversionConfig, load_config
from ms2uvfits.pipeline.band_splitter import BandSplitter, band_path
from ms2uvfits.pipeline.runner import (
    ConversionResult,
    ConversionRunner,
    convert_ms,
    run_jobs,
)

__all__ = [
    "ConversionConfig",
    "load_config",
    "BandSplitter",
    "band_path",
    "ConversionResult",
    "ConversionRunner",
    "convert_ms",
    "run_jobs",
]
