"""
I/O module.

- Table backends (python-casacore, in-memory)
- MeasurementSet reading
- Random-groups uvfits writing
"""

from ms2uvfits.io.ms_reader import MSReader, open_ms
from ms2uvfits.io.table_store import CasacoreTableStore, MemoryTableStore
from ms2uvfits.io.uvfits_writer import UVFitsWriter, encode_baseline

__all__ = [
    "MSReader",
    "open_ms",
    "CasacoreTableStore",
    "MemoryTableStore",
    "UVFitsWriter",
    "encode_baseline",
]
