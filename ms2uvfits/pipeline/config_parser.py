"""
Configuration Parser.

Conversion settings, and batch job files written as pipe-delimited tables
in YAML:

    convert: |
      MS file   | Output    | Vis col | Undo phase | Reset weights
      --------- | --------- | ------- | ---------- | -------------
      obs1.ms   | out/obs1  | DATA    | true       | false
"""

import yaml
import re
from dataclasses import dataclass
from typing import Dict, List


@dataclass
class ConversionConfig:
    """Settings for converting one MeasurementSet."""
    ms_path: str
    output_base: str
    data_column: str = "DATA"
    undo_phase_tracking: bool = False
    reset_weights: bool = False
    batch_rows: int = 10000
    recompute_uvw: bool = True
    keep_partial: bool = False
    field_id: int = 0
    verbose: bool = False

    def __post_init__(self):
        if not self.ms_path:
            raise ValueError("ms_path is required")
        if not self.output_base:
            raise ValueError("output_base is required")
        if self.batch_rows < 1:
            raise ValueError(f"batch_rows must be positive, got {self.batch_rows}")
        if self.field_id < 0:
            raise ValueError(f"field_id must be >= 0, got {self.field_id}")


_TRUE = {"true", "yes", "y", "1", "on"}
_FALSE = {"false", "no", "n", "0", "off", ""}


def load_config(filepath: str, verbose: bool = False) -> List[ConversionConfig]:
    """
    Load conversion jobs from a YAML file.

    Parameters
    ----------
    filepath : str
        Path to YAML job file
    verbose : bool
        Verbosity applied to every job

    Returns
    -------
    jobs : list of ConversionConfig
    """
    with open(filepath, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or "convert" not in raw:
        raise ValueError(f"No 'convert' table in {filepath}")

    return _parse_convert_table(raw["convert"], verbose=verbose)


def _parse_pipe_table(table_str: str) -> List[Dict[str, str]]:
    """
    Parse pipe-delimited table string.

    Format:
        Header1 | Header2 | Header3
        ------- | ------- | -------
        value1  | value2  | value3

    Returns list of dicts mapping header -> value.
    """
    lines = [l.strip() for l in table_str.strip().split("\n") if l.strip()]

    if len(lines) < 2:
        return []

    headers = [h.strip() for h in lines[0].split("|")]

    # Skip separator line (dashes)
    data_start = 1
    if re.match(r"^[-|\s]+$", lines[1]):
        data_start = 2

    rows = []
    for line in lines[data_start:]:
        values = [v.strip() for v in line.split("|")]
        while len(values) < len(headers):
            values.append("")
        rows.append({h: v for h, v in zip(headers, values)})

    return rows


def parse_bool(value: str) -> bool:
    """Parse a yes/no table cell."""
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def _parse_convert_table(table_str: str, verbose: bool = False) -> List[ConversionConfig]:
    """Parse the convert table: one ConversionConfig per row."""
    if not isinstance(table_str, str):
        raise ValueError("'convert' must be a pipe-delimited table")

    jobs = []
    for i, row in enumerate(_parse_pipe_table(table_str), start=1):
        ms_file = row.get("MS file", "")
        output = row.get("Output", "")
        if not ms_file or not output:
            raise ValueError(f"convert row {i}: 'MS file' and 'Output' are required")

        batch_rows = row.get("Batch rows", "") or "10000"
        try:
            batch_rows = int(batch_rows)
        except ValueError:
            raise ValueError(f"convert row {i}: bad 'Batch rows' {batch_rows!r}")

        jobs.append(ConversionConfig(
            ms_path=ms_file,
            output_base=output,
            data_column=row.get("Vis col", "") or "DATA",
            undo_phase_tracking=parse_bool(row.get("Undo phase", "")),
            reset_weights=parse_bool(row.get("Reset weights", "")),
            batch_rows=batch_rows,
            keep_partial=parse_bool(row.get("Keep partial", "")),
            verbose=verbose,
        ))

    return jobs
