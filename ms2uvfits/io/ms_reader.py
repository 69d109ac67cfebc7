"""
MeasurementSet Reader.

Read-only access to the metadata tables and visibility rows of a
MeasurementSet, mapped onto the random-groups data model.
"""

import numpy as np
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from ms2uvfits.core.polarization import PolarizationLayout, map_polarizations
from ms2uvfits.errors import (
    ConversionError,
    CorruptTable,
    InputNotFound,
    UnsupportedLayout,
)
from ms2uvfits.io.table_store import CasacoreTableStore

REQUIRED_SUBTABLES = (
    "ANTENNA",
    "SPECTRAL_WINDOW",
    "FIELD",
    "POLARIZATION",
    "DATA_DESCRIPTION",
)
REQUIRED_MAIN_COLUMNS = ("TIME", "ANTENNA1", "ANTENNA2", "UVW", "FLAG", "DATA_DESC_ID")


def _frozen(array, dtype=np.float64) -> np.ndarray:
    out = np.array(array, dtype=dtype)
    out.setflags(write=False)
    return out


@dataclass(frozen=True, eq=False)
class Antenna:
    """One row of the ANTENNA table."""
    id: int
    name: str
    position: np.ndarray     # (3,) ITRF metres
    mount: str = "alt-az"
    diameter: float = 0.0


@dataclass(frozen=True, eq=False)
class SpectralWindow:
    """One row of the SPECTRAL_WINDOW table. Defines one output file."""
    id: int
    chan_freq: np.ndarray    # (n_chan,) Hz
    chan_width: np.ndarray   # (n_chan,) Hz
    ref_frequency: float
    total_bandwidth: float
    name: str = ""

    @property
    def n_chan(self) -> int:
        return len(self.chan_freq)

    @property
    def ref_channel(self) -> int:
        """Index of the channel nearest the reference frequency."""
        return int(np.argmin(np.abs(self.chan_freq - self.ref_frequency)))

    def channel_width(self) -> float:
        """Common channel width; widths must agree to 1 mHz."""
        widths = self.chan_width
        if np.any(np.abs(widths - widths[0]) > 1e-3):
            raise UnsupportedLayout(
                f"Spectral window {self.id} has non-uniform channel widths"
            )
        return float(widths[0])


@dataclass(frozen=True)
class PhaseCenter:
    """Reference direction used for phase tracking (J2000, radians)."""
    ra: float
    dec: float
    name: str = ""
    tracking: bool = True

    def untracked(self) -> "PhaseCenter":
        """The "no tracking" target: same nominal direction, zero delay."""
        return PhaseCenter(self.ra, self.dec, self.name, tracking=False)


@dataclass(frozen=True, eq=False)
class ObservationMetadata:
    """Array-wide quantities that hold for the whole run."""
    array_position: np.ndarray   # (3,) ITRF metres
    start_time: float            # MJD seconds (UTC)
    integration_time: float      # seconds
    n_rows: int
    telescope: str = "Unknown"


@dataclass
class RowBatch:
    """
    Consecutive MAIN rows that belong to one spectral window.

    Visibility arrays are already in output polarization order.
    """
    rows: np.ndarray         # (n,) absolute row numbers
    spw_id: int
    time: np.ndarray         # (n,) MJD seconds
    antenna1: np.ndarray     # (n,)
    antenna2: np.ndarray     # (n,)
    uvw: np.ndarray          # (n, 3) metres
    interval: np.ndarray     # (n,) seconds
    data: np.ndarray         # (n, n_chan, n_pol) complex
    flags: np.ndarray        # (n, n_chan, n_pol) bool
    weights: np.ndarray      # (n, n_chan, n_pol) float

    @property
    def n_rows(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator["RawRow"]:
        for i in range(self.n_rows):
            yield RawRow(
                row=int(self.rows[i]),
                spw_id=self.spw_id,
                time=float(self.time[i]),
                antenna1=int(self.antenna1[i]),
                antenna2=int(self.antenna2[i]),
                uvw=self.uvw[i],
                interval=float(self.interval[i]),
                data=self.data[i],
                flags=self.flags[i],
                weights=self.weights[i],
            )


@dataclass
class RawRow:
    """A single visibility sample."""
    row: int
    spw_id: int
    time: float
    antenna1: int
    antenna2: int
    uvw: np.ndarray          # (3,)
    interval: float
    data: np.ndarray         # (n_chan, n_pol)
    flags: np.ndarray
    weights: np.ndarray


class MSReader:
    """
    Read data from a MeasurementSet.

    Parameters
    ----------
    ms_path : str
        Path to MeasurementSet
    data_column : str
        Column holding the visibilities to convert
    store : table store, optional
        Backend providing the tables. Defaults to python-casacore.
    """

    def __init__(self, ms_path: str, data_column: str = "DATA", store=None):
        self.ms_path = str(ms_path)
        self.data_column = data_column
        self.store = store if store is not None else CasacoreTableStore(self.ms_path)
        self._validate_ms()
        self._layouts: Optional[Dict[int, Tuple[int, PolarizationLayout]]] = None
        self._n_ant: Optional[int] = None

    def _validate_ms(self):
        """Check the MS exists and has the tables and columns we need."""
        if not self.store.exists():
            raise InputNotFound(f"MS not found: {self.ms_path}")
        if not self.store.has_table(None):
            raise CorruptTable(f"No main table in {self.ms_path}")
        for name in REQUIRED_SUBTABLES:
            if not self.store.has_table(name):
                raise CorruptTable(f"MS missing {name} table: {self.ms_path}")

        with self._open(None) as tb:
            cols = tb.colnames()
        for col in REQUIRED_MAIN_COLUMNS + (self.data_column,):
            if col not in cols:
                raise CorruptTable(f"MS missing {col} column: {self.ms_path}")

    @contextmanager
    def _open(self, name: Optional[str]):
        label = name or "MAIN"
        try:
            tb = self.store.open_table(name)
        except RuntimeError as e:
            raise CorruptTable(f"Cannot open {label} table: {e}") from e
        try:
            yield tb
        finally:
            tb.close()

    @staticmethod
    def _getcol(tb, name: str, startrow: int = 0, nrow: int = -1, table_name: str = ""):
        try:
            return tb.getcol(name, startrow, nrow)
        except (RuntimeError, KeyError) as e:
            where = f"{table_name} " if table_name else ""
            raise CorruptTable(f"Cannot read {where}column {name}: {e}") from e

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def read_antennas(self) -> List[Antenna]:
        """Read the ANTENNA table, ordered by antenna id."""
        with self._open("ANTENNA") as tb:
            n_ant = tb.nrows()
            if n_ant == 0:
                raise CorruptTable("ANTENNA table is empty")
            cols = tb.colnames()
            positions = np.asarray(self._getcol(tb, "POSITION", table_name="ANTENNA"))
            names = (
                list(self._getcol(tb, "NAME", table_name="ANTENNA"))
                if "NAME" in cols else [f"ANT{i:03d}" for i in range(n_ant)]
            )
            mounts = (
                list(self._getcol(tb, "MOUNT", table_name="ANTENNA"))
                if "MOUNT" in cols else ["alt-az"] * n_ant
            )
            diameters = (
                np.asarray(self._getcol(tb, "DISH_DIAMETER", table_name="ANTENNA"))
                if "DISH_DIAMETER" in cols else np.zeros(n_ant)
            )

        if positions.shape != (n_ant, 3) or not np.all(np.isfinite(positions)):
            raise CorruptTable(f"ANTENNA POSITION has bad shape {positions.shape}")

        return [
            Antenna(
                id=i,
                name=str(names[i]) or f"ANT{i:03d}",
                position=_frozen(positions[i]),
                mount=str(mounts[i]).strip().lower() or "alt-az",
                diameter=float(diameters[i]),
            )
            for i in range(n_ant)
        ]

    def read_spectral_windows(self) -> List[SpectralWindow]:
        """Read the SPECTRAL_WINDOW table, ordered by window id."""
        with self._open("SPECTRAL_WINDOW") as tb:
            n_spw = tb.nrows()
            if n_spw == 0:
                raise CorruptTable("SPECTRAL_WINDOW table is empty")
            cols = tb.colnames()
            windows = []
            for spw in range(n_spw):
                try:
                    freqs = np.asarray(tb.getcell("CHAN_FREQ", spw), dtype=np.float64)
                    widths = np.asarray(tb.getcell("CHAN_WIDTH", spw), dtype=np.float64)
                except (RuntimeError, KeyError) as e:
                    raise CorruptTable(
                        f"Cannot read SPECTRAL_WINDOW row {spw}: {e}"
                    ) from e
                if freqs.ndim != 1 or len(freqs) == 0 or widths.shape != freqs.shape:
                    raise CorruptTable(
                        f"SPECTRAL_WINDOW row {spw} has malformed CHAN_FREQ/CHAN_WIDTH"
                    )

                ref = (
                    float(tb.getcell("REF_FREQUENCY", spw))
                    if "REF_FREQUENCY" in cols else float(freqs[0])
                )
                total = (
                    float(tb.getcell("TOTAL_BANDWIDTH", spw))
                    if "TOTAL_BANDWIDTH" in cols else float(np.abs(widths).sum())
                )
                name = str(tb.getcell("NAME", spw)) if "NAME" in cols else ""

                windows.append(SpectralWindow(
                    id=spw,
                    chan_freq=_frozen(freqs),
                    chan_width=_frozen(widths),
                    ref_frequency=ref,
                    total_bandwidth=total,
                    name=name,
                ))
        return windows

    def read_phase_center(self, field_id: int = 0) -> PhaseCenter:
        """Read the phase-tracking direction of a field."""
        with self._open("FIELD") as tb:
            if field_id >= tb.nrows():
                raise CorruptTable(
                    f"FIELD table has {tb.nrows()} rows, no field {field_id}"
                )
            phase_dir = np.asarray(self._getcol(tb, "PHASE_DIR", table_name="FIELD"))
            names = (
                list(self._getcol(tb, "NAME", table_name="FIELD"))
                if "NAME" in tb.colnames() else [""] * tb.nrows()
            )

        # (n_field, n_poly, 2); only the constant term is used
        ra, dec = phase_dir.reshape(phase_dir.shape[0], -1, 2)[field_id, 0]
        if not (np.isfinite(ra) and np.isfinite(dec)):
            raise CorruptTable(f"FIELD {field_id} PHASE_DIR is not finite")
        return PhaseCenter(ra=float(ra), dec=float(dec), name=str(names[field_id]))

    def read_polarization(self, pol_id: int = 0) -> PolarizationLayout:
        """Map one POLARIZATION row onto the output STOKES axis."""
        with self._open("POLARIZATION") as tb:
            if pol_id >= tb.nrows():
                raise CorruptTable(f"POLARIZATION table has no row {pol_id}")
            corr_types = np.atleast_1d(tb.getcell("CORR_TYPE", pol_id))
        return map_polarizations(corr_types)

    def read_data_descriptions(self) -> Dict[int, Tuple[int, PolarizationLayout]]:
        """DATA_DESC_ID -> (spectral window id, polarization layout)."""
        if self._layouts is not None:
            return self._layouts

        with self._open("DATA_DESCRIPTION") as tb:
            spw_ids = np.asarray(
                self._getcol(tb, "SPECTRAL_WINDOW_ID", table_name="DATA_DESCRIPTION")
            )
            pol_ids = np.asarray(
                self._getcol(tb, "POLARIZATION_ID", table_name="DATA_DESCRIPTION")
            )

        layouts = {}
        per_spw = {}
        for ddid, (spw, pol) in enumerate(zip(spw_ids, pol_ids)):
            layout = self.read_polarization(int(pol))
            if int(spw) in per_spw and per_spw[int(spw)] != layout:
                raise UnsupportedLayout(
                    f"Spectral window {spw} is used with more than one "
                    "polarization setup"
                )
            per_spw[int(spw)] = layout
            layouts[ddid] = (int(spw), layout)

        self._layouts = layouts
        return layouts

    def read_observation(self) -> ObservationMetadata:
        """Array position, start epoch and nominal integration time."""
        antennas = self.read_antennas()
        array_position = np.mean([a.position for a in antennas], axis=0)

        with self._open(None) as tb:
            n_rows = tb.nrows()
            cols = tb.colnames()
            if n_rows:
                times = np.asarray(self._getcol(tb, "TIME"))
                start_time = float(times.min())
            else:
                start_time = 0.0
            integration = 0.0
            for col in ("INTERVAL", "EXPOSURE"):
                if col in cols and n_rows:
                    integration = float(np.median(self._getcol(tb, col)))
                    break

        telescope = "Unknown"
        if self.store.has_table("OBSERVATION"):
            with self._open("OBSERVATION") as tb:
                if "TELESCOPE_NAME" in tb.colnames() and tb.nrows():
                    telescope = str(tb.getcell("TELESCOPE_NAME", 0)) or telescope

        if not np.isfinite(start_time):
            raise CorruptTable("MAIN TIME column is not finite")

        return ObservationMetadata(
            array_position=_frozen(array_position),
            start_time=start_time,
            integration_time=integration,
            n_rows=n_rows,
            telescope=telescope,
        )

    def n_rows(self) -> int:
        with self._open(None) as tb:
            return tb.nrows()

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def iter_batches(self, batch_rows: int = 10000) -> Iterator[RowBatch]:
        """
        Iterate over MAIN in blocks of at most ``batch_rows`` rows.

        Each block is split by spectral window; row order is preserved
        within every window. Re-calling restarts from the first row.
        """
        if batch_rows < 1:
            raise ValueError(f"batch_rows must be positive, got {batch_rows}")

        layouts = self.read_data_descriptions()
        n_ant = self._antenna_count()
        n_chans = {w.id: w.n_chan for w in self.read_spectral_windows()}

        with self._open(None) as tb:
            n_total = tb.nrows()
            cols = tb.colnames()
            for start in range(0, n_total, batch_rows):
                n = min(batch_rows, n_total - start)
                try:
                    blocks = list(self._read_block(tb, cols, start, n, layouts, n_ant, n_chans))
                except ConversionError as e:
                    # Errors without a row of their own point at the block
                    e.with_row(start)
                    raise
                yield from blocks

    def produce_rows(self, batch_rows: int = 10000) -> Iterator[RawRow]:
        """Iterate over single rows, in table order within each window."""
        for batch in self.iter_batches(batch_rows):
            yield from batch

    def _antenna_count(self) -> int:
        if self._n_ant is None:
            with self._open("ANTENNA") as tb:
                self._n_ant = tb.nrows()
        return self._n_ant

    def _read_block(self, tb, cols, start, n, layouts, n_ant, n_chans):
        """Read rows [start, start + n) and split them by window."""
        rows = np.arange(start, start + n)
        ddids = np.asarray(self._getcol(tb, "DATA_DESC_ID", start, n))
        time = np.asarray(self._getcol(tb, "TIME", start, n), dtype=np.float64)
        antenna1 = np.asarray(self._getcol(tb, "ANTENNA1", start, n))
        antenna2 = np.asarray(self._getcol(tb, "ANTENNA2", start, n))
        uvw = np.asarray(self._getcol(tb, "UVW", start, n), dtype=np.float64)
        interval = (
            np.asarray(self._getcol(tb, "INTERVAL", start, n), dtype=np.float64)
            if "INTERVAL" in cols else np.zeros(n)
        )
        flag_row = (
            np.asarray(self._getcol(tb, "FLAG_ROW", start, n), dtype=bool)
            if "FLAG_ROW" in cols else np.zeros(n, dtype=bool)
        )

        bad = np.flatnonzero(
            (antenna1 < 0) | (antenna1 >= n_ant) | (antenna2 < 0) | (antenna2 >= n_ant)
        )
        if bad.size:
            raise CorruptTable(
                f"Antenna id out of range (have {n_ant} antennas)",
                row=int(rows[bad[0]]),
            )
        unknown = np.flatnonzero(~np.isin(ddids, list(layouts)))
        if unknown.size:
            raise CorruptTable(
                f"DATA_DESC_ID {ddids[unknown[0]]} not in DATA_DESCRIPTION",
                row=int(rows[unknown[0]]),
            )
        if uvw.shape != (n, 3):
            raise CorruptTable(f"UVW has shape {uvw.shape}", row=start)

        use_spectrum = (
            "WEIGHT_SPECTRUM" in cols and tb.iscelldefined("WEIGHT_SPECTRUM", start)
        )
        data_cells = self._read_cells(tb, self.data_column, start, n)
        flag_cells = self._read_cells(tb, "FLAG", start, n)
        if use_spectrum:
            weight_cells = self._read_cells(tb, "WEIGHT_SPECTRUM", start, n)
        elif "WEIGHT" in cols:
            weight_cells = self._read_cells(tb, "WEIGHT", start, n)
        else:
            weight_cells = None

        # Group by window in order of first appearance
        spw_of_row = np.array([layouts[int(d)][0] for d in ddids])
        _, first = np.unique(spw_of_row, return_index=True)
        for spw in spw_of_row[np.sort(first)]:
            idx = np.flatnonzero(spw_of_row == spw)
            layout = layouts[int(ddids[idx[0]])][1]
            data = self._stack(data_cells, idx, rows, np.complex128)
            flags = self._stack(flag_cells, idx, rows, bool)

            expected = (len(idx), n_chans[int(spw)], layout.n_pol)
            if data.shape != expected:
                raise CorruptTable(
                    f"{self.data_column} cell shape {data.shape[1:]} does not "
                    f"match window {spw} ({expected[1]} channels, "
                    f"{expected[2]} correlations)",
                    row=int(rows[idx[0]]),
                )
            if flags.shape != expected:
                raise CorruptTable(
                    f"FLAG cell shape {flags.shape[1:]} does not match data",
                    row=int(rows[idx[0]]),
                )

            if weight_cells is None:
                weights = np.ones(expected, dtype=np.float64)
            else:
                weights = self._stack(weight_cells, idx, rows, np.float64)
                if weights.ndim == 2:
                    # WEIGHT is (n_row, n_corr); broadcast over channels
                    weights = np.broadcast_to(
                        weights[:, np.newaxis, :], expected
                    ).copy()
                if weights.shape != expected:
                    raise CorruptTable(
                        f"Weight cell shape {weights.shape[1:]} does not match data",
                        row=int(rows[idx[0]]),
                    )

            flags = flags | flag_row[idx, np.newaxis, np.newaxis]
            order = list(layout.order)

            yield RowBatch(
                rows=rows[idx],
                spw_id=int(spw),
                time=time[idx],
                antenna1=antenna1[idx],
                antenna2=antenna2[idx],
                uvw=uvw[idx],
                interval=interval[idx],
                data=data[..., order],
                flags=flags[..., order],
                weights=weights[..., order],
            )

    def _read_cells(self, tb, name: str, start: int, n: int):
        """Fixed-shape columns come back as one array, others as a list."""
        try:
            if tb.isvarcol(name):
                cells = tb.getvarcol(name, start, n)
                keyed = sorted(cells.items(), key=lambda kv: int(kv[0][1:]))
                return [np.asarray(v)[0] for _, v in keyed]
            return np.asarray(tb.getcol(name, start, n))
        except (RuntimeError, KeyError, IndexError) as e:
            raise CorruptTable(f"Cannot read column {name}: {e}", row=start) from e

    @staticmethod
    def _stack(cells, idx: np.ndarray, rows: np.ndarray, dtype) -> np.ndarray:
        if isinstance(cells, np.ndarray):
            return cells[idx].astype(dtype, copy=False)
        try:
            return np.stack([cells[i] for i in idx]).astype(dtype, copy=False)
        except ValueError as e:
            raise CorruptTable(
                f"Rows of one window have differing cell shapes: {e}",
                row=int(rows[idx[0]]),
            ) from e


def open_ms(ms_path: str, data_column: str = "DATA", store=None) -> MSReader:
    """Open a MeasurementSet for reading."""
    try:
        return MSReader(ms_path, data_column=data_column, store=store)
    except ConversionError:
        raise
    except RuntimeError as e:
        raise CorruptTable(f"Cannot open {ms_path}: {e}") from e


__all__ = [
    "Antenna",
    "SpectralWindow",
    "PhaseCenter",
    "ObservationMetadata",
    "RowBatch",
    "RawRow",
    "MSReader",
    "open_ms",
]
