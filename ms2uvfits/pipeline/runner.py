"""
Conversion Pipeline Runner.

Drive MAIN through the converter in bounded batches:

    reader -> UVW -> phase correction -> band splitter -> writers
"""

import numpy as np
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from ms2uvfits.core.astrometry import batch_uvw, geometric_delay
from ms2uvfits.core.phase import reverse_phase_tracking
from ms2uvfits.errors import ConversionError, UnsupportedLayout
from ms2uvfits.io.ms_reader import RowBatch, SpectralWindow, open_ms
from ms2uvfits.io.uvfits_writer import UVFitsWriter
from ms2uvfits.pipeline.band_splitter import BandSplitter
from ms2uvfits.pipeline.config_parser import ConversionConfig, load_config

Observer = Callable[[int, int], None]


@dataclass
class ConversionResult:
    """What a finished (or aborted with kept output) run produced."""
    paths: List[str] = field(default_factory=list)
    rows_per_band: Dict[int, int] = field(default_factory=dict)
    rows_total: int = 0

    @property
    def rows_written(self) -> int:
        return sum(self.rows_per_band.values())


class ConversionRunner:
    """
    Convert one MeasurementSet to one random-groups file per window.

    Parameters
    ----------
    config : ConversionConfig
        Conversion settings
    observer : callable, optional
        Called as ``observer(rows_processed, rows_total)`` after each batch
    store : table store, optional
        Table backend; defaults to python-casacore
    """

    def __init__(
        self,
        config: ConversionConfig,
        observer: Optional[Observer] = None,
        store=None,
    ):
        self.config = config
        self.observer = observer
        self.store = store
        self.verbose = config.verbose
        self.splitter: Optional[BandSplitter] = None

    def _print(self, msg: str):
        """Print if verbose."""
        if self.verbose:
            print(f"[MS2UVFITS] {msg}")

    def _load_metadata(self):
        """Read every metadata table. Nothing is written before this succeeds."""
        cfg = self.config
        self.reader = open_ms(cfg.ms_path, data_column=cfg.data_column, store=self.store)

        self.antennas = self.reader.read_antennas()
        self.windows = {w.id: w for w in self.reader.read_spectral_windows()}
        self.phase_center = self.reader.read_phase_center(cfg.field_id)
        self.observation = self.reader.read_observation()

        self.layouts = {}
        for spw, layout in self.reader.read_data_descriptions().values():
            if spw not in self.windows:
                raise UnsupportedLayout(
                    f"DATA_DESCRIPTION refers to missing spectral window {spw}"
                )
            self.layouts[spw] = layout
            # Fail on irregular channel spacing before any file exists
            self.windows[spw].channel_width()

        if len(self.antennas) > 2047:
            raise UnsupportedLayout(
                f"{len(self.antennas)} antennas; at most 2047 can be encoded"
            )

        self.positions = np.array([a.position for a in self.antennas])
        self.target = (
            self.phase_center.untracked()
            if cfg.undo_phase_tracking else self.phase_center
        )

        self._print(f"MS: {cfg.ms_path}")
        self._print(f"Telescope: {self.observation.telescope}")
        self._print(f"Antennas: {len(self.antennas)}")
        self._print(f"Spectral windows: {sorted(self.layouts)}")
        self._print(f"Rows: {self.observation.n_rows}")
        self._print(
            f"Phase centre: {self.phase_center.name or '?'} "
            f"(RA {np.degrees(self.phase_center.ra):.6f}, "
            f"Dec {np.degrees(self.phase_center.dec):.6f} deg)"
        )

    def _open_writer(self, path: str, spw_id: int) -> UVFitsWriter:
        self._print(f"Opening {path} (window {spw_id})")
        return UVFitsWriter.open(
            path,
            self.windows[spw_id],
            self.antennas,
            self.phase_center,
            self.observation,
            self.layouts[spw_id],
            reset_weights=self.config.reset_weights,
            unphased=not self.target.tracking,
        )

    def transform(self, batch: RowBatch, window: SpectralWindow) -> RowBatch:
        """
        Geometry and phase correction for one batch.

        UVW are recomputed toward the phase centre unless disabled. To undo
        phase tracking each row's delay ``w / c`` is rotated to zero.
        """
        if self.config.recompute_uvw:
            uvw = batch_uvw(
                batch.antenna1,
                batch.antenna2,
                batch.time,
                self.phase_center.ra,
                self.phase_center.dec,
                self.positions,
                self.observation.array_position,
            )
            batch = replace(batch, uvw=uvw)

        if not self.target.tracking:
            old_delay = geometric_delay(batch.uvw[:, 0], batch.uvw[:, 1], batch.uvw[:, 2])
            new_delay = np.zeros_like(old_delay)
            batch = reverse_phase_tracking(batch, old_delay, new_delay, window.chan_freq)

        return batch

    def run(self) -> ConversionResult:
        """
        Run the conversion.

        On any error, or KeyboardInterrupt, every open writer is finalized
        with its partial count (``keep_partial``) or discarded, then the
        error is re-raised. A failure during that cleanup is printed when
        verbose and never replaces the original error.
        """
        cfg = self.config
        self._load_metadata()

        rows_total = self.observation.n_rows
        splitter = BandSplitter(cfg.output_base, self._open_writer)
        self.splitter = splitter

        rows_done = 0
        current_row = None
        try:
            for batch in self.reader.iter_batches(cfg.batch_rows):
                current_row = int(batch.rows[0])
                batch = self.transform(batch, self.windows[batch.spw_id])
                splitter.route(batch)

                rows_done += batch.n_rows
                if self.observer is not None:
                    self.observer(rows_done, rows_total)

            paths = splitter.close_all()
        except (Exception, KeyboardInterrupt) as e:
            if isinstance(e, KeyboardInterrupt):
                self._print("Interrupted")
            if isinstance(e, ConversionError) and current_row is not None:
                e.with_row(current_row)
            try:
                kept = splitter.abort(keep_partial=cfg.keep_partial)
            except Exception as cleanup_error:
                self._print(f"Cleanup after failure also failed: {cleanup_error}")
            else:
                for path in kept:
                    self._print(f"Kept partial output {path}")
            raise

        result = ConversionResult(
            paths=paths,
            rows_per_band=splitter.rows_written(),
            rows_total=rows_total,
        )
        for spw, n in result.rows_per_band.items():
            self._print(f"Window {spw}: {n} groups")
        self._print(f"Wrote {len(paths)} file(s), {result.rows_written} groups")
        return result


def convert_ms(
    config: ConversionConfig,
    observer: Optional[Observer] = None,
    store=None,
) -> ConversionResult:
    """
    Convert a MeasurementSet to per-window uvfits files.

    Parameters
    ----------
    config : ConversionConfig
        Conversion settings
    observer : callable, optional
        Progress callback ``observer(rows_processed, rows_total)``
    store : table store, optional
        Table backend; defaults to python-casacore

    Returns
    -------
    result : ConversionResult
    """
    return ConversionRunner(config, observer=observer, store=store).run()


def run_jobs(
    config_path: str,
    observer: Optional[Observer] = None,
    verbose: bool = False,
) -> List[ConversionResult]:
    """
    Run every conversion in a YAML job file, in order.

    Stops at the first failing job.
    """
    jobs = load_config(config_path, verbose=verbose)
    results = []
    for job in jobs:
        results.append(convert_ms(job, observer=observer))
    return results
