"""
Band Splitter.

Route rows to one writer per spectral window. Writers are created on the
first row of their window and closed in ascending window id.
"""

from typing import Callable, Dict, List

from ms2uvfits.io.ms_reader import RowBatch
from ms2uvfits.io.uvfits_writer import UVFitsWriter


def band_path(output_base: str, spw_id: int) -> str:
    """Output file for a window: ``<base>_band<NN>.uvfits`` with NN 1-based."""
    return f"{output_base}_band{spw_id + 1:02d}.uvfits"


class BandSplitter:
    """
    Map spectral window id -> UVFitsWriter.

    Parameters
    ----------
    output_base : str
        Base name for the output files
    writer_factory : callable
        ``writer_factory(path, spw_id)`` returning an open UVFitsWriter
    """

    def __init__(self, output_base: str, writer_factory: Callable[[str, int], UVFitsWriter]):
        self.output_base = output_base
        self.writer_factory = writer_factory
        self.writers: Dict[int, UVFitsWriter] = {}
        self.closed = False

    def writer_for(self, spw_id: int) -> UVFitsWriter:
        """Existing writer for the window, or a new one."""
        writer = self.writers.get(spw_id)
        if writer is None:
            writer = self.writer_factory(band_path(self.output_base, spw_id), spw_id)
            self.writers[spw_id] = writer
        return writer

    def route(self, batch: RowBatch):
        """Send a single-window batch to its writer."""
        if batch.n_rows == 0:
            return
        self.writer_for(batch.spw_id).write_batch(batch)

    def route_row(self, sample):
        self.writer_for(sample.spw_id).write_group(sample)

    def rows_written(self) -> Dict[int, int]:
        return {spw: w.n_groups for spw, w in sorted(self.writers.items())}

    def close_all(self) -> List[str]:
        """
        Finalize every writer in ascending window id.

        Returns
        -------
        paths : list of str
            Finished files, in window order
        """
        paths = []
        for spw_id in sorted(self.writers):
            writer = self.writers[spw_id]
            if writer.is_open:
                paths.append(writer.finalize())
        self.closed = True
        return paths

    def abort(self, keep_partial: bool = False) -> List[str]:
        """
        Stop every open writer after a failure.

        With ``keep_partial`` the writers are finalized with the rows written
        so far; otherwise their partial files are removed. Every writer is
        attempted; the first cleanup error is raised afterwards.

        Returns
        -------
        paths : list of str
            Files kept (empty unless ``keep_partial``)
        """
        paths = []
        errors = []
        for spw_id in sorted(self.writers):
            writer = self.writers[spw_id]
            if not writer.is_open:
                continue
            try:
                if keep_partial:
                    paths.append(writer.finalize())
                else:
                    writer.discard()
            except Exception as e:
                errors.append(e)
                if writer.is_open:
                    try:
                        writer.discard()
                    except Exception as discard_error:
                        errors.append(discard_error)
        self.closed = True
        if errors:
            raise errors[0]
        return paths
