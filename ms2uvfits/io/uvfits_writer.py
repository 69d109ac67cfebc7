"""
Random-Groups (uvfits) Writer.

File structure:
    primary HDU         random groups, BITPIX = -32
        axes            COMPLEX (re, im, weight), STOKES, FREQ, RA, DEC
        parameters      UU, VV, WW (seconds), BASELINE, DATE, INTTIM
    AIPS AN             antenna table
    AIPS FQ             frequency table

Groups are streamed to ``<path>.part`` as they arrive. The primary header is
written up front with GCOUNT = 0 and rewritten in place by ``finalize()``;
every header card has a fixed width so the header size never changes. The
ancillary tables are then appended and the file renamed to ``<path>``.
"""

import os
import numpy as np
from enum import Enum
from typing import Sequence

from astropy.io import fits
from astropy.time import Time

from ms2uvfits.core.astrometry import (
    VELC,
    greenwich_apparent_sidereal_time,
    itrf_to_geodetic,
    rotate_to_local_meridian,
    tai_minus_utc,
)
from ms2uvfits.core.polarization import PolarizationLayout
from ms2uvfits.errors import InvalidState, IoFailure, UnsupportedLayout
from ms2uvfits.io.ms_reader import (
    Antenna,
    ObservationMetadata,
    PhaseCenter,
    RawRow,
    RowBatch,
    SpectralWindow,
)

BLOCK = 2880
PARAMETERS = ("UU", "VV", "WW", "BASELINE", "DATE", "INTTIM")

# Earth rotation rate, degrees per day
DEGPDY = 360.9856438593

# AIPS memo 117 mount codes
MOUNT_CODES = {
    "alt-az": 0,
    "altaz": 0,
    "equatorial": 1,
    "orbiting": 2,
    "x-y": 3,
    "alt-az+nasmyth-r": 4,
    "alt-az+nasmyth-l": 5,
}

SOFTWARE = "ms2uvfits"


class WriterState(Enum):
    OPENED = "opened"
    WRITING = "writing"
    FINALIZED = "finalized"
    DISCARDED = "discarded"


def encode_baseline(ant1, ant2):
    """
    Encode 1-based antenna numbers into a uvfits BASELINE value.

    Uses the miriad extension above 255 antennas (up to 2047), which is
    backwards compatible with the 256 * a1 + a2 convention.
    """
    ant1 = np.asarray(ant1, dtype=np.int64)
    ant2 = np.asarray(ant2, dtype=np.int64)
    if np.any(ant1 < 1) or np.any(ant2 < 1):
        raise ValueError("Antenna numbers are 1-based")
    if np.any(ant1 > 2047) or np.any(ant2 > 2047):
        raise UnsupportedLayout("Antenna numbers above 2047 cannot be encoded")
    return np.where(ant2 > 255, ant1 * 2048 + ant2 + 65536, ant1 * 256 + ant2)


def decode_baseline(baseline):
    """Inverse of ``encode_baseline``; returns 1-based (ant1, ant2)."""
    baseline = np.asarray(baseline, dtype=np.int64)
    miriad = baseline > 65536
    rest = np.where(miriad, baseline - 65536, baseline)
    ant1 = np.where(miriad, rest // 2048, rest // 256)
    ant2 = np.where(miriad, rest % 2048, rest % 256)
    return ant1, ant2


def _date_string(utc_seconds: float) -> str:
    t = Time(utc_seconds / 86400.0, format="mjd", scale="utc")
    return t.strftime("%Y-%m-%d")


def build_primary_header(
    spectral_window: SpectralWindow,
    phase_center: PhaseCenter,
    observation: ObservationMetadata,
    polarization: PolarizationLayout,
    n_groups: int = 0,
    unphased: bool = False,
) -> fits.Header:
    """Primary header of a random-groups file for one spectral window."""
    from ms2uvfits import __version__

    ref_chan = spectral_window.ref_channel
    jd_midnight = np.floor(observation.start_time / 86400.0) + 2400000.5
    ra_deg = float(np.degrees(phase_center.ra))
    dec_deg = float(np.degrees(phase_center.dec))

    hdr = fits.Header()
    hdr["SIMPLE"] = True
    hdr["BITPIX"] = -32
    hdr["NAXIS"] = 6
    hdr["NAXIS1"] = 0
    hdr["NAXIS2"] = 3
    hdr["NAXIS3"] = polarization.n_pol
    hdr["NAXIS4"] = spectral_window.n_chan
    hdr["NAXIS5"] = 1
    hdr["NAXIS6"] = 1
    hdr["EXTEND"] = True
    hdr["GROUPS"] = True
    hdr["PCOUNT"] = len(PARAMETERS)
    hdr["GCOUNT"] = int(n_groups)
    hdr["BSCALE"] = 1.0
    hdr["BZERO"] = 0.0
    hdr["BUNIT"] = "UNCALIB"

    for i, name in enumerate(PARAMETERS, start=1):
        hdr[f"PTYPE{i}"] = name
        hdr[f"PSCAL{i}"] = 1.0
        hdr[f"PZERO{i}"] = float(jd_midnight) if name == "DATE" else 0.0

    hdr["DATE-OBS"] = _date_string(observation.start_time)

    hdr["CTYPE2"] = "COMPLEX"
    hdr["CRVAL2"] = 1.0
    hdr["CRPIX2"] = 1.0
    hdr["CDELT2"] = 1.0

    hdr["CTYPE3"] = "STOKES"
    hdr["CRVAL3"] = polarization.crval
    hdr["CRPIX3"] = 1.0
    hdr["CDELT3"] = polarization.cdelt

    hdr["CTYPE4"] = "FREQ"
    hdr["CRVAL4"] = float(spectral_window.chan_freq[ref_chan])
    hdr["CRPIX4"] = float(ref_chan + 1)
    hdr["CDELT4"] = spectral_window.channel_width()

    hdr["CTYPE5"] = "RA"
    hdr["CRVAL5"] = ra_deg
    hdr["CRPIX5"] = 1.0
    hdr["CDELT5"] = 1.0

    hdr["CTYPE6"] = "DEC"
    hdr["CRVAL6"] = dec_deg
    hdr["CRPIX6"] = 1.0
    hdr["CDELT6"] = 1.0

    hdr["OBSRA"] = ra_deg
    hdr["OBSDEC"] = dec_deg
    hdr["EPOCH"] = 2000.0
    hdr["OBJECT"] = phase_center.name or "Undefined"
    hdr["TELESCOP"] = observation.telescope
    hdr["INSTRUME"] = observation.telescope
    hdr["SOFTWARE"] = SOFTWARE
    hdr["SWVER"] = f"v{__version__}"
    hdr["UNPHASED"] = bool(unphased)

    hdr.add_history("AIPS WTSCAL =  1.0")
    hdr.add_comment(f"Created by {SOFTWARE} v{__version__}")
    return hdr


def build_antenna_table(
    antennas: Sequence[Antenna],
    observation: ObservationMetadata,
    spectral_window: SpectralWindow,
    polarization: PolarizationLayout,
) -> fits.BinTableHDU:
    """AIPS AN table. Positions are relative to the array centre."""
    n_ant = len(antennas)
    lon, _, _ = itrf_to_geodetic(observation.array_position)
    positions = np.array([a.position for a in antennas])
    stabxyz = rotate_to_local_meridian(positions - observation.array_position, lon)
    mntsta = [MOUNT_CODES.get(a.mount, 0) for a in antennas]
    feed_a, feed_b = polarization.feed_labels()
    angle_b = 90.0 if feed_b == "Y" else 0.0

    cols = [
        fits.Column(name="ANNAME", format="8A", array=[a.name for a in antennas]),
        fits.Column(name="STABXYZ", format="3D", unit="METERS", array=stabxyz),
        fits.Column(name="NOSTA", format="1J", array=np.arange(1, n_ant + 1)),
        fits.Column(name="MNTSTA", format="1J", array=mntsta),
        fits.Column(name="STAXOF", format="1E", unit="METERS", array=np.zeros(n_ant)),
        fits.Column(name="POLTYA", format="1A", array=[feed_a] * n_ant),
        fits.Column(name="POLAA", format="1E", unit="DEGREES", array=np.zeros(n_ant)),
        fits.Column(name="POLTYB", format="1A", array=[feed_b] * n_ant),
        fits.Column(name="POLAB", format="1E", unit="DEGREES", array=np.full(n_ant, angle_b)),
    ]
    hdu = fits.BinTableHDU.from_columns(fits.ColDefs(cols))

    midnight = np.floor(observation.start_time / 86400.0) * 86400.0
    hdr = hdu.header
    hdr["EXTNAME"] = "AIPS AN"
    hdr["EXTVER"] = 1
    hdr["ARRAYX"] = float(observation.array_position[0])
    hdr["ARRAYY"] = float(observation.array_position[1])
    hdr["ARRAYZ"] = float(observation.array_position[2])
    hdr["FRAME"] = "ITRF"
    hdr["FREQ"] = float(spectral_window.ref_frequency)
    hdr["GSTIA0"] = float(np.degrees(greenwich_apparent_sidereal_time(midnight)))
    hdr["DEGPDY"] = DEGPDY
    hdr["RDATE"] = _date_string(observation.start_time)
    hdr["POLARX"] = 0.0
    hdr["POLARY"] = 0.0
    hdr["UT1UTC"] = 0.0
    hdr["DATUTC"] = 0.0
    hdr["IATUTC"] = tai_minus_utc(midnight)
    hdr["TIMSYS"] = "UTC"
    hdr["ARRNAM"] = observation.telescope
    hdr["XYZHAND"] = "RIGHT"
    hdr["NUMORB"] = 0
    hdr["NOPCAL"] = 0
    hdr["NO_IF"] = 1
    hdr["FREQID"] = 1
    hdr["POLTYPE"] = {"X": "X-Y LIN", "R": "R-L CIRC"}.get(feed_a, "")
    return hdu


def build_frequency_table(spectral_window: SpectralWindow) -> fits.BinTableHDU:
    """AIPS FQ table describing the single IF of this file."""
    width = spectral_window.channel_width()
    cols = [
        fits.Column(name="FRQSEL", format="1J", array=[1]),
        fits.Column(name="IF FREQ", format="1D", unit="HZ", array=[0.0]),
        fits.Column(name="CH WIDTH", format="1E", unit="HZ", array=[width]),
        fits.Column(
            name="TOTAL BANDWIDTH", format="1E", unit="HZ",
            array=[spectral_window.total_bandwidth],
        ),
        fits.Column(name="SIDEBAND", format="1J", array=[1 if width >= 0 else -1]),
    ]
    hdu = fits.BinTableHDU.from_columns(fits.ColDefs(cols))
    hdu.header["EXTNAME"] = "AIPS FQ"
    hdu.header["EXTVER"] = 1
    hdu.header["NO_IF"] = 1
    hdu.header["REF_FREQ"] = float(spectral_window.ref_frequency)
    hdu.header["REF_CHAN"] = spectral_window.ref_channel + 1
    return hdu


class UVFitsWriter:
    """
    Write one spectral window to a random-groups file.

    State machine: OPENED -> WRITING -> FINALIZED, or DISCARDED from
    either live state. Both end states are terminal.
    """

    def __init__(
        self,
        path: str,
        spectral_window: SpectralWindow,
        antennas: Sequence[Antenna],
        phase_center: PhaseCenter,
        observation: ObservationMetadata,
        polarization: PolarizationLayout,
        reset_weights: bool = False,
        unphased: bool = False,
    ):
        self.path = str(path)
        self.part_path = self.path + ".part"
        self.spectral_window = spectral_window
        self.antennas = list(antennas)
        self.phase_center = phase_center
        self.observation = observation
        self.polarization = polarization
        self.reset_weights = reset_weights
        self.unphased = unphased

        self.n_groups = 0
        self.state = WriterState.OPENED
        self._offset = 0
        self._damaged = False
        self._jd_midnight_mjd = np.floor(observation.start_time / 86400.0)
        self._group_floats = len(PARAMETERS) + 3 * polarization.n_pol * spectral_window.n_chan

        self._header = build_primary_header(
            spectral_window, phase_center, observation, polarization,
            unphased=unphased,
        )
        self._header_bytes = self._header.tostring().encode("ascii")

        try:
            self._fh = open(self.part_path, "wb")
        except OSError as e:
            raise IoFailure(f"Cannot create {self.part_path}: {e}", offset=0) from e
        self._write(self._header_bytes)

    @classmethod
    def open(cls, path, spectral_window, antennas, phase_center, observation,
             polarization, **kwargs) -> "UVFitsWriter":
        return cls(path, spectral_window, antennas, phase_center, observation,
                   polarization, **kwargs)

    @property
    def is_open(self) -> bool:
        return self.state in (WriterState.OPENED, WriterState.WRITING)

    @property
    def bytes_written(self) -> int:
        return self._offset

    def _require_open(self, action: str):
        if not self.is_open:
            raise InvalidState(
                f"Cannot {action}: writer for {self.path} is {self.state.value}"
            )

    def _write(self, payload: bytes):
        try:
            self._fh.write(payload)
        except OSError as e:
            self._rewind()
            raise IoFailure(f"Write to {self.part_path} failed: {e}", offset=self._offset) from e
        self._offset += len(payload)

    def _rewind(self):
        """Cut the file back to the last complete record after a failed write."""
        try:
            self._fh.seek(self._offset)
            self._fh.truncate()
        except OSError:
            # Leftover bytes would corrupt the file; only discard is allowed now
            self._damaged = True

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def write_group(self, sample: RawRow):
        """Append one random-group record for a single row."""
        self._require_open("write a group")
        self._check_sample(sample.spw_id, np.shape(sample.data)[-2:])
        records = self._records(
            uvw=np.asarray(sample.uvw, dtype=np.float64)[np.newaxis],
            antenna1=np.array([sample.antenna1]),
            antenna2=np.array([sample.antenna2]),
            time=np.array([sample.time], dtype=np.float64),
            interval=np.array([sample.interval], dtype=np.float64),
            data=np.asarray(sample.data)[np.newaxis],
            flags=np.asarray(sample.flags)[np.newaxis],
            weights=np.asarray(sample.weights)[np.newaxis],
        )
        self._append(records)

    def write_batch(self, batch: RowBatch):
        """Append one record per row of a batch, in row order."""
        self._require_open("write a batch")
        self._check_sample(batch.spw_id, batch.data.shape[1:])
        if batch.n_rows == 0:
            return
        records = self._records(
            uvw=batch.uvw,
            antenna1=batch.antenna1,
            antenna2=batch.antenna2,
            time=batch.time,
            interval=batch.interval,
            data=batch.data,
            flags=batch.flags,
            weights=batch.weights,
        )
        self._append(records)

    def _check_sample(self, spw_id: int, shape):
        if spw_id != self.spectral_window.id:
            raise InvalidState(
                f"Row of window {spw_id} sent to writer for window "
                f"{self.spectral_window.id}"
            )
        expected = (self.spectral_window.n_chan, self.polarization.n_pol)
        if tuple(shape) != expected:
            raise InvalidState(f"Visibility shape {tuple(shape)} != {expected}")

    def _records(self, uvw, antenna1, antenna2, time, interval, data, flags, weights):
        n = len(time)
        records = np.empty((n, self._group_floats), dtype=">f4")

        uvw_sec = np.asarray(uvw, dtype=np.float64) / VELC
        records[:, 0:3] = uvw_sec
        records[:, 3] = encode_baseline(np.asarray(antenna1) + 1, np.asarray(antenna2) + 1)
        records[:, 4] = (time / 86400.0 - self._jd_midnight_mjd)
        records[:, 5] = np.where(interval > 0, interval, self.observation.integration_time)

        if self.reset_weights:
            weights = np.ones(data.shape, dtype=np.float64)
        # Flagged data carries a negative weight
        weights = np.where(flags, -np.abs(weights), weights)

        vis = np.empty(data.shape + (3,), dtype=np.float64)
        vis[..., 0] = data.real
        vis[..., 1] = data.imag
        vis[..., 2] = weights
        records[:, len(PARAMETERS):] = vis.reshape(n, -1)
        return records

    def _append(self, records: np.ndarray):
        self._write(records.tobytes())
        self.n_groups += len(records)
        self.state = WriterState.WRITING

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def finalize(self) -> str:
        """
        Patch GCOUNT, append the AIPS AN and AIPS FQ tables and move the
        file into place.

        Returns
        -------
        path : str
            The finished file
        """
        self._require_open("finalize")
        if self._damaged:
            raise IoFailure(
                f"{self.part_path} has bytes of a failed write and cannot be finalized",
                offset=self._offset,
            )

        extensions = [
            build_antenna_table(
                self.antennas, self.observation, self.spectral_window, self.polarization
            ),
            build_frequency_table(self.spectral_window),
        ]

        pad = (-self._offset) % BLOCK
        if pad:
            self._write(b"\0" * pad)

        self._header["GCOUNT"] = self.n_groups
        patched = self._header.tostring().encode("ascii")
        if len(patched) != len(self._header_bytes):
            raise IoFailure(
                f"Header of {self.part_path} changed size while patching",
                offset=0,
            )
        try:
            self._fh.seek(0)
            self._fh.write(patched)
            self._fh.close()
        except OSError as e:
            raise IoFailure(f"Cannot patch header of {self.part_path}: {e}", offset=0) from e

        try:
            with fits.open(self.part_path, mode="append", memmap=False) as hdul:
                for hdu in extensions:
                    hdul.append(hdu)
            os.replace(self.part_path, self.path)
        except OSError as e:
            raise IoFailure(
                f"Cannot append tables to {self.part_path}: {e}",
                offset=self._offset,
            ) from e

        self.state = WriterState.FINALIZED
        return self.path

    def discard(self):
        """Close and delete the partial output."""
        self._require_open("discard")
        self.state = WriterState.DISCARDED
        try:
            self._fh.close()
        finally:
            if os.path.exists(self.part_path):
                os.remove(self.part_path)

    def __repr__(self):
        return (
            f"UVFitsWriter({self.path!r}, spw={self.spectral_window.id}, "
            f"groups={self.n_groups}, state={self.state.value})"
        )


__all__ = [
    "UVFitsWriter",
    "WriterState",
    "encode_baseline",
    "decode_baseline",
    "build_primary_header",
    "build_antenna_table",
    "build_frequency_table",
]
