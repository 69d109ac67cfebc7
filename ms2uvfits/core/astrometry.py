"""
Astrometry.

Sidereal time, baseline UVW and geometric delay for a time and direction.

All functions are pure. Earth orientation comes from astropy/ERFA with
UT1-UTC fixed to zero and IERS downloads switched off, so identical inputs
give identical outputs and nothing touches the network.
"""

import numpy as np
from typing import Tuple, Union

import erfa
import astropy.units as u
from astropy.coordinates import EarthLocation
from astropy.time import Time
from astropy.utils import iers

from ms2uvfits.errors import AstrometryFailure

# Speed of light [m/s]
VELC = 299792458.0

# Seconds per day
DAY = 86400.0

# MJD epoch as a JD
MJD_ZERO = 2400000.5

ArrayLike = Union[float, np.ndarray]


def casacore_time_to_jd(utc_seconds: ArrayLike) -> np.ndarray:
    """Convert casacore TIME (MJD seconds, UTC) to a Julian Date."""
    return np.asarray(utc_seconds, dtype=np.float64) / DAY + MJD_ZERO


def _utc_time(utc_seconds: ArrayLike) -> Time:
    seconds = np.asarray(utc_seconds, dtype=np.float64)
    if not np.all(np.isfinite(seconds)):
        raise AstrometryFailure("Non-finite time")
    # Split into integer days and fraction to keep full precision
    days = np.floor(seconds / DAY)
    frac = (seconds - days * DAY) / DAY
    t = Time(days + MJD_ZERO, frac, format="jd", scale="utc")
    t.delta_ut1_utc = 0.0
    return t


def _checked(values: np.ndarray, what: str) -> np.ndarray:
    if not np.all(np.isfinite(values)):
        raise AstrometryFailure(f"Non-finite {what}")
    return values


def greenwich_apparent_sidereal_time(utc_seconds: ArrayLike) -> np.ndarray:
    """
    Greenwich apparent sidereal time.

    Parameters
    ----------
    utc_seconds : float or ndarray
        casacore TIME (MJD seconds, UTC)

    Returns
    -------
    gast : float or ndarray
        Radians in [0, 2pi)
    """
    return local_apparent_sidereal_time(utc_seconds, 0.0)


def local_apparent_sidereal_time(utc_seconds: ArrayLike, longitude: float) -> np.ndarray:
    """
    Local apparent sidereal time (IAU 2006/2000A).

    Parameters
    ----------
    utc_seconds : float or ndarray
        casacore TIME (MJD seconds, UTC)
    longitude : float
        East longitude in radians

    Returns
    -------
    last : float or ndarray
        Radians in [0, 2pi)
    """
    if not np.isfinite(longitude):
        raise AstrometryFailure("Non-finite longitude")
    t = _utc_time(utc_seconds)
    # Greenwich value plus longitude: no polar motion, so no IERS lookup
    with iers.conf.set_temp("auto_download", False):
        gast = t.sidereal_time("apparent", longitude="greenwich", model="IAU2006A")
    last = np.mod(np.asarray(gast.to_value(u.rad)) + longitude, 2 * np.pi)
    return _checked(last, "sidereal time")


def itrf_to_geodetic(position: np.ndarray) -> Tuple[float, float, float]:
    """
    ITRF position to WGS84 geodetic coordinates.

    Returns
    -------
    lon, lat : float
        Radians
    height : float
        Metres
    """
    x, y, z = _checked(np.asarray(position, dtype=np.float64), "array position")
    if x == 0.0 and y == 0.0 and z == 0.0:
        raise AstrometryFailure("Array position is the geocentre")
    loc = EarthLocation.from_geocentric(x, y, z, unit=u.m)
    lon, lat, height = loc.to_geodetic("WGS84")
    return float(lon.to_value(u.rad)), float(lat.to_value(u.rad)), float(height.to_value(u.m))


def _bias_precession_nutation(utc_seconds: np.ndarray) -> np.ndarray:
    """IAU 2006/2000A GCRS -> true-of-date matrices, one per time."""
    t = _utc_time(np.atleast_1d(utc_seconds))
    with iers.conf.set_temp("auto_download", False):
        tt = t.tt
    return erfa.pnm06a(tt.jd1, tt.jd2)        # (n, 3, 3)


def apparent_direction(ra: float, dec: float, utc_seconds: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
    """
    Precess and nutate a J2000 direction to true equator and equinox of date.

    Returns
    -------
    ra_app, dec_app : ndarray
        Radians, one per input time
    """
    rbpn = _bias_precession_nutation(utc_seconds)
    v = erfa.s2c(ra, dec)                     # (3,)
    v_app = np.einsum("nij,j->ni", rbpn, v)
    ra_app, dec_app = erfa.c2s(v_app)
    return _checked(ra_app, "direction"), _checked(dec_app, "direction")


def rotate_to_local_meridian(xyz: np.ndarray, longitude: float) -> np.ndarray:
    """Rotate earth-fixed vectors about the pole so x lies in the local meridian."""
    c, s = np.cos(longitude), np.sin(longitude)
    xyz = np.asarray(xyz, dtype=np.float64)
    out = np.empty_like(xyz)
    out[..., 0] = c * xyz[..., 0] + s * xyz[..., 1]
    out[..., 1] = -s * xyz[..., 0] + c * xyz[..., 1]
    out[..., 2] = xyz[..., 2]
    return out


def itrf_to_celestial(xyz: np.ndarray, utc_seconds: ArrayLike) -> np.ndarray:
    """
    Rotate earth-fixed vectors into the J2000 (GCRS) frame.

    Earth rotation is the apparent sidereal angle, then the bias,
    precession and nutation matrix is undone. Polar motion is ignored.

    Parameters
    ----------
    xyz : ndarray (n, 3)
        ITRF vectors, metres
    utc_seconds : ndarray (n,)
        casacore TIME of each vector

    Returns
    -------
    xyz_j2000 : ndarray (n, 3)
    """
    xyz = np.atleast_2d(np.asarray(xyz, dtype=np.float64))
    times = np.broadcast_to(np.asarray(utc_seconds, dtype=np.float64), (len(xyz),))
    unique_times, inverse = np.unique(times, return_inverse=True)

    gast = np.atleast_1d(greenwich_apparent_sidereal_time(unique_times))[inverse]
    rbpn = _bias_precession_nutation(unique_times)[inverse]

    # Earth-fixed -> true equator and equinox of date
    c, s = np.cos(gast), np.sin(gast)
    tod = np.empty_like(xyz)
    tod[:, 0] = c * xyz[:, 0] - s * xyz[:, 1]
    tod[:, 1] = s * xyz[:, 0] + c * xyz[:, 1]
    tod[:, 2] = xyz[:, 2]

    # True of date -> J2000: transpose of the NPB matrix
    return np.einsum("nji,nj->ni", rbpn, tod)


def batch_uvw(
    antenna1: np.ndarray,
    antenna2: np.ndarray,
    utc_seconds: np.ndarray,
    ra: float,
    dec: float,
    antenna_positions: np.ndarray,
    array_position: np.ndarray,
) -> np.ndarray:
    """
    UVW of many baselines toward a J2000 direction, in the J2000 frame.

    The baseline vector is ``X[antenna2] - X[antenna1]``, as in
    MeasurementSets. It is rotated to J2000 at each row's time and
    projected onto the east, north and source directions of ``(ra, dec)``.
    ``array_position`` is only checked; the baselines carry the geometry.

    Returns
    -------
    uvw : ndarray (n, 3)
        Metres
    """
    antenna1 = np.asarray(antenna1)
    antenna2 = np.asarray(antenna2)
    times = np.asarray(utc_seconds, dtype=np.float64)
    positions = _checked(np.asarray(antenna_positions, dtype=np.float64), "antenna position")
    _checked(np.asarray(array_position, dtype=np.float64), "array position")
    if not (np.isfinite(ra) and np.isfinite(dec)):
        raise AstrometryFailure("Non-finite direction")

    baselines = positions[antenna2] - positions[antenna1]
    b = itrf_to_celestial(baselines, times)

    sin_ra, cos_ra = np.sin(ra), np.cos(ra)
    sin_dec, cos_dec = np.sin(dec), np.cos(dec)
    east = np.array([-sin_ra, cos_ra, 0.0])
    north = np.array([-sin_dec * cos_ra, -sin_dec * sin_ra, cos_dec])
    source = np.array([cos_dec * cos_ra, cos_dec * sin_ra, sin_dec])

    uvw = np.empty((len(antenna1), 3), dtype=np.float64)
    uvw[:, 0] = b @ east
    uvw[:, 1] = b @ north
    uvw[:, 2] = b @ source

    # Auto-correlations are exactly zero whatever the geometry
    uvw[antenna1 == antenna2] = 0.0
    return _checked(uvw, "UVW")


def baseline_uvw(
    antenna_pair: Tuple[int, int],
    utc_seconds: float,
    direction: Tuple[float, float],
    antenna_positions: np.ndarray,
    array_position: np.ndarray,
) -> Tuple[float, float, float]:
    """UVW in metres of one baseline at one time toward ``(ra, dec)``."""
    a1, a2 = antenna_pair
    if a1 == a2:
        return (0.0, 0.0, 0.0)
    ra, dec = direction
    uvw = batch_uvw(
        np.array([a1]), np.array([a2]), np.array([utc_seconds]),
        ra, dec, antenna_positions, array_position,
    )[0]
    return (float(uvw[0]), float(uvw[1]), float(uvw[2]))


def geometric_delay(u: ArrayLike, v: ArrayLike, w: ArrayLike) -> np.ndarray:
    """
    Geometric delay in seconds toward the direction the UVW refer to.

    Only ``w`` contributes; ``u`` and ``v`` lie in the plane of the sky.
    """
    w = np.asarray(w, dtype=np.float64)
    if not np.all(np.isfinite(w)):
        raise AstrometryFailure("Non-finite w")
    return w / VELC


def tai_minus_utc(utc_seconds: float) -> float:
    """TAI - UTC in seconds (leap seconds) at a casacore time."""
    t = _utc_time(utc_seconds)
    iy, im, iday, fd = erfa.jd2cal(t.jd1, t.jd2)
    return float(erfa.dat(iy, im, iday, fd))


__all__ = [
    "tai_minus_utc",
    "VELC",
    "casacore_time_to_jd",
    "greenwich_apparent_sidereal_time",
    "local_apparent_sidereal_time",
    "itrf_to_geodetic",
    "apparent_direction",
    "rotate_to_local_meridian",
    "itrf_to_celestial",
    "batch_uvw",
    "baseline_uvw",
    "geometric_delay",
]
