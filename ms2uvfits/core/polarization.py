"""
Polarization Mapping.

Map MeasurementSet correlation types (POLARIZATION/CORR_TYPE) onto the
regular STOKES axis of a random-groups file.
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Tuple, Union

from ms2uvfits.errors import UnsupportedLayout

# Feed type constants
FEED_LINEAR = "linear"
FEED_CIRCULAR = "circular"
FEED_STOKES = "stokes"

# CASA correlation type codes
# From casacore Stokes.h
CORR_CODES = {
    0: "Undefined",
    1: "I", 2: "Q", 3: "U", 4: "V",
    5: "RR", 6: "RL", 7: "LR", 8: "LL",
    9: "XX", 10: "XY", 11: "YX", 12: "YY",
    13: "RX", 14: "RY", 15: "LX", 16: "LY",
    17: "XR", 18: "XL", 19: "YR", 20: "YL",
}

# CASA code -> AIPS memo 117 STOKES axis value
CASA_TO_AIPS = {
    1: 1, 2: 2, 3: 3, 4: 4,
    5: -1, 8: -2, 6: -3, 7: -4,
    9: -5, 12: -6, 10: -7, 11: -8,
}

LINEAR_CORRS = {9, 10, 11, 12}
CIRCULAR_CORRS = {5, 6, 7, 8}
STOKES_CORRS = {1, 2, 3, 4}


@dataclass(frozen=True)
class PolarizationLayout:
    """How the correlation axis of a DATA cell maps onto the STOKES axis."""
    order: Tuple[int, ...]       # MS correlation index for each output slot
    codes: Tuple[int, ...]       # AIPS STOKES value for each output slot
    feed_type: str

    @property
    def n_pol(self) -> int:
        return len(self.order)

    @property
    def crval(self) -> float:
        return float(self.codes[0])

    @property
    def cdelt(self) -> float:
        if len(self.codes) > 1:
            return float(self.codes[1] - self.codes[0])
        return 1.0 if self.feed_type == FEED_STOKES else -1.0

    @property
    def labels(self) -> Tuple[str, ...]:
        aips_to_casa = {v: k for k, v in CASA_TO_AIPS.items()}
        return tuple(CORR_CODES[aips_to_casa[c]] for c in self.codes)

    def feed_labels(self) -> Tuple[str, str]:
        return get_pol_labels(self.feed_type)


def detect_feed_type(corr_types: Union[np.ndarray, List[int]]) -> str:
    """
    Detect feed type from correlation types.

    Raises
    ------
    UnsupportedLayout
        If correlation types are unknown or mixed
    """
    corr_set = {int(c) for c in corr_types}

    kinds = [
        kind for kind, members in (
            (FEED_LINEAR, LINEAR_CORRS),
            (FEED_CIRCULAR, CIRCULAR_CORRS),
            (FEED_STOKES, STOKES_CORRS),
        )
        if corr_set & members
    ]
    unknown = corr_set - LINEAR_CORRS - CIRCULAR_CORRS - STOKES_CORRS

    if unknown:
        names = sorted(CORR_CODES.get(c, str(c)) for c in unknown)
        raise UnsupportedLayout(f"Unsupported correlation types: {names}")
    if len(kinds) > 1:
        raise UnsupportedLayout(
            f"Mixed correlation bases {kinds} cannot share one STOKES axis"
        )
    if not kinds:
        raise UnsupportedLayout("No correlation types in POLARIZATION table")
    return kinds[0]


def map_polarizations(corr_types: Union[np.ndarray, List[int]]) -> PolarizationLayout:
    """
    Build the output polarization layout for one POLARIZATION row.

    Feeds are ordered RR, LL, RL, LR (or XX, YY, XY, YX) and Stokes
    parameters I, Q, U, V. The selected codes must form an axis with a
    constant step of one.
    """
    corr_types = [int(c) for c in np.atleast_1d(corr_types)]
    if len(set(corr_types)) != len(corr_types):
        raise UnsupportedLayout(f"Repeated correlation types: {corr_types}")

    feed_type = detect_feed_type(corr_types)
    aips = [CASA_TO_AIPS[c] for c in corr_types]

    descending = feed_type != FEED_STOKES
    order = sorted(range(len(aips)), key=lambda i: aips[i], reverse=descending)
    codes = [aips[i] for i in order]

    step = -1 if descending else 1
    if any(b - a != step for a, b in zip(codes[:-1], codes[1:])):
        labels = [CORR_CODES[corr_types[i]] for i in order]
        raise UnsupportedLayout(
            f"Correlations {labels} do not form a regular STOKES axis"
        )

    return PolarizationLayout(
        order=tuple(order),
        codes=tuple(codes),
        feed_type=feed_type,
    )


def get_pol_labels(feed_type: str) -> Tuple[str, str]:
    """
    Get feed labels for a feed type, as written to POLTYA/POLTYB.

    Returns
    -------
    labels : tuple of str
        ('X', 'Y'), ('R', 'L'), or ('', '') for Stokes data
    """
    if feed_type == FEED_LINEAR:
        return ("X", "Y")
    elif feed_type == FEED_CIRCULAR:
        return ("R", "L")
    elif feed_type == FEED_STOKES:
        return ("", "")
    else:
        raise ValueError(f"Unknown feed type: {feed_type}")
