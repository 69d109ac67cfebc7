"""
Phase Tracking Correction.

Rotate visibility phases from one delay reference to another. With the
new delay set to zero this undoes phase tracking, giving the untracked
visibilities legacy calibration pipelines expect.
"""

import numpy as np
from dataclasses import replace
from typing import Union


def phase_rotation(
    old_delay: Union[float, np.ndarray],
    new_delay: Union[float, np.ndarray],
    freqs: np.ndarray,
) -> np.ndarray:
    """
    Complex factor exp(+2*pi*i * f * (old_delay - new_delay)).

    Parameters
    ----------
    old_delay, new_delay : float or ndarray (n_row,)
        Delays in seconds
    freqs : ndarray (n_chan,)
        Channel frequencies in Hz

    Returns
    -------
    factor : ndarray (n_chan,) or (n_row, n_chan)
    """
    delta = np.asarray(old_delay, dtype=np.float64) - np.asarray(new_delay, dtype=np.float64)
    freqs = np.asarray(freqs, dtype=np.float64)
    phase = 2.0 * np.pi * np.multiply.outer(delta, freqs)
    return np.exp(1j * phase)


def rotate_visibilities(
    data: np.ndarray,
    old_delay: Union[float, np.ndarray],
    new_delay: Union[float, np.ndarray],
    freqs: np.ndarray,
) -> np.ndarray:
    """
    Apply the phase rotation to a visibility array.

    ``data`` is (n_chan, n_pol) for one sample or (n_row, n_chan, n_pol)
    for a batch. A new array is returned.
    """
    factor = phase_rotation(old_delay, new_delay, freqs)
    return data * factor[..., np.newaxis]


def reverse_phase_tracking(
    sample,
    old_delay: Union[float, np.ndarray],
    new_delay: Union[float, np.ndarray],
    channel_frequencies: np.ndarray,
):
    """
    Move a sample's phase reference from ``old_delay`` to ``new_delay``.

    Works on a single ``RawRow`` or a whole ``RowBatch``. Flags and
    weights are passed through untouched and amplitudes are preserved.
    The input is not modified.
    """
    rotated = rotate_visibilities(sample.data, old_delay, new_delay, channel_frequencies)
    return replace(sample, data=rotated)


__all__ = [
    "phase_rotation",
    "rotate_visibilities",
    "reverse_phase_tracking",
]
