"""
Tests for phase tracking correction.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from ms2uvfits.core.phase import (
    phase_rotation,
    rotate_visibilities,
    reverse_phase_tracking,
)
from ms2uvfits.io.ms_reader import RawRow, RowBatch


def _sample(n_chan=4, n_pol=2, seed=0):
    rng = np.random.RandomState(seed)
    shape = (n_chan, n_pol)
    flags = np.zeros(shape, dtype=bool)
    flags[1, 0] = True
    return RawRow(
        row=7,
        spw_id=0,
        time=4.96e9,
        antenna1=0,
        antenna2=1,
        uvw=np.array([10.0, 20.0, 30.0]),
        interval=2.0,
        data=rng.randn(*shape) + 1j * rng.randn(*shape),
        flags=flags,
        weights=rng.rand(*shape),
    )


FREQS = 150e6 + 1e6 * np.arange(4)


class TestPhaseRotation:
    """Test the complex rotation factor."""

    def test_zero_delay(self):
        assert_allclose(phase_rotation(0.0, 0.0, FREQS), np.ones(4))

    def test_sign(self):
        """Factor is exp(+2 pi i f (old - new))."""
        tau = 1e-9
        factor = phase_rotation(tau, 0.0, FREQS)
        assert_allclose(np.angle(factor), np.angle(np.exp(2j * np.pi * FREQS * tau)))

    def test_full_turn(self):
        """One period of delay is a full turn."""
        factor = phase_rotation(1.0 / FREQS[0], 0.0, FREQS[:1])
        assert_allclose(factor, [1.0], atol=1e-9)

    def test_per_row(self):
        factor = phase_rotation(np.array([0.0, 1e-9, 2e-9]), 0.0, FREQS)
        assert factor.shape == (3, 4)
        assert_allclose(factor[0], np.ones(4))

    def test_unit_modulus(self):
        factor = phase_rotation(np.linspace(-1e-6, 1e-6, 11), 3e-7, FREQS)
        assert_allclose(np.abs(factor), 1.0)


class TestReversePhaseTracking:
    """Test rotating a sample to a new delay reference."""

    def test_identity(self):
        """Equal delays reproduce every value within 1e-9."""
        sample = _sample()
        out = reverse_phase_tracking(sample, 3.3e-7, 3.3e-7, FREQS)
        assert_allclose(out.data, sample.data, rtol=1e-9)

    def test_amplitude_preserved(self):
        sample = _sample()
        out = reverse_phase_tracking(sample, 1e-7, -4e-8, FREQS)
        assert_allclose(np.abs(out.data), np.abs(sample.data), rtol=1e-12)

    def test_flags_weights_untouched(self):
        sample = _sample()
        out = reverse_phase_tracking(sample, 1e-7, 0.0, FREQS)
        assert np.array_equal(out.flags, sample.flags)
        assert np.array_equal(out.weights, sample.weights)
        assert out.row == sample.row
        assert out.uvw is sample.uvw

    def test_input_not_modified(self):
        sample = _sample()
        before = sample.data.copy()
        reverse_phase_tracking(sample, 1e-7, 0.0, FREQS)
        assert np.array_equal(sample.data, before)

    def test_round_trip(self):
        sample = _sample()
        there = reverse_phase_tracking(sample, 2e-7, 0.0, FREQS)
        back = reverse_phase_tracking(there, 0.0, 2e-7, FREQS)
        assert_allclose(back.data, sample.data, rtol=1e-9)

    def test_same_phase_all_pols(self):
        sample = _sample()
        sample.data[:] = 1.0 + 0j
        out = reverse_phase_tracking(sample, 1e-8, 0.0, FREQS)
        assert_allclose(out.data[:, 0], out.data[:, 1])

    def test_batch(self):
        """Batch rotation matches row-by-row rotation."""
        rows = [_sample(seed=s) for s in range(3)]
        batch = RowBatch(
            rows=np.arange(3),
            spw_id=0,
            time=np.array([r.time for r in rows]),
            antenna1=np.zeros(3, dtype=int),
            antenna2=np.ones(3, dtype=int),
            uvw=np.array([r.uvw for r in rows]),
            interval=np.full(3, 2.0),
            data=np.array([r.data for r in rows]),
            flags=np.array([r.flags for r in rows]),
            weights=np.array([r.weights for r in rows]),
        )
        delays = np.array([0.0, 1e-7, -3e-7])
        out = reverse_phase_tracking(batch, delays, np.zeros(3), FREQS)
        for i, row in enumerate(rows):
            expected = rotate_visibilities(row.data, delays[i], 0.0, FREQS)
            assert_allclose(out.data[i], expected)
