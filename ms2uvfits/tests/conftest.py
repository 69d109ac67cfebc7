"""
Synthetic MeasurementSets for tests.
"""

import numpy as np
import pytest

from ms2uvfits.io.table_store import MemoryTableStore

# Roughly the MWA site, ITRF metres
ARRAY_CENTRE = np.array([-2559454.08, 5095372.14, -2849057.18])

# 2016-01-20, MJD seconds
START_TIME = 4.96e9


def build_ms_tables(
    n_ant=2,
    n_time=3,
    spws=((150e6, 1e6, 2),),
    corr_types=(9, 12),
    autos=False,
    flag_rows=(),
    weight_spectrum=False,
    interval=2.0,
    phase_dir=(1.0, -0.4),
    seed=42,
):
    """
    Tables of a small MeasurementSet.

    Parameters
    ----------
    spws : sequence of (first_freq, width, n_chan)
        One spectral window each; REF_FREQUENCY is the first channel
    flag_rows : sequence of int
        MAIN rows with FLAG_ROW set

    Rows are ordered time, then window, then baseline.
    """
    rng = np.random.RandomState(seed)
    n_corr = len(corr_types)

    offsets = np.zeros((n_ant, 3))
    offsets[:, 0] = np.arange(n_ant) * 30.0
    offsets[:, 1] = np.arange(n_ant) * 40.0
    offsets[:, 2] = np.arange(n_ant) * -20.0
    positions = ARRAY_CENTRE + offsets - offsets.mean(axis=0)

    pairs = [
        (a1, a2)
        for a1 in range(n_ant)
        for a2 in range(a1 if autos else a1 + 1, n_ant)
    ]

    time, ant1, ant2, ddid = [], [], [], []
    for t in range(n_time):
        for spw in range(len(spws)):
            for a1, a2 in pairs:
                time.append(START_TIME + t * interval)
                ant1.append(a1)
                ant2.append(a2)
                ddid.append(spw)
    n_rows = len(time)
    ddid = np.array(ddid)

    n_chans = [n for _, _, n in spws]
    same_shape = len(set(n_chans)) == 1

    data, flag, wspec = [], [], []
    for d in ddid:
        shape = (n_chans[d], n_corr)
        data.append(rng.randn(*shape) + 1j * rng.randn(*shape))
        flag.append(np.zeros(shape, dtype=bool))
        wspec.append(np.full(shape, 0.5))
    if same_shape:
        data, flag, wspec = np.array(data), np.array(flag), np.array(wspec)

    flag_row = np.zeros(n_rows, dtype=bool)
    flag_row[list(flag_rows)] = True

    main = {
        "TIME": np.array(time),
        "ANTENNA1": np.array(ant1),
        "ANTENNA2": np.array(ant2),
        "UVW": rng.randn(n_rows, 3) * 100.0,
        "FLAG": flag,
        "FLAG_ROW": flag_row,
        "DATA_DESC_ID": ddid,
        "DATA": data,
        "WEIGHT": np.full((n_rows, n_corr), 2.0),
        "INTERVAL": np.full(n_rows, interval),
        "EXPOSURE": np.full(n_rows, interval),
    }
    if weight_spectrum:
        main["WEIGHT_SPECTRUM"] = wspec

    chan_freq = [f0 + df * np.arange(n) for f0, df, n in spws]
    chan_width = [np.full(n, df) for _, df, n in spws]
    if same_shape:
        chan_freq, chan_width = np.array(chan_freq), np.array(chan_width)

    return {
        "MAIN": main,
        "ANTENNA": {
            "NAME": np.array([f"Tile{i:03d}" for i in range(n_ant)]),
            "POSITION": positions,
            "MOUNT": np.array(["ALT-AZ"] * n_ant),
            "DISH_DIAMETER": np.full(n_ant, 4.0),
        },
        "SPECTRAL_WINDOW": {
            "CHAN_FREQ": chan_freq,
            "CHAN_WIDTH": chan_width,
            "REF_FREQUENCY": np.array([f0 for f0, _, _ in spws]),
            "TOTAL_BANDWIDTH": np.array([df * n for _, df, n in spws]),
            "NAME": np.array([f"SPW{i}" for i in range(len(spws))]),
        },
        "FIELD": {
            "PHASE_DIR": np.array([[list(phase_dir)]]),
            "NAME": np.array(["ZENITH"]),
        },
        "POLARIZATION": {
            "CORR_TYPE": np.array([list(corr_types)]),
            "NUM_CORR": np.array([n_corr]),
        },
        "DATA_DESCRIPTION": {
            "SPECTRAL_WINDOW_ID": np.arange(len(spws)),
            "POLARIZATION_ID": np.zeros(len(spws), dtype=int),
        },
        "OBSERVATION": {
            "TELESCOPE_NAME": np.array(["MWA"]),
        },
    }


@pytest.fixture
def make_ms():
    """Factory: ``make_ms(**kwargs)`` -> (MemoryTableStore, tables)."""
    def factory(drop=(), **kwargs):
        tables = build_ms_tables(**kwargs)
        for name in drop:
            tables.pop(name)
        return MemoryTableStore(tables, name="synthetic.ms"), tables
    return factory


@pytest.fixture
def synthetic_ms(make_ms):
    """2 antennas, 1 baseline, 2 channels, XX/YY, 3 times."""
    return make_ms()
