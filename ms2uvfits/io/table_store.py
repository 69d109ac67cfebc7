"""
Table Backends.

The reader only talks to tables through a small surface that
``casacore.tables.table`` already provides:

    colnames(), nrows(), getcol(name, startrow, nrow), getcell(name, row),
    isvarcol(name), iscelldefined(name, row), getvarcol(...), close()

``CasacoreTableStore`` opens real MeasurementSets. ``MemoryTableStore`` holds
the same tables as numpy arrays, which is how synthetic data sets are built.
"""

import os
import numpy as np
from typing import Dict, List, Optional, Union


class CasacoreTableStore:
    """MeasurementSet on disk, opened read-only through python-casacore."""

    def __init__(self, ms_path: str):
        self.ms_path = str(ms_path)

    def exists(self) -> bool:
        return os.path.isdir(self.ms_path)

    def has_table(self, name: Optional[str] = None) -> bool:
        path = self._path(name)
        return os.path.exists(os.path.join(path, "table.dat"))

    def open_table(self, name: Optional[str] = None):
        from casacore.tables import table

        return table(self._path(name), readonly=True, ack=False)

    def _path(self, name: Optional[str]) -> str:
        if name is None or name == "MAIN":
            return self.ms_path
        return f"{self.ms_path}/{name}"

    def __repr__(self):
        return f"CasacoreTableStore({self.ms_path!r})"


class MemoryTable:
    """
    A table held in memory.

    Fixed-shape columns are numpy arrays whose first axis is the row.
    Variable-shape columns are lists of arrays, one per row.
    """

    def __init__(self, columns: Dict[str, Union[np.ndarray, List[np.ndarray]]]):
        self._columns = {}
        n_rows = None
        for name, values in columns.items():
            if not isinstance(values, list):
                values = np.asarray(values)
            if n_rows is None:
                n_rows = len(values)
            elif len(values) != n_rows:
                raise ValueError(
                    f"Column {name} has {len(values)} rows, expected {n_rows}"
                )
            self._columns[name] = values
        self._n_rows = n_rows or 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def close(self):
        pass

    def colnames(self) -> List[str]:
        return list(self._columns)

    def nrows(self) -> int:
        return self._n_rows

    def isvarcol(self, name: str) -> bool:
        return isinstance(self._column(name), list)

    def iscelldefined(self, name: str, row: int) -> bool:
        self._column(name)
        return 0 <= row < self._n_rows

    def getcell(self, name: str, row: int):
        return self._column(name)[row]

    def getcol(self, name: str, startrow: int = 0, nrow: int = -1):
        values = self._column(name)
        stop = self._n_rows if nrow < 0 else startrow + nrow
        if isinstance(values, list):
            return np.stack(values[startrow:stop])
        return values[startrow:stop].copy()

    def getvarcol(self, name: str, startrow: int = 0, nrow: int = -1) -> Dict:
        values = self._column(name)
        stop = self._n_rows if nrow < 0 else startrow + nrow
        return {
            f"r{row + 1}": np.asarray(values[row])[np.newaxis, ...]
            for row in range(startrow, stop)
        }

    def _column(self, name: str):
        if name not in self._columns:
            raise RuntimeError(f"Table has no column {name}")
        return self._columns[name]


class MemoryTableStore:
    """
    MeasurementSet-shaped collection of ``MemoryTable`` objects.

    Parameters
    ----------
    tables : dict
        Table name -> dict of columns. The main table is keyed ``"MAIN"``.
    name : str
        Label used in messages
    """

    def __init__(self, tables: Dict[str, Dict], name: str = "<memory>"):
        self.ms_path = name
        self._tables = {key: MemoryTable(cols) for key, cols in tables.items()}

    def exists(self) -> bool:
        return True

    def has_table(self, name: Optional[str] = None) -> bool:
        return (name or "MAIN") in self._tables

    def open_table(self, name: Optional[str] = None) -> MemoryTable:
        key = name or "MAIN"
        if key not in self._tables:
            raise RuntimeError(f"Table {key} does not exist")
        return self._tables[key]

    def __repr__(self):
        return f"MemoryTableStore({self.ms_path!r})"


__all__ = [
    "CasacoreTableStore",
    "MemoryTable",
    "MemoryTableStore",
]
