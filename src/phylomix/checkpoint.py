"""
Checkpointing of optimization state.

A :class:`Checkpoint` is a flat key-value store whose keys are namespaced by
nested structs, e.g. ``TreeMix2/Tree1/branch_lengths``. It can be written to
and read back from a JSON file.
"""

import json
from pathlib import Path
from typing import Any, Optional

import numpy as np


class Checkpoint:
    """
    Nested-struct key-value store with JSON persistence.

    Parameters
    ----------
    filename : Path or str, optional
        Default file used by :meth:`dump`

    Examples
    --------
    >>> ckp = Checkpoint()
    >>> ckp.start_struct("TreeMix2")
    >>> ckp.save_array("weights", [0.4, 0.6])
    >>> ckp.end_struct()
    >>> ckp.start_struct("TreeMix2")
    >>> ckp.restore_array("weights", 2)
    array([0.4, 0.6])
    """

    def __init__(self, filename: Optional[Path | str] = None):
        self.filename = Path(filename) if filename is not None else None
        self._data: dict[str, Any] = {}
        self._structs: list[str] = []

    def start_struct(self, name: str) -> None:
        self._structs.append(name)

    def end_struct(self) -> None:
        if not self._structs:
            raise RuntimeError("end_struct() called without a matching start_struct()")
        self._structs.pop()

    def _key(self, key: str) -> str:
        return "/".join(self._structs + [key])

    def put(self, key: str, value: Any) -> None:
        self._data[self._key(key)] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(self._key(key), default)

    def __contains__(self, key: str) -> bool:
        return self._key(key) in self._data

    def save_array(self, key: str, values) -> None:
        self.put(key, [float(v) for v in values])

    def restore_array(self, key: str, n: int) -> Optional[np.ndarray]:
        """
        Read an array of exactly ``n`` values.

        Returns None when the key is absent or holds a different length.
        """
        values = self.get(key)
        if values is None or len(values) != n:
            return None
        return np.array(values, dtype=float)

    def dump(self, filepath: Optional[Path | str] = None) -> Path:
        """Write all entries to ``filepath`` (or the default file) as JSON."""
        target = Path(filepath) if filepath is not None else self.filename
        if target is None:
            raise ValueError("No checkpoint file given")
        with open(target, 'w') as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
        return target

    @classmethod
    def load(cls, filepath: Path | str) -> "Checkpoint":
        filepath = Path(filepath)
        checkpoint = cls(filepath)
        with open(filepath) as f:
            checkpoint._data = json.load(f)
        return checkpoint

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Checkpoint(entries={len(self._data)}, filename={self.filename})"
