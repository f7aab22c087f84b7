"""
Max-change reduction used as the per-iteration convergence signal.

Every updated node records |ΔT| into one of a fixed number of accumulator
slots chosen by ``flat_index % N_SLOTS``; the slots are then reduced with a
max. The GPU kernel uses the same slot count and keying, so both backends
produce the same scalar.
"""

import numpy as np

N_SLOTS = 256


class MaxChangeAccumulator:
    """
    Slot accumulator for the maximum absolute nodal change.

    The slots must be reset before every kernel pass; a stale maximum from a
    previous pass would hide convergence.
    """

    def __init__(self, n_slots: int = N_SLOTS):
        if n_slots < 1:
            raise ValueError("Slot count must be positive")
        self.n_slots = n_slots
        self.slots = np.zeros(n_slots, dtype=np.float64)

    def reset(self) -> None:
        """Zero every slot."""
        self.slots.fill(0.0)

    def record(self, flat_indices: np.ndarray, changes: np.ndarray) -> None:
        """
        Record absolute changes keyed by flat node index.

        Parameters
        ----------
        flat_indices : np.ndarray
            Row-major node indices of the updated nodes
        changes : np.ndarray
            Nodal changes (sign ignored), same shape as flat_indices
        """
        keys = np.asarray(flat_indices, dtype=np.int64).ravel() % self.n_slots
        np.maximum.at(self.slots, keys, np.abs(np.asarray(changes, dtype=np.float64)).ravel())

    def reduce(self) -> float:
        """Maximum over all slots."""
        return float(self.slots.max())


def max_abs_change(flat_indices: np.ndarray, changes: np.ndarray, n_slots: int = N_SLOTS) -> float:
    """One-shot reset, record and reduce."""
    acc = MaxChangeAccumulator(n_slots)
    acc.record(flat_indices, changes)
    return acc.reduce()
