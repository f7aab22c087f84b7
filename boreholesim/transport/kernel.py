"""
Explicit finite-difference transport kernel (CPU reference implementation).

One call advances the interior nodes (1 <= i <= nr-2, all j, 1 <= k <= nz-2)
by one inner time step, reading only the previous iterate:

    lap  = d²T/dr² + (1/r) dT/dr + (1/r²) d²T/dθ² + d²T/dz²
    adv  = -(v_r ∂T/∂r + v_θ (1/r) ∂T/∂θ + v_z ∂T/∂z)      (first-order upwind)
    ΔT   = clip(dt · (α·lap + D·lap + adv), ±5 K)
    T'   = clip(T + ΔT, 273 K, 473 K)

The GPU kernel in :mod:`boreholesim.transport.gpu` evaluates the same
expressions in the same order on the same precomputed stencil metrics.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..mesh import CylindricalMesh, flat_index
from .reduction import MaxChangeAccumulator

# Kernel constants shared with the CUDA source
MIN_RADIUS = 0.01       # m, guards the 1/r metric terms
MIN_SPACING = 1e-3      # m, floor on dr and dz
MAX_DELTA_T = 5.0       # K per iteration
T_MIN = 273.0           # K
T_MAX = 473.0           # K


@dataclass(eq=False)
class StencilMetrics:
    """
    Precomputed grid metrics used by both kernels.

    Attributes
    ----------
    r_eff : np.ndarray
        max(MIN_RADIUS, r) per radial node
    dr_minus, dr_plus : np.ndarray
        Floored spacing to the inner/outer radial neighbour (boundary entries
        are unused)
    dz_minus, dz_plus : np.ndarray
        Floored spacing to the upper/lower vertical neighbour
    dtheta : float
        Angular spacing [rad]
    interior_flat : np.ndarray
        Row-major flat indices of the interior nodes, in interior C order
    """
    r_eff: np.ndarray
    dr_minus: np.ndarray
    dr_plus: np.ndarray
    dz_minus: np.ndarray
    dz_plus: np.ndarray
    dtheta: float
    shape: Tuple[int, int, int]
    interior_flat: np.ndarray

    @classmethod
    def from_mesh(cls, mesh: CylindricalMesh) -> "StencilMetrics":
        return cls.from_coordinates(mesh.r, mesh.z, mesh.ntheta)

    @classmethod
    def from_coordinates(cls, r: np.ndarray, z: np.ndarray, n_theta: int) -> "StencilMetrics":
        r = np.asarray(r, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)
        dr = np.diff(r)
        dz = np.diff(z)
        dr_minus = np.maximum(np.concatenate(([dr[0]], dr)), MIN_SPACING)
        dr_plus = np.maximum(np.concatenate((dr, [dr[-1]])), MIN_SPACING)
        dz_minus = np.maximum(np.concatenate(([dz[0]], dz)), MIN_SPACING)
        dz_plus = np.maximum(np.concatenate((dz, [dz[-1]])), MIN_SPACING)

        nr, nz = len(r), len(z)
        ii, jj, kk = np.meshgrid(
            np.arange(1, nr - 1), np.arange(n_theta), np.arange(1, nz - 1), indexing="ij"
        )
        return cls(
            r_eff=np.maximum(MIN_RADIUS, r),
            dr_minus=dr_minus,
            dr_plus=dr_plus,
            dz_minus=dz_minus,
            dz_plus=dz_plus,
            dtheta=2.0 * np.pi / n_theta,
            shape=(nr, n_theta, nz),
            interior_flat=flat_index(ii, jj, kk, n_theta, nz).ravel(),
        )

    def interior_views(self):
        """Metrics broadcast against an interior block of shape (nr-2, nθ, nz-2)."""
        return (
            self.r_eff[1:-1, None, None],
            self.dr_minus[1:-1, None, None],
            self.dr_plus[1:-1, None, None],
            self.dz_minus[None, None, 1:-1],
            self.dz_plus[None, None, 1:-1],
        )


def _interior(field: np.ndarray) -> np.ndarray:
    return field[1:-1, :, 1:-1]


def transport_step(
    temperature: np.ndarray,
    alpha: np.ndarray,
    metrics: StencilMetrics,
    dt: float,
    velocity: Optional[np.ndarray] = None,
    dispersion: Optional[np.ndarray] = None,
    accumulator: Optional[MaxChangeAccumulator] = None,
) -> Tuple[np.ndarray, float]:
    """
    Advance the interior nodes by one explicit step.

    Parameters
    ----------
    temperature : np.ndarray
        Current iterate, shape (nr, nθ, nz) [K]
    alpha : np.ndarray
        Thermal diffusivity [m²/s]
    metrics : StencilMetrics
        Precomputed grid metrics
    dt : float
        Inner time step [s]
    velocity : np.ndarray, optional
        Advective velocity, shape (3, nr, nθ, nz) as (v_r, v_θ, v_z) [m/s]
    dispersion : np.ndarray, optional
        Dispersion coefficient [m²/s]
    accumulator : MaxChangeAccumulator, optional
        Reused slot accumulator; a fresh one is used when omitted

    Returns
    -------
    tuple
        (new temperature with untouched boundary nodes, max |ΔT| over interior)
    """
    T = np.asarray(temperature, dtype=np.float64)
    r, drm, drp, dzm, dzp = metrics.interior_views()
    dth = metrics.dtheta

    Tc = _interior(T)
    Trp = T[2:, :, 1:-1]
    Trm = T[:-2, :, 1:-1]
    Tthp = np.roll(Tc, -1, axis=1)
    Tthm = np.roll(Tc, 1, axis=1)
    Tzp = T[1:-1, :, 2:]
    Tzm = T[1:-1, :, :-2]

    d2r = 2.0 * (drm * Trp - (drm + drp) * Tc + drp * Trm) / (drm * drp * (drm + drp))
    dTdr = (Trp - Trm) / (drp + drm)
    d2th = (Tthp - 2.0 * Tc + Tthm) / (r * r * dth * dth)
    d2z = 2.0 * (dzm * Tzp - (dzm + dzp) * Tc + dzp * Tzm) / (dzm * dzp * (dzm + dzp))
    lap = d2r + dTdr / r + d2th + d2z

    rate = _interior(alpha) * lap
    if dispersion is not None:
        rate = rate + _interior(dispersion) * lap
    if velocity is not None:
        vr = _interior(velocity[0])
        vth = _interior(velocity[1])
        vz = _interior(velocity[2])
        # Upstream neighbour by sign; central differences are unstable here
        gr = np.where(vr >= 0.0, (Tc - Trm) / drm, (Trp - Tc) / drp)
        gth = np.where(vth >= 0.0, (Tc - Tthm) / (r * dth), (Tthp - Tc) / (r * dth))
        gz = np.where(vz >= 0.0, (Tc - Tzm) / dzm, (Tzp - Tc) / dzp)
        rate = rate - (vr * gr + vth * gth + vz * gz)

    delta = np.clip(dt * rate, -MAX_DELTA_T, MAX_DELTA_T)
    updated = np.clip(Tc + delta, T_MIN, T_MAX)

    new_temperature = T.copy()
    new_temperature[1:-1, :, 1:-1] = updated

    if accumulator is None:
        accumulator = MaxChangeAccumulator()
    accumulator.reset()
    accumulator.record(metrics.interior_flat, updated - Tc)
    return new_temperature, accumulator.reduce()


def stable_time_step(
    alpha: np.ndarray,
    metrics: StencilMetrics,
    velocity: Optional[np.ndarray] = None,
    dispersion: Optional[np.ndarray] = None,
    safety: float = 0.9,
) -> float:
    """
    Largest inner time step keeping the explicit update monotone.

    Returns
    -------
    float
        safety / max over interior of the diagonal stencil weight [s]
    """
    r, drm, drp, dzm, dzp = metrics.interior_views()
    dth = metrics.dtheta
    a = _interior(alpha)
    if dispersion is not None:
        a = a + _interior(dispersion)
    weight = a * (2.0 / (drm * drp) + 2.0 / (r * r * dth * dth) + 2.0 / (dzm * dzp))
    if velocity is not None:
        weight = weight + (
            np.abs(_interior(velocity[0])) / np.minimum(drm, drp)
            + np.abs(_interior(velocity[1])) / (r * dth)
            + np.abs(_interior(velocity[2])) / np.minimum(dzm, dzp)
        )
    peak = float(np.max(weight))
    if peak <= 0.0:
        return np.inf
    return safety / peak

