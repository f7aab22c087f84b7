"""
Water-gas multiphase properties in the ground pore space.

Each step the module normalises the phase saturations, evaluates brine
properties at the local temperature and pressure, and rebuilds the
hydrostatic water pressure column with the brine density.

References
----------
Corey, A. T. (1954): The interrelation between gas and oil relative permeabilities
van Genuchten, M. T. (1980): A closed-form equation for predicting the hydraulic
    conductivity of unsaturated soils
Batzle, M., & Wang, Z. (1992): Seismic properties of pore fluids.
    Geophysics, 57(11), 1396-1408
"""

import logging
from typing import Dict

import numpy as np

from ..config import MultiphaseParams
from ..state import SimulationState
from .base import PhysicsModule, StepContext

logger = logging.getLogger(__name__)

ATMOSPHERIC_PRESSURE = 101325.0  # Pa
GRAVITY = 9.81  # m/s²


def water_density(T: np.ndarray, P: np.ndarray) -> np.ndarray:
    """
    Liquid water density [kg/m³], simplified IAPWS fit.

        ρ0 = 1000 - 0.01687·Tc + 0.0002·Tc²,   ρ = ρ0·(1 + 5e-10·P_MPa)

    clamped to [500, 1200].
    """
    Tc = np.asarray(T) - 273.15
    P_MPa = np.asarray(P) / 1e6
    rho0 = 1000.0 - 0.01687 * Tc + 0.0002 * Tc ** 2
    return np.clip(rho0 * (1.0 + 5e-10 * P_MPa), 500.0, 1200.0)


def brine_density(T: np.ndarray, P: np.ndarray, salinity: float) -> np.ndarray:
    """Brine density [kg/m³] with the Batzle-Wang salinity correction."""
    Tc = np.asarray(T) - 273.15
    S = salinity * 100.0
    delta = S * (0.668 + 0.44 * S + 1e-6 * S ** 3 + Tc * (-0.00182 - 0.00012 * Tc - 6.6e-6 * Tc ** 2))
    return water_density(T, P) + delta


def brine_viscosity(T: np.ndarray, salinity: float) -> np.ndarray:
    """
    Brine viscosity [Pa·s]: Vogel equation for pure water times salinity and
    temperature factors.
    """
    T = np.asarray(T)
    Tc = T - 273.15
    mu_w = 0.001 * np.exp(-3.7188 + 578.919 / (T - 137.546))
    S = salinity * 100.0
    A = 1.0 + S * (0.0816 + S * (-0.0122 + S * 0.000128))
    B = 1.0 + Tc * (0.0263 + Tc * (-0.000594))
    return mu_w * A * B


def corey_relative_permeability(Sw: np.ndarray, params: MultiphaseParams):
    """
    Corey relative permeabilities (k_rw, k_rg).

    Normalised saturations are clipped to [0, 1] before the power law.
    """
    Sw = np.asarray(Sw)
    Sg = 1.0 - Sw
    mobile = 1.0 - params.residual_water_saturation - params.residual_gas_saturation
    Sw_norm = np.clip((Sw - params.residual_water_saturation) / mobile, 0.0, 1.0)
    Sg_norm = np.clip((Sg - params.residual_gas_saturation) / mobile, 0.0, 1.0)
    return Sw_norm ** params.corey_exponent_water, Sg_norm ** params.corey_exponent_gas


def van_genuchten_capillary_pressure(Sw: np.ndarray, params: MultiphaseParams) -> np.ndarray:
    """
    Capillary pressure [Pa]; zero at (near) full or empty saturation.

        Pc = ((Se^(-1/m) - 1)^(1/n)) / α,   m = 1 - 1/n
    """
    Sw = np.asarray(Sw, dtype=np.float64)
    n = params.van_genuchten_n
    m = 1.0 - 1.0 / n
    Pc = np.zeros_like(Sw)
    partial = (Sw < 0.999) & (Sw > 0.001)
    Pc[partial] = (Sw[partial] ** (-1.0 / m) - 1.0) ** (1.0 / n) / params.van_genuchten_alpha
    return Pc


def hydrostatic_pressure(density: np.ndarray, z: np.ndarray) -> np.ndarray:
    """
    Hydrostatic pressure columns [Pa] integrated down each (i, j) column with
    the trapezoidal rule.
    """
    dz = np.diff(z)
    layer = 0.5 * (density[:, :, 1:] + density[:, :, :-1]) * GRAVITY * dz[None, None, :]
    P = np.empty_like(density)
    P[:, :, 0] = ATMOSPHERIC_PRESSURE
    P[:, :, 1:] = ATMOSPHERIC_PRESSURE + np.cumsum(layer, axis=2)
    return P


class MultiphaseModule(PhysicsModule):
    """
    Saturation normalisation and brine pressure column.

    Parameters
    ----------
    params : MultiphaseParams
        Relative permeability, capillary and salinity parameters
    """

    name = "multiphase"
    reads = ("temperature", "pressure", "saturation")
    writes = ("saturation", "pressure")

    def __init__(self, params: MultiphaseParams):
        super().__init__()
        self.params = params
        self.relative_permeability_water = None
        self.relative_permeability_gas = None
        self.capillary_pressure = None
        self.density = None
        self.viscosity = None

    def update_state(self, state: SimulationState, dt: float, context: StepContext) -> Dict[str, np.ndarray]:
        Sw = np.clip(state.saturation, 0.0, 1.0)
        # Two-phase closure Sw + Sg = 1
        Sw = np.where(np.isfinite(Sw), Sw, 1.0)

        krw, krg = corey_relative_permeability(Sw, self.params)
        Pc = van_genuchten_capillary_pressure(Sw, self.params)
        rho = brine_density(state.temperature, state.pressure, self.params.salinity)
        mu = brine_viscosity(state.temperature, self.params.salinity)
        pressure = hydrostatic_pressure(rho, context.mesh.z)

        self.stage(
            relative_permeability_water=krw,
            relative_permeability_gas=krg,
            capillary_pressure=Pc,
            density=rho,
            viscosity=mu,
        )
        return {"saturation": Sw, "pressure": pressure}

    def get_diagnostics(self) -> Dict[str, float]:
        diag = super().get_diagnostics()
        if self.relative_permeability_water is not None:
            diag["mean_relative_permeability_water"] = float(np.mean(self.relative_permeability_water))
            diag["max_capillary_pressure"] = float(np.max(self.capillary_pressure))
            diag["mean_brine_density"] = float(np.mean(self.density))
            diag["mean_brine_viscosity"] = float(np.mean(self.viscosity))
        return diag
