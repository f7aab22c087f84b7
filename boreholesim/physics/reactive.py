"""
Reactive transport: temperature-driven mineral precipitation and dissolution.

Each fluid composition entry is one dissolved species that can precipitate as
a mineral. Solubility follows the van 't Hoff relation

    C_eq(T) = C_ref · exp(-ΔH/R · (1/T - 1/T_ref))

and the kinetic rate per bulk volume is

    rate = k · A · (Ω - 1),    Ω = C / C_eq

(positive = precipitation). Precipitated mineral fills pore space,

    φ = max(φ_min, φ0 - Σ mineral volume fraction)
    k = k0 · (φ/φ0)³ · ((1 - φ0)/(1 - φ))²      (Kozeny-Carman)

References
----------
Lasaga, A. C. (1984): Chemical kinetics of water-rock interactions.
    Journal of Geophysical Research, 89(B6), 4009-4025
"""

import logging
from typing import Dict, List, Optional

import numpy as np

from ..config import FluidCompositionEntry
from ..state import SimulationState
from .base import PhysicsModule, StepContext

logger = logging.getLogger(__name__)

GAS_CONSTANT = 8.314  # J/(mol·K)
MIN_POROSITY = 1e-4


def equilibrium_concentration(entry: FluidCompositionEntry, temperature: np.ndarray) -> np.ndarray:
    """Van 't Hoff solubility [mol/m³] at temperature [K]."""
    T = np.asarray(temperature, dtype=np.float64)
    exponent = -entry.dissolution_enthalpy / GAS_CONSTANT * (1.0 / T - 1.0 / entry.reference_temperature)
    return entry.reference_solubility * np.exp(exponent)


def kozeny_carman(permeability0: np.ndarray, porosity0: np.ndarray, porosity: np.ndarray) -> np.ndarray:
    """Permeability scaled by the Kozeny-Carman porosity factor."""
    ratio = porosity / porosity0
    return permeability0 * ratio ** 3 * ((1.0 - porosity0) / (1.0 - porosity)) ** 2


class ReactiveTransportModule(PhysicsModule):
    """
    Mineral precipitation/dissolution with porosity-permeability feedback.

    Parameters
    ----------
    composition : list of FluidCompositionEntry
        Dissolved species; an empty list makes the module a no-op
    """

    name = "reactive_transport"
    reads = ("temperature", "mineral_volume_fraction", "porosity", "permeability")
    writes = ("mineral_volume_fraction", "porosity", "permeability")

    def __init__(self, composition: List[FluidCompositionEntry]):
        super().__init__()
        self.composition = list(composition)
        self.concentration: Optional[Dict[str, np.ndarray]] = None
        self.precipitated: Optional[Dict[str, np.ndarray]] = None
        self.dissolved: Optional[Dict[str, np.ndarray]] = None
        self.reference_porosity: Optional[np.ndarray] = None
        self.reference_permeability: Optional[np.ndarray] = None

    def _initialise(self, state: SimulationState) -> None:
        shape = state.temperature.shape
        self.concentration = {e.species: np.full(shape, e.concentration) for e in self.composition}
        self.precipitated = {e.species: np.zeros(shape) for e in self.composition}
        self.dissolved = {e.species: np.zeros(shape) for e in self.composition}
        self.reference_porosity = np.array(state.porosity, copy=True)
        self.reference_permeability = np.array(state.permeability, copy=True)

    def update_state(self, state: SimulationState, dt: float, context: StepContext) -> Dict[str, np.ndarray]:
        if not self.composition:
            return {}
        if self.concentration is None:
            self._initialise(state)

        porosity = np.maximum(np.asarray(state.porosity), MIN_POROSITY)
        concentration = {}
        precipitated = {}
        dissolved = {}
        total_mineral = np.zeros_like(porosity)

        for entry in self.composition:
            s = entry.species
            C = self.concentration[s]
            mineral = np.maximum(self.precipitated[s] - self.dissolved[s], 0.0)

            omega = C / equilibrium_concentration(entry, state.temperature)
            moles = entry.rate_constant * entry.specific_surface * (omega - 1.0) * dt  # mol/m³ bulk
            # Precipitation is limited by the dissolved inventory, dissolution by the mineral present
            moles = np.minimum(moles, C * porosity)
            moles = np.maximum(moles, -mineral / entry.molar_volume)

            volume = moles * entry.molar_volume
            precipitated[s] = self.precipitated[s] + np.maximum(volume, 0.0)
            dissolved[s] = self.dissolved[s] + np.maximum(-volume, 0.0)
            concentration[s] = np.maximum(C - moles / porosity, 0.0)
            total_mineral += np.maximum(precipitated[s] - dissolved[s], 0.0)

        phi0 = self.reference_porosity
        new_porosity = np.maximum(phi0 - total_mineral, MIN_POROSITY)
        with np.errstate(divide="ignore", invalid="ignore"):
            new_permeability = np.where(
                phi0 > 0, kozeny_carman(self.reference_permeability, phi0, new_porosity), self.reference_permeability
            )

        self.stage(concentration=concentration, precipitated=precipitated, dissolved=dissolved)
        return {
            "mineral_volume_fraction": total_mineral,
            "porosity": new_porosity,
            "permeability": new_permeability,
        }

    def get_diagnostics(self) -> Dict[str, float]:
        diag = super().get_diagnostics()
        if self.precipitated is None:
            return diag
        for entry in self.composition:
            s = entry.species
            diag[f"{s}_precipitated_fraction"] = float(np.mean(self.precipitated[s]))
            diag[f"{s}_dissolved_fraction"] = float(np.mean(self.dissolved[s]))
            diag[f"{s}_mean_concentration"] = float(np.mean(self.concentration[s]))
        return diag
