"""
Borehole heat exchanger simulation on a cylindrical finite-difference grid.

This package provides modules for:
- config: Geometry, simulation options and module parameters
- presets: Ready-made setups (shallow GSHP, BTES, deep coaxial, ...)
- mesh: Cylindrical grid, material clamps, shared flat index
- state: Immutable simulation snapshot and run states
- transport: Explicit transport kernel, max-change reduction, boundary
  policies, CPU (numpy) and GPU (CuPy) backends
- borehole: Water properties, heat transfer coefficients, fluid legs
- physics: Loads, groundwater, multiphase, fractured media, AMR, reactive
  transport and heat pump modules
- orchestrator: Time-stepping driver
- results: Time series, snapshots, metrics and pandas tables
"""

import logging

from .config import (
    AMRParams,
    Backend,
    BoreholeGeometry,
    BoundaryCondition,
    FlowConfiguration,
    FluidCompositionEntry,
    FractureParams,
    GeomechanicsParams,
    GroundLayer,
    HeatExchangerType,
    HVACParams,
    MultiphaseParams,
    SimulationOptions,
)
from .mesh import CylindricalMesh, build_mesh, flat_index
from .state import RunState, SimulationState
from .borehole import BoreholeFluidModel, FluidCirculationState, FluidProperties
from .orchestrator import Simulation, initial_state, run_simulation
from .presets import Preset, apply_preset
from .results import FieldSnapshot, ResultsAccumulator

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "1.0.0"
__all__ = [
    "AMRParams",
    "Backend",
    "BoreholeGeometry",
    "BoundaryCondition",
    "FlowConfiguration",
    "FluidCompositionEntry",
    "FractureParams",
    "GeomechanicsParams",
    "GroundLayer",
    "HeatExchangerType",
    "HVACParams",
    "MultiphaseParams",
    "SimulationOptions",
    "CylindricalMesh",
    "build_mesh",
    "flat_index",
    "RunState",
    "SimulationState",
    "BoreholeFluidModel",
    "FluidCirculationState",
    "FluidProperties",
    "Simulation",
    "initial_state",
    "run_simulation",
    "Preset",
    "apply_preset",
    "FieldSnapshot",
    "ResultsAccumulator",
]
