"""
Optional physics around the transport core.

- base: PhysicsModule interface and the ordered pipeline
- loads: boundary-condition providers (constant, seasonal BTES)
- groundwater: Darcy flux, thermal velocity, dispersion and Péclet number
- multiphase, fractured, amr, reactive, hvac: per-step modules
"""

from typing import List

from ..config import SimulationOptions
from ..mesh import CylindricalMesh
from .amr import AdaptiveMeshRefinement
from .base import PhysicsModule, PhysicsPipeline, PipelineReport, StepContext
from .fractured import FracturedMediaModule
from .groundwater import GroundwaterField, compute_groundwater_field
from .hvac import EnhancedHVAC, HeatPumpPerformance, simple_cop
from .loads import BoundaryValues, ConstantBoundaryProvider, TimeVaryingBC, outdoor_temperature
from .multiphase import MultiphaseModule
from .reactive import ReactiveTransportModule


def build_pipeline(options: SimulationOptions, mesh: CylindricalMesh) -> PhysicsPipeline:
    """
    Pipeline of the enabled modules in their fixed order:
    multiphase, fractured media, AMR, reactive transport, HVAC.
    """
    modules: List[PhysicsModule] = []
    if options.enable_multiphase:
        modules.append(MultiphaseModule(options.multiphase))
    if options.enable_fractured_media:
        modules.append(FracturedMediaModule(options.fracture, options))
    if options.enable_amr:
        modules.append(AdaptiveMeshRefinement(options.amr, mesh, options))
    if options.enable_reactive_transport:
        modules.append(ReactiveTransportModule(options.fluid_composition))
    if options.enable_enhanced_hvac:
        modules.append(EnhancedHVAC(options.hvac))
    return PhysicsPipeline(modules)


__all__ = [
    "PhysicsModule",
    "PhysicsPipeline",
    "PipelineReport",
    "StepContext",
    "build_pipeline",
    "BoundaryValues",
    "ConstantBoundaryProvider",
    "TimeVaryingBC",
    "outdoor_temperature",
    "GroundwaterField",
    "compute_groundwater_field",
    "MultiphaseModule",
    "FracturedMediaModule",
    "AdaptiveMeshRefinement",
    "ReactiveTransportModule",
    "EnhancedHVAC",
    "HeatPumpPerformance",
    "simple_cop",
]
