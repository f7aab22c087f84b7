"""
Ready-made geometry and option sets for common borehole applications.

Usage:
    from boreholesim.presets import Preset, apply_preset
    geometry, options = apply_preset(Preset.SHALLOW_GSHP)
    options.simulation_time = 7 * 86400   # adjust as needed
"""

from enum import Enum
from typing import Tuple

from .config import (
    BoreholeGeometry,
    FlowConfiguration,
    FractureParams,
    HeatExchangerType,
    SimulationOptions,
)

DAY = 86400.0


class Preset(Enum):
    """Predefined simulation setups."""
    SHALLOW_GSHP = "shallow_gshp"
    MEDIUM_DEPTH_HEATING = "medium_depth_heating"
    DEEP_COAXIAL = "deep_coaxial"
    ENHANCED_GEOTHERMAL = "enhanced_geothermal"
    AQUIFER_STORAGE = "aquifer_storage"
    BTES_SEASONAL = "btes_seasonal"
    EXPLORATION_TEST = "exploration_test"


PRESET_DESCRIPTIONS = {
    Preset.SHALLOW_GSHP: "Shallow GSHP (150 m U-tube): 0.5 kg/s, 30 days, residential heating",
    Preset.MEDIUM_DEPTH_HEATING: "Medium depth (1000 m U-tube): 3 kg/s, 90 days, district heating",
    Preset.DEEP_COAXIAL: "Deep coaxial (2500 m): 15 kg/s, 1 year, steel casing",
    Preset.ENHANCED_GEOTHERMAL: "EGS (4000 m coaxial): 30 kg/s, 1 year, fractured rock",
    Preset.AQUIFER_STORAGE: "Aquifer storage (200 m U-tube): 5 kg/s, 6 months, strong groundwater flow",
    Preset.BTES_SEASONAL: "BTES (50 m U-tube): seasonal charge/discharge over 1 year",
    Preset.EXPLORATION_TEST: "Quick test (100 m U-tube): 1.5 kg/s, 7 days, coarse grid",
}


def preset_description(preset: Preset) -> str:
    return PRESET_DESCRIPTIONS[preset]


def _shallow_gshp() -> Tuple[BoreholeGeometry, SimulationOptions]:
    geometry = BoreholeGeometry(
        depth=150.0,
        well_diameter=0.15,
        heat_exchanger_type=HeatExchangerType.UTUBE,
        flow_configuration=FlowConfiguration.COUNTER_FLOW,
        pipe_inner_diameter=0.032,
        pipe_outer_diameter=0.040,
        pipe_spacing=0.080,
        pipe_conductivity=0.4,
        grout_conductivity=2.0,
    )
    options = SimulationOptions(
        fluid_mass_flow_rate=0.5,
        fluid_inlet_temperature=278.15,
        surface_temperature=283.15,
        geothermal_gradient=0.025,
        geothermal_heat_flux=0.060,
        domain_radius=30.0,
        domain_extension=10.0,
        radial_points=40,
        angular_points=24,
        vertical_points=80,
        simulate_groundwater_flow=True,
        groundwater_velocity=(1e-7, 0.0, 0.0),
        simulation_time=30 * DAY,
        time_step=3600.0,
        save_interval=24,
    )
    return geometry, options


def _medium_depth_heating() -> Tuple[BoreholeGeometry, SimulationOptions]:
    geometry = BoreholeGeometry(
        depth=1000.0,
        well_diameter=0.25,
        heat_exchanger_type=HeatExchangerType.UTUBE,
        pipe_inner_diameter=0.065,
        pipe_outer_diameter=0.075,
        pipe_spacing=0.150,
        pipe_conductivity=0.4,
        grout_conductivity=2.2,
    )
    options = SimulationOptions(
        fluid_mass_flow_rate=3.0,
        fluid_inlet_temperature=288.15,
        surface_temperature=285.15,
        geothermal_gradient=0.030,
        geothermal_heat_flux=0.065,
        domain_radius=75.0,
        domain_extension=20.0,
        radial_points=50,
        angular_points=32,
        vertical_points=120,
        simulate_groundwater_flow=True,
        groundwater_velocity=(5e-8, 0.0, 0.0),
        simulation_time=90 * DAY,
        time_step=3600.0,
        save_interval=24,
    )
    return geometry, options


def _deep_coaxial() -> Tuple[BoreholeGeometry, SimulationOptions]:
    geometry = BoreholeGeometry(
        depth=2500.0,
        well_diameter=0.2159,  # 8.5 in bit
        heat_exchanger_type=HeatExchangerType.COAXIAL,
        flow_configuration=FlowConfiguration.COUNTER_FLOW,
        pipe_inner_diameter=0.125,
        pipe_outer_diameter=0.140,
        pipe_conductivity=45.0,  # steel
        grout_conductivity=2.5,
        inner_pipe_wall_thickness=0.004,
        casing_wall_thickness=0.008,
    )
    options = SimulationOptions(
        fluid_mass_flow_rate=15.0,
        fluid_inlet_temperature=293.15,
        fluid_viscosity=5e-4,
        fluid_thermal_conductivity=0.65,
        surface_temperature=288.15,
        geothermal_gradient=0.035,
        geothermal_heat_flux=0.075,
        domain_radius=150.0,
        domain_extension=50.0,
        radial_points=60,
        angular_points=36,
        vertical_points=150,
        simulate_groundwater_flow=True,
        groundwater_velocity=(1e-8, 0.0, 0.0),
        simulation_time=365 * DAY,
        time_step=3600.0,
        save_interval=24 * 7,
    )
    return geometry, options


def _enhanced_geothermal() -> Tuple[BoreholeGeometry, SimulationOptions]:
    geometry = BoreholeGeometry(
        depth=4000.0,
        well_diameter=0.2159,
        heat_exchanger_type=HeatExchangerType.COAXIAL,
        pipe_inner_diameter=0.150,
        pipe_outer_diameter=0.168,
        pipe_conductivity=45.0,
        grout_conductivity=2.8,
        inner_pipe_wall_thickness=0.005,
        casing_wall_thickness=0.008,
    )
    options = SimulationOptions(
        fluid_mass_flow_rate=30.0,
        fluid_inlet_temperature=313.15,
        fluid_density=950.0,
        fluid_viscosity=3e-4,
        fluid_thermal_conductivity=0.68,
        surface_temperature=288.15,
        geothermal_gradient=0.040,
        geothermal_heat_flux=0.085,
        enable_fractured_media=True,
        fracture=FractureParams(aperture=0.005, spacing=2.0, density=1.0),
        domain_radius=200.0,
        domain_extension=100.0,
        radial_points=70,
        angular_points=36,
        vertical_points=180,
        simulate_groundwater_flow=True,
        groundwater_velocity=(5e-7, 0.0, 0.0),
        longitudinal_dispersivity=10.0,
        transverse_dispersivity=1.0,
        simulation_time=365 * DAY,
        time_step=3600.0,
        save_interval=24 * 7,
    )
    return geometry, options


def _aquifer_storage() -> Tuple[BoreholeGeometry, SimulationOptions]:
    geometry = BoreholeGeometry(
        depth=200.0,
        well_diameter=0.30,
        heat_exchanger_type=HeatExchangerType.UTUBE,
        pipe_inner_diameter=0.080,
        pipe_outer_diameter=0.090,
        pipe_spacing=0.180,
        pipe_conductivity=0.4,
        grout_conductivity=2.5,
    )
    options = SimulationOptions(
        fluid_mass_flow_rate=5.0,
        fluid_inlet_temperature=293.15,
        surface_temperature=285.15,
        geothermal_gradient=0.025,
        geothermal_heat_flux=0.060,
        domain_radius=100.0,
        domain_extension=30.0,
        radial_points=55,
        angular_points=36,
        vertical_points=100,
        simulate_groundwater_flow=True,
        groundwater_velocity=(5e-6, 0.0, 0.0),
        longitudinal_dispersivity=5.0,
        transverse_dispersivity=0.5,
        simulation_time=180 * DAY,
        time_step=3600.0,
        save_interval=24,
    )
    return geometry, options


def _btes_seasonal() -> Tuple[BoreholeGeometry, SimulationOptions]:
    geometry = BoreholeGeometry(
        depth=50.0,
        well_diameter=0.15,
        heat_exchanger_type=HeatExchangerType.UTUBE,
        pipe_inner_diameter=0.032,
        pipe_outer_diameter=0.040,
        pipe_spacing=0.080,
    )
    options = SimulationOptions(
        enable_time_varying_bc=True,
        enable_enhanced_hvac=True,
        fluid_mass_flow_rate=0.5,
        btes_charging_temperature=343.15,
        btes_discharging_temperature=278.15,
        domain_radius=20.0,
        domain_extension=10.0,
        radial_points=35,
        angular_points=16,
        vertical_points=50,
        simulation_time=365 * DAY,
        time_step=6 * 3600.0,
        save_interval=4 * 7,
        max_iterations_per_step=400,
    )
    return geometry, options


def _exploration_test() -> Tuple[BoreholeGeometry, SimulationOptions]:
    geometry = BoreholeGeometry(
        depth=100.0,
        well_diameter=0.20,
        heat_exchanger_type=HeatExchangerType.UTUBE,
        pipe_inner_diameter=0.050,
        pipe_outer_diameter=0.063,
        pipe_spacing=0.125,
    )
    options = SimulationOptions(
        fluid_mass_flow_rate=1.5,
        fluid_inlet_temperature=288.15,
        surface_temperature=285.15,
        geothermal_gradient=0.030,
        geothermal_heat_flux=0.065,
        domain_radius=50.0,
        domain_extension=20.0,
        radial_points=35,
        angular_points=24,
        vertical_points=60,
        simulate_groundwater_flow=True,
        groundwater_velocity=(1e-7, 0.0, 0.0),
        simulation_time=7 * DAY,
        time_step=3600.0,
        save_interval=24,
        convergence_tolerance=2e-3,
        max_iterations_per_step=200,
    )
    return geometry, options


_BUILDERS = {
    Preset.SHALLOW_GSHP: _shallow_gshp,
    Preset.MEDIUM_DEPTH_HEATING: _medium_depth_heating,
    Preset.DEEP_COAXIAL: _deep_coaxial,
    Preset.ENHANCED_GEOTHERMAL: _enhanced_geothermal,
    Preset.AQUIFER_STORAGE: _aquifer_storage,
    Preset.BTES_SEASONAL: _btes_seasonal,
    Preset.EXPLORATION_TEST: _exploration_test,
}


def apply_preset(preset: Preset) -> Tuple[BoreholeGeometry, SimulationOptions]:
    """
    Fresh geometry and options for a preset.

    Parameters
    ----------
    preset : Preset
        Application to configure

    Returns
    -------
    tuple
        (BoreholeGeometry, SimulationOptions); both may be modified freely
    """
    return _BUILDERS[preset]()
