#!/usr/bin/env python
"""
Quick demonstration of the borehole heat exchanger simulation.

Runs two days of the exploration-test preset on a coarse grid and prints the
results summary.
"""

import logging
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from boreholesim import Preset, Simulation, apply_preset
from boreholesim.presets import preset_description

def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 70)
    print("BOREHOLE HEAT EXCHANGER - QUICK DEMO")
    print("=" * 70)

    # 1. Pick a preset and shrink it for the demo
    print("\n1. Setting up parameters...")
    geometry, options = apply_preset(Preset.EXPLORATION_TEST)
    options.simulation_time = 2 * 86400.0
    options.radial_points = 20
    options.angular_points = 8
    options.vertical_points = 30
    print(f"   {preset_description(Preset.EXPLORATION_TEST)}")
    print(f"   Borehole: {geometry.depth:.0f} m, {geometry.heat_exchanger_type.value}")
    print(f"   Fluid: T_in={options.fluid_inlet_temperature - 273.15:.1f}°C, ṁ={options.fluid_mass_flow_rate} kg/s")

    # 2. Run
    print("\n2. Running simulation...")
    with Simulation(geometry, options) as sim:
        results = sim.run()

    # 3. Summary
    print("\n" + results.summary_text())

    df = results.to_dataframe()
    print("\nLast steps:")
    print(df[["time_days", "heat_rate", "outlet_temperature", "cop"]].tail().to_string(index=False))

    print("\n" + "=" * 70)
    print("Demo complete. For longer runs, increase simulation_time and the grid.")
    print("=" * 70)

if __name__ == "__main__":
    main()
