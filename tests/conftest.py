import typing

import numpy as np
import pytest

import blacksolv as bs

PRESSURE_NODES = [1e6, 1e7, 2e7, 3e7, 4e7]


@pytest.fixture
def oil_pvt() -> bs.OilPvt:
    return bs.OilPvt(
        reciprocal_fvf_table=bs.Tabulated1D(
            x=PRESSURE_NODES, y=[1 / 1.05, 1 / 1.15, 1 / 1.22, 1 / 1.28, 1 / 1.33], name="oil b"
        ),
        viscosity_table=bs.Tabulated1D(
            x=PRESSURE_NODES, y=[1.6e-3, 1.3e-3, 1.1e-3, 0.95e-3, 0.85e-3], name="oil mu"
        ),
        rs_sat_table=bs.Tabulated1D(
            x=PRESSURE_NODES, y=[8.0, 55.0, 100.0, 140.0, 175.0], name="rs sat"
        ),
    )


@pytest.fixture
def gas_pvt() -> bs.GasPvt:
    return bs.GasPvt(
        reciprocal_fvf_table=bs.Tabulated1D(
            x=PRESSURE_NODES, y=[9.0, 95.0, 180.0, 245.0, 300.0], name="gas b"
        ),
        viscosity_table=bs.Tabulated1D(
            x=PRESSURE_NODES, y=[1.2e-5, 1.6e-5, 2.1e-5, 2.6e-5, 3.0e-5], name="gas mu"
        ),
    )


@pytest.fixture
def water_pvt() -> bs.WaterPvt:
    return bs.WaterPvt(reference_pressure=1e5, reference_fvf=1.01, compressibility=4.5e-10)


@pytest.fixture
def three_phase_pvt(water_pvt, oil_pvt, gas_pvt) -> bs.BlackoilPvt:
    return bs.BlackoilPvt(
        surface_densities=bs.SurfaceDensities(water=1020.0, oil=820.0, gas=0.9),
        water=water_pvt,
        oil=oil_pvt,
        gas=gas_pvt,
    )


@pytest.fixture
def dead_oil_pvt() -> bs.OilPvt:
    return bs.OilPvt(
        reciprocal_fvf_table=bs.Tabulated1D(
            x=PRESSURE_NODES, y=[1 / 1.02, 1 / 1.03, 1 / 1.04, 1 / 1.05, 1 / 1.06], name="dead oil b"
        ),
        viscosity_table=bs.Tabulated1D(
            x=PRESSURE_NODES, y=[2.0e-3, 1.9e-3, 1.8e-3, 1.7e-3, 1.6e-3], name="dead oil mu"
        ),
    )


@pytest.fixture
def oil_water_pvt(water_pvt, dead_oil_pvt) -> bs.BlackoilPvt:
    return bs.BlackoilPvt(
        surface_densities=bs.SurfaceDensities(water=1020.0, oil=820.0, gas=0.9),
        water=water_pvt,
        oil=dead_oil_pvt,
    )


@pytest.fixture
def water_oil_table() -> bs.TwoPhaseRelPermTable:
    return bs.TwoPhaseRelPermTable(
        saturation=[0.1, 0.3, 0.5, 0.7, 0.9, 1.0],
        relperm=[0.0, 0.04, 0.18, 0.42, 0.78, 1.0],
        oil_relperm=[1.0, 0.62, 0.3, 0.09, 0.0, 0.0],
        capillary_pressure=[4e4, 2.5e4, 1.5e4, 8e3, 2e3, 0.0],
    )


@pytest.fixture
def gas_oil_table() -> bs.TwoPhaseRelPermTable:
    return bs.TwoPhaseRelPermTable(
        saturation=[0.0, 0.05, 0.3, 0.5, 0.7, 0.9],
        relperm=[0.0, 0.0, 0.12, 0.38, 0.7, 1.0],
        oil_relperm=[1.0, 0.85, 0.4, 0.12, 0.0, 0.0],
        capillary_pressure=[0.0, 1e3, 5e3, 9e3, 1.4e4, 2e4],
    )


@pytest.fixture
def solvent_props() -> bs.SolventProperties:
    return bs.SolventProperties.from_fvf_table(
        pressure=PRESSURE_NODES,
        formation_volume_factor=[1 / 11.0, 1 / 110.0, 1 / 200.0, 1 / 260.0, 1 / 310.0],
        viscosity=[1.5e-5, 2.2e-5, 3.0e-5, 3.8e-5, 4.5e-5],
        surface_density=1.8,
    )


@pytest.fixture
def line_grid() -> bs.Grid:
    """Three horizontal cells of 10 m side."""
    return bs.build_cartesian_grid(
        cell_dimension=(3, 1, 1),
        cell_size=(10.0, 10.0, 10.0),
        permeability=1e-13,
        porosity=0.2,
        top_depth=1000.0,
    )


@pytest.fixture
def column_grid() -> bs.Grid:
    """Two cells stacked vertically."""
    return bs.build_cartesian_grid(
        cell_dimension=(1, 1, 2),
        cell_size=(10.0, 10.0, 10.0),
        permeability=1e-13,
        porosity=0.2,
        top_depth=1000.0,
    )


def bhp_well(
    name: str,
    cells: typing.Sequence[int],
    bhp: float,
    injector_composition: typing.Optional[typing.Sequence[float]] = None,
    well_index: float = 1e-13,
    solvent_fraction: float = 0.0,
) -> bs.Well:
    """A BHP controlled producer, or injector when a composition is given."""
    return bs.Well(
        name=name,
        type="injector" if injector_composition is not None else "producer",
        cells=cells,
        well_index=[well_index] * len(cells),
        controls=[bs.WellControl(type="bhp", target=bhp)],
        composition=tuple(injector_composition) if injector_composition is not None else (),
        solvent_fraction=solvent_fraction,
    )


@pytest.fixture
def make_oil_water_model(line_grid, oil_water_pvt, water_oil_table):
    """Factory of oil-water models on the line grid with an injector and a producer."""

    def factory(wells: bool = True, **config_kwargs) -> bs.BlackoilModel:
        pu = bs.PhaseUsage(water=True, oil=True, gas=False)
        well_list = []
        if wells:
            well_list = [
                bhp_well("INJ", [0], 2.3e7, injector_composition=(1.0, 0.0)),
                bhp_well("PROD", [2], 1.7e7),
            ]
        config_kwargs.setdefault("has_disgas", False)
        return bs.BlackoilModel(
            config=bs.Config(**config_kwargs),
            grid=line_grid,
            pvt=oil_water_pvt,
            saturation_functions=bs.SaturationFunctions(pu, water_oil=water_oil_table),
            wells=well_list,
        )

    return factory


@pytest.fixture
def make_three_phase_model(line_grid, three_phase_pvt, water_oil_table, gas_oil_table, solvent_props):
    """Factory of three-phase models (with solvent unless `has_solvent=False`) on the line grid."""

    def factory(
        wells: bool = True,
        solvent_properties: typing.Optional[bs.SolventProperties] = None,
        reduction=None,
        **config_kwargs,
    ) -> bs.BlackoilModel:
        pu = bs.PhaseUsage(water=True, oil=True, gas=True, solvent=True)
        well_list = []
        if wells:
            well_list = [
                bhp_well(
                    "INJ",
                    [0],
                    2.2e7,
                    injector_composition=(0.0, 0.0, 1.0),
                    solvent_fraction=0.5,
                ),
                bhp_well("PROD", [2], 1.8e7),
            ]
        config_kwargs.setdefault("has_solvent", True)
        return bs.BlackoilModel(
            config=bs.Config(**config_kwargs),
            grid=line_grid,
            pvt=three_phase_pvt,
            saturation_functions=bs.SaturationFunctions(
                pu, water_oil=water_oil_table, gas_oil=gas_oil_table
            ),
            wells=well_list,
            solvent_props=solvent_properties or solvent_props,
            reduction=reduction,
        )

    return factory


@pytest.fixture
def oil_water_state() -> bs.ReservoirState:
    pu = bs.PhaseUsage(water=True, oil=True, gas=False)
    return bs.ReservoirState.initialize(
        pu,
        pressure=[2.12e7, 2.03e7, 1.94e7],
        saturations={bs.Phase.WATER: [0.22, 0.37, 0.44]},
        rs=0.0,
    )


@pytest.fixture
def solvent_state(oil_pvt) -> bs.ReservoirState:
    pu = bs.PhaseUsage(water=True, oil=True, gas=True, solvent=True)
    pressure = np.array([2.08e7, 2.01e7, 1.93e7])
    return bs.ReservoirState.initialize(
        pu,
        pressure=pressure,
        saturations={bs.Phase.WATER: [0.22, 0.24, 0.26], bs.Phase.GAS: [0.12, 0.08, 0.1]},
        rs=oil_pvt.rs_sat(pressure),
        solvent_saturation=[0.06, 0.02, 0.01],
    )
