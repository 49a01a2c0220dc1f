"""Tests for run parameters."""

import pytest

from pybioclog.config import Parameters
from pybioclog.errors import (
    ConfigurationError,
    UnsupportedModel,
    UnsupportedPermeabilityModel,
)
from pybioclog.materials.hydraulic import HAVERKAMP
from pybioclog.time.schemes import CrankNicolson, Implicit


class TestParameters:
    def test_defaults_validate(self):
        Parameters().validate()

    def test_from_dict(self):
        params = Parameters.from_dict({"dim": 1, "domain_size": 10.0, "top_probe_point": [-0.0]})
        assert params.dim == 1
        assert params.top_probe_point == (-0.0,)

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="refinment_level"):
            Parameters.from_dict({"refinment_level": 3})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(
            "dim: 1\n"
            "domain_size: 20.0\n"
            "relative_permeability_model: clement\n"
            "output_file_format: .csv\n"
        )
        params = Parameters.from_yaml(path)
        assert params.domain_size == 20.0
        assert params.relative_permeability_model == "clement"
        assert params.output_file_format == ".csv"

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Parameters.from_yaml(path) == Parameters()

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            Parameters.from_yaml(path)

    def test_to_dict_roundtrip(self):
        params = Parameters(dim=1, van_genuchten_n=3.0)
        assert Parameters.from_dict(params.to_dict()) == params


class TestValidation:
    @pytest.mark.parametrize(
        "key, value, error",
        [
            ("moisture_transport_equation", "pressure", ConfigurationError),
            ("hydraulic_properties", "brooks_corey", UnsupportedModel),
            ("relative_permeability_model", "kozeny", UnsupportedPermeabilityModel),
            ("initial_state", "wet", ConfigurationError),
            ("transport_mass_entry_point", "left", ConfigurationError),
            ("reaction_model", "zero_order", ConfigurationError),
            ("output_file_format", ".xls", ConfigurationError),
        ],
    )
    def test_enumerations(self, key, value, error):
        with pytest.raises(error, match=key):
            Parameters.from_dict({key: value})

    def test_haverkamp_rejected_for_coupled_runs(self):
        with pytest.raises(UnsupportedModel, match="moisture contents"):
            Parameters(hydraulic_properties=HAVERKAMP).validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"dim": 3},
            {"van_genuchten_n": 1.0},
            {"moisture_content_residual": 0.5},
            {"domain_size": 0.0},
            {"dt_min": 2.0},
            {"use_mesh_file": True},
            {"top_probe_point": (0.0,)},
        ],
    )
    def test_ranges(self, overrides):
        with pytest.raises(ConfigurationError):
            Parameters(**overrides).validate()

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            Parameters(dim=0).validate()


class TestBuilders:
    def test_hydraulic_model(self):
        hp = Parameters(van_genuchten_n=2.5, moisture_content_saturation=0.4).hydraulic_model()
        assert hp.n == 2.5
        assert hp.theta_s == 0.4
        assert hp.m == pytest.approx(0.6)

    def test_kinetics(self):
        k = Parameters(half_velocity_constant=10.0, biomass_dry_density=50.0).kinetics()
        assert k.half_velocity_concentration == pytest.approx(0.01)
        assert k.dry_density == 50.0

    def test_schemes(self):
        params = Parameters()
        assert isinstance(params.flow_scheme(), Implicit)
        assert isinstance(params.transport_scheme(), CrankNicolson)

    def test_probe_point(self):
        assert Parameters(dim=2).probe_point == (0.0, 0.0)
        assert Parameters(dim=2, top_probe_point=(-17.5, 0.0)).probe_point == (-17.5, 0.0)

    def test_equilibrium_top_pressure(self):
        params = Parameters(domain_size=35.0, richards_bottom_fixed_value=0.0)
        assert params.equilibrium_top_pressure == -35.0
