"""Tests for YAML configuration loading and CLI overrides."""

import pytest
import yaml
from pydantic import ValidationError

from config import engine_config, get_config_with_args, load_config, merge_cli_args
from simulator import parse_arguments


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "simulation": {"num_participants": 40, "run_seed": 9, "challenge_rounds": 0},
                "engine": {"variant": "batch", "weight_policy": "accumulate"},
            }
        )
    )
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_missing_sections_default_to_empty(self, config_file):
        config = load_config(str(config_file))
        assert config["simulation"]["num_participants"] == 40
        assert config["voters"] == {}
        assert config["logging"] == {}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == {"simulation": {}, "engine": {}, "voters": {}, "logging": {}}


class TestCliOverrides:
    """Command line flags take precedence over the file."""

    def test_flags_override_file_values(self, config_file):
        args = parse_arguments(["--num-participants", "12", "--variant", "delegation", "--run-seed", "3"])
        config = get_config_with_args(str(config_file), args)
        assert config["simulation"]["num_participants"] == 12
        assert config["simulation"]["run_seed"] == 3
        assert config["engine"]["variant"] == "delegation"
        assert config["engine"]["weight_policy"] == "accumulate"

    def test_unset_flags_keep_file_values(self, config_file):
        config = get_config_with_args(str(config_file), parse_arguments([]))
        assert config["simulation"]["num_participants"] == 40
        assert config["engine"]["variant"] == "batch"

    def test_challenge_rounds_turn_on_the_extension(self):
        config = merge_cli_args({}, parse_arguments(["--challenge-rounds", "2"]))
        assert config["simulation"]["challenge_rounds"] == 2
        assert config["engine"]["challenge_enabled"] is True

    def test_zero_challenge_rounds_leave_the_engine_alone(self):
        config = merge_cli_args({"engine": {"challenge_enabled": True}}, parse_arguments(["--challenge-rounds", "0"]))
        assert config["engine"]["challenge_enabled"] is True


class TestEngineConfig:
    """Tests for engine_config."""

    def test_defaults(self):
        config = engine_config({})
        assert config.variant == "batch"
        assert config.weight_policy == "carry_forward"
        assert config.validate_idea_membership

    def test_validates_the_engine_section(self, config_file):
        config = engine_config(load_config(str(config_file)))
        assert config.weight_policy == "accumulate"
        with pytest.raises(ValidationError):
            engine_config({"engine": {"variant": "lottery"}})
