"""
Tests for scripts directory - CLI entry points and utilities.

Purpose:
    Verify the training script's argument parsing, configuration
    loading, controller wiring and end-to-end execution paths.
"""

import csv
import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml

# Add project root for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from evoai.config import Config, ConfigError
from evoai.evolution.fitness import SimpleFitness
from evoai.evolution.manager import EvolutionManager
from evoai.simulation.synthetic import SyntheticSimulation


@pytest.fixture
def tiny_config_data():
    """Smallest configuration that still runs a full pipeline."""
    return {
        "evolution": {"population_size": 2, "max_generations": 1, "elite_count": 1, "seed": 5},
        "evaluation": {
            "episodes_per_genome": 1,
            "max_sim_time": 120.0,
            "tick_interval": 1.0,
            "num_workers": 2,
            "test_maps": ["Craters"],
        },
        "fitness": {"type": "simple"},
    }


@pytest.fixture
def tiny_config_path(temp_dir, tiny_config_data):
    path = temp_dir / "tiny.yaml"
    with open(path, "w") as f:
        yaml.dump(tiny_config_data, f)
    return path


class TestArguments:
    """Tests for parse_args() and apply_overrides()."""

    def test_parse_args_defaults(self):
        from scripts.train_evolution import parse_args, DEFAULT_CONTROLLER

        args = parse_args([])

        assert args.config is None
        assert args.mode == "full"
        assert args.output == "evolution-results"
        assert args.controller == DEFAULT_CONTROLLER
        assert args.population is None

    def test_parse_args_with_options(self):
        from scripts.train_evolution import parse_args

        args = parse_args(["--mode", "benchmark", "--population", "12", "--generations", "3", "--seed", "9"])

        assert args.mode == "benchmark"
        assert args.population == 12
        assert args.generations == 3
        assert args.seed == 9

    def test_parse_args_rejects_unknown_mode(self):
        from scripts.train_evolution import parse_args

        with pytest.raises(SystemExit):
            parse_args(["--mode", "turbo"])

    def test_quick_preset(self):
        from scripts.train_evolution import apply_overrides, parse_args, QUICK_PRESET

        config = apply_overrides(Config(), parse_args(["--mode", "quick", "--seed", "7"]))

        for key, value in QUICK_PRESET.items():
            assert config.get(key) == value
        assert config.get("evolution.seed") == 7

    def test_explicit_overrides_win_over_preset(self):
        from scripts.train_evolution import apply_overrides, parse_args

        config = apply_overrides(Config(), parse_args(["--mode", "quick", "--population", "6"]))
        assert config.evolution_config().population_size == 6


class TestLoading:
    """Tests for load_config() and load_controller()."""

    def test_load_config_valid_yaml(self, tiny_config_path):
        from scripts.train_evolution import load_config

        config = load_config(str(tiny_config_path))
        assert config.evolution_config().population_size == 2

    def test_load_config_missing_file(self, temp_dir):
        """
        Test load_config raises error for missing file.

        Purpose:
            An explicit path that does not exist is a mistake, not a request
            for defaults.
        """
        from scripts.train_evolution import load_config

        with pytest.raises(FileNotFoundError):
            load_config(str(temp_dir / "missing.yaml"))

    def test_load_config_none_gives_defaults(self):
        from scripts.train_evolution import load_config

        assert load_config(None) == Config()

    def test_load_default_controller(self):
        from scripts.train_evolution import load_controller, DEFAULT_CONTROLLER

        assert isinstance(load_controller(DEFAULT_CONTROLLER, seed=1), SyntheticSimulation)

    @pytest.mark.parametrize("spec", ["evoai.simulation.synthetic", ":create_controller", "evoai.simulation.synthetic:"])
    def test_malformed_controller_spec(self, spec):
        from scripts.train_evolution import load_controller

        with pytest.raises(ValueError, match="module:factory"):
            load_controller(spec)

    def test_factory_returning_wrong_type(self):
        from scripts.train_evolution import load_controller

        with pytest.raises(ValueError, match="not a SimulationController"):
            load_controller("evoai.config:EvolutionConfig")


class TestBuildManager:
    """Tests for build_manager()."""

    def test_wiring(self, stub_controller):
        from scripts.train_evolution import build_manager

        config = Config(
            evolution={"population_size": 4, "elite_count": 1},
            evaluation={"num_workers": 3, "evaluation_timeout": 42.0},
            fitness={"type": "simple", "wave_reward": 2.0},
            behavior={"mid_wave": 3, "search_radius": 6},
        )
        manager = build_manager(config, stub_controller)

        assert isinstance(manager, EvolutionManager)
        assert manager.harness.num_workers == 3
        assert manager.harness.timeout == 42.0
        worker = manager.harness.worker
        assert isinstance(worker.fitness_evaluator, SimpleFitness)
        assert worker.fitness_evaluator.wave_reward == 2.0
        assert worker.thresholds.mid_wave == 3
        assert worker.search_radius == 6

    @pytest.mark.parametrize("section,value", [
        ("fitness", {"type": "bogus"}),
        ("fitness", {"type": "simple", "bogus_weight": 1.0}),
        ("behavior", {"bogus_wave": 1}),
        ("evolution", {"population_size": 0}),
    ])
    def test_invalid_sections(self, stub_controller, section, value):
        from scripts.train_evolution import build_manager

        config = Config()
        setattr(config, section, value)
        with pytest.raises(ConfigError):
            build_manager(config, stub_controller)


class TestMain:
    """Tests for main() end to end on the synthetic simulation."""

    def test_full_run_writes_results(self, tiny_config_path, temp_dir):
        """
        Test a complete training run.

        Workflow:
            1. Run main() on a one-generation config
            2. Verify the genome, history and test report files exist
        """
        from scripts.train_evolution import main

        output = temp_dir / "results"
        code = main(["--config", str(tiny_config_path), "--output", str(output), "--seed", "3"])

        assert code == 0
        with open(output / "best-genome.json") as f:
            data = json.load(f)
        assert 0.0 <= data["fitness"] <= 1000.0
        assert data["generation"] == 1

        with open(output / "fitness-history.csv", newline="") as f:
            assert len(list(csv.reader(f))) == 2
        with open(output / "map-test-results.csv", newline="") as f:
            rows = list(csv.reader(f))
        assert [row[0] for row in rows[1:]] == ["Craters"]

    def test_missing_config_exits_2(self, temp_dir):
        from scripts.train_evolution import main

        assert main(["--config", str(temp_dir / "missing.yaml")]) == 2

    def test_bad_controller_exits_2(self):
        from scripts.train_evolution import main

        assert main(["--controller", "nowhere"]) == 2

    def test_invalid_config_exits_2(self, temp_dir, tiny_config_data):
        from scripts.train_evolution import main

        tiny_config_data["evolution"]["population_size"] = 0
        path = temp_dir / "bad.yaml"
        with open(path, "w") as f:
            yaml.dump(tiny_config_data, f)

        controller = MagicMock(spec=SyntheticSimulation)
        with patch("scripts.train_evolution.load_controller", return_value=controller):
            assert main(["--config", str(path), "--output", str(temp_dir / "out")]) == 2
        controller.shutdown.assert_called_once()


class TestBenchmark:
    """Tests for run_benchmark()."""

    def test_rows_per_population(self, tiny_config_path):
        from scripts.train_evolution import load_config, run_benchmark

        config = load_config(str(tiny_config_path))
        rows = run_benchmark(config, SyntheticSimulation(seed=2), population_sizes=(2, 3), generations=1)

        assert [row["population"] for row in rows] == [2, 3]
        for row in rows:
            assert row["seconds_per_generation"] >= 0.0
            assert 0.0 <= row["best_fitness"] <= 1000.0
