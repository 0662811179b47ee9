"""
Tests for configuration module (evoai/config.py).
"""

import pytest
import yaml

from evoai.config import Config, ConfigError, EvolutionConfig, EvaluationConfig


class TestConfigInitialization:
    """Tests for Config initialization."""

    def test_default_initialization(self):
        """Test that Config initializes with empty sections."""
        config = Config()
        assert config.evolution == {}
        assert config.evaluation == {}
        assert config.fitness == {}
        assert config.behavior == {}

    def test_empty_sections_give_defaults(self):
        config = Config()
        assert config.evolution_config() == EvolutionConfig()
        assert config.evaluation_config() == EvaluationConfig()

    def test_default_values(self):
        evolution = EvolutionConfig()
        assert evolution.population_size == 20
        assert evolution.elite_count == 4
        assert evolution.tournament_size == 3
        assert evolution.crossover_rate == 0.7
        assert evolution.mutation_rate == 0.15
        assert evolution.target_fitness == 950.0

        evaluation = EvaluationConfig()
        assert evaluation.episodes_per_genome == 3
        assert evaluation.evaluation_timeout == 600.0


class TestConfigFromFile:
    """Tests for loading configuration from YAML."""

    def test_load_sections(self, tmp_path):
        """Test loading every section from one file."""
        data = {
            "evolution": {"population_size": 12, "seed": 7},
            "evaluation": {"maps": ["Frozen Forest"], "episodes_per_genome": 1},
            "fitness": {"type": "simple", "victory_reward": 300.0},
            "behavior": {"mid_wave": 5},
        }
        path = tmp_path / "evolution_config.yaml"
        with open(path, 'w') as f:
            yaml.dump(data, f)

        config = Config.from_file(str(path))

        assert config.evolution_config().population_size == 12
        assert config.evolution_config().seed == 7
        assert config.evaluation_config().maps == ["Frozen Forest"]
        assert config.fitness == {"type": "simple", "victory_reward": 300.0}
        assert config.behavior == {"mid_wave": 5}

    def test_missing_file_gives_defaults(self, tmp_path):
        config = Config.from_file(str(tmp_path / "nope.yaml"))
        assert config == Config()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Config.from_file(str(path)) == Config()

    def test_null_section(self, tmp_path):
        path = tmp_path / "null.yaml"
        path.write_text("evolution:\n")
        assert Config.from_file(str(path)).evolution == {}

    def test_unknown_section_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        with open(path, 'w') as f:
            yaml.dump({"model": {"layers": 4}}, f)
        with pytest.raises(ConfigError, match="model"):
            Config.from_file(str(path))

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError):
            Config.from_file(str(path))

    def test_bundled_config_is_valid(self):
        """The sample config shipped in configs/ must load cleanly."""
        from pathlib import Path
        path = Path(__file__).parent.parent / "configs" / "evolution_config.yaml"
        config = Config.from_file(str(path))
        config.evolution_config()
        config.evaluation_config()
        assert config.fitness.get("type") == "comprehensive"


class TestValidation:
    """Tests for range checks on the typed sections."""

    @pytest.mark.parametrize("overrides", [
        {"population_size": 0},
        {"max_generations": 0},
        {"elite_count": -1},
        {"population_size": 4, "elite_count": 5},
        {"tournament_size": 0},
        {"crossover_rate": 1.5},
        {"mutation_rate": -0.1},
        {"stagnation_window": 1},
        {"min_improvement": -1.0},
        {"checkpoint_every": -1},
    ])
    def test_invalid_evolution(self, overrides):
        with pytest.raises(ConfigError):
            EvolutionConfig(**overrides).validate()

    @pytest.mark.parametrize("overrides", [
        {"episodes_per_genome": 0},
        {"max_sim_time": 0.0},
        {"tick_interval": -1.0},
        {"evaluation_timeout": 0.0},
        {"num_workers": 0},
    ])
    def test_invalid_evaluation(self, overrides):
        with pytest.raises(ConfigError):
            EvaluationConfig(**overrides).validate()

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigError, match="generations"):
            EvolutionConfig.from_dict({"generations": 10})

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            EvaluationConfig.from_dict({"episodes_per_genome": 0})


class TestConfigAccess:
    """Tests for dot-key get/set."""

    def test_get_nested(self):
        config = Config(evolution={"population_size": 30})
        assert config.get("evolution.population_size") == 30

    def test_get_missing_returns_default(self):
        config = Config()
        assert config.get("evolution.population_size") is None
        assert config.get("evolution.population_size", 20) == 20
        assert config.get("nonexistent.key", "x") == "x"

    def test_set_nested(self):
        config = Config()
        config.set("fitness.type", "combat")
        config.set("evaluation.rules.waves", True)
        assert config.fitness == {"type": "combat"}
        assert config.evaluation == {"rules": {"waves": True}}

    def test_set_then_typed_section(self):
        config = Config()
        config.set("evolution.population_size", 6)
        config.set("evolution.elite_count", 2)
        evolution = config.evolution_config()
        assert evolution.population_size == 6
        assert evolution.elite_count == 2


class TestConfigSave:
    """Tests for Config.save()."""

    def test_save_and_reload(self, tmp_path):
        config = Config(
            evolution={"population_size": 10},
            evaluation={"maps": ["Ruinous Shores"]},
            fitness={"type": "economy"},
        )
        path = tmp_path / "nested" / "saved.yaml"
        config.save(str(path))

        assert path.exists()
        assert Config.from_file(str(path)) == config
