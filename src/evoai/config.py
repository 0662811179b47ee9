"""
Configuration module for loading and managing config files.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, fields, asdict


class ConfigError(ValueError):
	"""Invalid configuration, raised before any generation runs."""


def _check_rate(name: str, value: float) -> None:
	if not 0.0 <= value <= 1.0:
		raise ConfigError(f"{name} must be in [0, 1], got {value}")


def _from_mapping(cls, data: Optional[Dict[str, Any]]):
	"""
	Build a config record from a mapping, rejecting unknown keys.

	Args:
		cls: Config dataclass type
		data: Section mapping (None means all defaults)

	Returns:
		Validated instance of cls
	"""
	data = dict(data or {})
	known = {f.name for f in fields(cls)}
	unknown = sorted(set(data) - known)
	if unknown:
		raise ConfigError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")
	instance = cls(**data)
	instance.validate()
	return instance


@dataclass
class EvolutionConfig:
	"""
	Generational loop parameters.

	Attributes:
		population_size: Genomes per generation (N)
		max_generations: Hard stop on the number of generations
		elite_count: Genomes copied unchanged into the next generation (K)
		tournament_size: Genomes sampled per tournament (T)
		crossover_rate: Probability of crossover instead of cloning
		mutation_rate: Per-trait mutation probability
		stagnation_window: Generations compared by the stagnation check
		min_improvement: Required best-fitness gain across the window
		target_fitness: Stop once the best fitness exceeds this
		checkpoint_every: Save a JSON checkpoint every N generations (0 disables)
		checkpoint_dir: Where checkpoints go
		seed: Seed for the evolution random generator
	"""
	population_size: int = 20
	max_generations: int = 100
	elite_count: int = 4
	tournament_size: int = 3
	crossover_rate: float = 0.7
	mutation_rate: float = 0.15
	stagnation_window: int = 10
	min_improvement: float = 1.0
	target_fitness: float = 950.0
	checkpoint_every: int = 0
	checkpoint_dir: str = "checkpoints"
	seed: Optional[int] = None

	def validate(self) -> None:
		"""
		Raises:
			ConfigError: If any parameter is out of range.
		"""
		if self.population_size < 1:
			raise ConfigError(f"population_size must be >= 1, got {self.population_size}")
		if self.max_generations < 1:
			raise ConfigError(f"max_generations must be >= 1, got {self.max_generations}")
		if not 0 <= self.elite_count <= self.population_size:
			raise ConfigError(
				f"elite_count must be in [0, population_size], got {self.elite_count}"
			)
		if self.tournament_size < 1:
			raise ConfigError(f"tournament_size must be >= 1, got {self.tournament_size}")
		_check_rate("crossover_rate", self.crossover_rate)
		_check_rate("mutation_rate", self.mutation_rate)
		if self.stagnation_window < 2:
			raise ConfigError(f"stagnation_window must be >= 2, got {self.stagnation_window}")
		if self.min_improvement < 0:
			raise ConfigError(f"min_improvement must be >= 0, got {self.min_improvement}")
		if self.checkpoint_every < 0:
			raise ConfigError(f"checkpoint_every must be >= 0, got {self.checkpoint_every}")

	@classmethod
	def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EvolutionConfig":
		return _from_mapping(cls, data)


@dataclass
class EvaluationConfig:
	"""
	Fitness evaluation parameters.

	Attributes:
		episodes_per_genome: Independent episodes averaged per genome
		max_sim_time: Simulated-seconds ceiling per episode
		max_wall_time: Wall-clock seconds ceiling per episode
		tick_interval: Seconds the episode loop waits between updates
		evaluation_timeout: Wall-clock seconds per genome evaluation
		num_workers: Worker threads (None: available CPUs)
		maps: Maps used for training episodes (cycled per episode)
		test_maps: Maps used to test the best genome
		agent_name: Name of the agent created in each episode
		team: Team of the agent
		rules: Rules passed to the simulation at episode start
	"""
	episodes_per_genome: int = 3
	max_sim_time: float = 1800.0
	max_wall_time: float = 1800.0
	tick_interval: float = 0.1
	evaluation_timeout: float = 600.0
	num_workers: Optional[int] = None
	maps: list = field(default_factory=list)
	test_maps: list = field(default_factory=list)
	agent_name: str = "EvolutionaryAI"
	team: str = "sharded"
	rules: Dict[str, Any] = field(default_factory=dict)

	def validate(self) -> None:
		"""
		Raises:
			ConfigError: If any parameter is out of range.
		"""
		if self.episodes_per_genome < 1:
			raise ConfigError(f"episodes_per_genome must be >= 1, got {self.episodes_per_genome}")
		for name in ("max_sim_time", "max_wall_time", "tick_interval", "evaluation_timeout"):
			if getattr(self, name) <= 0:
				raise ConfigError(f"{name} must be > 0, got {getattr(self, name)}")
		if self.num_workers is not None and self.num_workers < 1:
			raise ConfigError(f"num_workers must be >= 1, got {self.num_workers}")

	@classmethod
	def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EvaluationConfig":
		return _from_mapping(cls, data)


@dataclass
class Config:
	"""
	Central configuration class loaded from one YAML file.

	Attributes:
		evolution: Generational loop section
		evaluation: Fitness evaluation section
		fitness: Fitness weighting section ({"type": ..., plus constructor args})
		behavior: Behavior executor section (phase thresholds, search radius)
	"""

	evolution: Dict[str, Any] = field(default_factory=dict)
	evaluation: Dict[str, Any] = field(default_factory=dict)
	fitness: Dict[str, Any] = field(default_factory=dict)
	behavior: Dict[str, Any] = field(default_factory=dict)

	@classmethod
	def from_file(cls, path: str) -> "Config":
		"""
		Load configuration from a YAML file.

		Args:
			path: Path to the configuration file. A missing file yields defaults.

		Returns:
			Config object with loaded sections

		Raises:
			ConfigError: If the file is not a mapping or has unknown sections.
		"""
		if not Path(path).exists():
			return cls()
		with open(path, 'r') as f:
			data = yaml.safe_load(f) or {}
		if not isinstance(data, dict):
			raise ConfigError(f"Config file {path} must contain a mapping")

		known = {f.name for f in fields(cls)}
		unknown = sorted(set(data) - known)
		if unknown:
			raise ConfigError(f"Unknown config sections: {', '.join(unknown)}")
		return cls(**{k: v or {} for k, v in data.items()})

	def evolution_config(self) -> EvolutionConfig:
		return EvolutionConfig.from_dict(self.evolution)

	def evaluation_config(self) -> EvaluationConfig:
		return EvaluationConfig.from_dict(self.evaluation)

	def get(self, key: str, default: Any = None) -> Any:
		"""
		Get configuration value by dot-separated key.

		Examples:
			config.get('evolution.population_size')
			config.get('fitness.type')

		Args:
			key: Dot-separated configuration key
			default: Default value if key not found

		Returns:
			Configuration value or default
		"""
		parts = key.split('.')
		current = self.__dict__

		for part in parts:
			if isinstance(current, dict) and part in current:
				current = current[part]
			else:
				return default

		return current

	def set(self, key: str, value: Any) -> None:
		"""
		Set configuration value by dot-separated key.

		Args:
			key: Dot-separated configuration key
			value: Value to set
		"""
		parts = key.split('.')
		current = self.__dict__

		for part in parts[:-1]:
			if part not in current:
				current[part] = {}
			current = current[part]

		current[parts[-1]] = value

	def save(self, path: str) -> None:
		"""
		Save current configuration to a YAML file.

		Args:
			path: Destination file
		"""
		output_path = Path(path)
		output_path.parent.mkdir(parents=True, exist_ok=True)
		with open(output_path, 'w') as f:
			yaml.dump(asdict(self), f, default_flow_style=False)
