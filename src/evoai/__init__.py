"""
Evolutionary Tower-Defense AI Package

Genetic-algorithm training of genome-driven agents for a real-time
strategy / tower-defense simulation.
"""

__version__ = "0.1.0"

from evoai.config import Config, ConfigError, EvolutionConfig, EvaluationConfig
from evoai.evolution.genome import Genome

__all__ = [
	"Config",
	"ConfigError",
	"EvolutionConfig",
	"EvaluationConfig",
	"Genome",
]
