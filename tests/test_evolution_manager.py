"""
Tests for evolution manager module.
"""

import json
import logging
from unittest.mock import MagicMock

import pytest

from evoai.config import ConfigError, EvolutionConfig, EvaluationConfig
from evoai.evolution.fitness import FitnessEvaluator
from evoai.evolution.genome import Genome
from evoai.evolution.manager import (
    EvolutionManager,
    STOP_MAX_GENERATIONS,
    STOP_STAGNATION,
    STOP_TARGET_REACHED,
    STOP_ERROR,
)
from evoai.evolution.records import EpisodeResult, RunState
from evoai.evolution.worker import EvolutionWorker, EvaluationHarness


def trait_score(genome: Genome) -> float:
    """Deterministic per-genome fitness."""
    return 1000.0 * genome.risk_tolerance * 0.9


class TestManagerInitialization:
    """Tests for EvolutionManager construction."""

    def test_invalid_config_raises_before_running(self, score_harness_factory):
        harness = score_harness_factory(trait_score)
        with pytest.raises(ConfigError):
            EvolutionManager(harness, EvolutionConfig(population_size=0))
        assert harness.calls == 0

    def test_elites_exceeding_population_rejected(self, score_harness_factory):
        with pytest.raises(ConfigError):
            EvolutionManager(score_harness_factory(trait_score), EvolutionConfig(population_size=4, elite_count=5))

    def test_strategy_built_from_config(self, score_harness_factory, small_evolution_config):
        manager = EvolutionManager(score_harness_factory(trait_score), small_evolution_config)
        assert manager.strategy.population_size == 8
        assert manager.strategy.elite_count == 2
        assert manager.strategy.tournament_size == 3


class TestEvolutionLoop:
    """Tests for the generational loop."""

    def test_best_per_generation_non_decreasing(self, score_harness_factory, small_evolution_config):
        """
        Test elitism with a fixed per-genome fitness.

        Purpose:
            Population 8, 5 generations: the best-per-generation sequence
            must never decrease.
        """
        manager = EvolutionManager(score_harness_factory(trait_score), small_evolution_config)
        result = manager.evolve()

        bests = [best for best, _ in result.history]
        assert len(bests) == 5
        assert all(later >= earlier for earlier, later in zip(bests, bests[1:]))
        assert result.stop_reason == STOP_MAX_GENERATIONS
        assert result.generations_completed == 5

    def test_population_size_constant(self, score_harness_factory, small_evolution_config):
        harness = score_harness_factory(trait_score)
        EvolutionManager(harness, small_evolution_config).evolve()
        assert [len(p) for p in harness.populations] == [8] * 5

    def test_elites_carried_over(self, score_harness_factory, small_evolution_config):
        harness = score_harness_factory(trait_score)
        EvolutionManager(harness, small_evolution_config).evolve()
        for previous, current in zip(harness.populations, harness.populations[1:]):
            ranked = sorted(previous, key=trait_score, reverse=True)
            for elite in ranked[:2]:
                assert elite in current

    def test_best_genome_tracked(self, score_harness_factory, small_evolution_config):
        harness = score_harness_factory(trait_score)
        result = EvolutionManager(harness, small_evolution_config).evolve()
        every_genome = [g for population in harness.populations for g in population]
        assert result.best_fitness == pytest.approx(max(trait_score(g) for g in every_genome))
        assert trait_score(result.best_genome) == pytest.approx(result.best_fitness)

    def test_history_matches_scores(self, score_harness_factory, small_evolution_config):
        harness = score_harness_factory(trait_score)
        result = EvolutionManager(harness, small_evolution_config).evolve()
        for population, (best, average) in zip(harness.populations, result.history):
            scores = [trait_score(g) for g in population]
            assert best == pytest.approx(max(scores))
            assert average == pytest.approx(sum(scores) / len(scores))

    def test_on_generation_callback(self, score_harness_factory, small_evolution_config):
        callback = MagicMock()
        EvolutionManager(score_harness_factory(trait_score), small_evolution_config, on_generation=callback).evolve()
        assert callback.call_count == 5
        assert isinstance(callback.call_args[0][0], RunState)

    def test_seeded_runs_reproduce(self, score_harness_factory, small_evolution_config):
        first = EvolutionManager(score_harness_factory(trait_score), small_evolution_config).evolve()
        second = EvolutionManager(score_harness_factory(trait_score), small_evolution_config).evolve()
        assert first.history == second.history
        assert first.best_genome == second.best_genome


class TestStopConditions:
    """Tests for early stopping."""

    def test_stagnation_stops_early(self, score_harness_factory):
        """
        Test that a flat best-fitness window halts the run.

        Workflow:
            1. Score every genome 100 (no improvement possible)
            2. Allow 50 generations
            3. Expect a stop after the 10-generation window
        """
        config = EvolutionConfig(population_size=4, max_generations=50, elite_count=1, seed=1)
        result = EvolutionManager(score_harness_factory(lambda g: 100.0), config).evolve()
        assert result.stop_reason == STOP_STAGNATION
        assert result.generations_completed == 10

    def test_stagnation_window_configurable(self, score_harness_factory):
        config = EvolutionConfig(population_size=4, max_generations=50, elite_count=1, stagnation_window=3, seed=1)
        result = EvolutionManager(score_harness_factory(lambda g: 100.0), config).evolve()
        assert result.generations_completed == 3

    def test_target_reached(self, score_harness_factory):
        config = EvolutionConfig(population_size=4, max_generations=50, elite_count=1, target_fitness=500.0, seed=1)
        result = EvolutionManager(score_harness_factory(lambda g: 600.0), config).evolve()
        assert result.stop_reason == STOP_TARGET_REACHED
        assert result.generations_completed == 1

    def test_target_must_be_exceeded(self, score_harness_factory):
        config = EvolutionConfig(population_size=4, max_generations=3, elite_count=1, target_fitness=600.0, seed=1)
        result = EvolutionManager(score_harness_factory(lambda g: 600.0), config).evolve()
        assert result.stop_reason == STOP_MAX_GENERATIONS

    def test_check_stop_requires_full_window(self, score_harness_factory, small_evolution_config):
        manager = EvolutionManager(score_harness_factory(trait_score), small_evolution_config)
        manager.state.best_fitness = 10.0
        manager.state.best_history = [10.0] * 9
        assert manager.check_stop() is None
        manager.state.best_history.append(10.5)
        assert manager.check_stop() == STOP_STAGNATION
        manager.state.best_history[-1] = 11.0
        assert manager.check_stop() is None


class TestFailureHandling:
    """Tests for failure isolation in the loop."""

    def test_failing_evaluation_scores_zero(self, controller_factory, fast_evaluation_config):
        """
        Test that an evaluation raising an exception does not crash the loop.

        Workflow:
            1. Use a worker whose evaluate() raises for one genome slot
            2. Run a short evolution
            3. Verify the run completes and the failing genome scored 0
        """
        fitness = MagicMock(spec=FitnessEvaluator)
        fitness.score.return_value = 200.0
        worker = EvolutionWorker(controller_factory(end_time=5.0), fitness, fast_evaluation_config)

        original = worker.evaluate
        calls = {"n": 0}

        def flaky(genome, cancel_event=None):
            calls["n"] += 1
            if genome.risk_tolerance < 0.3:
                raise RuntimeError("simulation crashed")
            return original(genome, cancel_event)

        worker.evaluate = flaky
        harness = EvaluationHarness(worker, num_workers=2, timeout=30.0)
        config = EvolutionConfig(population_size=6, max_generations=2, elite_count=1, seed=3)
        manager = EvolutionManager(harness, config)
        result = manager.evolve()

        assert result.generations_completed == 2
        for genome, episode in zip(manager.population, manager.last_results):
            if genome.risk_tolerance < 0.3:
                assert episode.fitness == 0.0
                assert episode.failed
            else:
                assert episode.fitness == 200.0

    def test_all_zero_generation_warns(self, score_harness_factory, caplog):
        config = EvolutionConfig(population_size=4, max_generations=2, elite_count=1, seed=1)
        with caplog.at_level(logging.WARNING):
            result = EvolutionManager(score_harness_factory(lambda g: 0.0), config).evolve()
        assert result.generations_completed == 2
        assert "scored 0" in caplog.text

    def test_error_after_first_generation_returns_best(self, score_harness_factory):
        config = EvolutionConfig(population_size=4, max_generations=10, elite_count=1, seed=1)
        harness = score_harness_factory(trait_score, fail_on_call=3)
        result = EvolutionManager(harness, config).evolve()
        assert result.stop_reason == STOP_ERROR
        assert result.generations_completed == 2
        assert result.best_genome is not None

    def test_error_in_first_generation_propagates(self, score_harness_factory):
        config = EvolutionConfig(population_size=4, max_generations=10, elite_count=1, seed=1)
        harness = score_harness_factory(trait_score, fail_on_call=1)
        with pytest.raises(RuntimeError, match="harness crashed"):
            EvolutionManager(harness, config).evolve()

    def test_wrong_result_count_is_an_error(self, small_evolution_config):
        harness = MagicMock()
        harness.evaluate_population.return_value = [EpisodeResult(fitness=1.0)]
        with pytest.raises(RuntimeError, match="results"):
            EvolutionManager(harness, small_evolution_config).evolve()


class TestCheckpointing:
    """Tests for JSON checkpoints."""

    def test_checkpoint_written(self, score_harness_factory, temp_dir):
        config = EvolutionConfig(
            population_size=4, max_generations=4, elite_count=1, seed=1,
            checkpoint_every=2, checkpoint_dir=str(temp_dir),
        )
        EvolutionManager(score_harness_factory(trait_score), config).evolve()

        assert (temp_dir / "checkpoint_gen_2.json").exists()
        with open(temp_dir / "checkpoint_gen_4.json") as f:
            data = json.load(f)
        assert data["generation"] == 4
        assert len(data["history"]) == 4
        assert len(data["population"]) == 4
        assert Genome.from_dict(data["best_genome"]) is not None


class TestBestGenomeTesting:
    """Tests for test_best()."""

    def test_requires_evolution(self, score_harness_factory, small_evolution_config):
        manager = EvolutionManager(score_harness_factory(trait_score), small_evolution_config)
        with pytest.raises(RuntimeError):
            manager.test_best(["Alpha"])

    def test_per_map_results(self, controller_factory, small_evolution_config):
        controller = controller_factory(fail_maps={"Gamma"}, end_time=5.0)
        fitness = MagicMock(spec=FitnessEvaluator)
        fitness.score.return_value = 300.0
        worker = EvolutionWorker(controller, fitness, EvaluationConfig(tick_interval=1.0, episodes_per_genome=1))
        manager = EvolutionManager(EvaluationHarness(worker, num_workers=2), small_evolution_config)
        manager.state.offer(Genome(), 300.0)

        results = manager.test_best()

        assert set(results.results) == {"Alpha", "Beta", "Gamma"}
        assert results.get_result("Alpha").won
        assert results.get_result("Alpha").fitness == 300.0
        assert results.get_result("Gamma").fitness == 0.0
        assert results.win_rate == pytest.approx(2 / 3)
        assert results.average_fitness == pytest.approx(200.0)
