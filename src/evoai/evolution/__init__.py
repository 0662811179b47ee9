"""
Evolution module for tower-defense agents via a genetic algorithm.

Purpose:
	Provides the genome encoding, the behavior executor, fitness
	evaluation, parallel evaluation workers and the generational loop.

Workflow:
	1. Import from submodules as needed
	2. Wrap a SimulationController in an EvolutionWorker and EvaluationHarness
	3. Run EvolutionManager.evolve()
"""
