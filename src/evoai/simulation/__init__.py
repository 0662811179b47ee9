"""
Simulation boundary: contracts consumed by the evolution engine and an
in-process synthetic implementation of them.
"""
