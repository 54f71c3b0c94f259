"""Core convergence engine: config, task graph, sub-engines and executor."""
