"""ReBAC permission closure and resolution benchmark.

Resolves ``manage`` / ``view`` permissions over organizations, nested
groups and per-resource ACLs, and compares three materialization
strategies (recursive, precomputed index, streaming) on the same graph.

Usage:
    python -m benchmarks.rebac.run                        # CSV dataset in ./data
    python -m benchmarks.rebac.run --generate             # Synthetic dataset
    python -m benchmarks.rebac.run --strategy precomputed # Single strategy
"""
