"""Abstract protocol for graph dataset sources."""

from __future__ import annotations

from typing import Protocol

from benchmarks.rebac.graph import GraphSnapshot


class DatasetSource(Protocol):
    """Protocol for anything that can produce a permission graph snapshot."""

    def load(self) -> GraphSnapshot:
        """Produce a complete, immutable snapshot of the dataset."""
        ...

    @property
    def name(self) -> str:
        """Short identifier for this source (e.g. 'csv')."""
        ...
