"""Exceptions raised by the permission core and the dataset loaders."""

from __future__ import annotations


class RebacError(Exception):
    """Base class for every error raised by ``benchmarks.rebac``."""


class UnknownEntity(RebacError):
    """An edge or query references an id absent from the graph snapshot."""

    def __init__(self, kind: str, entity_id: int, context: str = "") -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.context = context
        message = f"Unknown {kind} id {entity_id}"
        if context:
            message += f" (referenced by {context})"
        super().__init__(message)


class InvalidGraph(RebacError, ValueError):
    """An edge carries an unknown role/relation, or an id is defined twice."""


class CyclicHierarchy(RebacError):
    """The group hierarchy contains a cycle for the given relation."""

    def __init__(self, cycle: list[int], relation: str) -> None:
        self.cycle = tuple(cycle)
        self.relation = relation
        path = " -> ".join(str(g) for g in cycle)
        super().__init__(f"Cyclic {relation} hierarchy: {path}")


class RefreshFailed(RebacError):
    """Building a new index generation failed; the previous one keeps serving."""

    def __init__(self, strategy: str, kept_generation: int | None) -> None:
        self.strategy = strategy
        self.kept_generation = kept_generation
        kept = (
            f"generation {kept_generation} still serving"
            if kept_generation is not None
            else "no generation available"
        )
        super().__init__(f"{strategy} refresh failed; {kept}")


class IndexNotReady(RebacError):
    """A precomputed index was queried before any build completed."""


class DatasetError(RebacError):
    """A dataset could not be loaded."""


class MalformedRow(DatasetError):
    """A CSV row is missing fields or holds an invalid value."""

    def __init__(self, file: str, line: int, reason: str) -> None:
        self.file = file
        self.line = line
        self.reason = reason
        super().__init__(f"{file}:{line}: {reason}")
