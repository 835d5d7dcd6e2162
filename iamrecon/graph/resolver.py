"""Dependency Resolver — order resources so dependencies come first."""

from __future__ import annotations

import networkx as nx

from iamrecon.errors import DependencyCycleError
from iamrecon.graph.builder import ResourceGraph


def _check_acyclic(graph: ResourceGraph) -> None:
    try:
        cycle = nx.find_cycle(graph.graph)
    except nx.NetworkXNoCycle:
        return
    raise DependencyCycleError([edge[0] for edge in cycle])


def creation_order(graph: ResourceGraph) -> list[str]:
    """Topological order of addresses; ties are broken alphabetically.

    Raises:
        DependencyCycleError: the graph is not a DAG.
    """
    _check_acyclic(graph)
    return list(nx.lexicographical_topological_sort(graph.graph))


def deletion_order(graph: ResourceGraph) -> list[str]:
    """Dependents before dependencies."""
    return list(reversed(creation_order(graph)))


def levels(graph: ResourceGraph) -> list[list[str]]:
    """Group addresses into generations.

    Everything in generation N depends only on resources in earlier
    generations.
    """
    _check_acyclic(graph)
    return [sorted(generation) for generation in nx.topological_generations(graph.graph)]
