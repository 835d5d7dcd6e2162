"""Resource graph construction and dependency ordering."""

from iamrecon.graph.builder import ResourceGraph, build_graph, build_graph_from_file, load_declarations
from iamrecon.graph.resolver import creation_order, deletion_order, levels

__all__ = [
    "ResourceGraph",
    "build_graph",
    "build_graph_from_file",
    "creation_order",
    "deletion_order",
    "levels",
    "load_declarations",
]
