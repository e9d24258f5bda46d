"""Node generation: top-level stops with synthetic sequential ids."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from gtfsjpdb.load import StopDetail


@dataclass(frozen=True, slots=True)
class Node:
    """A top-level stop (no parent station).

    Attributes:
        node_id: Dense id starting at 1, in input order.
        node_name: stop_name of the source stop.
        node_ruby: Phonetic reading of the name, if known.
    """

    node_id: int
    node_name: str
    node_ruby: str | None = None


def generate_nodes(stop_details: Iterable[StopDetail]) -> list[Node]:
    """Build nodes from stop details, skipping child stops.

    Stops with a non-empty parent_station are platforms or entrances of
    a station and never become nodes. Input order defines node_id
    assignment. Duplicate stop names are not merged.
    """
    nodes: list[Node] = []
    for stop in stop_details:
        if stop.parent_station:
            continue
        nodes.append(
            Node(
                node_id=len(nodes) + 1,
                node_name=stop.stop_name,
                node_ruby=stop.stop_ruby,
            )
        )
    return nodes
