"""
Air Duct Flow Network - Network Model

Contains the data structures that define an air duct network:
- NodeKind: Roles of the nodes in the network (SOURCE, JUNCTION, OUTLET)
- DuctShape: Cross-section shape of a duct run (ROUND, RECTANGULAR)
- DuctNode: Nodes of the network
- DuctRun: Directed duct runs between nodes
- DuctNetwork: The graph holding nodes and runs, with its mutation operations
"""

import math
from typing import Dict, List, Optional
from dataclasses import dataclass
from enum import Enum


class NodeKind(Enum):
    """Roles of the nodes in the duct network"""
    SOURCE = "source"         # Air inlet - injects a declared flow into the network
    JUNCTION = "junction"     # Collects incoming flow and forwards it
    OUTLET = "outlet"         # Terminal - flow arriving here goes no further


class DuctShape(Enum):
    """Cross-section shape of a duct run"""
    ROUND = "round"
    RECTANGULAR = "rectangular"


# Which node kinds may start / end a duct run
ALLOWED_FROM = frozenset({NodeKind.SOURCE, NodeKind.JUNCTION})
ALLOWED_TO = frozenset({NodeKind.JUNCTION, NodeKind.OUTLET})

ID_PREFIX = {
    NodeKind.SOURCE: "S",
    NodeKind.JUNCTION: "J",
    NodeKind.OUTLET: "O",
}

DEFAULT_SOURCE_FLOW = 30.0  # m³/min


class DuctNetworkError(Exception):
    """Base class for errors raised by DuctNetwork operations"""


class InvalidTopology(DuctNetworkError, ValueError):
    """A duct run would reference unknown nodes or break the role rule"""


class NotFound(DuctNetworkError, KeyError):
    """Operation on a node or duct run id that does not exist"""

    def __str__(self):
        return str(self.args[0]) if self.args else ""


@dataclass
class DuctNode:
    """
    Node in the duct network.

    Attributes:
        id: Unique identifier (e.g., "S1", "J2", "O1")
        name: Display name (defaults to the id)
        kind: Role of the node (SOURCE, JUNCTION, OUTLET)
        declared_flow: Flow injected by a SOURCE in m³/min, ignored for other kinds
        resolved_flow: Calculated flow through the node in m³/min
        x, y: Canvas position in pixels, only used for run lengths
    """
    id: str
    name: str
    kind: NodeKind
    declared_flow: float = 0.0
    resolved_flow: float = 0.0
    x: float = 0.0
    y: float = 0.0

    @property
    def is_source(self) -> bool:
        return self.kind == NodeKind.SOURCE


@dataclass
class DuctRun:
    """
    Duct run (directed edge) between two nodes.

    Attributes:
        id: Unique identifier (e.g., "D1", "D2")
        from_node: ID of the upstream node
        to_node: ID of the downstream node
        shape_override: Shape chosen by the user, None follows the configured default
        pinned_width, pinned_height: Rectangular sides fixed by the user (mm)

    Calculated by recompute():
        shape: Effective shape
        carried_flow: Flow in m³/min, equal to the resolved flow of from_node
        diameter: Recommended round diameter (mm), 0 for rectangular runs
        width, height: Recommended rectangular sides (mm), 0 for round runs
        equivalent_diameter: Round diameter with the same area (mm)
        efficiency: Theoretical area / selected area (%)
        velocity: Target velocity used for sizing (m/s)
        length: Run length from the node positions (m)
    """
    id: str
    from_node: str
    to_node: str
    shape_override: Optional[DuctShape] = None
    pinned_width: Optional[float] = None
    pinned_height: Optional[float] = None

    shape: DuctShape = DuctShape.ROUND
    carried_flow: float = 0.0
    diameter: float = 0.0
    width: float = 0.0
    height: float = 0.0
    equivalent_diameter: float = 0.0
    efficiency: float = 0.0
    velocity: float = 0.0
    length: float = 0.0

    def size_label(self) -> str:
        """Short text for the selected size, e.g. 'Ø400mm' or '350x300mm'"""
        if self.shape == DuctShape.RECTANGULAR:
            return f"{round(self.width)}x{round(self.height)}mm"
        return f"Ø{round(self.diameter)}mm"


class DuctNetwork:
    """
    Directed multigraph of duct nodes and runs.

    Nodes and runs are kept in insertion order, which is the order
    incoming_edges() / outgoing_edges() report them in. Failing operations
    raise before touching the graph.
    """

    def __init__(self, default_source_flow: float = DEFAULT_SOURCE_FLOW):
        self.default_source_flow = default_source_flow
        self._nodes: Dict[str, DuctNode] = {}
        self._edges: Dict[str, DuctRun] = {}
        self._counters: Dict[str, int] = {}

    def _next_id(self, prefix: str) -> str:
        self._counters[prefix] = self._counters.get(prefix, 0) + 1
        return f"{prefix}{self._counters[prefix]}"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> List[DuctNode]:
        return list(self._nodes.values())

    @property
    def edges(self) -> List[DuctRun]:
        return list(self._edges.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, item_id) -> bool:
        return item_id in self._nodes or item_id in self._edges

    def get_node(self, node_id: str) -> DuctNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NotFound(f"Node {node_id!r} does not exist") from None

    def get_edge(self, edge_id: str) -> DuctRun:
        try:
            return self._edges[edge_id]
        except KeyError:
            raise NotFound(f"Duct run {edge_id!r} does not exist") from None

    def incoming_edges(self, node_id: str) -> List[DuctRun]:
        self.get_node(node_id)
        return [e for e in self._edges.values() if e.to_node == node_id]

    def outgoing_edges(self, node_id: str) -> List[DuctRun]:
        self.get_node(node_id)
        return [e for e in self._edges.values() if e.from_node == node_id]

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def add_node(self, kind: NodeKind, name: Optional[str] = None,
                 x: float = 0.0, y: float = 0.0,
                 declared_flow: Optional[float] = None) -> str:
        """Create a node and return its new id"""
        kind = NodeKind(kind)
        if declared_flow is None:
            declared_flow = self.default_source_flow if kind == NodeKind.SOURCE else 0.0
        declared_flow = _check_flow(declared_flow)

        node_id = self._next_id(ID_PREFIX[kind])
        resolved = declared_flow if kind == NodeKind.SOURCE else 0.0
        self._nodes[node_id] = DuctNode(node_id, name or node_id, kind,
                                        declared_flow=declared_flow,
                                        resolved_flow=resolved, x=x, y=y)
        return node_id

    def remove_node(self, node_id: str):
        """Remove a node together with every duct run attached to it"""
        self.get_node(node_id)
        self._edges = {eid: e for eid, e in self._edges.items()
                       if e.from_node != node_id and e.to_node != node_id}
        del self._nodes[node_id]

    def duplicate_node(self, node_id: str, offset: float = 40.0) -> str:
        """Paste a copy of a node (same kind and declared flow, no runs) next to it"""
        source = self.get_node(node_id)
        return self.add_node(source.kind, x=source.x + offset, y=source.y + offset,
                             declared_flow=source.declared_flow)

    def set_declared_flow(self, node_id: str, flow: float):
        self.get_node(node_id).declared_flow = _check_flow(flow)

    def rename_node(self, node_id: str, name: str):
        node = self.get_node(node_id)
        node.name = name or node.id

    def move_node(self, node_id: str, x: float, y: float):
        node = self.get_node(node_id)
        node.x = x
        node.y = y

    # ------------------------------------------------------------------
    # Duct runs
    # ------------------------------------------------------------------

    def add_edge(self, from_id: str, to_id: str,
                 shape: Optional[DuctShape] = None) -> str:
        """Create a duct run from_id -> to_id and return its new id"""
        start = self._nodes.get(from_id)
        end = self._nodes.get(to_id)
        if start is None or end is None:
            missing = from_id if start is None else to_id
            raise InvalidTopology(f"Cannot connect: node {missing!r} does not exist")
        if start.kind not in ALLOWED_FROM or end.kind not in ALLOWED_TO:
            raise InvalidTopology(
                f"Cannot connect {start.kind.value} -> {end.kind.value}: "
                f"only source/junction -> junction/outlet is allowed")
        if shape is not None:
            shape = DuctShape(shape)

        edge_id = self._next_id("D")
        self._edges[edge_id] = DuctRun(edge_id, from_id, to_id, shape_override=shape)
        return edge_id

    def remove_edge(self, edge_id: str):
        self.get_edge(edge_id)
        del self._edges[edge_id]

    def set_edge_shape(self, edge_id: str, shape: Optional[DuctShape]):
        """Override the shape of one run; None returns it to the default shape"""
        edge = self.get_edge(edge_id)
        edge.shape_override = DuctShape(shape) if shape is not None else None

    def pin_edge_size(self, edge_id: str, width: Optional[float] = None,
                      height: Optional[float] = None):
        """Fix the rectangular sides (mm) of a run; None or 0 clears a pin"""
        edge = self.get_edge(edge_id)
        _check_dimensions(width, height)
        edge.pinned_width = width or None
        edge.pinned_height = height or None

    def configure_edge(self, edge_id: str, shape: Optional[DuctShape],
                       width: Optional[float] = None, height: Optional[float] = None):
        """Set shape override and pinned sides together, or change nothing"""
        edge = self.get_edge(edge_id)
        shape = DuctShape(shape) if shape is not None else None
        _check_dimensions(width, height)
        edge.shape_override = shape
        edge.pinned_width = width or None
        edge.pinned_height = height or None

    def clear(self):
        """Remove all nodes and runs and restart the id counters"""
        self._nodes.clear()
        self._edges.clear()
        self._counters.clear()


def _check_dimensions(*values):
    for value in values:
        if value is not None and (not math.isfinite(value) or value < 0):
            raise ValueError(f"Invalid duct dimension: {value}")


def _check_flow(flow) -> float:
    flow = float(flow)
    if not math.isfinite(flow) or flow < 0:
        raise ValueError(f"Flow must be a non-negative number, got {flow}")
    return flow
