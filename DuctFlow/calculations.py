"""
Air Duct Flow Network - Calculation Module

Contains all calculations for a duct network:
- Propagating source flows through the network to every node and duct run
- Selecting a discretized duct size (round or rectangular) per run
- Recomputing the whole network for a given configuration
"""

import math
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

import numpy as np

# Import network data structures
from duct_network import DuctNetwork, DuctNode, DuctShape, NodeKind


DEFAULT_VELOCITY = 13.0        # m/s
DEFAULT_STEP = 50.0            # mm
DEFAULT_BUMP_THRESHOLD = 90.0  # %
DEFAULT_TOLERANCE = 1e-4
DEFAULT_SCALE = 18.0           # pixels per metre
SECONDS_PER_MINUTE = 60.0      # flows are entered in m³/min


@dataclass(frozen=True)
class DuctConfig:
    """
    Settings consumed by recompute().

    Attributes:
        velocity: Target air velocity in m/s (<= 0 gives zero sizes)
        default_shape: Shape of runs without a shape override
        step: Size increment in mm that recommended sizes are rounded up to
        bump_threshold: Efficiency (%) above which a size is bumped one step
        tolerance: Largest flow change that still counts as converged
        max_rounds: Bound on propagation rounds, None = number of nodes
        scale: Canvas pixels per metre, used for run lengths
        flow_time_base: Seconds per flow time unit (60 for m³/min)
    """
    velocity: float = DEFAULT_VELOCITY
    default_shape: DuctShape = DuctShape.ROUND
    step: float = DEFAULT_STEP
    bump_threshold: float = DEFAULT_BUMP_THRESHOLD
    tolerance: float = DEFAULT_TOLERANCE
    max_rounds: Optional[int] = None
    scale: float = DEFAULT_SCALE
    flow_time_base: float = SECONDS_PER_MINUTE

    def replace(self, **changes) -> "DuctConfig":
        return replace(self, **changes)


@dataclass
class PropagationResult:
    converged: bool
    rounds: int
    max_change: float = 0.0


@dataclass
class DuctSize:
    """
    Recommended cross-section of a duct run.

    diameter is set for round runs, width/height for rectangular runs.
    All sizes in mm, efficiency in %.
    """
    diameter: float = 0.0
    width: float = 0.0
    height: float = 0.0
    equivalent_diameter: float = 0.0
    efficiency: float = 0.0
    bumped: bool = False


@dataclass
class RecomputeResult:
    converged: bool
    rounds: int
    max_change: float = 0.0
    warnings: List[str] = field(default_factory=list)


def propagate_flows(
    network: DuctNetwork,
    tolerance: float = DEFAULT_TOLERANCE,
    max_rounds: Optional[int] = None
) -> PropagationResult:
    """
    Resolve the flow of every node and duct run by fixed-point relaxation.

    Each round every run takes the flow of its upstream node, then every
    non-source node takes the sum of its incoming runs. A node with several
    outgoing runs feeds its full flow into each of them (the flow is
    duplicated, not split).

    Parameters:
        network: Network to update in place
        tolerance: Rounds stop once no node changes by more than this and
            no node received its first flow in the last round
        max_rounds: Upper bound on rounds, defaults to the number of nodes

    Returns:
        PropagationResult; converged is False when the bound ran out first,
        which only happens on networks with loops
    """
    nodes = network.nodes
    edges = network.edges
    if max_rounds is None:
        max_rounds = len(nodes)

    index = {node.id: i for i, node in enumerate(nodes)}
    is_source = np.array([node.kind == NodeKind.SOURCE for node in nodes], dtype=bool)
    declared = np.array([node.declared_flow for node in nodes], dtype=float)
    from_idx = np.array([index[e.from_node] for e in edges], dtype=int)
    to_idx = np.array([index[e.to_node] for e in edges], dtype=int)

    resolved = np.where(is_source, declared, 0.0)
    converged = len(nodes) == 0
    rounds = 0
    max_change = 0.0

    while rounds < max_rounds:
        rounds += 1
        carried = resolved[from_idx]
        inflow = np.zeros(len(nodes))
        # Huge flows may overflow to inf; sizing treats those runs as degenerate
        with np.errstate(over="ignore", invalid="ignore"):
            np.add.at(inflow, to_idx, carried)
            updated = np.where(is_source, declared, inflow)
            change = np.where(updated == resolved, 0.0, np.abs(updated - resolved))
            max_change = float(np.max(change, initial=0.0))
        # A node that just received flow must pass it on before we can stop,
        # however small the flow is
        reached = bool(np.any((resolved == 0) & (updated != 0)))
        resolved = updated
        if max_change <= tolerance and not reached:
            converged = True
            break

    # Runs always report the final flow of their upstream node
    carried = resolved[from_idx]
    for i, node in enumerate(nodes):
        node.resolved_flow = float(resolved[i])
    for i, edge in enumerate(edges):
        edge.carried_flow = float(carried[i])

    return PropagationResult(converged, rounds, max_change)


def round_up(value: float, step: float) -> float:
    """Round value up to the next multiple of step (unchanged when step <= 0)"""
    if step <= 0:
        return value
    return math.ceil(value / step) * step


def calculate_sizing(
    flow: float,
    velocity: float,
    shape: DuctShape,
    width: Optional[float] = None,
    height: Optional[float] = None,
    step: float = DEFAULT_STEP,
    bump_threshold: float = DEFAULT_BUMP_THRESHOLD,
    flow_time_base: float = SECONDS_PER_MINUTE
) -> DuctSize:
    """
    Recommend a duct size for a flow at a target velocity.

    The theoretical area is flow / velocity. The matching diameter (round) or
    square side (rectangular) is rounded up to the next step. If the
    resulting efficiency (theoretical area / selected area) is above
    bump_threshold, the size is increased by one more step. The bump happens
    at most once, so a very tight fit can stay above the threshold.

    Parameters:
        flow: Flow in m³/min (per flow_time_base seconds)
        velocity: Target velocity in m/s
        shape: ROUND or RECTANGULAR
        width, height: Pinned rectangular sides in mm (None = choose)
        step: Size increment in mm
        bump_threshold: Efficiency in % that triggers the extra step
        flow_time_base: Seconds per flow time unit

    Returns:
        DuctSize, all zero when flow or velocity is not positive or the
        area is out of floating point range
    """
    if not flow or flow <= 0 or not velocity or velocity <= 0:
        return DuctSize()
    if not math.isfinite(velocity):
        return DuctSize()

    try:
        area = flow / flow_time_base / velocity  # m²
    except ZeroDivisionError:
        return DuctSize()
    if not math.isfinite(area) or area <= 0:
        return DuctSize()
    bump = step if step > 0 else 0.0

    if DuctShape(shape) == DuctShape.RECTANGULAR:
        side_mm = math.sqrt(area) * 1000
        if not math.isfinite(side_mm):
            return DuctSize()
        width_mm = width or round_up(side_mm, step)
        height_mm = height or round_up(side_mm, step)
        efficiency = area / (width_mm * height_mm / 1_000_000) * 100
        bumped = efficiency > bump_threshold and bump > 0
        if bumped:
            width_mm += bump
            height_mm += bump
            efficiency = area / (width_mm * height_mm / 1_000_000) * 100
        equivalent = math.sqrt(4 * width_mm * height_mm / math.pi)
        return DuctSize(width=width_mm, height=height_mm,
                        equivalent_diameter=equivalent,
                        efficiency=efficiency, bumped=bumped)

    theoretical_mm = math.sqrt(4 * area / math.pi) * 1000
    if not math.isfinite(theoretical_mm):
        return DuctSize()
    recommended_mm = round_up(theoretical_mm, step)
    efficiency = (theoretical_mm / recommended_mm) ** 2 * 100
    bumped = efficiency > bump_threshold and bump > 0
    if bumped:
        recommended_mm += bump
        efficiency = (theoretical_mm / recommended_mm) ** 2 * 100
    return DuctSize(diameter=recommended_mm, equivalent_diameter=recommended_mm,
                    efficiency=efficiency, bumped=bumped)


def run_length(start: DuctNode, end: DuctNode, scale: float = DEFAULT_SCALE) -> float:
    """Straight distance between two nodes in metres"""
    scale = scale if scale > 0 else 1.0
    return math.hypot(end.x - start.x, end.y - start.y) / scale


def validate_network(network: DuctNetwork) -> List[str]:
    """
    Check for dangling parts of the network.

    Returns:
        List of warning messages (empty if every node is connected)
    """
    warnings = []
    for node in network.nodes:
        if node.kind == NodeKind.SOURCE and not network.outgoing_edges(node.id):
            warnings.append(f"{node.name}: source has no outgoing duct run")
        elif node.kind == NodeKind.OUTLET and not network.incoming_edges(node.id):
            warnings.append(f"{node.name}: outlet is not connected")
        elif node.kind == NodeKind.JUNCTION and not network.outgoing_edges(node.id):
            warnings.append(f"{node.name}: junction has no outgoing duct run")
    return warnings


def flow_balance(network: DuctNetwork) -> Tuple[float, float]:
    """
    Total declared source flow and total flow arriving at outlets.

    The two differ when a node feeds several runs (its flow is counted once
    per run) or when part of the network is not connected to an outlet.
    """
    supplied = sum(n.declared_flow for n in network.nodes if n.kind == NodeKind.SOURCE)
    delivered = sum(n.resolved_flow for n in network.nodes if n.kind == NodeKind.OUTLET)
    return supplied, delivered


def recompute(network: DuctNetwork, config: Optional[DuctConfig] = None) -> RecomputeResult:
    """
    Recalculate flows, sizes and lengths of the whole network.

    Parameters:
        network: Network to update in place
        config: Velocity, shape and sizing settings (defaults if None)

    Returns:
        RecomputeResult with the convergence status and warning messages
    """
    if config is None:
        config = DuctConfig()

    propagation = propagate_flows(network, config.tolerance, config.max_rounds)
    warnings = []
    if not propagation.converged:
        warnings.append(
            f"Flows did not settle after {propagation.rounds} rounds "
            f"(last change {propagation.max_change:.4f}) - the network contains a loop")

    for edge in network.edges:
        edge.shape = edge.shape_override or config.default_shape
        edge.velocity = config.velocity
        size = calculate_sizing(
            edge.carried_flow,
            config.velocity,
            edge.shape,
            width=edge.pinned_width,
            height=edge.pinned_height,
            step=config.step,
            bump_threshold=config.bump_threshold,
            flow_time_base=config.flow_time_base
        )
        edge.diameter = size.diameter
        edge.width = size.width
        edge.height = size.height
        edge.equivalent_diameter = size.equivalent_diameter
        edge.efficiency = size.efficiency
        edge.length = run_length(network.get_node(edge.from_node),
                                 network.get_node(edge.to_node), config.scale)

        if not math.isfinite(edge.carried_flow):
            warnings.append(f"{edge.id}: flow is out of range, duct left unsized")
        elif size.efficiency > 100:
            warnings.append(f"{edge.id}: pinned size {edge.size_label()} is smaller "
                            f"than the required area ({size.efficiency:.0f}%)")

    warnings.extend(validate_network(network))

    return RecomputeResult(propagation.converged, propagation.rounds,
                           propagation.max_change, warnings)
