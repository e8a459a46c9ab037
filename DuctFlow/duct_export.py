"""
Air Duct Flow Network - Export Module

Text and CSV output of a recomputed network. Only reads the values that
calculations.recompute() stored on the nodes and duct runs.
"""

import csv
from typing import Dict, List, Set

from duct_network import DuctNetwork, DuctRun, DuctShape, NodeKind
from calculations import flow_balance


def format_number(num) -> str:
    """Two decimals, treating None as 0"""
    return f"{float(num or 0):.2f}"


def describe_size(edge: DuctRun) -> str:
    if edge.shape == DuctShape.RECTANGULAR:
        return f"Rect {round(edge.width)}x{round(edge.height)}mm"
    return f"Round {round(edge.diameter)}mm"


def build_text_summary(network: DuctNetwork) -> str:
    """One line per duct run: from -> to | length | size | velocity | efficiency"""
    lines = []
    for edge in network.edges:
        from_name = network.get_node(edge.from_node).name
        to_name = network.get_node(edge.to_node).name
        lines.append(
            f"{from_name} -> {to_name} | {edge.length:.2f}m | {describe_size(edge)} | "
            f"v={edge.velocity:g}m/s | eff={format_number(edge.efficiency)}%"
        )
    return "\n".join(lines)


def build_route_tree(network: DuctNetwork) -> str:
    """
    List every route from each source down to where it ends.

    Runs are followed in the order they were created. A route that comes
    back to a node already on it is cut there and marked with "(loop)".
    """
    outgoing: Dict[str, List[DuctRun]] = {}
    for edge in network.edges:
        outgoing.setdefault(edge.from_node, []).append(edge)

    lines: List[str] = []

    def walk(node_id: str, path: List[str], seen: Set[str]):
        name = network.get_node(node_id).name
        if node_id in seen:
            lines.append(" -> ".join(path + [name]) + " (loop)")
            return
        edges_from = outgoing.get(node_id, [])
        if not edges_from:
            lines.append(" -> ".join(path + [name]))
            return
        for edge in edges_from:
            walk(edge.to_node, path + [name], seen | {node_id})

    for node in network.nodes:
        if node.kind == NodeKind.SOURCE:
            walk(node.id, [], set())
    return "\n".join(lines)


def export_results_csv(network: DuctNetwork, filename: str):
    """Write one row per duct run plus a flow balance summary"""
    with open(filename, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(['Run ID', 'From', 'To', 'Shape', 'Flow (m3/min)',
                         'Diameter (mm)', 'Width (mm)', 'Height (mm)',
                         'Efficiency (%)', 'Length (m)'])

        for edge in network.edges:
            writer.writerow([
                edge.id,
                network.get_node(edge.from_node).name,
                network.get_node(edge.to_node).name,
                edge.shape.value,
                f"{edge.carried_flow:.4f}",
                f"{edge.diameter:.0f}",
                f"{edge.width:.0f}",
                f"{edge.height:.0f}",
                format_number(edge.efficiency),
                format_number(edge.length),
            ])

        supplied, delivered = flow_balance(network)
        writer.writerow([])
        writer.writerow(['=== FLOW BALANCE ==='])
        writer.writerow(['Supplied by sources', f"{supplied:.4f}"])
        writer.writerow(['Arriving at outlets', f"{delivered:.4f}"])
