import math
import random

import numpy as np
import pytest

from duct_network import DuctNetwork, DuctShape, NodeKind
from calculations import (
    DuctConfig, DuctSize, calculate_sizing, flow_balance, propagate_flows,
    recompute, round_up, run_length, validate_network,
)


def flow_for_diameter(diameter_mm, velocity):
    """Flow in m³/min whose theoretical round diameter is diameter_mm"""
    return math.pi * (diameter_mm / 2000) ** 2 * velocity * 60


def flow_for_side(side_mm, velocity):
    """Flow in m³/min whose theoretical square side is side_mm"""
    return (side_mm / 1000) ** 2 * velocity * 60


@pytest.fixture
def chain():
    """Source(60) -> Junction -> Outlet"""
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, declared_flow=60)
    j = network.add_node(NodeKind.JUNCTION)
    o = network.add_node(NodeKind.OUTLET)
    e1 = network.add_edge(s, j)
    e2 = network.add_edge(j, o)
    return network, (s, j, o), (e1, e2)


# ----------------------------------------------------------------------
# Flow propagation
# ----------------------------------------------------------------------

def test_chain_scenario(chain):
    network, (s, j, o), (e1, e2) = chain
    result = recompute(network, DuctConfig(velocity=10, step=50))

    assert result.converged
    assert network.get_node(s).resolved_flow == 60
    assert network.get_node(j).resolved_flow == 60
    assert network.get_node(o).resolved_flow == 60
    assert network.get_edge(e1).carried_flow == 60
    assert network.get_edge(e2).carried_flow == 60


def test_chain_scenario_sizes(chain):
    network, _, (e1, e2) = chain
    recompute(network, DuctConfig(velocity=10, step=50, default_shape=DuctShape.ROUND))

    # 60 m³/min at 10 m/s -> 0.1 m² -> Ø356.8 mm -> 400 mm
    for edge_id in (e1, e2):
        edge = network.get_edge(edge_id)
        assert edge.shape == DuctShape.ROUND
        assert edge.diameter == 400
        assert edge.efficiency == pytest.approx(0.4 / math.pi / 0.16 * 100)
        assert edge.width == 0 and edge.height == 0
        assert edge.velocity == 10


def test_zero_source_gives_degenerate_sizes(chain):
    network, (s, _, _), (e1, e2) = chain
    network.set_declared_flow(s, 0)
    recompute(network, DuctConfig(velocity=10))

    for edge_id in (e1, e2):
        edge = network.get_edge(edge_id)
        assert edge.carried_flow == 0
        assert edge.diameter == 0
        assert edge.efficiency == 0


def test_deleting_junction_disconnects_source_and_outlet(chain):
    network, (s, j, o), _ = chain
    recompute(network)
    network.remove_node(j)
    recompute(network)

    assert network.edges == []
    assert network.get_node(s).resolved_flow == 60
    assert network.get_node(o).resolved_flow == 0


def test_two_sources_sum_into_junction():
    network = DuctNetwork()
    s1 = network.add_node(NodeKind.SOURCE, declared_flow=60)
    s2 = network.add_node(NodeKind.SOURCE, declared_flow=25)
    j = network.add_node(NodeKind.JUNCTION)
    network.add_edge(s1, j)
    network.add_edge(s2, j)

    recompute(network)

    assert network.get_node(j).resolved_flow == 85


def test_multiple_outgoing_runs_each_carry_full_flow():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, declared_flow=40)
    j = network.add_node(NodeKind.JUNCTION)
    o1 = network.add_node(NodeKind.OUTLET)
    o2 = network.add_node(NodeKind.OUTLET)
    network.add_edge(s, j)
    a = network.add_edge(j, o1)
    b = network.add_edge(j, o2)

    recompute(network)

    assert network.get_edge(a).carried_flow == 40
    assert network.get_edge(b).carried_flow == 40
    assert network.get_node(o1).resolved_flow == 40
    assert network.get_node(o2).resolved_flow == 40
    assert flow_balance(network) == (40, 80)


def test_declared_flow_of_non_sources_is_ignored():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, declared_flow=10)
    j = network.add_node(NodeKind.JUNCTION, declared_flow=99)
    network.add_edge(s, j)
    recompute(network)
    assert network.get_node(j).resolved_flow == 10


def test_long_chain_converges_within_node_count():
    network = DuctNetwork()
    previous = network.add_node(NodeKind.SOURCE, declared_flow=60)
    for _ in range(8):
        junction = network.add_node(NodeKind.JUNCTION)
        network.add_edge(previous, junction)
        previous = junction
    outlet = network.add_node(NodeKind.OUTLET)
    network.add_edge(previous, outlet)

    result = propagate_flows(network)

    assert result.converged
    assert result.rounds == len(network)
    assert network.get_node(outlet).resolved_flow == 60


def test_flow_below_tolerance_still_reaches_outlet():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, declared_flow=5e-5)
    j = network.add_node(NodeKind.JUNCTION)
    o = network.add_node(NodeKind.OUTLET)
    network.add_edge(s, j)
    network.add_edge(j, o)

    result = propagate_flows(network)

    assert result.converged
    assert network.get_node(j).resolved_flow == 5e-5
    assert network.get_node(o).resolved_flow == 5e-5
    for edge in network.edges:
        assert edge.carried_flow == network.get_node(edge.from_node).resolved_flow


def test_overflowing_flow_leaves_duct_unsized():
    network = DuctNetwork()
    s1 = network.add_node(NodeKind.SOURCE, declared_flow=1e308)
    s2 = network.add_node(NodeKind.SOURCE, declared_flow=1e308)
    j = network.add_node(NodeKind.JUNCTION)
    o = network.add_node(NodeKind.OUTLET)
    network.add_edge(s1, j)
    network.add_edge(s2, j, shape=DuctShape.RECTANGULAR)
    e = network.add_edge(j, o)

    result = recompute(network)

    assert result.converged
    assert math.isinf(network.get_node(o).resolved_flow)
    assert network.get_edge(e).diameter == 0
    assert network.get_edge(e).efficiency == 0
    assert any(w.startswith(e) for w in result.warnings)
    assert network.edges[0].diameter > 0


def test_round_bound_is_honoured():
    network = DuctNetwork()
    previous = network.add_node(NodeKind.SOURCE, declared_flow=60)
    for _ in range(4):
        junction = network.add_node(NodeKind.JUNCTION)
        network.add_edge(previous, junction)
        previous = junction

    result = recompute(network, DuctConfig(max_rounds=2))

    assert not result.converged
    assert result.rounds == 2
    assert result.warnings


def test_conservation_on_random_acyclic_networks():
    rng = random.Random(7)
    for _ in range(20):
        network = DuctNetwork()
        sources = [network.add_node(NodeKind.SOURCE, declared_flow=rng.uniform(0, 100))
                   for _ in range(rng.randint(1, 3))]
        junctions = [network.add_node(NodeKind.JUNCTION) for _ in range(rng.randint(0, 6))]
        outlets = [network.add_node(NodeKind.OUTLET) for _ in range(rng.randint(1, 3))]

        for s in sources:
            for target in rng.sample(junctions + outlets, k=min(2, len(junctions + outlets))):
                network.add_edge(s, target)
        for i, j in enumerate(junctions):
            # Only forward to later junctions to keep the graph acyclic
            candidates = junctions[i + 1:] + outlets
            for target in rng.sample(candidates, k=min(2, len(candidates))):
                network.add_edge(j, target)

        result = recompute(network)
        assert result.converged

        for node in network.nodes:
            if node.kind != NodeKind.SOURCE:
                incoming = sum(e.carried_flow for e in network.incoming_edges(node.id))
                assert node.resolved_flow == pytest.approx(incoming)
            else:
                assert node.resolved_flow == node.declared_flow
        for edge in network.edges:
            assert edge.carried_flow == network.get_node(edge.from_node).resolved_flow


def test_cycle_reports_non_convergence():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, declared_flow=10)
    j1 = network.add_node(NodeKind.JUNCTION)
    j2 = network.add_node(NodeKind.JUNCTION)
    o = network.add_node(NodeKind.OUTLET)
    network.add_edge(s, j1)
    network.add_edge(j1, j2)
    network.add_edge(j2, j1)
    network.add_edge(j2, o)

    result = recompute(network)

    assert not result.converged
    assert result.rounds == len(network)
    assert any("loop" in w for w in result.warnings)
    for edge in network.edges:
        assert edge.carried_flow == network.get_node(edge.from_node).resolved_flow


def test_cycle_without_flow_converges():
    network = DuctNetwork()
    j1 = network.add_node(NodeKind.JUNCTION)
    j2 = network.add_node(NodeKind.JUNCTION)
    network.add_edge(j1, j2)
    network.add_edge(j2, j1)
    assert propagate_flows(network).converged


def test_empty_network():
    result = recompute(DuctNetwork())
    assert result.converged
    assert result.rounds == 0


def test_recompute_is_idempotent():
    network = DuctNetwork()
    s1 = network.add_node(NodeKind.SOURCE, declared_flow=33.3, x=0, y=0)
    s2 = network.add_node(NodeKind.SOURCE, declared_flow=71.9, x=0, y=90)
    j = network.add_node(NodeKind.JUNCTION, x=120, y=40)
    o1 = network.add_node(NodeKind.OUTLET, x=300, y=0)
    o2 = network.add_node(NodeKind.OUTLET, x=300, y=100)
    network.add_edge(s1, j)
    network.add_edge(s2, j, shape=DuctShape.RECTANGULAR)
    network.add_edge(j, o1)
    e = network.add_edge(j, o2, shape=DuctShape.RECTANGULAR)
    network.pin_edge_size(e, width=600)
    config = DuctConfig(velocity=8)

    def snapshot():
        return ([(n.id, n.resolved_flow) for n in network.nodes],
                [(e.id, e.carried_flow, e.shape, e.diameter, e.width, e.height,
                  e.equivalent_diameter, e.efficiency, e.length) for e in network.edges])

    recompute(network, config)
    first = snapshot()
    recompute(network, config)
    assert snapshot() == first


# ----------------------------------------------------------------------
# Sizing
# ----------------------------------------------------------------------

def test_round_up():
    assert round_up(356.8, 50) == 400
    assert round_up(400, 50) == 400
    assert round_up(0.1, 50) == 50
    assert round_up(123.4, 0) == 123.4


@pytest.mark.parametrize("flow,velocity", [(0, 10), (60, 0), (60, -3), (-5, 10)])
def test_degenerate_sizing(flow, velocity):
    for shape in DuctShape:
        assert calculate_sizing(flow, velocity, shape) == DuctSize()


@pytest.mark.parametrize("flow,velocity", [
    (60, float("inf")),
    (60, float("nan")),
    (60, 1e-320),
    (float("nan"), 10),
    (float("inf"), 10),
])
def test_out_of_range_sizing_is_degenerate(flow, velocity):
    for shape in DuctShape:
        assert calculate_sizing(flow, velocity, shape) == DuctSize()


def test_non_finite_velocity_through_recompute(chain):
    network, _, (e1, e2) = chain
    for velocity in (float("inf"), float("nan"), 1e-320):
        recompute(network, DuctConfig(velocity=velocity))
        assert network.get_edge(e1).diameter == 0
        assert network.get_edge(e2).diameter == 0


def test_round_bump_applied_once():
    # Ø380 needs 400 mm at 90.25% efficiency, so it is bumped to 450 mm
    size = calculate_sizing(flow_for_diameter(380, 10), 10, DuctShape.ROUND)
    assert size.bumped
    assert size.diameter == 450
    assert size.efficiency == pytest.approx((380 / 450) ** 2 * 100)


def test_round_bump_is_not_repeated():
    # Ø2990 -> 3000 (99.3%) -> 3050 is still above 90% and stays there
    size = calculate_sizing(flow_for_diameter(2990, 10), 10, DuctShape.ROUND)
    assert size.bumped
    assert size.diameter == 3050
    assert size.efficiency == pytest.approx((2990 / 3050) ** 2 * 100)
    assert size.efficiency > 90


def test_one_shot_bump_survives_recompute():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, declared_flow=flow_for_diameter(2990, 10))
    o = network.add_node(NodeKind.OUTLET)
    edge_id = network.add_edge(s, o)

    recompute(network, DuctConfig(velocity=10))

    edge = network.get_edge(edge_id)
    assert edge.diameter == 3050
    assert edge.efficiency > 90


def test_rectangular_sizing():
    size = calculate_sizing(60, 10, DuctShape.RECTANGULAR)
    # sqrt(0.1 m²) = 316 mm -> 350 x 350
    assert (size.width, size.height) == (350, 350)
    assert size.diameter == 0
    assert size.efficiency == pytest.approx(0.1 / 0.1225 * 100)
    assert size.equivalent_diameter == pytest.approx(math.sqrt(4 * 350 * 350 / math.pi))
    assert not size.bumped


def test_rectangular_bump_is_not_repeated():
    size = calculate_sizing(flow_for_side(2990, 10), 10, DuctShape.RECTANGULAR)
    assert size.bumped
    assert (size.width, size.height) == (3050, 3050)
    assert size.efficiency > 90


def test_rectangular_keeps_pinned_side():
    size = calculate_sizing(60, 10, DuctShape.RECTANGULAR, width=500)
    assert (size.width, size.height) == (500, 350)
    assert size.efficiency == pytest.approx(0.1 / (0.5 * 0.35) * 100)


def test_pinned_size_too_small_is_bumped_once_and_warned():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, declared_flow=60)
    o = network.add_node(NodeKind.OUTLET)
    edge_id = network.add_edge(s, o, shape=DuctShape.RECTANGULAR)
    network.pin_edge_size(edge_id, width=100, height=100)

    result = recompute(network, DuctConfig(velocity=10))

    edge = network.get_edge(edge_id)
    assert (edge.width, edge.height) == (150, 150)
    assert edge.efficiency > 100
    assert any(edge_id in w for w in result.warnings)


def test_custom_step_and_threshold():
    size = calculate_sizing(60, 10, DuctShape.ROUND, step=25, bump_threshold=95)
    # Ø356.8 -> 375 mm at 90.5%, below the 95% threshold
    assert size.diameter == 375
    assert not size.bumped


@pytest.mark.parametrize("shape", list(DuctShape))
def test_size_never_decreases_with_flow(shape):
    previous = 0.0
    for flow in np.linspace(0, 400, 1601):
        size = calculate_sizing(float(flow), 7.5, shape)
        current = size.diameter if shape == DuctShape.ROUND else size.width * size.height
        assert current >= previous
        previous = current


def test_efficiency_at_most_threshold_after_single_bump_for_small_ducts():
    # Below ~925 mm one bump is always enough to get under 90%
    for flow in np.linspace(1, 200, 400):
        size = calculate_sizing(float(flow), 10, DuctShape.ROUND)
        assert size.efficiency <= 90


# ----------------------------------------------------------------------
# Recompute details
# ----------------------------------------------------------------------

def test_default_shape_and_override():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, declared_flow=60)
    o = network.add_node(NodeKind.OUTLET)
    plain = network.add_edge(s, o)
    forced = network.add_edge(s, o, shape=DuctShape.ROUND)

    recompute(network, DuctConfig(velocity=10, default_shape=DuctShape.RECTANGULAR))

    assert network.get_edge(plain).shape == DuctShape.RECTANGULAR
    assert network.get_edge(plain).width == 350
    assert network.get_edge(forced).shape == DuctShape.ROUND
    assert network.get_edge(forced).diameter == 400


def test_changing_velocity_resizes():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, declared_flow=60)
    o = network.add_node(NodeKind.OUTLET)
    edge_id = network.add_edge(s, o)
    config = DuctConfig(velocity=10)

    recompute(network, config)
    fast = network.get_edge(edge_id).diameter
    recompute(network, config.replace(velocity=2.5))
    slow = network.get_edge(edge_id).diameter

    assert slow > fast
    assert config.velocity == 10


def test_run_length_uses_scale():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, x=0, y=0)
    o = network.add_node(NodeKind.OUTLET, x=180, y=240)
    edge_id = network.add_edge(s, o)

    recompute(network, DuctConfig(scale=18))
    assert network.get_edge(edge_id).length == pytest.approx(300 / 18)

    recompute(network, DuctConfig(scale=0))
    assert network.get_edge(edge_id).length == pytest.approx(300)
    assert run_length(network.get_node(s), network.get_node(o), 30) == pytest.approx(10)


def test_validate_network_reports_dangling_nodes():
    network = DuctNetwork()
    s = network.add_node(NodeKind.SOURCE, name="a1")
    network.add_node(NodeKind.JUNCTION, name="b1")
    network.add_node(NodeKind.OUTLET, name="c1")

    warnings = validate_network(network)

    assert len(warnings) == 3
    assert warnings[0].startswith("a1")

    o = network.add_node(NodeKind.OUTLET)
    network.add_edge(s, o)
    assert len(validate_network(network)) == 2
