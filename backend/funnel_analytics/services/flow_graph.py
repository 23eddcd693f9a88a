"""
Funnel Flow Graph Builder
=========================

WHAT:
    Rebuilds each session's ordered event sequence and derives a weighted
    directed graph for Sankey-style flow charts.

WHY:
    Node counts must be DISTINCT sessions: a visitor bouncing between two
    pages should not inflate either page. Each node therefore tracks a set of
    session ids rather than a running counter.

RULES:
    - node id    = page path, else event name, else "Unknown"
    - node label = page title, else page path, else event name, else "Unknown"
    - consecutive events in a session add weight 1 to edge (prev -> next)
    - nodes by session count desc, edges by weight desc (both stable)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set, Tuple

from funnel_analytics.services.rollup import pct, round2

UNKNOWN = "Unknown"


@dataclass
class FlowNode:
    id: str
    label: str
    sessions: Set[str] = field(default_factory=set, repr=False)

    @property
    def count(self) -> int:
        return len(self.sessions)


@dataclass
class FlowEdge:
    source: str
    target: str
    weight: int = 0


@dataclass
class FlowGraph:
    nodes: List[FlowNode]
    edges: List[FlowEdge]
    total_sessions: int
    converted_sessions: int

    @property
    def conversion_rate(self) -> float:
        return round2(pct(self.converted_sessions, self.total_sessions))

    @property
    def drop_off_rate(self) -> float:
        return round2(100 - pct(self.converted_sessions, self.total_sessions))


def node_id(event: Any) -> str:
    return event.page_path or event.event_name or UNKNOWN


def node_label(event: Any) -> str:
    return event.page_title or event.page_path or event.event_name or UNKNOWN


def build_flow(events: Iterable[Any], sessions: Iterable[Any]) -> FlowGraph:
    """
    Build the flow graph for a window.

    Args:
        events: events in the window (session_id, timestamp, page fields)
        sessions: sessions in the window (converted flag) for the metrics

    Sessions with one event contribute a node but no edge.
    """
    by_session: Dict[str, List[Any]] = {}
    for event in events:
        by_session.setdefault(event.session_id, []).append(event)

    nodes: Dict[str, FlowNode] = {}
    edges: Dict[Tuple[str, str], FlowEdge] = {}

    for session_id, session_events in by_session.items():
        session_events.sort(key=lambda e: e.timestamp)
        previous = None
        for event in session_events:
            current = node_id(event)
            node = nodes.get(current)
            if node is None:
                node = FlowNode(id=current, label=node_label(event))
                nodes[current] = node
            node.sessions.add(session_id)

            if previous is not None:
                edge = edges.get((previous, current))
                if edge is None:
                    edge = FlowEdge(source=previous, target=current)
                    edges[(previous, current)] = edge
                edge.weight += 1
            previous = current

    sessions = list(sessions)
    return FlowGraph(
        nodes=sorted(nodes.values(), key=lambda n: n.count, reverse=True),
        edges=sorted(edges.values(), key=lambda e: e.weight, reverse=True),
        total_sessions=len(sessions),
        converted_sessions=sum(1 for s in sessions if s.converted),
    )
