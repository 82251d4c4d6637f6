"""Resource graph visualization using Graphviz."""

import html
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

try:
    import graphviz

    GRAPHVIZ_AVAILABLE = True
except ImportError:
    GRAPHVIZ_AVAILABLE = False

from .graph_builder import Graph
from .report import ExecutionReport
from .resource import NodeState

# Maximum label length before truncation
MAX_LABEL_LENGTH = 40


@dataclass
class GraphvizStyle:
    """Styling configuration for resource graph visualizations.

    Attributes:
        node_color: Background color for resources without a run result
        state_colors: Background color per terminal state
        data_edge_color: Color for edges inferred from output references
        parent_edge_color: Color for parent edges (drawn dashed)
        font_name: Font family for all text
        font_size: Font size for node labels
        background_color: Background color for the graph
    """

    node_color: str = "#87CEEB"  # Sky blue
    state_colors: Dict[NodeState, str] = field(
        default_factory=lambda: {
            NodeState.DONE: "#90EE90",  # Light green
            NodeState.FAILED: "#F08080",  # Light coral
            NodeState.SKIPPED: "#D3D3D3",  # Light gray
        }
    )
    data_edge_color: str = "#333333"
    parent_edge_color: str = "#999999"
    font_name: str = "Helvetica"
    font_size: int = 12
    background_color: str = "#FFFFFF"


DESIGN_STYLES = {
    "default": GraphvizStyle(),
    "minimal": GraphvizStyle(
        node_color="#FFFFFF",
        data_edge_color="#999999",
        parent_edge_color="#CCCCCC",
        font_size=10,
    ),
}


def _truncate(text: str, max_length: int = MAX_LABEL_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def _dot_id(index: int) -> str:
    # URNs contain colons, which graphviz reads as node:port
    return f"r{index}"


def _node_label(name: str, resource_type: str, status: Optional[str]) -> str:
    rows = [
        f"<B>{html.escape(_truncate(name))}</B>",
        f'<FONT POINT-SIZE="9">{html.escape(_truncate(resource_type))}</FONT>',
    ]
    if status:
        rows.append(f'<FONT POINT-SIZE="9"><I>{html.escape(status)}</I></FONT>')
    return "<" + "<BR/>".join(rows) + ">"


def visualize(
    graph: Graph,
    report: Optional[ExecutionReport] = None,
    filename: Optional[str] = None,
    orient: str = "TB",
    style: Union[str, GraphvizStyle] = "default",
):
    """Visualize a resource graph using Graphviz.

    Dependencies point from a resource to what it waits for. Parent edges
    are dashed.

    Args:
        graph: Graph to draw
        report: Optional run report; nodes are colored by terminal state
        filename: Output filename (e.g., "graph.svg"). If None, only returns object
        orient: Graph orientation ("TB", "LR", "BT", "RL")
        style: Style name from DESIGN_STYLES or GraphvizStyle object

    Returns:
        graphviz.Digraph object
    """
    if not GRAPHVIZ_AVAILABLE:
        raise ImportError(
            "Graphviz is not installed. Install it with: pip install graphviz"
        )

    # Resolve style
    if isinstance(style, str):
        if style not in DESIGN_STYLES:
            raise ValueError(
                f"Unknown style '{style}'. Choose from: {list(DESIGN_STYLES.keys())}"
            )
        style_obj = DESIGN_STYLES[style]
    else:
        style_obj = style

    dot = graphviz.Digraph(comment="Resources")
    dot.attr(rankdir=orient, bgcolor=style_obj.background_color)
    dot.attr(
        "node",
        shape="box",
        style="rounded,filled",
        fontname=style_obj.font_name,
        fontsize=str(style_obj.font_size),
    )

    for node in sorted(graph, key=lambda n: n.index):
        color = style_obj.node_color
        status = None
        if report is not None and node.id in report.results:
            result = report[node.id]
            color = style_obj.state_colors.get(result.state, style_obj.node_color)
            status = result.state.value
            if result.operation is not None and result.state is NodeState.DONE:
                status = result.operation.value
        dot.node(_dot_id(node.index), label=_node_label(node.name, node.type, status), fillcolor=color)

    for dependent, dependency in graph.edges:
        tail, head = _dot_id(graph[dependent].index), _dot_id(graph[dependency].index)
        if dependency in graph[dependent].parent_edges:
            dot.edge(tail, head, style="dashed", color=style_obj.parent_edge_color)
        else:
            dot.edge(tail, head, color=style_obj.data_edge_color)

    # Render to file if filename provided
    if filename:
        if "." in filename:
            base_name, format_ext = filename.rsplit(".", 1)
            dot.render(base_name, format=format_ext, cleanup=True)
        else:
            dot.render(filename, format="svg", cleanup=True)

    return dot
