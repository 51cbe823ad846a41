from __future__ import annotations
import plotly.graph_objects as go

from nl_csvchat.exceptions.errors import ChartRenderError
from nl_csvchat.tools.transform_tool import ChartData
from nl_csvchat.logging.logger import get_logger

log = get_logger("viz.plotly_factory")

SUPPORTED_TYPES = {"line"}

def build_figure(chart: ChartData, chart_type: str = "line") -> go.Figure:
    chart_type = (chart_type or "line").lower()
    if chart_type not in SUPPORTED_TYPES:
        raise ChartRenderError(f"Unsupported chart type: {chart_type}")
    return build_line_figure(chart)

def build_line_figure(chart: ChartData) -> go.Figure:
    """One trace per distinct series, x values in result order."""
    try:
        fig = go.Figure()
        for i, name in enumerate(chart.series_names()):
            pts = [p for p in chart.data if p.series == name]
            fig.add_trace(go.Scatter(
                x=[p.x for p in pts],
                y=[p.y for p in pts],
                mode="lines+markers",
                name=name if name is not None else f"Series {i + 1}",
                line=dict(color=f"hsl({(i * 60) % 360},70%,50%)"),
            ))
        fig.update_layout(
            title=dict(text=chart.title),
            showlegend=len(fig.data) > 1,
            margin=dict(l=40, r=20, t=60, b=40),
        )
        # Categorical x keeps result order instead of being sorted by plotly.
        if any(isinstance(p.x, str) for p in chart.data):
            order = []
            for p in chart.data:
                if p.x not in order:
                    order.append(p.x)
            fig.update_xaxes(type="category", categoryorder="array", categoryarray=order)
        return fig
    except Exception as e:
        log.exception("Plotly render error")
        raise ChartRenderError(f"Line chart render failed: {e}") from e
