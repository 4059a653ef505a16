"""Chart Inspector: overlay visualisation for a batch run.

Two outputs:
  1. A JSON-serialisable data payload (bars, series, markers, lines).
  2. A standalone HTML file via Plotly with candlesticks and every overlay.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from tacore.results import OverlayResult

# Frame columns drawn as lines on the price pane, per indicator family.
_PRICE_SERIES = (
    "long_stop", "short_stop", "long_sar", "short_sar",
    "resistance", "support", "ma", "center",
)
_LONG_COLOR = "#26A69A"
_SHORT_COLOR = "#EF5350"


def _clean(values) -> List[Optional[float]]:
    """NaN -> None so the payload survives json.dumps."""
    return [None if pd.isna(v) else float(v) for v in values]


def _dates(df: pd.DataFrame) -> List[str]:
    if "Date" in df.columns:
        return pd.to_datetime(df["Date"]).dt.strftime("%Y-%m-%d %H:%M").tolist()
    return [str(i) for i in range(len(df))]


def build_overlay_payload(
    df: pd.DataFrame,
    results: Dict[str, OverlayResult],
) -> Dict[str, Any]:
    """Build a data dict for one chart.

    Parameters
    ----------
    df : DataFrame
        OHLCV frame the results were computed on.
    results : dict
        Output of ``overlays.compute_overlays``.

    Returns
    -------
    Dict with keys: bars, series, markers, lines, meta.
    """
    dates = _dates(df)
    bars = {
        "date": dates,
        "open": _clean(df["Open"]),
        "high": _clean(df["High"]),
        "low": _clean(df["Low"]),
        "close": _clean(df["Close"]),
    }

    series: Dict[str, Dict[str, List[Optional[float]]]] = {}
    markers: List[Dict[str, Any]] = []
    lines: List[Dict[str, Any]] = []
    last = len(df) - 1

    for key, res in results.items():
        cols = [c for c in _PRICE_SERIES if c in res.frame.columns]
        if key == "qqe" or res.name == "qqe":
            cols = ["stop", "rsi_ma"]
        series[key] = {c: _clean(res.frame[c]) for c in cols}

        for ev in res.events:
            d = ev.to_dict()
            d["indicator"] = key
            d["date"] = dates[ev.index] if 0 <= ev.index <= last else None
            markers.append(d)

        for span in res.levels:
            lines.append(
                {
                    "indicator": key,
                    "kind": span.kind,
                    "price": span.price,
                    "start": dates[span.start_index],
                    "end": dates[min(span.end_index, last)],
                    "active": span.reason is None,
                }
            )

    meta = {
        "bars": len(df),
        "indicators": sorted(results),
        "markers": len(markers),
        "lines": len(lines),
    }
    return {"bars": bars, "series": series, "markers": markers, "lines": lines, "meta": meta}


def render_overlay_html(
    df: pd.DataFrame,
    results: Dict[str, OverlayResult],
    out_path: Optional[Path] = None,
    title: str = "Overlays",
) -> str:
    """Render an interactive Plotly candlestick chart with every overlay.

    Oscillator-pane results (QQE) are skipped; they share no price scale.

    Returns
    -------
    HTML string.
    """
    try:
        import plotly.graph_objects as go
    except ImportError:
        raise ImportError("plotly is required for Chart Inspector.  pip install plotly")

    payload = build_overlay_payload(df, results)
    bars = payload["bars"]

    fig = go.Figure()
    fig.add_trace(go.Candlestick(
        x=bars["date"],
        open=bars["open"],
        high=bars["high"],
        low=bars["low"],
        close=bars["close"],
        name="Price",
    ))

    for key, cols in payload["series"].items():
        if "rsi_ma" in cols:
            continue
        for col, values in cols.items():
            if not any(v is not None for v in values):
                continue
            color = _SHORT_COLOR if col.startswith("short") or col == "resistance" else _LONG_COLOR
            fig.add_trace(go.Scatter(
                x=bars["date"],
                y=values,
                mode="lines",
                name=f"{key}.{col}",
                line=dict(color=color, width=1.5),
                connectgaps=False,
            ))

    for line in payload["lines"]:
        color = _SHORT_COLOR if line["kind"] == "resistance" else _LONG_COLOR
        fig.add_trace(go.Scatter(
            x=[line["start"], line["end"]],
            y=[line["price"], line["price"]],
            mode="lines",
            line=dict(color=color, width=1, dash="solid" if line["active"] else "dot"),
            name=f"{line['indicator']} {line['kind']}",
            showlegend=False,
        ))

    price_markers = [m for m in payload["markers"] if m["date"] is not None and "price" in m]
    if price_markers:
        fig.add_trace(go.Scatter(
            x=[m["date"] for m in price_markers],
            y=[m["price"] for m in price_markers],
            mode="markers+text",
            marker=dict(
                symbol=["triangle-up" if m.get("direction", 0) > 0 else "triangle-down" for m in price_markers],
                size=11,
                color=[_LONG_COLOR if m.get("direction", 0) > 0 else _SHORT_COLOR for m in price_markers],
            ),
            text=[m.get("label", "") for m in price_markers],
            textposition="bottom center",
            name="Flips",
            showlegend=False,
        ))

    grab_markers = [m for m in payload["markers"] if "extreme" in m and m["date"] is not None]
    if grab_markers:
        fig.add_trace(go.Scatter(
            x=[m["date"] for m in grab_markers],
            y=[m["extreme"] for m in grab_markers],
            mode="markers",
            marker=dict(
                symbol="x",
                size=[5 + 3 * m.get("tier", 1) for m in grab_markers],
                color=[
                    _SHORT_COLOR if m.get("polarity") == "buyside" or m.get("kind") == "resistance"
                    else _LONG_COLOR
                    for m in grab_markers
                ],
            ),
            name="Liquidity",
            showlegend=False,
        ))

    fig.update_layout(
        title=f"{title} | {payload['meta']['bars']} bars",
        xaxis_rangeslider_visible=False,
        height=700,
        template="plotly_white",
    )

    html = fig.to_html(full_html=True, include_plotlyjs="cdn")

    if out_path is not None:
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(html)

    return html
