"""Tests for the chart payload builder and HTML renderer."""

import json
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from tacore.chart_inspector import build_overlay_payload, render_overlay_html
from tacore.overlays import compute_overlays, default_specs


def _make_ohlcv_df(n: int = 300, seed: int = 3) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    close = 100.0 + rng.standard_normal(n).cumsum()
    opn = close + rng.normal(0, 0.3, n)
    high = np.maximum(opn, close) + rng.uniform(0.1, 1.0, n)
    low = np.minimum(opn, close) - rng.uniform(0.1, 1.0, n)
    return pd.DataFrame({
        "Date": pd.date_range("2024-03-01", periods=n, freq="h"),
        "Open": opn,
        "High": high,
        "Low": low,
        "Close": close,
        "Volume": rng.integers(100, 5000, n).astype(float),
    })


@pytest.fixture(scope="module")
def batch():
    df = _make_ohlcv_df()
    return df, compute_overlays(df, default_specs())


class TestPayload:
    def test_structure(self, batch):
        df, results = batch
        payload = build_overlay_payload(df, results)
        assert set(payload) == {"bars", "series", "markers", "lines", "meta"}
        assert len(payload["bars"]["close"]) == len(df)
        assert payload["meta"]["bars"] == len(df)
        assert payload["meta"]["indicators"] == sorted(results)
        assert payload["meta"]["markers"] == sum(len(r.events) for r in results.values())
        assert payload["meta"]["lines"] == sum(len(r.levels) for r in results.values())

    def test_json_serialisable(self, batch):
        df, results = batch
        text = json.dumps(build_overlay_payload(df, results))
        assert "NaN" not in text

    def test_series_columns(self, batch):
        df, results = batch
        series = build_overlay_payload(df, results)["series"]
        assert set(series["supertrend"]) == {"long_stop", "short_stop"}
        assert set(series["qqe"]) == {"stop", "rsi_ma"}
        assert set(series["sr_breaks"]) == {"resistance", "support"}
        # Warm-up values become None, not NaN.
        assert series["supertrend"]["long_stop"][0] is None

    def test_markers_carry_indicator_and_date(self, batch):
        df, results = batch
        markers = build_overlay_payload(df, results)["markers"]
        assert markers
        for m in markers:
            assert m["indicator"] in results
            assert m["date"] is not None

    def test_lines_active_flag(self, batch):
        df, results = batch
        lines = build_overlay_payload(df, results)["lines"]
        inactive = [ln for ln in lines if not ln["active"]]
        assert inactive
        assert all(ln["start"] <= ln["end"] for ln in lines)

    def test_frame_without_dates(self, batch):
        df, results = batch
        payload = build_overlay_payload(df.drop(columns=["Date"]), results)
        assert payload["bars"]["date"][:3] == ["0", "1", "2"]


class TestRender:
    def test_writes_html(self, batch, tmp_path):
        pytest.importorskip("plotly")
        df, results = batch
        out = tmp_path / "charts" / "overlays.html"
        html = render_overlay_html(df, results, out, title="TEST")
        assert out.exists()
        assert "<html" in html.lower()
        assert "TEST" in html
