"""
📈 Study Figures

- Predicted-probability curve over the exposure grid (matplotlib, PNG)
- Interactive subgroup forest plot (plotly, HTML)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import plotly.graph_objects as go  # noqa: E402
from plotly.subplots import make_subplots  # noqa: E402

from config import CONFIG  # noqa: E402
from logger import get_logger  # noqa: E402

logger = get_logger(__name__)

COLORS = {
    "primary": "#1E3A5F",
    "band": "#E8EEF7",
    "danger": "#E74856",
    "text": "#1F2328",
    "text_secondary": "#6B7280",
}


def plot_prediction_curve(
    curve: pd.DataFrame,
    path: str | Path,
    exposure_label: str | None = None,
    outcome_label: str | None = None,
) -> Path:
    """
    Render predicted probability against exposure to an image file.

    Args:
        curve: Frame with an `exposure` column and `prob` (plus optional
            `lower` / `upper` band columns)
        path: Output image path; the suffix picks the format
        exposure_label: x-axis label (default: configured exposure)
        outcome_label: y-axis label (default: 'Predicted probability of <outcome>')

    Returns:
        Path of the written figure
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    exposure_label = exposure_label or CONFIG.get("study.exposure")
    outcome_label = outcome_label or f"Predicted probability of {CONFIG.get('study.outcome')}"

    fig, ax = plt.subplots(
        figsize=(CONFIG.get("report.figure_width", 7), CONFIG.get("report.figure_height", 5))
    )
    try:
        if {"lower", "upper"}.issubset(curve.columns):
            ax.fill_between(
                curve["exposure"], curve["lower"], curve["upper"],
                color=COLORS["band"], label="95% CI",
            )
        ax.plot(curve["exposure"], curve["prob"], color=COLORS["primary"], linewidth=2, label="Predicted")
        ax.set_xlabel(exposure_label)
        ax.set_ylabel(outcome_label)
        ax.set_ylim(bottom=0)
        ax.legend(loc="best", frameon=False)
        fig.tight_layout()
        fig.savefig(path, dpi=CONFIG.get("report.figure_dpi", 150), bbox_inches="tight")
    finally:
        plt.close(fig)

    logger.info(f"Prediction curve written to {path}")
    return path


class ForestPlot:
    """
    Interactive forest plot for odds ratios with confidence intervals.
    """

    def __init__(
        self,
        data: pd.DataFrame,
        estimate_col: str,
        ci_low_col: str,
        ci_high_col: str,
        label_col: str,
        pval_col: str | None = None,
    ):
        if data is None or data.empty:
            raise ValueError("DataFrame cannot be empty")

        required_cols = {estimate_col, ci_low_col, ci_high_col, label_col}
        if pval_col:
            required_cols.add(pval_col)
        missing = required_cols - set(data.columns)
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

        numeric_cols = [estimate_col, ci_low_col, ci_high_col]
        self.data = data.copy()
        for col in numeric_cols:
            self.data[col] = pd.to_numeric(self.data[col], errors="coerce")
        self.data = self.data.dropna(subset=numeric_cols)
        if self.data.empty:
            raise ValueError("No valid rows after removing NaN estimates")

        # Top row first on screen
        self.data = self.data.iloc[::-1].reset_index(drop=True)

        self.estimate_col = estimate_col
        self.ci_low_col = ci_low_col
        self.ci_high_col = ci_high_col
        self.label_col = label_col
        self.pval_col = pval_col

        logger.info(
            f"ForestPlot initialized: {len(self.data)} rows, estimate range "
            f"[{self.data[estimate_col].min():.3f}, {self.data[estimate_col].max():.3f}]"
        )

    @staticmethod
    def _significance_stars(p_series: pd.Series) -> pd.Series:
        p_numeric = pd.to_numeric(p_series, errors="coerce")
        stars = pd.Series("", index=p_series.index)
        stars[p_numeric < 0.001] = "***"
        stars[(p_numeric >= 0.001) & (p_numeric < 0.01)] = "**"
        stars[(p_numeric >= 0.01) & (p_numeric < 0.05)] = "*"
        return stars

    @staticmethod
    def _format_pvalues(p_series: pd.Series) -> pd.Series:
        p_numeric = pd.to_numeric(p_series, errors="coerce")
        result = pd.Series("<0.001", index=p_series.index)
        mask = p_numeric >= 0.001
        result[mask] = p_numeric[mask].apply(lambda x: f"{x:.3f}")
        result[p_numeric.isna()] = ""
        return result

    def _ci_width_colors(self, base_color: str) -> list[str]:
        """Marker opacity fades with CI width (wider interval, lighter marker)."""
        ci_width = (self.data[self.ci_high_col] - self.data[self.ci_low_col]).to_numpy()
        is_finite = np.isfinite(ci_width)

        normalized = np.ones(len(ci_width))
        if is_finite.any():
            finite = ci_width[is_finite]
            lo, hi = finite.min(), finite.max()
            normalized[is_finite] = (finite - lo) / (hi - lo) if hi > lo else 0.5

        hex_color = base_color.lstrip("#")
        rgb = tuple(int(hex_color[i : i + 2], 16) for i in (0, 2, 4))
        opacity = 1.0 - 0.5 * normalized
        return [f"rgba({rgb[0]}, {rgb[1]}, {rgb[2]}, {op:.2f})" for op in opacity]

    def create(
        self,
        title: str = "Forest Plot",
        x_label: str = "Odds Ratio (95% CI)",
        ref_line: float = 1.0,
        height: int | None = None,
        color: str | None = None,
    ) -> go.Figure:
        """Build the figure: label, estimate text, optional P column and the CI panel."""
        color = color or COLORS["primary"]
        data = self.data

        def fmt(x: float) -> str:
            return f"{x:.2f}" if np.isfinite(x) else "Inf"

        display_est = (
            data[self.estimate_col].apply(fmt)
            + " (" + data[self.ci_low_col].apply(fmt)
            + "-" + data[self.ci_high_col].apply(fmt) + ")"
        )
        if self.pval_col:
            display_label = (
                data[self.label_col].astype(str) + " " + self._significance_stars(data[self.pval_col])
            ).str.rstrip()
        else:
            display_label = data[self.label_col].astype(str)

        has_pval = self.pval_col is not None and not data[self.pval_col].isna().all()
        column_widths = [0.25, 0.20, 0.10, 0.45] if has_pval else [0.25, 0.20, 0.55]
        num_cols = len(column_widths)

        fig = make_subplots(
            rows=1, cols=num_cols,
            shared_yaxes=True,
            horizontal_spacing=0.02,
            column_widths=column_widths,
        )
        y_pos = list(range(len(data)))

        text_columns = [(display_label, "middle right"), (display_est, "middle center")]
        if has_pval:
            text_columns.append((self._format_pvalues(data[self.pval_col]), "middle center"))
        for col_idx, (text, position) in enumerate(text_columns, 1):
            fig.add_trace(go.Scatter(
                x=[0] * len(y_pos), y=y_pos, text=text,
                mode="text", textposition=position,
                textfont=dict(size=13, color=COLORS["text"]),
                hoverinfo="none", showlegend=False,
            ), row=1, col=col_idx)

        finite = data[np.isfinite(data[self.estimate_col])]
        use_log_scale = False
        if not finite.empty:
            est_min, est_max = finite[self.estimate_col].min(), finite[self.estimate_col].max()
            use_log_scale = (est_min > 0) and ((est_max / est_min) > 5)

        fig.add_vline(
            x=ref_line, line_dash="dash", line_color="rgba(220, 38, 38, 0.4)",
            line_width=1.5, row=1, col=num_cols,
        )

        customdata = np.stack(
            (data[self.ci_low_col].to_numpy(), data[self.ci_high_col].to_numpy()), axis=-1
        )
        fig.add_trace(go.Scatter(
            x=data[self.estimate_col], y=y_pos,
            error_x=dict(
                type="data", symmetric=False,
                array=data[self.ci_high_col] - data[self.estimate_col],
                arrayminus=data[self.estimate_col] - data[self.ci_low_col],
                color="rgba(107, 114, 128, 0.5)", thickness=1.5, width=3,
            ),
            mode="markers",
            marker=dict(size=10, color=self._ci_width_colors(color), symbol="square"),
            text=display_label, customdata=customdata,
            hovertemplate="<b>%{text}</b><br>OR: %{x:.3f}<br>CI: %{customdata[0]:.3f} - %{customdata[1]:.3f}<extra></extra>",
            showlegend=False,
        ), row=1, col=num_cols)

        fig.update_layout(
            title=dict(text=f"<b>{title}</b>", x=0.01, xanchor="left"),
            height=height or max(400, len(data) * 35 + 150),
            template="plotly_white",
            margin=dict(l=10, r=20, t=100, b=40),
        )
        for c in range(1, num_cols):
            fig.update_xaxes(visible=False, row=1, col=c)
            fig.update_yaxes(visible=False, row=1, col=c)
        fig.update_yaxes(visible=False, range=[-0.5, len(data) - 0.5], row=1, col=num_cols)
        fig.update_xaxes(
            title_text=x_label, type="log" if use_log_scale else "linear", row=1, col=num_cols,
        )

        headers = ["Subgroup", "OR (95% CI)"] + (["P", ""] if has_pval else [""])
        for i, h in enumerate(headers, 1):
            fig.add_annotation(
                x=0.5 if i != 1 else 1.0, y=1.0,
                xref=f"x{i} domain" if i > 1 else "x domain", yref="paper",
                text=f"<b>{h}</b>", showarrow=False, yanchor="bottom",
                font=dict(size=13, color=COLORS["text_secondary"]),
            )

        return fig


def create_forest_plot(
    data: pd.DataFrame,
    estimate_col: str = "OR",
    ci_low_col: str = "OR_CI.lower",
    ci_high_col: str = "OR_CI.upper",
    label_col: str = "Label",
    pval_col: str | None = None,
    **kwargs: Any,
) -> go.Figure:
    """Build a forest plot figure in one call."""
    fp = ForestPlot(data, estimate_col, ci_low_col, ci_high_col, label_col, pval_col)
    return fp.create(**kwargs)


def write_forest_plot(fig: go.Figure, path: str | Path) -> Path:
    """Write a plotly figure as a standalone HTML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.write_html(str(path), include_plotlyjs="cdn")
    logger.info(f"Forest plot written to {path}")
    return path
