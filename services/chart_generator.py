"""
services/chart_generator.py
Horizontal bar charts for the per-suite report.

Charts are rendered to PNG in memory and returned as base64 data URIs so
the suite document stays self-contained (no chart library fetched from a
CDN when the report is opened).
"""

import base64
import io
import logging
from typing import Dict, List, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from utils.config import load_chart_colors

logger = logging.getLogger(__name__)

# Load chart colors for color name resolution
CHART_COLORS = load_chart_colors()

MAX_LABEL_LENGTH = 26


def resolve_color(color_name: str) -> str:
    """Resolve color name (e.g., 'primary') to actual color value (e.g., '#3b82f6')"""
    return CHART_COLORS.get(color_name, color_name)


def generate_folder_bar_chart(
    labels: List[str],
    values: List[float],
    title: str,
    settings: Dict,
    color: str = "primary",
    x_max: Optional[float] = None,
    value_suffix: str = "",
) -> Optional[str]:
    """
    Render one horizontal bar chart (one bar per folder).

    Args:
        labels: Folder display names, top to bottom.
        values: One value per label.
        title: Chart title.
        settings: Report settings (chart_dpi, chart_width_px, ...).
        color: Color name from chart_colors.yaml or a literal color.
        x_max: Optional fixed upper bound for the x axis (e.g. 100 for percents).
        value_suffix: Text appended to the value labels (e.g. '%').

    Returns:
        'data:image/png;base64,...' string, or None when there is nothing to
        draw or rendering fails.
    """
    if not labels:
        return None

    # Reverse so the first folder is drawn at the top
    display_labels = [
        label if len(label) <= MAX_LABEL_LENGTH else label[:MAX_LABEL_LENGTH - 1] + "…"
        for label in reversed(labels)
    ]
    plot_values = list(reversed([float(v or 0) for v in values]))

    dpi = int(settings.get("chart_dpi", 110))
    width_px = int(settings.get("chart_width_px", 640))
    bar_height_px = int(settings.get("chart_bar_height_px", 28))
    min_height_px = int(settings.get("chart_min_height_px", 220))
    height_px = max(min_height_px, len(display_labels) * bar_height_px + 120)
    figsize = (width_px / dpi, height_px / dpi)

    fig = None
    try:
        fig, ax = plt.subplots(figsize=figsize, dpi=dpi)
        y_pos = np.arange(len(display_labels))
        bars = ax.barh(y_pos, plot_values, color=resolve_color(color), height=0.6, alpha=0.85)

        upper = x_max if x_max is not None else (max(plot_values) * 1.15 if max(plot_values) > 0 else 1)
        for bar, value in zip(bars, plot_values):
            ax.text(
                bar.get_width() + upper * 0.01,
                bar.get_y() + bar.get_height() / 2,
                f"{value:.0f}{value_suffix}",
                ha='left',
                va='center',
                fontsize=8,
            )

        ax.set_yticks(y_pos)
        ax.set_yticklabels(display_labels, fontsize=8)
        ax.set_title(title, fontsize=10)
        ax.set_xlim(left=0, right=upper * (1.1 if x_max is not None else 1))
        ax.spines[["top", "right"]].set_visible(False)
        ax.grid(True, axis='x', linewidth=0.5, alpha=0.4)
        plt.tight_layout()

        buffer = io.BytesIO()
        fig.savefig(buffer, format="png", dpi=dpi, bbox_inches="tight", facecolor="white")
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/png;base64,{encoded}"
    except Exception as e:
        logger.warning("Chart '%s' could not be rendered: %s", title, e)
        return None
    finally:
        if fig is not None:
            plt.close(fig)
