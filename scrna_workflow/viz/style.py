"""Shared styling and figure helpers."""

from pathlib import Path
from typing import Dict, List, Sequence, Union
import logging

logger = logging.getLogger(__name__)

# Condition colors (control vs stimulated)
SAMPLE_COLORS: Dict[str, str] = {
    "ctrl": "#3498db",
    "stim": "#e74c3c",
}

PHASE_COLORS: Dict[str, str] = {
    "G1": "#95a5a6",
    "S": "#27ae60",
    "G2M": "#8e44ad",
}

THRESHOLD_COLOR = "#c0392b"


def set_style() -> None:
    """Set matplotlib and seaborn defaults for workflow figures."""
    import matplotlib.pyplot as plt
    import seaborn as sns

    sns.set_theme(style="whitegrid", context="paper")
    plt.rcParams.update({
        "figure.dpi": 100,
        "savefig.dpi": 200,
        "savefig.bbox": "tight",
        "axes.spines.top": False,
        "axes.spines.right": False,
        "legend.frameon": False,
    })


def sample_palette(samples: Sequence[str]) -> Dict[str, str]:
    """Colors per sample; unknown samples get tab10 colors in order."""
    import matplotlib.pyplot as plt

    cmap = plt.get_cmap("tab10")
    colors: Dict[str, str] = {}
    extra = 0
    for sample in samples:
        if sample in SAMPLE_COLORS:
            colors[sample] = SAMPLE_COLORS[sample]
        else:
            r, g, b, _ = cmap(extra % 10)
            colors[sample] = "#{:02x}{:02x}{:02x}".format(
                int(r * 255), int(g * 255), int(b * 255)
            )
            extra += 1
    return colors


def save_figure(
    fig,
    output_path: Union[str, Path],
    dpi: int = 200,
    close: bool = True,
) -> Path:
    """Save a figure as PNG on a white background.

    Parameters
    ----------
    fig : matplotlib.figure.Figure
        Figure to save
    output_path : str or Path
        Destination file
    dpi : int
        Resolution
    close : bool
        Close the figure after saving

    Returns
    -------
    Path
        Saved file
    """
    import matplotlib.pyplot as plt

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=dpi, bbox_inches="tight", facecolor="white")
    if close:
        plt.close(fig)
    logger.debug("Saved figure to %s", output_path)
    return output_path


def grid_shape(n: int, ncols: int = 3) -> List[int]:
    """Rows and columns for ``n`` panels with at most ``ncols`` columns."""
    ncols = max(1, min(ncols, n))
    nrows = (n + ncols - 1) // ncols
    return [nrows, ncols]


def categories_of(values) -> List[str]:
    """Category order of a pandas column (sorted unique values otherwise)."""
    if hasattr(values, "cat"):
        return [str(c) for c in values.cat.categories]
    return sorted(str(v) for v in values.dropna().unique())
