"""Shared plotting helpers: colors, embedding scatter plots, figure export."""

import colorsys
import hashlib
import logging
from pathlib import Path

import plotly.colors
import plotly.express as px
import plotly.graph_objects as go

from seqplore.utils.files import ensure_directory_exists

PLOTLY_RENDER_MODE = "webgl"
NOT_CLASSIFIED = "Not_Classified"

EMPTY_FIGURE = go.Figure(
    layout=go.Layout(
        xaxis={"visible": False},
        yaxis={"visible": False},
        plot_bgcolor="rgba(0, 0, 0, 0)",
        paper_bgcolor="rgba(0, 0, 0, 0)",
        showlegend=False,
        margin={"l": 0, "r": 0, "t": 0, "b": 0},
    )
)

logger = logging.getLogger(__name__)


def hash_from_str(string):
    """Calculates a pseudorandom int from a string."""
    hash_str = hashlib.blake2b(string.encode(), digest_size=16).hexdigest()
    return int(hash_str, 16)


def random_color(string, i, n_strings, rand):
    """Generate a random RGB color for a given string-name.

    Ensures the color is unique and distributed across the hue spectrum.

    Args:
        string (str): The input string to generate the color for.
        i (int): The index of the current string-name.
        n_strings (int): The total number of string-names.
        rand (int): A random offset

    Returns:
        tuple: The RGB color as a tuple of integers.
    """
    hash_value = hash_from_str(string)
    hue = (360 * i // n_strings + rand) % 360
    saturation = (hash_value & 0xFFFF) % 91 + 10
    lightness = (hash_value >> 16 & 0xFFFF) % 41 + 30
    # Plotly does not render all hsl colors correctly, use rgb instead.
    rgb_frac = colorsys.hls_to_rgb(
        hue / 360, lightness / 100, saturation / 100
    )
    return tuple(int(255 * x) for x in rgb_frac)


def discrete_colors(names):
    """Returns a reproducible color for each name (cell type, group...)."""
    sorted_names = sorted({str(x) for x in names}, key=hash_from_str)
    n_names = len(sorted_names)
    rand = hash_from_str("-".join(sorted_names))
    return {
        var: f"rgb{random_color(var, i, n_names, rand)}"
        for i, var in enumerate(sorted_names)
    }


def continuous_colors(names):
    """Returns colors sampled along the 'Plasma' scale in the given order."""
    n_names = len(names)
    color_scale = plotly.colors.get_colorscale("Plasma")
    colors = {}
    for i, name in enumerate(names):
        fraction = i / max(1, n_names - 1)
        color = plotly.colors.sample_colorscale(
            color_scale, fraction, colortype="rgb"
        )
        colors[name] = color[0]
    return colors


def mixed_sort_key(s):
    """Sorts numeric if input is a number, else alphanumeric."""
    try:
        return (0, float(s), "")
    except ValueError:
        return (1, 0.0, str(s))


def embedding_plot_from_data(
    embedding_df, color="color", use_discrete_colors=True, title=""
):
    """Create a scatter plot of a 2D embedding (UMAP, PCA...).

    Args:
        embedding_df (pd.DataFrame): Data frame indexed by cell or sample
            with the coordinates in the columns 'x' and 'y', the category in
            column `color` and optional further columns shown on hover.
        color (str): Column used for coloring.
        use_discrete_colors (bool): Whether to use discrete or continuous
            colors. Defaults to True.
        title (str): Plot title.

    Returns:
        plotly.graph_objects.Figure: The scatter plot.
    """
    embedding_df = embedding_df.copy()
    embedding_df[color] = (
        embedding_df[color].astype(str).replace(["", "nan"], NOT_CLASSIFIED)
    )
    categories = sorted(embedding_df[color].unique(), key=mixed_sort_key)
    if use_discrete_colors:
        color_map = discrete_colors(categories)
    else:
        color_map = continuous_colors(categories)
    # If there are too many columns, they are not displayed correctly
    n_hover = 30
    plot = px.scatter(
        embedding_df,
        x="x",
        y="y",
        labels={"x": "Dim 1", "y": "Dim 2", color: color.capitalize()},
        title=title,
        color=color,
        color_discrete_map=color_map,
        hover_name=embedding_df.index,
        category_orders={color: categories},
        hover_data=list(embedding_df.columns[:n_hover]),
        render_mode=PLOTLY_RENDER_MODE,
        template="simple_white",
    )
    plot.update_traces(marker={"size": 4})
    plot.update_yaxes(scaleanchor="x", scaleratio=1, mirror=True)
    plot.update_xaxes(mirror=True)
    return plot


def save_figure(figure, path, **kwargs):
    """Writes a plotly figure to disk.

    '.html' files are written with `write_html` (plotly.js from CDN), all
    other suffixes (png, svg, pdf...) with `write_image`, which needs a
    static image export engine installed.
    """
    path = Path(path).expanduser()
    ensure_directory_exists(path.parent)
    if path.suffix.lower() in [".html", ".htm"]:
        figure.write_html(path, include_plotlyjs="cdn", **kwargs)
    else:
        figure.write_image(path, **kwargs)
    logger.info("Figure saved to %s", path)
    return path
