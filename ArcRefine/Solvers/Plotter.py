"""
Plots of a refined continuation run.

Two views of a ``LevelSolutionStore``:

- ``plot_levels``: one load-displacement curve per level ("Solutions per level")
- ``plot_path``: level 0 as the coarse path with the refined points overlaid
  ("Solution path")

The abscissa is one DOF of the state (``dof``) or, when ``dof`` is None, the
norm of the state vector.

Example:
    >>> run = HierarchicalContinuation(arc, steps=10, max_level=2).run()
    >>> fig = Plotter.plot_levels(run.store, dof=1, show=True)
"""

from dataclasses import dataclass, field
from typing import List, Optional

import matplotlib.pyplot as plt
import numpy as np


@dataclass
class PathStyle:
    """Styling of path plots."""
    figsize: tuple = (6, 4.5)
    colors: List[str] = field(default_factory=lambda: ['#1f77b4', '#ff7f0e', '#2ca02c', '#d62728', '#9467bd'])
    linewidth: float = 1.0
    marker: str = 'o'
    markersize: float = 3.0
    coarse_color: str = '#555555'
    grid: bool = True


class Plotter:

    @staticmethod
    def _abscissa(U, dof):
        if dof is None:
            return np.linalg.norm(U, axis=0)
        return U[dof, :]

    @staticmethod
    def _setup(ax, style):
        style = style or PathStyle()
        if ax is None:
            fig, ax = plt.subplots(figsize=style.figsize)
        else:
            fig = ax.figure
        return fig, ax, style

    @staticmethod
    def _finish(ax, dof, title, style, save_path, show):
        ax.set_xlabel(r"$|U|$" if dof is None else f"$U_{{{dof}}}$")
        ax.set_ylabel(r"$\lambda$")
        ax.set_title(title)
        if style.grid:
            ax.grid(True, linestyle="--", linewidth=0.3)
        ax.legend(fontsize=8)
        if save_path:
            ax.figure.savefig(save_path, dpi=300, bbox_inches='tight')
        if show:
            plt.show()

    @staticmethod
    def plot_levels(store, dof=None, ax=None, style: Optional[PathStyle] = None, save_path=None, show=False):
        """Load factor against displacement, one curve per level."""
        fig, ax, style = Plotter._setup(ax, style)
        for level in range(store.num_levels):
            U, L = store.as_arrays(level)
            color = style.colors[level % len(style.colors)]
            # Deeper levels are sparse: markers only
            linestyle = '-' if level == 0 else 'none'
            ax.plot(Plotter._abscissa(U, dof), L, linestyle=linestyle, marker=style.marker,
                    markersize=style.markersize, linewidth=style.linewidth, color=color,
                    label=f"Level {level} ({store.size(level)} points)")
        Plotter._finish(ax, dof, "Solutions per level", style, save_path, show)
        return fig

    @staticmethod
    def plot_path(store, dof=None, ax=None, style: Optional[PathStyle] = None, save_path=None, show=False):
        """Coarse path with every refined point in insertion order."""
        fig, ax, style = Plotter._setup(ax, style)
        U0, L0 = store.as_arrays(0)
        ax.plot(Plotter._abscissa(U0, dof), L0, color=style.coarse_color, linewidth=style.linewidth,
                marker=style.marker, markersize=style.markersize, label="Coarse path")

        refined = [(level, idx) for level, idx in store.history() if level > 0 and idx > 0]
        if refined:
            U = np.column_stack([store.at(level, idx).state for level, idx in refined])
            L = np.array([store.at(level, idx).load_factor for level, idx in refined])
            ax.scatter(Plotter._abscissa(U, dof), L, s=4 * style.markersize, color=style.colors[1],
                       zorder=3, label=f"Refinement points ({len(refined)})")
        Plotter._finish(ax, dof, "Solution path", style, save_path, show)
        return fig
