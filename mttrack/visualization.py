"""
Visualization utilities for multi-target tracking results
"""

import numpy as np
import matplotlib.pyplot as plt
from typing import Optional, Tuple, List

from .tracking.state_models import MultiState


class TrackVisualizer:
    """Tracking result visualization tools"""

    def __init__(self, figsize: Tuple[int, int] = (10, 8)):
        """
        Initialize visualizer

        Args:
            figsize: Default figure size
        """
        self.figsize = figsize
        self.colormap = 'tab20'

    def plot_tracks(self, observations: List[MultiState],
                    title: str = "Tracks",
                    ax: Optional[plt.Axes] = None) -> plt.Figure:
        """
        Plot labelled observations in the x/y plane, one polyline per track

        Args:
            observations: Observations per frame labelled with track IDs (0 = clutter)
            title: Plot title
            ax: Axes to draw into (a new figure is created if None)

        Returns:
            Figure object
        """
        if ax is None:
            fig, ax = plt.subplots(figsize=self.figsize)
        else:
            fig = ax.figure

        tracks = {}
        clutter = []
        for frame in observations:
            for z, label in frame:
                if label.id == 0:
                    clutter.append(z[:2])
                else:
                    tracks.setdefault(label.id, []).append(z[:2])

        cmap = plt.get_cmap(self.colormap)
        for k, track_id in enumerate(sorted(tracks)):
            points = np.array(tracks[track_id])
            color = cmap(k % cmap.N)
            ax.plot(points[:, 0], points[:, 1], '-o', color=color, markersize=4,
                    linewidth=1.5, label=f'Track {track_id}')

        if clutter:
            clutter_points = np.array(clutter)
            ax.plot(clutter_points[:, 0], clutter_points[:, 1], 'x', color='0.6',
                    markersize=6, label='Clutter')

        ax.set_xlabel('x')
        ax.set_ylabel('y')
        ax.set_title(title)
        ax.grid(True, alpha=0.3)
        if tracks or clutter:
            ax.legend(loc='best', fontsize='small')

        return fig

    def plot_sample_weights(self, weights: np.ndarray,
                            title: str = "Sample Weights") -> plt.Figure:
        """
        Plot the posterior weight of every particle, sorted descending

        Args:
            weights: Normalized particle weights
            title: Plot title

        Returns:
            Figure object
        """
        fig, ax = plt.subplots(figsize=self.figsize)

        sorted_weights = np.sort(np.asarray(weights))[::-1]
        ax.bar(np.arange(len(sorted_weights)), sorted_weights, color='steelblue')
        ess = 1.0 / np.sum(np.square(sorted_weights)) if len(sorted_weights) else 0.0

        ax.set_xlabel('Particle (sorted)')
        ax.set_ylabel('Weight')
        ax.set_title(f"{title} (ESS = {ess:.1f})")
        ax.grid(True, alpha=0.3)

        return fig
