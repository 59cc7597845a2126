# visualize.py
import os
import numpy as np
import matplotlib.pyplot as plt


def _ensure_parent(outpath):
    parent = os.path.dirname(outpath)
    if parent:
        os.makedirs(parent, exist_ok=True)


def plot_cache_stats(summary, outpath):
    _ensure_parent(outpath)
    caches = summary["caches"]
    names = list(caches)
    x = np.arange(len(names))
    width = 0.25
    plt.figure(figsize=(8,4))
    for i, key in enumerate(("hits", "misses", "evictions")):
        plt.bar(x + (i - 1) * width, [caches[n][key] for n in names], width, label=key.capitalize())
    plt.xticks(x, names)
    plt.title(f"Cache Hits / Misses / Evictions ({summary['total_operations']} ops)")
    plt.ylabel("Count")
    plt.legend()
    plt.grid(True, axis="y")
    plt.tight_layout()
    plt.savefig(outpath)
    plt.close()


def plot_set_occupancy(snapshots, outpath):
    """One heat map per cache: rows are sets, columns are lines, lit when valid."""
    _ensure_parent(outpath)
    fig, axes = plt.subplots(1, len(snapshots), figsize=(4 * len(snapshots), 4), squeeze=False)
    for ax, (name, snapshot) in zip(axes[0], snapshots.items()):
        grid = np.array([[line.valid for line in lines] for lines in snapshot], dtype=float)
        ax.imshow(grid, aspect="auto", cmap="Greens", vmin=0, vmax=1, interpolation="nearest")
        ax.set_title(f"{name} ({int(grid.sum())}/{grid.size} valid)")
        ax.set_xlabel("Line")
        ax.set_ylabel("Set")
    fig.tight_layout()
    fig.savefig(outpath)
    plt.close(fig)
