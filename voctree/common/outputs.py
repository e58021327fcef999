"""Utilities for constructing the standard output directories of a run."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class OutputPaths:
    """Container holding filesystem destinations for a run."""

    results: Path
    metrics: Path

    def create_directories(self) -> None:
        for directory in (self.results, self.metrics):
            directory.mkdir(parents=True, exist_ok=True)


def prepare_output_paths(root: Path) -> OutputPaths:
    """Create the results and metrics directories under the given root and return their locations."""
    results_dir = Path(root) / "results"
    output_paths = OutputPaths(results=results_dir, metrics=results_dir / "metrics")
    output_paths.create_directories()
    return output_paths
