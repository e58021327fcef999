"""Classes to store metrics computed by the retrieval modules.

A Metric stores a single named value, either a scalar or a 1D distribution, and a MetricsGroup stores the related
metrics of one module. Both can be represented as dicts, saved to JSON and parsed back.

Authors: voctree developers
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np

import voctree.utils.io as io_utils
import voctree.utils.logger as logger_utils

# Keys to access data and summary in the dictionary representation of metrics.
FULL_DATA_KEY = "full_data"
SUMMARY_KEY = "summary"

Distribution1D = Union[np.ndarray, List[Optional[Union[int, float]]]]

logger = logger_utils.get_logger()


class Metric:
    """A named metric.

    A scalar metric is represented as {"metric_name": metric_value}.
    A 1D distribution metric is represented as:
    {
        "metric_name": {
            "full_data": [list of values] (optional)
            "summary": {"min", "max", "median", "mean", "stddev", "len", "invalid", "quartiles"}
        }
    }
    """

    def __init__(
        self,
        name: str,
        data: Optional[Union[float, Distribution1D]] = None,
        summary: Optional[Dict[str, Any]] = None,
        store_full_data: bool = False,
    ) -> None:
        """
        Args:
            name: Name of the metric.
            data: Value(s) of the metric. Optional for 1D distributions parsed from a summary.
            summary: Summary of a 1D distribution, required if data is None.
            store_full_data: Whether all the values of a distribution are kept, or only its summary.
        """
        if summary is None and data is None:
            raise ValueError("Data and summary cannot both be None.")

        self._name = name
        self._summary: Optional[Dict[str, Any]] = summary
        if data is None:
            self._dim = 1
            self._data = None
            return

        if isinstance(data, list):
            data = [x if x is not None else np.nan for x in data]
            if data and all(isinstance(x, int) for x in data):
                data = np.array(data, dtype=np.int64)
        if not isinstance(data, np.ndarray):
            data = np.array(data, dtype=np.float64)
        if data.ndim > 1:
            raise ValueError("Metrics must be scalars or 1D distributions.")

        self._dim = data.ndim
        if self._dim == 1:
            self._summary = self._create_summary(data)
        self._data = data if self._dim == 0 or store_full_data else None

    @property
    def name(self) -> str:
        return self._name

    @property
    def data(self) -> Optional[np.ndarray]:
        return self._data

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def summary(self) -> Optional[Dict[str, Any]]:
        return self._summary

    @staticmethod
    def _create_summary(data: np.ndarray) -> Dict[str, Any]:
        """Summary statistics of a 1D distribution, serializable to JSON."""
        if data.size == 0 or np.isnan(data.astype(np.float64)).all():
            return {"min": np.nan, "max": np.nan, "median": np.nan, "mean": np.nan, "stddev": np.nan, "len": 0}
        return {
            "min": np.nanmin(data).tolist(),
            "max": np.nanmax(data).tolist(),
            "median": np.nanmedian(data).tolist(),
            "mean": np.nanmean(data).tolist(),
            "stddev": np.nanstd(data).tolist(),
            "len": int(data.size),
            "invalid": int(np.isnan(data.astype(np.float64)).sum()),
            "quartiles": get_quartiles_dict(data),
        }

    def get_metric_as_dict(self) -> Dict[str, Any]:
        """Dict representation of the metric, keyed by its name."""
        if self._dim == 0:
            return {self._name: self._data.tolist()}
        metric_dict: Dict[str, Any] = {SUMMARY_KEY: self._summary}
        if self._data is not None:
            metric_dict[FULL_DATA_KEY] = self._data.tolist()
        return {self._name: metric_dict}

    @classmethod
    def parse_from_dict(cls, metric_dict: Dict[str, Any]) -> Metric:
        """Creates a Metric from the dict representation created by `get_metric_as_dict()`."""
        if len(metric_dict) != 1:
            raise AttributeError("Input metric dict should have a single key-value pair.")

        metric_name, metric_value = next(iter(metric_dict.items()))
        if isinstance(metric_value, dict):
            data = metric_value.get(FULL_DATA_KEY)
            return cls(
                metric_name,
                data=data,
                summary=metric_value.get(SUMMARY_KEY),
                store_full_data=data is not None,
            )
        return cls(metric_name, metric_value)


class MetricsGroup:
    """A named list of semantically related metrics, e.g. those of one module.

    Dict representation:
    {
        "metrics_group_name": {
            dictionary representation of metric1,
            dictionary representation of metric2,
            ...
        }
    }
    """

    def __init__(self, name: str, metrics: List[Metric]) -> None:
        self._name = name
        self._metrics = metrics

    @property
    def name(self) -> str:
        return self._name

    @property
    def metrics(self) -> List[Metric]:
        return self._metrics

    def add_metric(self, metric: Metric) -> None:
        self._metrics.append(metric)

    def add_metrics(self, metrics: List[Metric]) -> None:
        self._metrics.extend(metrics)

    def get_metric(self, name: str) -> Metric:
        """Get the metric with the given name.

        Raises:
            KeyError: If the group has no such metric.
        """
        for metric in self._metrics:
            if metric.name == name:
                return metric
        raise KeyError(f"Metrics group {self._name} has no metric {name}.")

    def get_metrics_as_dict(self) -> Dict[str, Dict[str, Any]]:
        metrics_dict: Dict[str, Any] = {}
        for metric in self._metrics:
            metrics_dict.update(metric.get_metric_as_dict())
        return {self._name: metrics_dict}

    def save_to_json(self, path: Union[str, Path]) -> None:
        io_utils.save_json_file(path, self.get_metrics_as_dict())

    @classmethod
    def parse_from_dict(cls, metrics_group_dict: Dict[str, Any]) -> MetricsGroup:
        if len(metrics_group_dict) != 1:
            raise AttributeError("Metrics group dict must have a single key-value pair.")
        name, metrics_dict = next(iter(metrics_group_dict.items()))
        metrics = [Metric.parse_from_dict({metric_name: value}) for metric_name, value in metrics_dict.items()]
        return cls(name, metrics)

    @classmethod
    def parse_from_json(cls, path: Union[str, Path]) -> MetricsGroup:
        return cls.parse_from_dict(io_utils.read_json_file(path))


def get_quartiles_dict(data: np.ndarray) -> Dict[str, float]:
    """Quartiles of the data, keyed q0 to q4."""
    query = list(range(0, 101, 25))
    quartiles = np.nanpercentile(data, query)
    return {f"q{i}": quartiles[i].tolist() for i in range(len(query))}
