"""Query engine which ranks the documents of a weighted database against query documents.

Authors: voctree developers
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Union

import dask
from dask.delayed import Delayed

import voctree.utils.logger as logger_utils
from voctree.database.database import Database
from voctree.products.doc_match import DocMatches, SparseHistogram
from voctree.retriever.similarity import SimilarityMetric

logger = logger_utils.get_logger()


@dataclass
class SanityCheckResult:
    """Self-retrieval results: every document of the database was used as a query."""

    doc_matches: Dict[int, DocMatches]
    wrong_document_ids: List[int] = field(default_factory=list)

    @property
    def num_wrong_matches(self) -> int:
        return len(self.wrong_document_ids)


class QueryEngine:
    """Scores queries against a populated, weighted database, with a metric fixed at construction."""

    def __init__(
        self,
        database: Database,
        metric: Union[str, SimilarityMetric] = SimilarityMetric.STRONG_COMMON_POINTS,
        num_results: int = 10,
    ) -> None:
        """
        Args:
            database: Database to query. Only read by the engine.
            metric: Similarity metric, or its name.
            num_results: Number of matches per query. 0 means all the documents.

        Raises:
            ValueError: If the metric is unknown.
        """
        if num_results < 0:
            raise ValueError(f"Number of results must be non-negative, got {num_results}.")
        self._database = database
        self._metric = SimilarityMetric.from_name(metric)
        self._num_results = num_results

    def __repr__(self) -> str:
        return f"QueryEngine(metric={self._metric.value}, num_results={self._num_results})"

    @property
    def metric(self) -> SimilarityMetric:
        return self._metric

    @property
    def num_results(self) -> int:
        return self._num_results

    def query(self, histogram: SparseHistogram) -> DocMatches:
        """Rank the database documents against one query."""
        return self._database.query(histogram, self._num_results, self._metric)

    def create_computation_graph(self, query_graphs: Mapping[int, Delayed]) -> Dict[int, Delayed]:
        """Create one scoring task per query.

        Args:
            query_graphs: Query histograms wrapped up in Delayed, keyed by query id.

        Returns:
            Delayed matches, keyed by query id.
        """
        # Shipped once to each worker, not once per task.
        engine_graph = dask.delayed(self, traverse=False)
        return {
            query_id: dask.delayed(QueryEngine.query)(engine_graph, histogram)
            for query_id, histogram in query_graphs.items()
        }

    def query_batch(self, histograms: Mapping[int, SparseHistogram]) -> Dict[int, DocMatches]:
        """Rank the database documents against every query, queries being scored in parallel.

        Returns:
            Matches keyed by query id.
        """
        query_ids = sorted(histograms)
        delayed_matches = self.create_computation_graph({query_id: histograms[query_id] for query_id in query_ids})
        all_matches = dask.compute(*[delayed_matches[query_id] for query_id in query_ids])
        return dict(zip(query_ids, all_matches))

    def sanity_check(self) -> SanityCheckResult:
        """Query the database with its own documents, and flag the documents which are not their own best match."""
        result = SanityCheckResult(doc_matches=self.query_batch(self._database.histograms))
        for document_id, matches in result.doc_matches.items():
            if not matches or matches[0].id != document_id:
                result.wrong_document_ids.append(document_id)
                logger.warning("Wrong match for document %d.", document_id)

        if result.num_wrong_matches > 0:
            logger.info("There are %d wrong matches.", result.num_wrong_matches)
        else:
            logger.info("No wrong matches!")
        return result
