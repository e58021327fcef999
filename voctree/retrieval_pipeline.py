"""The main class which integrates all the modules: histogram building, database population and weighting, querying,
and correspondence extraction.

Stages are separated by barriers: every database histogram is built before the database is populated, the database
is populated before it is weighted, and weighted before it is queried. Within a stage, images are processed as
independent dask tasks.

Authors: voctree developers
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import dask
import numpy as np

import voctree.utils.io as io_utils
import voctree.utils.logger as logger_utils
from voctree.common.outputs import OutputPaths
from voctree.common.timing import Timing
from voctree.correspondence.correspondence_extractor import CorrespondenceExtractor
from voctree.database.database import Database
from voctree.evaluation.metrics import Metric, MetricsGroup
from voctree.loader.descriptor_loader_base import DescriptorLoaderBase
from voctree.products.correspondences import PairwiseCorrespondences
from voctree.products.doc_match import DocMatches, SparseHistogram
from voctree.retriever.query_engine import QueryEngine
from voctree.retriever.similarity import SimilarityMetric
from voctree.vocabulary.histogram_builder import HistogramBuilder
from voctree.vocabulary.vocabulary_tree import VocabularyTree

logger = logger_utils.get_logger()

METRICS_GROUP_NAME = "retrieval_metrics"


@dataclass
class RetrievalResult:
    """Outputs of a retrieval run."""

    doc_matches: Dict[int, DocMatches]
    correspondences: PairwiseCorrespondences = field(default_factory=dict)
    # Only set when the database is queried with its own documents.
    wrong_document_ids: Optional[List[int]] = None
    metrics: Optional[MetricsGroup] = None


class RetrievalPipeline:
    """Wrapper combining the different modules to run the whole retrieval on descriptor loaders."""

    def __init__(
        self,
        histogram_builder: Optional[HistogramBuilder] = None,
        metric: str = SimilarityMetric.STRONG_COMMON_POINTS.value,
        sanity_check_metric: str = SimilarityMetric.CLASSIC.value,
        num_results: int = 10,
        correspondence_extractor: Optional[CorrespondenceExtractor] = None,
    ) -> None:
        """
        Args:
            histogram_builder: Builder of the per-image histograms. Defaults to using every descriptor.
            metric: Name of the similarity metric used for queries.
            sanity_check_metric: Name of the similarity metric used when querying the database with itself.
            num_results: Number of matches per query. 0 means all the documents.
            correspondence_extractor: If set, correspondences are extracted for every (query, match) pair.

        Raises:
            ValueError: If a metric name is unknown.
        """
        self.histogram_builder = histogram_builder if histogram_builder is not None else HistogramBuilder()
        self.metric = SimilarityMetric.from_name(metric)
        self.sanity_check_metric = SimilarityMetric.from_name(sanity_check_metric)
        self.num_results = num_results
        self.correspondence_extractor = correspondence_extractor

    def __repr__(self) -> str:
        return f"""
        RetrievalPipeline:
            {self.histogram_builder}
            Metric: {self.metric.value}
            Sanity check metric: {self.sanity_check_metric.value}
            Num. results: {self.num_results}
            Correspondences: {self.correspondence_extractor}
        """

    def build_histograms(self, tree: VocabularyTree, loader: DescriptorLoaderBase) -> Dict[int, SparseHistogram]:
        """Build the histogram of every image of the loader, one dask task per image.

        Returns:
            Histograms keyed by document id.
        """
        descriptor_graphs = loader.create_computation_graph_for_descriptors()
        histogram_graphs = self.histogram_builder.create_computation_graph(tree, descriptor_graphs)
        histograms = dask.compute(*histogram_graphs)
        return dict(zip(loader.document_ids(), histograms))

    def build_database(
        self,
        tree: VocabularyTree,
        histograms: Dict[int, SparseHistogram],
        weights_fpath: Optional[Union[str, Path]] = None,
        document_map_fpath: Optional[Union[str, Path]] = None,
    ) -> Database:
        """Create, populate and weight the database.

        Raises:
            ValueError: If the weight table does not match the vocabulary size.
            RuntimeError: If no descriptor was ingested.
        """
        database = Database(tree.num_words)
        if weights_fpath is not None:
            database.load_weights(weights_fpath)
        else:
            logger.info("No weights specified, they will be computed on the database.")

        if database.populate(histograms) == 0:
            raise RuntimeError("No descriptors loaded, the database cannot be queried.")

        if document_map_fpath is not None:
            io_utils.save_document_map(document_map_fpath, database.histograms)

        database.compute_weights()
        return database

    def run(
        self,
        tree: VocabularyTree,
        database_loader: DescriptorLoaderBase,
        query_loader: Optional[DescriptorLoaderBase] = None,
        weights_fpath: Optional[Union[str, Path]] = None,
        output_paths: Optional[OutputPaths] = None,
        document_map_fpath: Optional[Union[str, Path]] = None,
    ) -> RetrievalResult:
        """Run the retrieval.

        Args:
            tree: Trained vocabulary tree.
            database_loader: Descriptors of the images to index.
            query_loader: Descriptors of the query images. If None, the database is queried with its own documents.
            weights_fpath: Optional weight table. If None, weights are computed on the database.
            output_paths: If set, matches, correspondences and metrics are saved there.
            document_map_fpath: If set, the document map of the database is saved there.

        Returns:
            The matches of every query, with correspondences and metrics.
        """
        with Timing(logger, "Building database histograms") as histogram_timer:
            database_histograms = self.build_histograms(tree, database_loader)
        database = self.build_database(tree, database_histograms, weights_fpath, document_map_fpath)

        with Timing(logger, "Querying") as query_timer:
            if query_loader is None:
                logger.info("Sanity check: querying the database with the same documents.")
                engine = QueryEngine(database, self.sanity_check_metric, self.num_results)
                sanity_result = engine.sanity_check()
                query_histograms = database_histograms
                doc_matches = sanity_result.doc_matches
                wrong_document_ids: Optional[List[int]] = sanity_result.wrong_document_ids
            else:
                query_histograms = self.build_histograms(tree, query_loader)
                engine = QueryEngine(database, self.metric, self.num_results)
                doc_matches = engine.query_batch(query_histograms)
                wrong_document_ids = None

        for query_id, matches in doc_matches.items():
            if matches:
                logger.info(
                    "Query document %d has %d matches. Best %d with score %f.",
                    query_id,
                    len(matches),
                    matches[0].id,
                    matches[0].score,
                )

        correspondences: PairwiseCorrespondences = {}
        if self.correspondence_extractor is not None:
            correspondences = self._extract_correspondences(
                doc_matches, query_histograms, database_histograms, database_loader, query_loader
            )

        result = RetrievalResult(
            doc_matches=doc_matches,
            correspondences=correspondences,
            wrong_document_ids=wrong_document_ids,
        )
        result.metrics = self._compute_metrics(
            database, query_histograms, result, histogram_timer.duration_sec, query_timer.duration_sec
        )
        if output_paths is not None:
            self._save_outputs(result, output_paths)
        return result

    def _extract_correspondences(
        self,
        doc_matches: Dict[int, DocMatches],
        query_histograms: Dict[int, SparseHistogram],
        database_histograms: Dict[int, SparseHistogram],
        database_loader: DescriptorLoaderBase,
        query_loader: Optional[DescriptorLoaderBase],
    ) -> PairwiseCorrespondences:
        """Extract correspondences between every query and its matches, self-pairs excluded."""
        database_descriptors = query_descriptors = None
        if self.correspondence_extractor.compute_distances:
            database_descriptors = database_loader.get_descriptors_by_document_id()
            query_descriptors = (
                database_descriptors if query_loader is None else query_loader.get_descriptors_by_document_id()
            )

        correspondences: PairwiseCorrespondences = {}
        with Timing(logger, "Extracting correspondences"):
            for query_id, matches in doc_matches.items():
                others = [match for match in matches if match.id != query_id or query_loader is not None]
                correspondences.update(
                    self.correspondence_extractor.extract_for_matches(
                        query_id,
                        others,
                        query_histograms,
                        database_histograms,
                        query_descriptors,
                        database_descriptors,
                    )
                )
        return correspondences

    def _compute_metrics(
        self,
        database: Database,
        query_histograms: Dict[int, SparseHistogram],
        result: RetrievalResult,
        histogram_duration_sec: Optional[float],
        query_duration_sec: Optional[float],
    ) -> MetricsGroup:
        top1_scores = [matches[0].score for matches in result.doc_matches.values() if matches]
        metrics = [
            Metric("num_database_documents", len(database)),
            Metric("num_database_descriptors", database.num_descriptors),
            Metric("num_query_documents", len(query_histograms)),
            Metric("top1_scores", np.array(top1_scores, dtype=np.float64)),
            Metric("histogram_duration_sec", histogram_duration_sec),
            Metric("query_duration_sec", query_duration_sec),
        ]
        if result.wrong_document_ids is not None:
            metrics.append(Metric("num_wrong_matches", len(result.wrong_document_ids)))
        if self.correspondence_extractor is not None:
            num_correspondences = [len(c) for c in result.correspondences.values()]
            metrics.append(Metric("num_correspondences_per_pair", np.array(num_correspondences, dtype=np.float64)))
        if self.correspondence_extractor is not None and self.correspondence_extractor.compute_distances:
            # Self-pairs never reach the correspondences, so they do not skew the distribution.
            distances = [c.distances for c in result.correspondences.values() if c.distances is not None]
            all_distances = np.concatenate(distances) if distances else np.zeros((0,), dtype=np.float64)
            metrics.append(Metric("correspondence_distances", all_distances.astype(np.float64)))
        return MetricsGroup(METRICS_GROUP_NAME, metrics)

    def _save_outputs(self, result: RetrievalResult, output_paths: OutputPaths) -> None:
        output_paths.create_directories()
        io_utils.save_doc_matches(output_paths.results / "doc_matches.txt", result.doc_matches)
        if result.correspondences:
            io_utils.save_correspondences(output_paths.results / "correspondences.json", result.correspondences)
        if result.metrics is not None:
            result.metrics.save_to_json(output_paths.metrics / f"{result.metrics.name}.json")
        logger.info("Saved retrieval outputs to %s.", output_paths.results)
