"""Builds a database from a dataset of image descriptors with a trained vocabulary tree, then queries it.

The database is queried with another set of images if one is given, to retrieve for each query image the most similar
images of the dataset. Otherwise, a sanity check queries the database with the images used to build it, and reports
the images which are not their own best match.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import hydra
from dask.distributed import Client, LocalCluster
from hydra.utils import instantiate
from omegaconf import OmegaConf

import voctree.utils.io as io_utils
import voctree.utils.logger as logger_utils
from voctree.common.outputs import prepare_output_paths
from voctree.loader.folder_loader import FolderDescriptorLoader
from voctree.retrieval_pipeline import RetrievalPipeline, RetrievalResult
from voctree.retriever.similarity import SimilarityMetric, available_metrics
from voctree.vocabulary.histogram_builder import HistogramBuilder
from voctree.vocabulary.vocabulary_tree import VocabularyTree

logger = logger_utils.get_logger()

DEFAULT_OUTPUT_ROOT = Path.cwd()


class VoctreeQueryRunner:
    tag = "Vocabulary tree database query"

    def __init__(self, override_args: Optional[List[str]] = None) -> None:
        argparser = self.construct_argparser()
        self.parsed_args: argparse.Namespace = argparser.parse_args(args=override_args)

        log_level = getattr(logging, self.parsed_args.log.upper(), None)
        if log_level is not None:
            logger.setLevel(log_level)

        self.pipeline: RetrievalPipeline = self.construct_pipeline()

    def construct_argparser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description=self.tag)

        parser.add_argument("-t", "--tree", type=str, required=True, help="Input .npz file of the trained tree.")
        parser.add_argument(
            "-w",
            "--weights",
            type=str,
            default=None,
            help="Input .npy weight file. If not provided, the weights are computed on the database.",
        )
        parser.add_argument(
            "-l",
            "--keylist",
            type=str,
            required=True,
            help="Folder of descriptor files used to build the database.",
        )
        parser.add_argument(
            "-q",
            "--querylist",
            type=str,
            default=None,
            help="Folder of descriptor files used to query the database. If not provided, a sanity check is run.",
        )
        parser.add_argument("--descriptor_dim", type=int, default=128, help="Dimension of the descriptors.")
        parser.add_argument("--descriptor_dtype", type=str, default="uint8", help="Element type of the descriptors.")
        parser.add_argument(
            "-r",
            "--results",
            type=int,
            default=None,
            help="Number of matches to retrieve for each image, 0 to retrieve all the images.",
        )
        parser.add_argument(
            "-n",
            "--max_descriptors",
            type=int,
            default=None,
            help="Number of descriptors used per image, 0 to use all of them.",
        )
        parser.add_argument(
            "-d",
            "--distance",
            type=str,
            default=None,
            choices=available_metrics(),
            help="Similarity metric used for queries.",
        )
        parser.add_argument("-o", "--outfile", type=str, default=None, help="Name of the output file for matches.")
        parser.add_argument("--matlab", action="store_true", help="Write the output file in a MATLAB readable form.")
        parser.add_argument(
            "--save_document_map", type=str, default=None, help="File where to save the document map of the database."
        )
        parser.add_argument(
            "--config_name",
            type=str,
            default="voctree_query.yaml",
            help="Master config. Options include `voctree_query.yaml`, `voctree_retrieval_only.yaml`.",
        )
        parser.add_argument(
            "--output_root",
            type=str,
            default=str(DEFAULT_OUTPUT_ROOT),
            help="Root directory. Results and metrics will be stored in subdirectories, e.g. {output_root}/results",
        )
        parser.add_argument("--num_workers", type=int, default=1, help="Number of workers to start.")
        parser.add_argument("--threads_per_worker", type=int, default=1, help="Number of threads per each worker.")
        parser.add_argument("--dashboard_port", type=str, default=":8787", help="dask dashboard port number")
        parser.add_argument(
            "--log",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            default="INFO",
            help="Set the logging level",
        )
        return parser

    def construct_pipeline(self) -> RetrievalPipeline:
        """Construct the pipeline from the hydra config, then apply the command line overrides.

        All configs are relative to the voctree module.
        """
        with hydra.initialize_config_module(config_module="voctree.configs", version_base=None):
            main_cfg = hydra.compose(config_name=self.parsed_args.config_name)
            logger.info("\n\nRetrievalPipeline config: " + OmegaConf.to_yaml(main_cfg))
            pipeline: RetrievalPipeline = instantiate(main_cfg.RetrievalPipeline)

        if self.parsed_args.results is not None:
            pipeline.num_results = self.parsed_args.results
        if self.parsed_args.max_descriptors is not None:
            pipeline.histogram_builder = HistogramBuilder(max_descriptors=self.parsed_args.max_descriptors)
        if self.parsed_args.distance is not None:
            pipeline.metric = SimilarityMetric.from_name(self.parsed_args.distance)

        logger.info("\n\nRetrievalPipeline: " + str(pipeline))
        return pipeline

    def _create_dask_cluster(self) -> LocalCluster:
        return LocalCluster(
            n_workers=self.parsed_args.num_workers,
            threads_per_worker=self.parsed_args.threads_per_worker,
            dashboard_address=self.parsed_args.dashboard_port,
        )

    def _make_loader(self, folder: str) -> FolderDescriptorLoader:
        return FolderDescriptorLoader(
            folder, descriptor_dim=self.parsed_args.descriptor_dim, dtype=self.parsed_args.descriptor_dtype
        )

    def run(self) -> RetrievalResult:
        """Load the inputs and run the pipeline."""
        logger.info("Loading vocabulary tree from %s.", self.parsed_args.tree)
        tree = VocabularyTree.load(self.parsed_args.tree)

        database_loader = self._make_loader(self.parsed_args.keylist)
        query_loader = self._make_loader(self.parsed_args.querylist) if self.parsed_args.querylist else None
        output_paths = prepare_output_paths(Path(self.parsed_args.output_root))

        with self._create_dask_cluster() as cluster, Client(cluster) as client:
            logger.info("Dask dashboard available at: %s", client.dashboard_link)
            result = self.pipeline.run(
                tree,
                database_loader,
                query_loader=query_loader,
                weights_fpath=self.parsed_args.weights,
                output_paths=output_paths,
                document_map_fpath=self.parsed_args.save_document_map,
            )

        if self.parsed_args.outfile:
            io_utils.save_doc_matches(self.parsed_args.outfile, result.doc_matches, self.parsed_args.matlab)
        return result


def main(override_args: Optional[List[str]] = None) -> int:
    try:
        VoctreeQueryRunner(override_args).run()
    except (ValueError, RuntimeError, FileNotFoundError) as e:
        logger.error("Retrieval failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
