"""Functions to provide I/O APIs for all the modules.

Authors: voctree developers
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

import simplejson as json

import voctree.utils.logger as logger_utils
from voctree.products.correspondences import PairwiseCorrespondences
from voctree.products.doc_match import DocMatches, SparseHistogram

logger = logger_utils.get_logger()


def save_json_file(json_fpath: Union[str, Path], data: Union[Dict[Any, Any], List[Any]]) -> None:
    """Save a Python dictionary or list to a JSON file.

    Args:
        json_fpath: Path to file to create.
        data: Python dictionary or list to be serialized.
    """
    os.makedirs(os.path.dirname(os.path.abspath(json_fpath)), exist_ok=True)
    with open(json_fpath, "w") as f:
        # NaN is written as null.
        json.dump(data, f, indent=4, ignore_nan=True)


def read_json_file(fpath: Union[str, Path]) -> Any:
    """Load dictionary from JSON file.

    Args:
        fpath: Path to JSON file.

    Returns:
        Deserialized Python dictionary or list.
    """
    with open(fpath, "r") as f:
        return json.load(f)


def save_document_map(fpath: Union[str, Path], histograms: Mapping[int, SparseHistogram]) -> None:
    """Dump the visual words of every document, one line per document: `d{<id>} = [w1, w2, ...]`.

    For debugging only.
    """
    Path(fpath).parent.mkdir(parents=True, exist_ok=True)
    with open(fpath, "w") as f:
        for document_id, histogram in histograms.items():
            words = ", ".join(str(word) for word in histogram)
            f.write(f"d{{{document_id}}} = [{words}]\n")
    logger.info("Saved the document map of %d documents to %s.", len(histograms), fpath)


def format_doc_matches_matlab(query_id: int, matches: DocMatches) -> str:
    """Format the matches of a query as a MATLAB cell assignment (1-based): `m{<id+1>}=[ id, score; ... ];`."""
    entries = "".join(f"{match.id}, {match.score}; " for match in matches)
    return f"m{{{query_id + 1}}}=[ {entries}];\n"


def save_doc_matches(
    fpath: Union[str, Path], all_doc_matches: Mapping[int, DocMatches], matlab_format: bool = False
) -> None:
    """Write the matches of every query.

    The plain text format lists, for each query, a `Camera: <id>` header line followed by one `<query> <match> <score>`
    line per match.
    """
    Path(fpath).parent.mkdir(parents=True, exist_ok=True)
    with open(fpath, "w") as f:
        for query_id, matches in all_doc_matches.items():
            if matlab_format:
                f.write(format_doc_matches_matlab(query_id, matches))
                continue
            f.write(f"Camera: {query_id}\n")
            for match in matches:
                f.write(f"{query_id} {match.id} {match.score}\n")


def save_correspondences(json_fpath: Union[str, Path], correspondences: PairwiseCorrespondences) -> None:
    """Save putative correspondences as JSON, keyed by "<i1>_<i2>"."""
    data = {}
    for (i1, i2), pair_correspondences in correspondences.items():
        entry: Dict[str, Any] = {"match_indices": pair_correspondences.match_indices.tolist()}
        if pair_correspondences.distances is not None:
            entry["distances"] = pair_correspondences.distances.tolist()
        data[f"{i1}_{i2}"] = entry
    save_json_file(json_fpath, data)
