from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterable, List, Tuple
import logging
import os
import sys
import traceback
import psutil

from .assign import assign_reads, assign_reads_parallel
from .errors import EmptyLibrary, ParseError, UnknownGene
from .exprpyClasses import AlignmentRecord, AssignmentResult, GeneInterval, ParseStats
from .gfftools import load_annotation
from .index import AnnotationIndex
from .normalize import METHODS, normalize
from .samparse import iter_alignment_file, open_check
from .writer import read_counts_table, write_counts_table, write_expression_table

EXIT_IO = 1
EXIT_PARSE = 2
EXIT_NORMALIZE = 3


def _make_logger(level: str) -> logging.Logger:
    lvl = getattr(logging, level.upper(), logging.INFO)
    logger = logging.getLogger("exprpy.quantify")
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    logger.setLevel(lvl)
    return logger


def _get_memory_usage():
    process = psutil.Process(os.getpid())
    return process.memory_info().rss / 1024 / 1024  # Current memory usage in MB


def estimate_expression(
    records: Iterable[AlignmentRecord],
    genes: Iterable[GeneInterval],
    *,
    method: str = "tpm",
    workers: int = 1,
    chunk_size: int = 100_000,
    logger: logging.Logger | None = None,
) -> Tuple[AnnotationIndex, AssignmentResult, Dict[str, float]]:
    """
    Index the genes, assign the records and normalize the counts.
    Raises EmptyLibrary when nothing was assigned.
    """
    index = AnnotationIndex(genes, logger=logger)
    if workers > 1:
        result = assign_reads_parallel(records, index, workers=workers, chunk_size=chunk_size, logger=logger)
    else:
        result = assign_reads(records, index, logger=logger)
    values = normalize(result.counts, index.lengths(), method=method, logger=logger)
    return index, result, values


def _check_inputs(paths: List[str | Path], logger: logging.Logger) -> bool:
    ok = True
    for p in paths:
        msg = open_check(p)
        if msg:
            logger.error(msg)
            ok = False
    return ok


def quantify_expression(
    alignment_path: str | Path,
    annotation_path: str | Path,
    out_path: str | Path,
    *,
    counts_out: str | Path | None = None,
    feature_type: str = "gene",
    id_attribute: str | None = None,
    method: str = "tpm",
    workers: int = 1,
    chunk_size: int = 100_000,
    min_mapq: int = 0,
    strict: bool = False,
    log_level: str = "INFO",
) -> int:
    """
    Main function: alignments + annotation -> per-gene expression table.
    Returns a process exit code; nothing is written unless every step succeeds.
    """
    logger = _make_logger(log_level)
    logger.debug(f"Python version: {sys.version}")
    logger.debug(f"Starting memory: {_get_memory_usage():.1f} MB")

    if method not in METHODS:
        logger.error(f"--method must be one of: {', '.join(METHODS)}")
        return EXIT_PARSE
    if workers < 1 or chunk_size < 1:
        logger.error(f"--workers and --chunk-size must be positive (got {workers}, {chunk_size})")
        return EXIT_PARSE
    if not _check_inputs([alignment_path, annotation_path], logger):
        return EXIT_IO

    logger.info(
        f"Quantifying {alignment_path} against {annotation_path}; "
        f"feature={feature_type}, method={method}, workers={workers}"
    )
    gff_stats = ParseStats()
    sam_stats = ParseStats()
    try:
        genes = load_annotation(
            annotation_path,
            feature_type=feature_type,
            id_attribute=id_attribute,
            strict=strict,
            stats=gff_stats,
            logger=logger,
        )
        if not genes:
            logger.error(f"No usable '{feature_type}' features in {annotation_path}")
            return EXIT_PARSE

        records = iter_alignment_file(
            alignment_path, strict=strict, min_mapq=min_mapq, stats=sam_stats, logger=logger
        )
        index, result, values = estimate_expression(
            records,
            genes,
            method=method,
            workers=workers,
            chunk_size=chunk_size,
            logger=logger,
        )
    except ParseError as e:
        logger.error(f"Parse failure: {e}")
        return EXIT_PARSE
    except EmptyLibrary as e:
        logger.error(
            f"{e}. Parsed {sam_stats.parsed} alignment records "
            f"({sam_stats.headers} header lines, {sam_stats.skipped} skipped). "
            "Common causes: header-only input, or reference names that differ "
            "between alignment and annotation (chr1 vs 1)."
        )
        return EXIT_NORMALIZE
    except UnknownGene as e:
        logger.error(f"Internal inconsistency between counts and annotation: {e}")
        return EXIT_NORMALIZE
    except OSError as e:
        logger.error(f"I/O error: {e}")
        logger.debug(traceback.format_exc())
        return EXIT_IO

    logger.info(
        f"Alignments: parsed={sam_stats.parsed:,}, headers={sam_stats.headers:,}, "
        f"skipped={sam_stats.skipped:,}, filtered={sam_stats.filtered:,}"
    )
    if sam_stats.reasons:
        logger.info(f"Filtered alignments by reason: {sam_stats.reasons}")

    try:
        if counts_out:
            write_counts_table(counts_out, result, index.gene_names)
            logger.info(f"Wrote raw counts to {counts_out}")
        outp = write_expression_table(out_path, values, value_header=method)
    except OSError as e:
        logger.error(f"Could not write output: {e}")
        return EXIT_IO

    logger.info(f"Wrote expression table to {outp} with {len(values)} genes")
    logger.debug(f"Final memory usage: {_get_memory_usage():.1f} MB")
    return 0


def normalize_counts(
    counts_path: str | Path,
    annotation_path: str | Path,
    out_path: str | Path,
    *,
    feature_type: str = "gene",
    id_attribute: str | None = None,
    method: str = "tpm",
    strict: bool = False,
    log_level: str = "INFO",
) -> int:
    """Normalize an existing raw counts table (as written by --counts-out)."""
    logger = _make_logger(log_level)
    if method not in METHODS:
        logger.error(f"--method must be one of: {', '.join(METHODS)}")
        return EXIT_PARSE
    if not _check_inputs([counts_path, annotation_path], logger):
        return EXIT_IO

    try:
        counts = read_counts_table(counts_path)
        logger.info(f"Counts loaded: {len(counts)} features from {counts_path}")
        genes = load_annotation(
            annotation_path,
            feature_type=feature_type,
            id_attribute=id_attribute,
            strict=strict,
            logger=logger,
        )
        index = AnnotationIndex(genes, logger=logger)
        values = normalize(counts, index.lengths(), method=method, logger=logger)
    except ParseError as e:
        logger.error(f"Parse failure: {e}")
        return EXIT_PARSE
    except (EmptyLibrary, UnknownGene) as e:
        logger.error(str(e))
        return EXIT_NORMALIZE
    except OSError as e:
        logger.error(f"I/O error: {e}")
        return EXIT_IO

    try:
        outp = write_expression_table(out_path, values, value_header=method)
    except OSError as e:
        logger.error(f"Could not write output: {e}")
        return EXIT_IO
    logger.info(f"Wrote expression table to {outp} with {len(values)} genes")
    return 0
