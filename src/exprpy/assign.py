from __future__ import annotations
from itertools import islice
import logging
from multiprocessing import Pool
from typing import Iterable, Iterator, List, Optional, Set

from .exprpyClasses import AlignmentRecord, AssignmentResult
from .index import AnnotationIndex

PROGRESS_EVERY = 1_000_000

# Set once per worker process by _init_worker; read-only afterwards
_worker_index: Optional[AnnotationIndex] = None


def _assign_into(
    result: AssignmentResult,
    records: Iterable[AlignmentRecord],
    index: AnnotationIndex,
    missing_refs: Set[str] | None = None,
) -> int:
    n = 0
    counts = result.counts
    for rec in records:
        n += 1
        hits = index.genes_at(rec.reference_name, rec.position, limit=2)
        if len(hits) == 1:
            name = hits[0]
            counts[name] = counts.get(name, 0) + 1
            continue
        result.unassigned += 1
        if hits:
            result.ambiguous += 1
        elif missing_refs is not None and len(missing_refs) < 1000:
            missing_refs.add(rec.reference_name)
    return n


def assign_reads(
    records: Iterable[AlignmentRecord],
    index: AnnotationIndex,
    *,
    logger: logging.Logger | None = None,
) -> AssignmentResult:
    """
    Count reads per gene. A read inside exactly one gene adds 1 to it; anything
    else (no gene, or overlapping genes) is unassigned.
    """
    result = AssignmentResult()
    missing: Set[str] = set()
    seen = 0
    for batch in _chunks(records, PROGRESS_EVERY):
        seen += _assign_into(result, batch, index, missing)
        if logger:
            logger.info(f"Processed {seen:,} alignments...")

    if logger:
        _log_result(result, logger)
        if logger.isEnabledFor(logging.DEBUG):
            unknown = sorted(r for r in missing if r not in index.references)
            logger.debug(f"References in alignments not in annotation (first 20): {unknown[:20]}")
    return result


def _chunks(records: Iterable[AlignmentRecord], size: int) -> Iterator[List[AlignmentRecord]]:
    # islice(it, 0) would end the stream and silently drop every record
    if size < 1:
        raise ValueError(f"chunk size must be a positive integer, got {size}")
    it = iter(records)
    while True:
        chunk = list(islice(it, size))
        if not chunk:
            return
        yield chunk


def _init_worker(index: AnnotationIndex) -> None:
    global _worker_index
    _worker_index = index


def _assign_chunk(records: List[AlignmentRecord]) -> AssignmentResult:
    result = AssignmentResult()
    _assign_into(result, records, _worker_index)
    return result


def merge_results(partials: Iterable[AssignmentResult]) -> AssignmentResult:
    """Per-key integer addition; the order of partials does not matter."""
    merged = AssignmentResult()
    for part in partials:
        merged.add(part)
    return merged


def assign_reads_parallel(
    records: Iterable[AlignmentRecord],
    index: AnnotationIndex,
    *,
    workers: int = 2,
    chunk_size: int = 100_000,
    logger: logging.Logger | None = None,
) -> AssignmentResult:
    """
    Same result as assign_reads, with chunks of records counted in worker
    processes. Each worker gets its own copy of the index at start-up; partial
    counts are merged here after each round, so at most workers * 2 chunks are
    held in memory.
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be a positive integer, got {chunk_size}")
    if workers <= 1:
        return assign_reads(records, index, logger=logger)

    result = AssignmentResult()
    chunk_iter = _chunks(records, chunk_size)
    window = workers * 2
    seen = 0
    if logger:
        logger.info(f"Assigning reads with {workers} workers, chunk size {chunk_size:,}")

    with Pool(processes=workers, initializer=_init_worker, initargs=(index,)) as pool:
        while True:
            batch = list(islice(chunk_iter, window))
            if not batch:
                break
            for part in pool.imap_unordered(_assign_chunk, batch):
                result.add(part)
            seen += sum(len(c) for c in batch)
            if logger:
                logger.info(f"Processed {seen:,} alignments...")

    if logger:
        _log_result(result, logger)
    return result


def _log_result(result: AssignmentResult, logger: logging.Logger) -> None:
    logger.info(
        f"Assignment done: total={result.total:,}, assigned={result.assigned:,}, "
        f"unassigned={result.unassigned:,} (ambiguous={result.ambiguous:,}), "
        f"genes_hit={len(result.counts)}"
    )
