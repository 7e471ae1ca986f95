from __future__ import annotations
from pathlib import Path
from typing import Iterable, Iterator, Optional
import gzip
import logging
import bamnostic as bn

from .errors import MalformedRecord
from .exprpyClasses import AlignmentRecord, ParseStats

# 0-based column indices in a SAM-like line
REFERENCE_COL = 2
POSITION_COL = 3

# Only the first few bad lines are logged individually
MAX_WARNINGS = 10


def _open_text_auto(path: str | Path):
    p = Path(path)
    if p.suffix.lower() == ".gz":
        return gzip.open(p, "rt", encoding="utf-8", errors="replace")
    return open(p, "rt", encoding="utf-8", errors="replace")


def parse_alignment_line(line: str, line_number: int | None = None) -> AlignmentRecord:
    cols = line.split()
    if len(cols) <= POSITION_COL:
        raise MalformedRecord(
            f"expected at least {POSITION_COL + 1} fields, got {len(cols)}",
            line_number=line_number, line=line,
        )
    pos_s = cols[POSITION_COL]
    # int() would also take '+5' and ' 5'; only plain digits are a valid position
    if not (pos_s.isascii() and pos_s.isdigit()):
        raise MalformedRecord(
            f"position {pos_s!r} is not a non-negative integer",
            line_number=line_number, line=line,
        )
    return AlignmentRecord(reference_name=cols[REFERENCE_COL], position=int(pos_s))


def parse_alignment_lines(
    lines: Iterable[str],
    *,
    strict: bool = False,
    stats: ParseStats | None = None,
    logger: logging.Logger | None = None,
) -> Iterator[AlignmentRecord]:
    """
    Lazily turn SAM-like text lines into AlignmentRecords.

    Lines starting with '@' are headers and blank lines are ignored. A malformed
    line raises MalformedRecord when strict, otherwise it is logged, tallied in
    `stats.skipped` and skipped.
    """
    if stats is None:
        stats = ParseStats()
    for line_number, raw in enumerate(lines, 1):
        if raw.startswith("@"):
            stats.headers += 1
            continue
        if not raw.strip():
            continue
        try:
            rec = parse_alignment_line(raw, line_number)
        except MalformedRecord as e:
            if strict:
                raise
            stats.skipped += 1
            if logger and stats.skipped <= MAX_WARNINGS:
                logger.warning(f"Skipping malformed alignment {e}")
            continue
        stats.parsed += 1
        yield rec

    if logger and stats.skipped > MAX_WARNINGS:
        logger.warning(f"Skipped {stats.skipped} malformed alignment lines in total")


def _filter_reason(aln, min_mapq: int) -> Optional[str]:
    """Why a mapped alignment must not be counted, or None to keep it."""
    if getattr(aln, "is_secondary", False):
        return "secondary"
    if getattr(aln, "is_supplementary", False):
        return "supplementary"
    try:
        nh = aln.opt("NH")
    except (KeyError, AttributeError):
        nh = None
    if isinstance(nh, int) and nh > 1:
        return "multimapped"
    mapq = getattr(aln, "mapq", None)
    # 255 means MAPQ is not available
    if isinstance(mapq, int) and mapq != 255 and mapq < min_mapq:
        return "low_mapq"
    return None


def iter_bam_records(
    bam_path: str | Path,
    *,
    min_mapq: int = 0,
    stats: ParseStats | None = None,
    logger: logging.Logger | None = None,
) -> Iterator[AlignmentRecord]:
    """
    Stream BAM alignments as AlignmentRecords, one per read (bamnostic 'pos' is
    0-based). Unmapped alignments are skipped; secondary and supplementary
    alignments, reads with NH > 1 and alignments below `min_mapq` are filtered
    so a read is never counted twice.
    """
    if stats is None:
        stats = ParseStats()
    with bn.AlignmentFile(str(bam_path), "rb") as bam:
        for aln in bam:
            if getattr(aln, "is_unmapped", False):
                stats.skipped += 1
                continue
            chr_ = getattr(aln, "reference_name", None)
            if chr_ is None:
                stats.skipped += 1
                continue
            reason = _filter_reason(aln, min_mapq)
            if reason is not None:
                stats.drop(reason)
                continue
            start_1b = (getattr(aln, "pos", 0) or 0) + 1
            stats.parsed += 1
            yield AlignmentRecord(reference_name=chr_, position=start_1b)

    if logger:
        logger.debug(
            f"{bam_path}: {stats.parsed} counted, {stats.skipped} unmapped, "
            f"filtered={stats.reasons}"
        )


def iter_alignment_file(
    path: str | Path,
    *,
    strict: bool = False,
    min_mapq: int = 0,
    stats: ParseStats | None = None,
    logger: logging.Logger | None = None,
) -> Iterator[AlignmentRecord]:
    """
    Records from a .bam (via bamnostic) or a plain/gzipped SAM-like text file.
    `min_mapq` applies to BAM input only.
    """
    p = Path(path)
    if p.suffix.lower() == ".bam":
        yield from iter_bam_records(p, min_mapq=min_mapq, stats=stats, logger=logger)
        return
    with _open_text_auto(p) as fh:
        yield from parse_alignment_lines(fh, strict=strict, stats=stats, logger=logger)


def open_check(path: str | Path) -> Optional[str]:
    """Return an error message if `path` cannot be read, else None."""
    p = Path(path)
    if not p.exists():
        return f"No such file: {p}"
    if not p.is_file():
        return f"Not a regular file: {p}"
    try:
        with open(p, "rb") as fh:
            fh.read(1)
    except OSError as e:
        return f"Could not read {p}: {e}"
    return None
