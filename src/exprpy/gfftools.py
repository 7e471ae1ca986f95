from __future__ import annotations
from pathlib import Path
import gzip
import logging
from typing import Dict, Iterable, Iterator, List, Optional, TextIO

from .errors import InvalidInterval, MalformedAnnotation
from .exprpyClasses import GeneInterval, ParseStats

# 0-based column indices in a GFF/GTF-like line
NAME_COL = 0
FEATURE_COL = 2
START_COL = 3
END_COL = 4
ATTR_COL = 8

MAX_WARNINGS = 10


def _open_text_auto(path: str | Path, mode: str = "rt") -> TextIO:
    p = Path(path)
    if p.suffix.lower() == ".gz":
        return gzip.open(p, mode, encoding="utf-8", errors="replace")
    return open(p, mode, encoding="utf-8", errors="replace")


def _parse_attrs(attr_field: str) -> Dict[str, str]:
    """Column 9 of GFF3 (ID=x;Name=y) or GTF (gene_id "x"; gene_name "y";)."""
    out: Dict[str, str] = {}
    for kv in attr_field.strip().split(";"):
        kv = kv.strip()
        if not kv:
            continue
        if "=" in kv:
            k, v = kv.split("=", 1)
        elif " " in kv:
            k, v = kv.split(" ", 1)
        else:
            continue
        out[k.strip()] = v.strip().strip('"')
    return out


def _coord(value: str, what: str, line_number: int, line: str) -> int:
    if not (value.isascii() and value.isdigit()):
        raise MalformedAnnotation(
            f"{what} {value!r} is not a non-negative integer",
            line_number=line_number, line=line,
        )
    return int(value)


def parse_annotation_line(
    line: str,
    line_number: int,
    *,
    feature_type: str = "gene",
    id_attribute: str | None = None,
) -> Optional[GeneInterval]:
    """
    Parse one data line. Returns None for a well-formed line of another feature
    type; raises MalformedAnnotation or InvalidInterval otherwise.
    """
    cols = line.split()
    if len(cols) <= END_COL:
        raise MalformedAnnotation(
            f"expected at least {END_COL + 1} fields, got {len(cols)}",
            line_number=line_number, line=line,
        )
    if cols[FEATURE_COL] != feature_type:
        return None

    start = _coord(cols[START_COL], "start", line_number, line)
    end = _coord(cols[END_COL], "end", line_number, line)
    reference = cols[NAME_COL]

    if id_attribute:
        tab_cols = line.rstrip("\n").split("\t")
        attrs = _parse_attrs(tab_cols[ATTR_COL]) if len(tab_cols) > ATTR_COL else {}
        name = attrs.get(id_attribute)
        if not name:
            raise MalformedAnnotation(
                f"attribute {id_attribute!r} not found",
                line_number=line_number, line=line,
            )
    else:
        name = reference

    if end <= start:
        raise InvalidInterval(name, start, end, line_number=line_number, line=line)

    return GeneInterval(gene_name=name, reference_name=reference, start=start, end=end)


def parse_annotation_lines(
    lines: Iterable[str],
    *,
    feature_type: str = "gene",
    id_attribute: str | None = None,
    strict: bool = False,
    stats: ParseStats | None = None,
    logger: logging.Logger | None = None,
) -> Iterator[GeneInterval]:
    """
    Lazily turn annotation lines into GeneIntervals of `feature_type`.

    '#' lines are comments. Malformed lines raise when `strict`, otherwise
    they are skipped and counted. Intervals with end <= start are excluded,
    counted and logged in both modes.
    """
    if stats is None:
        stats = ParseStats()
    warned = 0
    for line_number, raw in enumerate(lines, 1):
        if raw.startswith("#"):
            stats.headers += 1
            continue
        if not raw.strip():
            continue
        try:
            gene = parse_annotation_line(
                raw, line_number, feature_type=feature_type, id_attribute=id_attribute
            )
        except InvalidInterval as e:
            stats.invalid += 1
            warned += 1
            if logger and warned <= MAX_WARNINGS:
                logger.warning(f"Excluding {e}")
            continue
        except MalformedAnnotation as e:
            if strict:
                raise
            stats.skipped += 1
            warned += 1
            if logger and warned <= MAX_WARNINGS:
                logger.warning(f"Skipping malformed annotation {e}")
            continue

        if gene is None:
            stats.filtered += 1
            continue
        stats.parsed += 1
        yield gene

    if logger and warned > MAX_WARNINGS:
        logger.warning(
            f"Annotation: {stats.skipped} malformed lines skipped, "
            f"{stats.invalid} invalid intervals excluded"
        )


def load_annotation(
    gff_path: str | Path,
    *,
    feature_type: str = "gene",
    id_attribute: str | None = None,
    strict: bool = False,
    stats: ParseStats | None = None,
    logger: logging.Logger | None = None,
) -> List[GeneInterval]:
    """Read the whole annotation file into a list (the index needs all of it)."""
    if stats is None:
        stats = ParseStats()
    with _open_text_auto(gff_path) as fh:
        genes = list(parse_annotation_lines(
            fh,
            feature_type=feature_type,
            id_attribute=id_attribute,
            strict=strict,
            stats=stats,
            logger=logger,
        ))

    if logger:
        logger.info(
            f"Annotation loaded: {len(genes)} {feature_type} features "
            f"({stats.filtered} other features, {stats.skipped} malformed, "
            f"{stats.invalid} invalid intervals)"
        )
        if logger.isEnabledFor(logging.DEBUG):
            for g in genes[:5]:
                logger.debug(f"  Example {feature_type}: {g.gene_name} {g.reference_name}:{g.start}-{g.end}")
    return genes
