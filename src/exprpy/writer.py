from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

from .errors import MalformedRecord
from .exprpyClasses import AssignmentResult

UNASSIGNED_KEY = "__unassigned"
AMBIGUOUS_KEY = "__ambiguous"


def _write_atomic(out_path: str | Path, lines: Iterable[str]) -> Path:
    # Write next to the destination, then rename, so a failed run leaves no partial table
    outp = Path(out_path)
    outp.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = outp.with_name(outp.name + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as fh:
            for line in lines:
                fh.write(line)
        tmp_path.replace(outp)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return outp


def write_expression_table(
    out_path: str | Path,
    values: Mapping[str, float],
    *,
    value_header: str = "tpm",
    digits: int = 10,
) -> Path:
    """
    TSV with one row per gene, sorted by gene name. Values keep `digits`
    significant digits, so a tiny non-zero value never prints as 0.
    """
    def rows():
        yield f"feature\t{value_header}\n"
        for name in sorted(values):
            yield f"{name}\t{values[name]:.{digits}g}\n"
    return _write_atomic(out_path, rows())


def write_counts_table(
    out_path: str | Path,
    result: AssignmentResult,
    gene_names: Optional[Iterable[str]] = None,
) -> Path:
    """Raw counts for every gene (zeros included), then the summary rows."""
    names = sorted(set(gene_names or ()) | set(result.counts))

    def rows():
        yield "feature\tcount\n"
        for name in names:
            yield f"{name}\t{result.counts.get(name, 0)}\n"
        yield f"{UNASSIGNED_KEY}\t{result.unassigned}\n"
        yield f"{AMBIGUOUS_KEY}\t{result.ambiguous}\n"
    return _write_atomic(out_path, rows())


def read_counts_table(path: str | Path) -> Dict[str, int]:
    """Read a table written by write_counts_table; summary rows are dropped."""
    counts: Dict[str, int] = {}
    with open(path, "rt", encoding="utf-8") as fh:
        for line_number, raw in enumerate(fh, 1):
            if not raw.strip():
                continue
            cols = raw.rstrip("\n").split("\t")
            if line_number == 1 and cols[0] == "feature":
                continue
            if len(cols) < 2:
                raise MalformedRecord("expected 'feature<TAB>count'", line_number=line_number, line=raw)
            name, value = cols[0], cols[1].strip()
            if name.startswith("__"):
                continue
            if not (value.isascii() and value.isdigit()):
                raise MalformedRecord(
                    f"count {value!r} is not a non-negative integer",
                    line_number=line_number, line=raw,
                )
            counts[name] = counts.get(name, 0) + int(value)
    return counts
