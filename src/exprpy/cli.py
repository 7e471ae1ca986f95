import argparse

from .normalize import METHODS
from .quantify import normalize_counts, quantify_expression


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Alignments + annotation -> expression table
    if args.cmd in ["quantify", "quant"]:
        return quantify_expression(
            alignment_path=args.alignment,
            annotation_path=args.annotation,
            out_path=args.out,
            counts_out=args.counts_out,
            feature_type=args.feature_type,
            id_attribute=args.id_attribute,
            method=args.method,
            workers=args.workers,
            chunk_size=args.chunk_size,
            min_mapq=args.min_mapq,
            strict=args.strict,
            log_level=args.log_level,
        )

    # Raw counts table + annotation -> expression table
    elif args.cmd == "normalize":
        return normalize_counts(
            counts_path=args.counts,
            annotation_path=args.annotation,
            out_path=args.out,
            feature_type=args.feature_type,
            id_attribute=args.id_attribute,
            method=args.method,
            strict=args.strict,
            log_level=args.log_level,
        )
    else:
        parser.error("Unknown command")

    return 2


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    if n < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {n}")
    return n


def _add_annotation_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--feature-type",
        dest="feature_type",
        default="gene",
        help="Annotation feature type (3rd column) to keep (default: gene).",
    )
    p.add_argument(
        "--id-attribute",
        dest="id_attribute",
        default=None,
        help="Take the gene name from this 9th-column attribute (e.g. ID or gene_id) "
             "instead of the 1st column.",
    )
    p.add_argument(
        "--method",
        choices=list(METHODS),
        default="tpm",
        help="'tpm' (default): RPK scaled by summed RPK per million; "
             "'fpkm': RPK per million assigned reads.",
    )
    p.add_argument(
        "--strict",
        action="store_true",
        help="Fail on the first malformed line instead of skipping it.",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["ERROR", "WARNING", "INFO", "DEBUG"],
        help="Logging verbosity (default: INFO)."
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="exprpy",
        description="Per-gene expression (RPK-based, per-million scaled) from single-end alignments."
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    q = sub.add_parser(
        "quantify",
        aliases=["quant"],
        help="Assign reads to genes and write a normalized expression table."
    )
    q.add_argument(
        "alignment",
        help="SAM-like alignment file (.sam, .sam.gz or any whitespace-delimited text) or .bam."
    )
    q.add_argument(
        "annotation",
        help="GFF/GTF-like annotation (.gz allowed)."
    )
    q.add_argument(
        "--out",
        required=True,
        help="Output TSV path (gene, expression)."
    )
    q.add_argument(
        "--counts-out",
        dest="counts_out",
        default=None,
        help="Optional TSV of raw counts, with __unassigned/__ambiguous rows."
    )
    q.add_argument(
        "--workers",
        type=_positive_int,
        default=1,
        help="Worker processes for read assignment (default 1)."
    )
    q.add_argument(
        "--chunk-size",
        dest="chunk_size",
        type=_positive_int,
        default=100_000,
        help="Alignments per worker task (default 100000)."
    )
    q.add_argument(
        "--min-mapq",
        dest="min_mapq",
        type=int,
        default=0,
        help="BAM input only: skip alignments with MAPQ below this (default 0)."
    )
    _add_annotation_args(q)

    n = sub.add_parser(
        "normalize",
        help="Normalize a raw counts table (from --counts-out) against an annotation."
    )
    n.add_argument(
        "counts",
        help="Raw counts TSV (feature, count)."
    )
    n.add_argument(
        "annotation",
        help="GFF/GTF-like annotation (.gz allowed)."
    )
    n.add_argument(
        "--out",
        required=True,
        help="Output TSV path (gene, expression)."
    )
    _add_annotation_args(n)
    return p

if __name__ == "__main__":
    raise SystemExit(main())
