from __future__ import annotations
import logging
import math
from typing import Dict, Mapping

from .errors import EmptyLibrary, InvalidInterval, UnknownGene

METHODS = ("tpm", "fpkm")


def _check_known(counts: Mapping[str, float], lengths: Mapping[str, int]) -> None:
    for name in counts:
        if name not in lengths:
            raise UnknownGene(name)


def calculate_rpk(counts: Mapping[str, float], lengths: Mapping[str, int]) -> Dict[str, float]:
    """
    Reads per kilobase for every gene in `lengths`; genes without reads get 0.
    Every gene in `counts` must have a length.
    """
    _check_known(counts, lengths)
    rpk: Dict[str, float] = {}
    for name in sorted(lengths):
        length = lengths[name]
        if length <= 0:
            raise InvalidInterval(name, 0, length)
        rpk[name] = counts.get(name, 0) / (length / 1000)
    return rpk


def scale_factor(rpk: Mapping[str, float]) -> float:
    total = math.fsum(rpk.values())
    if total <= 0:
        raise EmptyLibrary("no reads were assigned to any gene; scale factor is undefined")
    return total / 1_000_000


def calculate_tpms(
    counts: Mapping[str, float],
    lengths: Mapping[str, int],
    logger: logging.Logger | None = None,
) -> Dict[str, float]:
    """RPK divided by the per-million sum of RPK over all genes."""
    rpk = calculate_rpk(counts, lengths)
    scale = scale_factor(rpk)
    if logger:
        logger.debug(f"RPK sum={scale * 1_000_000:.6g}, scale factor={scale:.6g}")
    return {name: v / scale for name, v in rpk.items()}


def calculate_fpkms(
    counts: Mapping[str, float],
    lengths: Mapping[str, int],
    logger: logging.Logger | None = None,
) -> Dict[str, float]:
    """Fragments per kilobase per million assigned reads."""
    _check_known(counts, lengths)
    total = math.fsum(counts.values())
    if total <= 0:
        raise EmptyLibrary("no reads were assigned to any gene; library size is zero")
    if logger:
        logger.debug(f"Library size (assigned reads)={total:.0f}")
    out: Dict[str, float] = {}
    for name in sorted(lengths):
        length = lengths[name]
        if length <= 0:
            raise InvalidInterval(name, 0, length)
        out[name] = counts.get(name, 0) * 1e9 / (length * total)
    return out


def normalize(
    counts: Mapping[str, float],
    lengths: Mapping[str, int],
    method: str = "tpm",
    logger: logging.Logger | None = None,
) -> Dict[str, float]:
    if method == "tpm":
        if logger:
            logger.info("Calculating TPMs")
        return calculate_tpms(counts, lengths, logger=logger)
    if method == "fpkm":
        if logger:
            logger.info("Calculating FPKMs")
        return calculate_fpkms(counts, lengths, logger=logger)
    raise ValueError(f"Unknown normalization method {method!r}; expected one of {METHODS}")
