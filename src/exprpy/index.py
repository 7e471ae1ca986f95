from __future__ import annotations
from bisect import bisect_right
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import InvalidInterval, UnknownGene
from .exprpyClasses import GeneInterval


class AnnotationIndex:
    """
    Read-only position -> gene lookup over a complete set of GeneIntervals.

    Genes are grouped per reference and sorted by start. Next to the sorted
    starts we keep a running maximum of the ends, so a query walks left from
    the bisection point only while some earlier gene could still reach the
    position.
    """

    def __init__(self, genes: Iterable[GeneInterval], logger: logging.Logger | None = None):
        self._genes: Dict[str, GeneInterval] = {}
        self.duplicates: List[GeneInterval] = []

        per_ref: Dict[str, List[GeneInterval]] = {}
        for g in genes:
            if g.length <= 0:
                raise InvalidInterval(g.gene_name, g.start, g.end)
            if g.gene_name in self._genes:
                self.duplicates.append(g)
                continue
            self._genes[g.gene_name] = g
            per_ref.setdefault(g.reference_name, []).append(g)

        self._by_ref: Dict[str, Tuple[List[int], List[GeneInterval], List[int]]] = {}
        for ref, glist in per_ref.items():
            glist.sort(key=lambda x: (x.start, x.end, x.gene_name))
            starts = [g.start for g in glist]
            max_end: List[int] = []
            running = 0
            for g in glist:
                running = max(running, g.end)
                max_end.append(running)
            self._by_ref[ref] = (starts, glist, max_end)

        if logger:
            if self.duplicates:
                logger.warning(
                    f"{len(self.duplicates)} duplicate gene names excluded "
                    f"(first: {self.duplicates[0].gene_name!r})"
                )
            logger.info(f"Index built: {len(self._genes)} genes on {len(self._by_ref)} references")
            if logger.isEnabledFor(logging.DEBUG):
                for ref in sorted(self._by_ref):
                    logger.debug(f"  ref={ref!r}: {len(self._by_ref[ref][1])} genes")

    def __len__(self) -> int:
        return len(self._genes)

    def __contains__(self, gene_name: object) -> bool:
        return gene_name in self._genes

    @property
    def references(self) -> List[str]:
        return sorted(self._by_ref)

    @property
    def gene_names(self) -> List[str]:
        return sorted(self._genes)

    def genes_at(self, reference_name: str, position: int, limit: int | None = None) -> List[str]:
        """Names of all genes whose [start, end) contains position, up to `limit`."""
        entry = self._by_ref.get(reference_name)
        if entry is None:
            return []
        starts, glist, max_end = entry
        hits: List[str] = []
        i = bisect_right(starts, position) - 1
        while i >= 0 and max_end[i] > position:
            g = glist[i]
            if g.end > position:
                hits.append(g.gene_name)
                if limit is not None and len(hits) >= limit:
                    break
            i -= 1
        return hits

    def lookup_gene_at(self, reference_name: str, position: int) -> Optional[str]:
        """The single gene containing position, or None when zero or several do."""
        hits = self.genes_at(reference_name, position, limit=2)
        return hits[0] if len(hits) == 1 else None

    def length_of(self, gene_name: str) -> int:
        try:
            return self._genes[gene_name].length
        except KeyError:
            raise UnknownGene(gene_name) from None

    def lengths(self) -> Dict[str, int]:
        return {name: self._genes[name].length for name in self.gene_names}
