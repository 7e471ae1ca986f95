import pytest

from exprpy.errors import MalformedRecord
from exprpy.exprpyClasses import AlignmentRecord, ParseStats
from exprpy.samparse import iter_alignment_file, parse_alignment_line, parse_alignment_lines

SAM_LINES = [
    "@HD\tVN:1.6\tSO:unsorted\n",
    "@SQ\tSN:chr1\tLN:5000\n",
    "r1\t0\tchr1\t100\t60\t50M\t*\t0\t0\tACGT\tIIII\n",
    "r2\t16\tchr2\t7\t60\t50M\t*\t0\t0\tACGT\tIIII\n",
]


def test_fields_by_column():
    rec = parse_alignment_line("r1 0 chr1 42 60 10M")
    assert rec == AlignmentRecord(reference_name="chr1", position=42)


def test_headers_skipped_and_counted():
    stats = ParseStats()
    recs = list(parse_alignment_lines(SAM_LINES, stats=stats))
    assert [r.reference_name for r in recs] == ["chr1", "chr2"]
    assert [r.position for r in recs] == [100, 7]
    assert stats.headers == 2
    assert stats.parsed == 2


def test_parsing_is_lazy():
    def lines():
        yield "r1 0 chr1 5\n"
        raise AssertionError("read past the first record")
    it = parse_alignment_lines(lines())
    assert next(it).position == 5


@pytest.mark.parametrize("line", [
    "r1 0 chr1\n",          # too few fields
    "r1 0 chr1 -5 60\n",    # negative
    "r1 0 chr1 12x 60\n",   # not a number
    "r1 0 chr1 ² 60\n",     # unicode digit int() rejects
])
def test_malformed_lines_skipped(line):
    stats = ParseStats()
    recs = list(parse_alignment_lines(["r0 0 chr1 1\n", line, "\n"], stats=stats))
    assert len(recs) == 1
    assert stats.skipped == 1
    assert stats.parsed + stats.skipped == 2


def test_strict_raises_with_line_number():
    with pytest.raises(MalformedRecord) as exc:
        list(parse_alignment_lines(["@HD\n", "r1 0 chr1 abc\n"], strict=True))
    assert exc.value.line_number == 2
    assert "line 2" in str(exc.value)


def test_gzipped_text_file(tmp_path):
    import gzip
    p = tmp_path / "reads.sam.gz"
    with gzip.open(p, "wt") as fh:
        fh.writelines(SAM_LINES)
    assert len(list(iter_alignment_file(p))) == 2
