import pytest
from exprpy import cli
from exprpy.writer import read_counts_table

SAM_HEADER = "@HD\tVN:1.6\n@SQ\tSN:geneA\tLN:1000\n"


def _sam(reads):
    body = "".join(f"r{i}\t0\t{ref}\t{pos}\t60\t50M\t*\t0\t0\tACGT\tIIII\n" for i, (ref, pos) in enumerate(reads))
    return SAM_HEADER + body


def _read_table(path):
    rows = path.read_text().splitlines()
    assert rows[0].startswith("feature\t")
    return {name: float(v) for name, v in (r.split("\t") for r in rows[1:])}


@pytest.fixture
def inputs(tmp_path):
    gff = tmp_path / "genes.gff"
    gff.write_text(
        "# annotation\n"
        "geneA\tsrc\tgene\t0\t1000\n"
        "geneB\tsrc\tgene\t0\t500\n"
        "geneC\tsrc\tgene\t0\t2000\n"
        "geneZ\tsrc\tgene\t10\t10\n"
    )
    sam = tmp_path / "reads.sam"
    sam.write_text(_sam([("geneA", 5)] * 3 + [("geneB", 100)] * 7 + [("chrX", 1), ("geneA", 1000)]))
    return tmp_path, sam, gff


def test_cli_argument_parsing(inputs):
    tmp_path, sam, gff = inputs
    out = tmp_path / "results" / "expression.tsv"
    counts = tmp_path / "results" / "counts.tsv"
    argv = ["quantify", str(sam), str(gff), "--out", str(out), "--counts-out", str(counts)]

    # Call main() directly, so that the argparse will parse this list
    result = cli.main(argv)

    assert result == 0
    table = _read_table(out)
    # zero-length geneZ is excluded; geneC has no reads but is present
    assert sorted(table) == ["geneA", "geneB", "geneC"]
    assert table["geneC"] == 0
    assert table["geneA"] / table["geneB"] == pytest.approx((3 / 1000) / (7 / 500), rel=1e-3)

    raw = read_counts_table(counts)
    assert raw == {"geneA": 3, "geneB": 7, "geneC": 0}
    lines = counts.read_text().splitlines()
    assert "__unassigned\t2" in lines
    assert "__ambiguous\t0" in lines
    # assigned + unassigned == data lines
    assert sum(raw.values()) + 2 == 12


def test_single_gene_scenario(tmp_path):
    gff = tmp_path / "a.gff"
    gff.write_text("geneA\tsrc\tgene\t0\t1000\n")
    sam = tmp_path / "a.sam"
    sam.write_text(_sam([("geneA", p) for p in (1, 10, 100, 500, 999)]))
    out = tmp_path / "a.tsv"
    assert cli.main(["quantify", str(sam), str(gff), "--out", str(out)]) == 0
    assert _read_table(out) == {"geneA": pytest.approx(1_000_000)}


def test_header_only_is_empty_library(tmp_path, inputs):
    _, _, gff = inputs
    sam = tmp_path / "empty.sam"
    sam.write_text(SAM_HEADER)
    out = tmp_path / "never.tsv"
    assert cli.main(["quantify", str(sam), str(gff), "--out", str(out)]) == 3
    assert not out.exists()
    assert not (tmp_path / "never.tsv.tmp").exists()


def test_missing_file_is_io_error(tmp_path, inputs):
    _, _, gff = inputs
    out = tmp_path / "x.tsv"
    assert cli.main(["quantify", str(tmp_path / "nope.sam"), str(gff), "--out", str(out)]) == 1
    assert not out.exists()


def test_strict_fails_on_malformed(tmp_path, inputs):
    _, sam, gff = inputs
    with open(sam, "a") as fh:
        fh.write("broken line\n")
    out = tmp_path / "x.tsv"
    assert cli.main(["quantify", str(sam), str(gff), "--out", str(out), "--strict"]) == 2
    assert not out.exists()
    assert cli.main(["quantify", str(sam), str(gff), "--out", str(out)]) == 0


def test_runs_are_identical(inputs):
    tmp_path, sam, gff = inputs
    outs = []
    for i, workers in enumerate(["1", "1", "2"]):
        out = tmp_path / f"run{i}.tsv"
        argv = ["quant", str(sam), str(gff), "--out", str(out), "--workers", workers, "--chunk-size", "3"]
        assert cli.main(argv) == 0
        outs.append(out.read_bytes())
    assert outs[0] == outs[1] == outs[2]


def test_normalize_subcommand(inputs):
    tmp_path, sam, gff = inputs
    counts = tmp_path / "counts.tsv"
    direct = tmp_path / "direct.tsv"
    assert cli.main(["quantify", str(sam), str(gff), "--out", str(direct), "--counts-out", str(counts)]) == 0

    out = tmp_path / "renorm.tsv"
    assert cli.main(["normalize", str(counts), str(gff), "--out", str(out)]) == 0
    assert out.read_text() == direct.read_text()

    fpkm = tmp_path / "fpkm.tsv"
    assert cli.main(["normalize", str(counts), str(gff), "--out", str(fpkm), "--method", "fpkm"]) == 0
    table = _read_table(fpkm)
    assert table["geneA"] == pytest.approx(3 * 1e9 / (1000 * 10), rel=1e-6)
    assert fpkm.read_text().startswith("feature\tfpkm\n")


def test_strict_still_excludes_zero_length_gene(inputs):
    tmp_path, sam, gff = inputs
    out = tmp_path / "strict.tsv"
    assert cli.main(["quantify", str(sam), str(gff), "--out", str(out), "--strict"]) == 0
    table = _read_table(out)
    assert "geneZ" not in table
    assert sorted(table) == ["geneA", "geneB", "geneC"]


def test_unicode_digit_position_is_skipped(inputs):
    tmp_path, sam, gff = inputs
    with open(sam, "a", encoding="utf-8") as fh:
        fh.write("rX\t0\tgeneA\t²\t60\t50M\t*\t0\t0\tACGT\tIIII\n")
    out = tmp_path / "x.tsv"
    assert cli.main(["quantify", str(sam), str(gff), "--out", str(out)]) == 0
    assert cli.main(["quantify", str(sam), str(gff), "--out", str(out), "--strict"]) == 2


@pytest.mark.parametrize("flag,value", [("--chunk-size", "0"), ("--chunk-size", "-1"), ("--workers", "0")])
def test_worker_options_must_be_positive(inputs, flag, value):
    tmp_path, sam, gff = inputs
    out = tmp_path / "x.tsv"
    with pytest.raises(SystemExit) as exc:
        cli.main(["quantify", str(sam), str(gff), "--out", str(out), "--workers", "2", flag, value])
    assert exc.value.code == 2
    assert not out.exists()


def test_quantify_rejects_zero_chunk_size(inputs):
    from exprpy.quantify import quantify_expression
    tmp_path, sam, gff = inputs
    out = tmp_path / "x.tsv"
    assert quantify_expression(sam, gff, out, workers=2, chunk_size=0) == 2
    assert not out.exists()
