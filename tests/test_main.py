import json

import pytest

import main
from external_compressors import GzipCompressor
from transform_methods import TransformId
from transform_pipeline import ChainEntry, CompressionArtifact, pack_artifact


@pytest.fixture
def workdir(tmp_path, monkeypatch, sample_text):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "input.txt").write_bytes(sample_text)
    return tmp_path


def test_compress_decompress_round_trip(workdir, sample_text):
    stats = main.main(["compress", "input.txt", "input.ptrn", "--max-cycles", "3"])
    assert stats['cycles'] <= 3
    assert (workdir / "input.ptrn").exists()

    main.main(["decompress", "input.ptrn", "restored.txt"])
    assert (workdir / "restored.txt").read_bytes() == sample_text


@pytest.mark.parametrize("compressor,selector", [("bzip2", "cycle"), ("zstd", "datatype"), ("lz4", "analysis")])
def test_compress_options(workdir, sample_text, compressor, selector):
    stats = main.main(["compress", "input.txt", "out.ptrn", "--compressor", compressor,
                       "--selector", selector])
    assert stats['compressor'] == compressor

    main.main(["decompress", "out.ptrn", "restored.txt"])
    assert (workdir / "restored.txt").read_bytes() == sample_text


def test_compress_records_history(workdir):
    main.main(["compress", "input.txt", "input.ptrn"])
    history = json.loads((workdir / "compression_results" / "compression_history.json").read_text())
    assert [entry['filename'] for entry in history] == ["input.txt"]

    summary = main.main(["history", "--output-dir", "plots"])
    assert summary['total_files'] == 1
    assert (workdir / "plots" / "summary.json").exists()
    assert (workdir / "plots" / "cycle_history.png").exists()


def test_log_option(workdir):
    main.main(["compress", "input.txt", "input.ptrn", "--log", "run.log"])
    main.main(["decompress", "input.ptrn", "restored.txt", "--log", "run.log"])
    content = (workdir / "run.log").read_text(encoding="utf-8")
    assert content.count("LOG STARTED") == 2
    assert "Undid" in content


def test_analyze(workdir, capsys):
    report = main.main(["analyze", "input.txt"])
    assert report.data_type.value == "TEXT"
    assert "Data type: TEXT" in capsys.readouterr().out


def test_compare(workdir, capsys):
    rows = main.main(["compare", "input.txt", "--compressor", "deflate"])
    assert len(rows) == 7
    assert "NO_TRANSFORM" in capsys.readouterr().out


def test_compare_saves_plot(workdir):
    main.main(["compare", "input.txt", "--output-dir", "plots"])
    assert (workdir / "plots" / "transform_comparison.png").exists()


def test_explore(workdir):
    stats = main.main(["explore", "input.txt", "--seconds", "60", "--seed", "3", "--max-cycles", "2"])
    assert stats['cycles'] == 2
    assert stats['stop_reason'] == "max_cycles"


def test_decompress_garbage_exits(workdir):
    (workdir / "bad.ptrn").write_bytes(b"not an artifact")
    with pytest.raises(SystemExit) as excinfo:
        main.main(["decompress", "bad.ptrn", "out.txt"])
    assert excinfo.value.code == 1


def test_decompress_oversized_cycle_frame_exits(workdir):
    artifact = CompressionArtifact(
        compressed=GzipCompressor().compress(b"CYC|ab|999999999999|"),
        chain=(ChainEntry(TransformId.PATTERN_CYCLE, {}),),
        original_size=2,
        checksum=b"\x00" * 16,
        compressor="gzip",
    )
    (workdir / "bad.ptrn").write_bytes(pack_artifact(artifact))
    with pytest.raises(SystemExit) as excinfo:
        main.main(["decompress", "bad.ptrn", "out.txt"])
    assert excinfo.value.code == 1


def test_missing_input_exits(workdir):
    with pytest.raises(SystemExit):
        main.main(["compress", "missing.txt", "out.ptrn"])


def test_no_command_prints_help(capsys):
    assert main.main([]) is None
    assert "usage" in capsys.readouterr().out
