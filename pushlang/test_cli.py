import pytest

from pushlang.cli import main


COUNT = "0 while dup 3 swap > do dup putd 1 + end\n"


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "count.push"
    path.write_text(COUNT)
    return path


def test_compile_and_run(source, capsysbinary):
    assert main([str(source)]) == 0
    assert capsysbinary.readouterr().out == b"0\n1\n2\n"


def test_compile_only_then_run_binary(source, tmp_path, capsysbinary):
    binary = tmp_path / "count.pushc"
    assert main(["-c", str(source), "-o", str(binary)]) == 0
    assert capsysbinary.readouterr().out == b""
    assert binary.read_bytes()[:8] == (16).to_bytes(8, "little")

    assert main([str(binary)]) == 0
    assert capsysbinary.readouterr().out == b"0\n1\n2\n"


def test_default_output_name(source, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["-c", str(source)]) == 0
    assert (tmp_path / "out.pushc").exists()


def test_disasm(source, capsys):
    assert main(["--disasm", str(source)]) == 0
    out = capsys.readouterr().out
    assert "BRANCH" in out
    assert "JUMP" in out
    assert out.rstrip().endswith("EXIT")


def test_dump_heap(tmp_path, capsysbinary):
    path = tmp_path / "heap.push"
    path.write_text("2 alloc 171 swap 1 + !")
    assert main(["--dump-heap", str(path)]) == 0
    assert b"0x0000  00 ab" in capsysbinary.readouterr().err


def test_compile_error_exit_status(tmp_path, capsys):
    path = tmp_path / "bad.push"
    path.write_text("1 if 2")
    assert main([str(path)]) == 1
    assert "never closed" in capsys.readouterr().err


def test_runtime_error_exit_status(tmp_path, capsys):
    path = tmp_path / "bad.push"
    path.write_text("1 +")
    assert main([str(path)]) == 1
    assert "pushc: error:" in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / "nope.push")]) == 1


def test_unknown_extension(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path / "prog.txt")])
    assert exc.value.code == 2


def test_compile_flag_needs_source(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["-c", str(tmp_path / "prog.pushc")])
    assert exc.value.code == 2


def test_source_not_utf8(tmp_path, capsys):
    path = tmp_path / "bad.push"
    path.write_bytes(b"1 \xff\xfe putd")
    assert main([str(path)]) == 1
    err = capsys.readouterr().err
    assert "pushc: error:" in err
    assert "not valid UTF-8" in err
