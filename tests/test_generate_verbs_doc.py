from tools.generate_verbs_doc import _verb_rows, generate_markdown, main


def test_verbs_doc_generation_is_deterministic():
    rows = _verb_rows()
    md1 = generate_markdown(rows=rows)
    md2 = generate_markdown(rows=rows)

    assert md1 == md2
    assert "## dlls" in md1
    assert "## settings" in md1
    assert "- `vcrun2022`: Visual C++ 2015-2022 Runtime (Microsoft, 2022) `[download, run]`" in md1
    assert "`win10`" in md1


def test_verbs_doc_written_to_output(tmp_path, capsys):
    output = tmp_path / "docs" / "verbs.md"

    assert main(["--output", str(output)]) == 0

    assert output.read_text(encoding="utf-8").startswith("# Built-in Verbs\n")
    assert "Wrote" in capsys.readouterr().out
