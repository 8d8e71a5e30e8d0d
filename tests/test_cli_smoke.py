import pytest

from protonverbs import cli


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    for key in ("PROTON_VERSION", "PROTONVERBS_CONFIG", "WINE", "WINE64", "WINESERVER", "WINELOADER"):
        monkeypatch.delenv(key, raising=False)

    runtime = tmp_path / "runtimes" / "Proton 9.0"
    (runtime / "files" / "bin").mkdir(parents=True)
    (runtime / "files" / "share" / "default_pfx" / "drive_c" / "windows").mkdir(parents=True)
    (runtime / "files" / "share" / "default_pfx" / "system.reg").write_text(
        "WINE REGISTRY Version 2\n", encoding="utf-8"
    )

    verbs_dir = tmp_path / "verbs"
    verbs_dir.mkdir()
    (verbs_dir / "mytweak.toml").write_text(
        '[verb]\nname = "mytweak"\ndescription = "My registry tweak"\n\n'
        '[[actions]]\ntype = "reg"\npath = "HKCU\\\\Software\\\\Demo"\nname = "Enabled"\nvalue = 1\n',
        encoding="utf-8",
    )

    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "default_runtime: Proton 9.0",
                "paths:",
                f"  verbs_dir: '{verbs_dir.as_posix()}'",
                f"  cache_dir: '{(tmp_path / 'cache').as_posix()}'",
                f"  log_dir: '{(tmp_path / 'logs').as_posix()}'",
                "runtime_dirs:",
                f"  - '{(tmp_path / 'runtimes').as_posix()}'",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return path


def test_cli_list_verbs_smoke(capsys, config_path):
    rc = cli.main(["--config", str(config_path), "list-verbs"])
    assert rc == 0

    out = capsys.readouterr().out
    assert "vcrun2022\tdlls\t" in out
    assert "win10\tsettings\t" in out
    assert "mytweak\tcustom\tMy registry tweak" in out


def test_cli_list_verbs_filters(capsys, config_path):
    rc = cli.main(["--config", str(config_path), "list-verbs", "--category", "custom"])
    assert rc == 0
    assert capsys.readouterr().out.strip().splitlines() == ["mytweak\tcustom\tMy registry tweak"]

    rc = cli.main(["--config", str(config_path), "list-verbs", "--search", "dotnet4"])
    assert rc == 0
    names = [line.split("\t")[0] for line in capsys.readouterr().out.splitlines()]
    assert names == ["dotnet40", "dotnet472", "dotnet48"]


def test_cli_prefix_lifecycle_with_dry_run(capsys, config_path, tmp_path):
    prefix = tmp_path / "prefixes" / "demo"

    assert cli.main(["--config", str(config_path), "create-prefix", str(prefix), "--arch", "win32"]) == 0
    assert (prefix / "drive_c" / "windows").is_dir()
    assert "Created prefix" in capsys.readouterr().out

    rc = cli.main(["--config", str(config_path), "prefix-run", str(prefix), "win10", "mytweak", "--dry-run"])
    assert rc == 0
    assert "Succeeded: win10, mytweak" in capsys.readouterr().out
    assert list((tmp_path / "logs").glob("*_oplog.log"))

    assert cli.main(["--config", str(config_path), "delete-prefix", str(prefix)]) == 0
    assert not prefix.exists()


def test_cli_unknown_verb_exits_not_found(capsys, config_path, tmp_path):
    prefix = tmp_path / "pfx"
    assert cli.main(["--config", str(config_path), "create-prefix", str(prefix)]) == 0
    capsys.readouterr()

    rc = cli.main(["--config", str(config_path), "prefix-run", str(prefix), "vcrun2023"])

    assert rc == cli.EXIT_NOT_FOUND
    assert "vcrun2022" in capsys.readouterr().err


def test_cli_prefix_run_on_missing_prefix_fails(capsys, config_path, tmp_path):
    rc = cli.main(
        ["--config", str(config_path), "prefix-run", str(tmp_path / "nowhere"), "win10", "--runtime", "Proton"]
    )

    assert rc == cli.EXIT_FAILED
    assert "not ready" in capsys.readouterr().err


def test_cli_unknown_application_exits_not_found(capsys, config_path):
    rc = cli.main(["--config", str(config_path), "run", "123456", "win10"])

    assert rc == cli.EXIT_NOT_FOUND
    assert "Application not found" in capsys.readouterr().err


def test_cli_missing_config_file_fails(capsys, tmp_path):
    rc = cli.main(["--config", str(tmp_path / "missing.yaml"), "list-verbs"])

    assert rc == 1
    assert "Config file not found" in capsys.readouterr().err
