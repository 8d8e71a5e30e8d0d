import pytest

from verbkit.actions import ActionOutcome, Copy, DllOverride, Download, RegistryImport, RegistrySet, Run, normalize_hive_path
from verbkit.errors import PathTraversalError, ValidationError
from verbkit.paths import check_dest_shape, resolve_inside


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("HKCU\\Software\\Wine", "HKEY_CURRENT_USER\\Software\\Wine"),
        ("hklm/Software/Demo", "HKEY_LOCAL_MACHINE\\Software\\Demo"),
        ("HKEY_USERS\\.Default", "HKEY_USERS\\.Default"),
    ],
)
def test_normalize_hive_path(raw, expected):
    assert normalize_hive_path(raw) == expected


def test_hive_path_without_known_root_is_rejected():
    with pytest.raises(ValidationError, match="recognized root"):
        RegistrySet("Software\\Wine", "Version", "win7")


def test_registry_value_must_match_its_type():
    with pytest.raises(ValidationError):
        RegistrySet("HKCU\\X", "n", "12", "dword")
    with pytest.raises(ValidationError):
        RegistrySet("HKCU\\X", "n", 1 << 32, "dword")
    with pytest.raises(ValidationError):
        RegistrySet("HKCU\\X", "n", "zz", "binary")
    with pytest.raises(ValidationError):
        RegistrySet("HKCU\\X", "n", "x", "reg_sz")


def test_download_requires_http_url_and_bare_filename():
    with pytest.raises(ValidationError, match="http"):
        Download("ftp://example.invalid/a.exe", "a.exe")
    with pytest.raises(ValidationError, match="bare file name"):
        Download("https://example.invalid/a.exe", "../a.exe")
    with pytest.raises(ValidationError, match="sha256"):
        Download("https://example.invalid/a.exe", "a.exe", sha256="abc")


def test_run_args_must_be_a_list():
    with pytest.raises(ValidationError):
        Run("setup.exe", "/S")
    with pytest.raises(ValidationError):
        Run("setup.exe", timeout_seconds=0)


def test_dll_override_modes():
    assert DllOverride("D3DX9_43.DLL", "Native, Builtin").mode == "native,builtin"
    with pytest.raises(ValidationError):
        DllOverride("d3d9", "sometimes")


def test_outcome_state_must_be_terminal():
    with pytest.raises(ValueError):
        ActionOutcome(index=0, action_type="run", description="run x", state="running")


@pytest.mark.parametrize("dest", ["/etc/passwd", "C:\\windows", "../x", "drive_c/../../x", "", "."])
def test_check_dest_shape_rejects_escapes(dest):
    with pytest.raises(PathTraversalError):
        check_dest_shape(dest)


def test_check_dest_shape_normalizes():
    assert check_dest_shape("drive_c\\windows\\..\\users\\.\\x.dll") == "drive_c/users/x.dll"


def test_resolve_inside_follows_symlinks(tmp_path):
    prefix = tmp_path / "pfx"
    (prefix / "drive_c").mkdir(parents=True)
    (prefix / "drive_c" / "out").symlink_to(tmp_path)

    assert resolve_inside(prefix, "drive_c/a.dll") == (prefix / "drive_c" / "a.dll").resolve()
    with pytest.raises(PathTraversalError):
        resolve_inside(prefix, "drive_c/out/a.dll")


@pytest.mark.parametrize("src", ["/etc/passwd", "~/.ssh/id_rsa", "C:\\windows\\win.ini", "\\\\server\\share"])
def test_copy_source_must_be_relative_to_the_recipe(src):
    with pytest.raises(PathTraversalError):
        Copy(src, "drive_c/x")


def test_copy_source_keeps_relative_glob():
    assert Copy("dlls/*.dll", "drive_c/windows/system32").src == "dlls/*.dll"


def test_reg_import_requires_reg_header():
    document = "REGEDIT4\n\n[HKEY_CURRENT_USER\\Software\\Demo]\n\"A\"=\"b\"\n"

    assert RegistryImport(document).key_count == 1
    with pytest.raises(ValidationError, match="header"):
        RegistryImport("[HKEY_CURRENT_USER\\Software\\Demo]\n")
    with pytest.raises(ValidationError):
        RegistryImport("   ")
