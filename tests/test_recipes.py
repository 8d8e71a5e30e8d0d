import pytest

from verbkit.actions import Copy, DllOverride, Download, RegistryImport, RegistrySet, Run, WineConfig
from verbkit.errors import ParseError, PathTraversalError, ValidationError
from verbkit.recipes import normalize_category, parse_recipe_document, parse_recipe_file
from verbkit.schema import validate_document


def _doc(*actions, **verb):
    verb.setdefault("name", "demo")
    return {"verb": verb, "actions": list(actions)}


def test_parse_recipe_document_builds_typed_actions():
    definition = parse_recipe_document(
        _doc(
            {"type": "download", "url": "https://example.invalid/setup.exe", "filename": "setup.exe"},
            {"type": "run", "executable": "setup.exe", "args": ["/S"], "best_effort": True},
            {"type": "copy", "src": "data/*.dll", "dest": "drive_c/windows/system32"},
            {"type": "reg", "path": "HKCU/Software/Demo", "name": "Level", "value": 3},
            {"type": "override", "dll": "D3D9.dll", "mode": "native"},
            {"type": "winecfg", "preset": "win10"},
            description="Demo verb",
            category="app",
        ),
        source="demo.toml",
    )

    assert definition.name == "demo"
    assert definition.description == "Demo verb"
    assert definition.category == "apps"
    assert [type(a) for a in definition.actions] == [Download, Run, Copy, RegistrySet, DllOverride, WineConfig]

    run = definition.actions[1]
    assert run.args == ("/S",)
    assert run.best_effort is True

    reg = definition.actions[3]
    assert reg.hive_path == r"HKEY_CURRENT_USER\Software\Demo"
    assert reg.value_type == "dword"

    override = definition.actions[4]
    assert override.dll_name == "d3d9"


def test_description_falls_back_to_title_then_name():
    titled = parse_recipe_document(_doc(title="Titled"), source="t")
    bare = parse_recipe_document(_doc(), source="t")

    assert titled.description == "Titled"
    assert bare.description == "demo"
    assert bare.actions == ()


def test_unknown_category_becomes_custom():
    assert normalize_category("Fonts") == "fonts"
    assert normalize_category("whatever") == "custom"
    assert normalize_category(None) == "custom"


def test_unknown_action_type_reports_index():
    with pytest.raises(ValidationError) as excinfo:
        parse_recipe_document(
            _doc({"type": "winecfg", "preset": "win7"}, {"type": "explode"}),
            source="bad.toml",
        )

    assert excinfo.value.action_index == 1
    assert "explode" in excinfo.value.message


def test_missing_required_field_is_validation_error():
    with pytest.raises(ValidationError) as excinfo:
        parse_recipe_document(_doc({"type": "download", "url": "https://example.invalid/a.exe"}), source="x")

    assert excinfo.value.action_index == 0
    assert excinfo.value.action_type == "download"


def test_unknown_preset_rejected_when_presets_are_known():
    with pytest.raises(ValidationError, match="unknown winecfg preset"):
        parse_recipe_document(
            _doc({"type": "winecfg", "preset": "win95"}),
            source="x",
            known_presets={"win7", "win10"},
        )


def test_copy_destination_escaping_prefix_is_rejected_at_load():
    with pytest.raises(PathTraversalError) as excinfo:
        parse_recipe_document(_doc({"type": "copy", "src": "a.dll", "dest": "../../etc"}), source="x")

    assert excinfo.value.action_index == 0


def test_action_aliases_are_accepted():
    content = "Windows Registry Editor Version 5.00\n\n[HKEY_LOCAL_MACHINE\\Software\\Demo]\n@=\"x\"\n"
    definition = parse_recipe_document(
        _doc(
            {"type": "registry", "content": content},
            {"type": "dll_override", "dll": "xinput1_3", "mode": "disabled"},
            {"type": "local_installer", "path": "/opt/installers/setup.exe"},
        ),
        source="x",
    )

    reg, override, run = definition.actions
    assert isinstance(reg, RegistryImport) and reg.content == content
    assert isinstance(override, DllOverride) and override.registry_value == ""
    assert isinstance(run, Run) and run.executable == "/opt/installers/setup.exe"


def test_parse_recipe_file_toml_and_yaml(tmp_path):
    toml_path = tmp_path / "fonts.toml"
    toml_path.write_text(
        '[verb]\nname = "myfont"\ncategory = "fonts"\n\n'
        '[[actions]]\ntype = "copy"\nsrc = "myfont.ttf"\ndest = "drive_c/windows/Fonts"\n',
        encoding="utf-8",
    )
    yaml_path = tmp_path / "tweak.yaml"
    yaml_path.write_text(
        "verb:\n  name: tweak\nactions:\n  - type: winecfg\n    preset: win7\n",
        encoding="utf-8",
    )

    font = parse_recipe_file(toml_path)
    tweak = parse_recipe_file(yaml_path, known_presets={"win7"})

    assert font.category == "fonts"
    assert font.source == str(toml_path)
    assert font.storage_dir == str(tmp_path.resolve())
    assert not font.is_builtin
    assert tweak.actions == (WineConfig("win7"),)


def test_parse_recipe_file_syntax_error_is_parse_error(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("[verb\nname = 'x'\n", encoding="utf-8")

    with pytest.raises(ParseError) as excinfo:
        parse_recipe_file(path)

    assert excinfo.value.path == str(path)


def test_parse_recipe_file_empty_yaml_is_parse_error(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")

    with pytest.raises(ParseError, match="empty"):
        parse_recipe_file(path)


def test_verb_without_actions_section_is_accepted(tmp_path):
    path = tmp_path / "placeholder.toml"
    path.write_text('[verb]\nname = "placeholder"\ncategory = "apps"\n', encoding="utf-8")

    definition = parse_recipe_file(path)

    assert definition.name == "placeholder"
    assert definition.actions == ()


def test_copy_source_outside_recipe_directory_is_rejected_at_load():
    with pytest.raises(PathTraversalError) as excinfo:
        parse_recipe_document(
            _doc(
                {"type": "winecfg", "preset": "win10"},
                {"type": "copy", "src": "~/secrets.txt", "dest": "drive_c/x.txt"},
            ),
            source="x",
        )

    assert excinfo.value.action_index == 1


def test_original_style_registry_action_imports_raw_reg_text(tmp_path):
    path = tmp_path / "wayland.toml"
    path.write_text(
        '[verb]\nname = "mywayland"\ncategory = "settings"\n\n'
        '[[actions]]\ntype = "registry"\n'
        "content = '''Windows Registry Editor Version 5.00\n\n"
        '[HKEY_CURRENT_USER\\Software\\Wine\\Drivers]\n"Graphics"="wayland"\n\'\'\'\n',
        encoding="utf-8",
    )

    (action,) = parse_recipe_file(path).actions

    assert isinstance(action, RegistryImport)
    assert '"Graphics"="wayland"' in action.content
    assert action.key_count == 1


@pytest.mark.parametrize("payload", [["verb"], "verb: x", None])
def test_document_that_is_not_a_mapping_is_a_validation_error(payload):
    with pytest.raises(ValidationError):
        validate_document(payload, source="broken.yaml")
