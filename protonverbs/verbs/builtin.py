"""Built-in verb table.

Entries use the same document shape as user recipe files and go through the
same parser and schema, so built-ins and custom verbs cannot drift apart.
"""

from __future__ import annotations

from typing import Any

from protonverbs.framework.presets import PRESETS, WINDOWS_VERSIONS
from verbkit.recipes import VerbDefinition, parse_recipe_document

_VC_ARGS = ["/install", "/quiet", "/norestart"]
_DOTNET_ARGS = ["/q", "/norestart"]


def _installer_verb(
    name: str,
    description: str,
    publisher: str,
    year: str,
    installers: list[tuple[str, str, str | None]],
    args: list[str],
) -> dict[str, Any]:
    actions: list[dict[str, Any]] = []
    for url, filename, sha256 in installers:
        download: dict[str, Any] = {"type": "download", "url": url, "filename": filename}
        if sha256:
            download["sha256"] = sha256
        actions.append(download)
        actions.append({"type": "run", "executable": filename, "args": list(args)})
    return {
        "verb": {
            "name": name,
            "description": description,
            "category": "dlls",
            "publisher": publisher,
            "year": year,
        },
        "actions": actions,
    }


_VCRUN2022 = [
    ("https://aka.ms/vs/17/release/vc_redist.x86.exe", "vc_redist.x86.exe", None),
    ("https://aka.ms/vs/17/release/vc_redist.x64.exe", "vc_redist.x64.exe", None),
]

DLL_DOCUMENTS: list[dict[str, Any]] = [
    _installer_verb("vcrun2022", "Visual C++ 2015-2022 Runtime", "Microsoft", "2022", _VCRUN2022, _VC_ARGS),
    _installer_verb("vcrun2019", "Visual C++ 2015-2019 Runtime", "Microsoft", "2019", _VCRUN2022, _VC_ARGS),
    _installer_verb("vcrun2017", "Visual C++ 2017 Runtime", "Microsoft", "2017", _VCRUN2022, _VC_ARGS),
    _installer_verb("vcrun2015", "Visual C++ 2015 Runtime", "Microsoft", "2015", _VCRUN2022, _VC_ARGS),
    _installer_verb(
        "vcrun2013",
        "Visual C++ 2013 Runtime",
        "Microsoft",
        "2013",
        [
            (
                "https://download.microsoft.com/download/2/E/6/2E61CFA4-993B-4DD4-91DA-3737CD5CD6E3/vcredist_x86.exe",
                "vcredist_2013_x86.exe",
                None,
            ),
            (
                "https://download.microsoft.com/download/2/E/6/2E61CFA4-993B-4DD4-91DA-3737CD5CD6E3/vcredist_x64.exe",
                "vcredist_2013_x64.exe",
                None,
            ),
        ],
        _VC_ARGS,
    ),
    _installer_verb(
        "vcrun2012",
        "Visual C++ 2012 Runtime",
        "Microsoft",
        "2012",
        [
            (
                "https://download.microsoft.com/download/1/6/B/16B06F60-3B20-4FF2-B699-5E9B7962F9AE/VSU_4/vcredist_x86.exe",
                "vcredist_2012_x86.exe",
                None,
            ),
            (
                "https://download.microsoft.com/download/1/6/B/16B06F60-3B20-4FF2-B699-5E9B7962F9AE/VSU_4/vcredist_x64.exe",
                "vcredist_2012_x64.exe",
                None,
            ),
        ],
        _VC_ARGS,
    ),
    _installer_verb(
        "dotnet48",
        "MS .NET 4.8",
        "Microsoft",
        "2019",
        [
            (
                "https://download.visualstudio.microsoft.com/download/pr/2d6bb6b2-226a-4baa-bdec-798822606ff1/"
                "8494001c276a4b96804cde7829c04d7f/ndp48-x86-x64-allos-enu.exe",
                "ndp48-x86-x64-allos-enu.exe",
                "68c9986a8dcc0214d909aa1f31bee9fb5461bb839edca996a75b08ddffc1483f",
            )
        ],
        _DOTNET_ARGS,
    ),
    _installer_verb(
        "dotnet472",
        "MS .NET 4.7.2",
        "Microsoft",
        "2018",
        [
            (
                "https://download.microsoft.com/download/6/E/4/6E48E8AB-DC00-419E-9704-06DD46E5F81D/"
                "NDP472-KB4054530-x86-x64-AllOS-ENU.exe",
                "NDP472-KB4054530-x86-x64-AllOS-ENU.exe",
                "c908f0a5bea4be282e35acba307d0061b71b8b66ca9894943d3cbb53cad019bc",
            )
        ],
        _DOTNET_ARGS,
    ),
    _installer_verb(
        "dotnet40",
        "MS .NET 4.0",
        "Microsoft",
        "2011",
        [
            (
                "https://download.microsoft.com/download/9/5/A/95A9616B-7A37-4AF6-BC36-D6EA96C8DAAE/"
                "dotNetFx40_Full_x86_x64.exe",
                "dotNetFx40_Full_x86_x64.exe",
                "65e064258f2e418816b304f646ff9e87af101e4c9552ab064bb74d281c38659f",
            )
        ],
        _DOTNET_ARGS,
    ),
    _installer_verb(
        "physx",
        "PhysX",
        "Nvidia",
        "2021",
        [
            (
                "https://us.download.nvidia.com/Windows/9.21.0713/PhysX-9.21.0713-SystemSoftware.exe",
                "PhysX-9.21.0713-SystemSoftware.exe",
                None,
            )
        ],
        ["/s"],
    ),
]

_VERSION_YEARS = {version.name: version.year for version in WINDOWS_VERSIONS}


def _settings_documents() -> list[dict[str, Any]]:
    documents: list[dict[str, Any]] = []
    for name, preset in PRESETS.items():
        verb: dict[str, Any] = {"name": name, "description": preset.description, "category": "settings"}
        if name in _VERSION_YEARS:
            verb["publisher"] = "Microsoft"
            verb["year"] = _VERSION_YEARS[name]
        else:
            verb["publisher"] = "Wine"
        documents.append({"verb": verb, "actions": [{"type": "winecfg", "preset": name}]})
    return documents


def builtin_verbs() -> tuple[VerbDefinition, ...]:
    return tuple(
        parse_recipe_document(document, source="builtin", known_presets=PRESETS.keys())
        for document in [*DLL_DOCUMENTS, *_settings_documents()]
    )
