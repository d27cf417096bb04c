from pathlib import Path

import pytest
from conftest import COMMIT

from envsnap.descriptor import load_descriptor, parse_descriptor
from envsnap.errors import DescriptorError

SHA = "b" * 64


def test_parse_descriptor_with_source_array() -> None:
    descriptor = parse_descriptor(
        f"""
[[source]]
url = "https://example.invalid/archive/{{revision}}.tar.gz"
revision = "{COMMIT}"
sha256 = "{SHA}"

[[source]]
url = "https://example.invalid/extra.json"
revision = "{COMMIT}"
sha256 = "{SHA}"

[environment]
packages = ["flatbuffers", "cmake@3.21"]
"""
    )

    assert len(descriptor.sources) == 2
    assert descriptor.sources[0].resolved_url == f"https://example.invalid/archive/{COMMIT}.tar.gz"
    assert descriptor.sources[0].sha256 == SHA
    assert descriptor.packages == ("flatbuffers", "cmake@3.21")


def test_single_source_table_is_accepted() -> None:
    descriptor = parse_descriptor(
        f"""
[source]
url = "https://example.invalid/a.json"
revision = "{COMMIT}"

[environment]
packages = ["flatbuffers"]
"""
    )

    assert len(descriptor.sources) == 1
    assert descriptor.sources[0].sha256 is None


@pytest.mark.parametrize(
    "raw",
    [
        "this is = = not toml",
        '[environment]\npackages = ["flatbuffers"]\n',
        f'[[source]]\nurl = "u"\nrevision = "{COMMIT}"\n',
        f'[[source]]\nurl = "u"\nrevision = "{COMMIT}"\n[environment]\npackages = []\n',
        f'[[source]]\nurl = "u"\nrevision = "{COMMIT}"\n[environment]\npackages = ["bad name"]\n',
        '[[source]]\nurl = "u"\n[environment]\npackages = ["flatbuffers"]\n',
        f'[[source]]\nurl = "u"\nrevision = "{COMMIT}"\nsha256 = "nothex"\n'
        '[environment]\npackages = ["flatbuffers"]\n',
    ],
)
def test_invalid_descriptor_raises_descriptor_error(raw: str) -> None:
    with pytest.raises(DescriptorError) as excinfo:
        parse_descriptor(raw, path="shell.toml")

    assert excinfo.value.code == "E_DESCRIPTOR"
    assert excinfo.value.context["path"] == "shell.toml"


def test_load_descriptor_reads_file(tmp_path: Path) -> None:
    path = tmp_path / "shell.toml"
    path.write_text(
        f'[[source]]\nurl = "u"\nrevision = "{COMMIT}"\n[environment]\npackages = ["flatbuffers"]\n',
        encoding="utf-8",
    )

    descriptor = load_descriptor(path)

    assert descriptor.path == path
    assert descriptor.packages == ("flatbuffers",)


def test_load_missing_descriptor_raises(tmp_path: Path) -> None:
    with pytest.raises(DescriptorError):
        load_descriptor(tmp_path / "absent.toml")
