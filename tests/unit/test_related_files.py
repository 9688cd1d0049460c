from __future__ import annotations

from pathlib import Path

from mender.phases.related_files import RelatedFile, find_related_files


def _seed(root: Path) -> None:
    (root / "src").mkdir(parents=True)
    (root / "src" / "calc.py").write_text("def add(a, b):\n    return a + b\n", encoding="utf-8")
    (root / "src" / "util.py").write_text("HELPER = 1\n", encoding="utf-8")
    (root / "src" / "empty.py").write_text("", encoding="utf-8")
    (root / "src" / "binary.bin").write_bytes(b"\xff\xfe\x00\x81")


def test_unreadable_and_missing_paths_are_dropped(tmp_path: Path, scripted_client) -> None:
    _seed(tmp_path)
    client = scripted_client(
        {
            "find_related_files": [
                {
                    "paths": [
                        "src/util.py",
                        "src/missing.py",
                        "src/binary.bin",
                        "src/empty.py",
                        "src",
                        "src/calc.py",
                    ]
                }
            ]
        }
    )

    related = find_related_files("tests/test_calc.py", "import calc", root=tmp_path, client=client)

    assert related == [
        RelatedFile(file_path=(tmp_path / "src" / "util.py").as_posix(), content="HELPER = 1\n"),
        RelatedFile(
            file_path=(tmp_path / "src" / "calc.py").as_posix(),
            content="def add(a, b):\n    return a + b\n",
        ),
    ]


def test_absolute_and_repeated_paths_resolve_once(tmp_path: Path, scripted_client) -> None:
    _seed(tmp_path)
    absolute = (tmp_path / "src" / "util.py").as_posix()
    client = scripted_client({"find_related_files": [{"paths": [absolute, "src/util.py", "  ", ""]}]})

    related = find_related_files("src/calc.py", "", root=tmp_path, client=client)

    assert [item.file_path for item in related] == [absolute]


def test_prompt_carries_target_and_purpose(tmp_path: Path, scripted_client, payload_text) -> None:
    client = scripted_client({"find_related_files": [{"paths": []}]})

    related = find_related_files(
        "tests/test_calc.py",
        "def test_add(): ...",
        root=tmp_path,
        client=client,
        purpose="fix this failing test file",
    )

    assert related == []
    (call,) = client.calls_for("find_related_files")
    text = payload_text(call)
    assert "fix this failing test file" in text
    assert "tests/test_calc.py" in text
    assert "def test_add(): ..." in text
    assert call["metadata"]["subject"] == "tests/test_calc.py"


def test_paths_outside_the_root_are_never_read(tmp_path: Path, scripted_client) -> None:
    root = tmp_path / "repo"
    _seed(root)
    secret = tmp_path / "secret.py"
    secret.write_text("TOKEN = 'hunter2'\n", encoding="utf-8")
    client = scripted_client(
        {"find_related_files": [{"paths": [secret.as_posix(), "../secret.py", "src/../../secret.py", "src/util.py"]}]}
    )

    related = find_related_files("src/calc.py", "", root=root, client=client)

    assert related == [RelatedFile(file_path=(root / "src" / "util.py").as_posix(), content="HELPER = 1\n")]
