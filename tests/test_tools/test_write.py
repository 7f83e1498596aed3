from pathlib import Path

import pytest

from helmsman.tools.write import EditFileTool, WriteFileTool, unified_diff


def _ctx(tmp_path: Path, read_files: set | None = None) -> dict:
    return {
        "_runtime_base_path": tmp_path.resolve(),
        "_read_files": read_files if read_files is not None else set(),
        "_sandbox": True,
    }


@pytest.mark.asyncio
async def test_write_tool_creates_new_file_with_parents(tmp_path: Path):
    result = await WriteFileTool().execute(path="nested/dir/out.txt", content="hello", **_ctx(tmp_path))

    assert result.success is True
    assert result.content == "Successfully wrote 5 characters to 'nested/dir/out.txt'"
    assert (tmp_path / "nested" / "dir" / "out.txt").read_text(encoding="utf-8") == "hello"


@pytest.mark.asyncio
async def test_write_tool_refuses_to_overwrite_unread_file(tmp_path: Path):
    target = tmp_path / "keep.txt"
    target.write_text("original", encoding="utf-8")

    result = await WriteFileTool().execute(path="keep.txt", content="new", **_ctx(tmp_path))

    assert result.success is False
    assert "was not read first" in result.error
    assert target.read_text(encoding="utf-8") == "original"


@pytest.mark.asyncio
async def test_write_tool_overwrites_file_that_was_read(tmp_path: Path):
    target = tmp_path / "keep.txt"
    target.write_text("original", encoding="utf-8")

    result = await WriteFileTool().execute(
        path="keep.txt", content="new", **_ctx(tmp_path, {target.resolve()})
    )

    assert result.success is True
    assert result.friendly == "Updated 'keep.txt' (3 characters)"
    assert target.read_text(encoding="utf-8") == "new"


@pytest.mark.asyncio
async def test_write_preview_shows_diff_and_flags_identical_content(tmp_path: Path):
    target = tmp_path / "a.txt"
    target.write_text("one\n", encoding="utf-8")
    tool = WriteFileTool()

    changed = await tool.generate_preview(path="a.txt", content="two\n", **_ctx(tmp_path))
    same = await tool.generate_preview(path="a.txt", content="one\n", **_ctx(tmp_path))

    assert changed.is_diff is True
    assert "-one" in changed.content and "+two" in changed.content
    assert changed.warning == "File was not read first - it will be refused"
    assert same.can_approve is False


@pytest.mark.asyncio
async def test_edit_tool_requires_prior_read(tmp_path: Path):
    (tmp_path / "code.py").write_text("x = 1\n", encoding="utf-8")

    result = await EditFileTool().execute(
        path="code.py", old_string="x = 1", new_string="x = 2", **_ctx(tmp_path)
    )

    assert result.success is False
    assert result.error.startswith("Must read file first")


@pytest.mark.asyncio
async def test_edit_tool_replaces_unique_match(tmp_path: Path):
    target = tmp_path / "code.py"
    target.write_text("x = 1\ny = 2\n", encoding="utf-8")

    result = await EditFileTool().execute(
        path="code.py", old_string="x = 1", new_string="x = 10", **_ctx(tmp_path, {target.resolve()})
    )

    assert result.success is True
    assert target.read_text(encoding="utf-8") == "x = 10\ny = 2\n"


@pytest.mark.asyncio
async def test_edit_tool_keeps_undecodable_bytes_intact(tmp_path: Path):
    target = tmp_path / "legacy.py"
    target.write_bytes(b"caf\xe9 = 1\nx = 2\n")

    result = await EditFileTool().execute(
        path="legacy.py", old_string="x = 2", new_string="x = 3", **_ctx(tmp_path, {target.resolve()})
    )

    assert result.success is True
    assert target.read_bytes() == b"caf\xe9 = 1\nx = 3\n"


@pytest.mark.asyncio
async def test_edit_tool_rejects_missing_and_ambiguous_matches(tmp_path: Path):
    target = tmp_path / "code.py"
    target.write_text("a\na\n", encoding="utf-8")
    ctx = _ctx(tmp_path, {target.resolve()})
    tool = EditFileTool()

    missing = await tool.execute(path="code.py", old_string="b", new_string="c", **ctx)
    ambiguous = await tool.execute(path="code.py", old_string="a", new_string="c", **ctx)

    assert missing.success is False and "not found" in missing.error
    assert ambiguous.success is False and "2 times" in ambiguous.error
    assert target.read_text(encoding="utf-8") == "a\na\n"


@pytest.mark.asyncio
async def test_edit_tool_with_empty_old_string_creates_file(tmp_path: Path):
    read_files: set[Path] = set()
    tool = EditFileTool()

    created = await tool.execute(path="new.py", old_string="", new_string="print(1)\n", **_ctx(tmp_path, read_files))
    again = await tool.execute(path="new.py", old_string="", new_string="x", **_ctx(tmp_path, read_files))

    assert created.success is True
    assert (tmp_path / "new.py").resolve() in read_files
    assert again.success is False
    assert again.error == "File already exists: new.py"


@pytest.mark.asyncio
async def test_edit_preview_cannot_approve_when_text_is_missing(tmp_path: Path):
    (tmp_path / "code.py").write_text("x = 1\n", encoding="utf-8")

    preview = await EditFileTool().generate_preview(
        path="code.py", old_string="zzz", new_string="y", **_ctx(tmp_path)
    )

    assert preview.can_approve is False
    assert preview.content.startswith("Error: old_string not found")


def test_unified_diff_is_empty_for_identical_text():
    assert unified_diff("same\n", "same\n", "f.txt") == ""
    assert unified_diff("", "new\n", "f.txt").startswith("--- a/f.txt\n+++ b/f.txt\n")
