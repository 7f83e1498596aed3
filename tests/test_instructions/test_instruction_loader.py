from pathlib import Path

import pytest

from helmsman.instructions import (
    SYSTEM_PROMPT_TEMPLATE,
    InstructionLoader,
    build_system_prompt,
    load_agents_content,
)


def test_personal_override_wins(tmp_path: Path):
    base = tmp_path / "base"
    personal = tmp_path / "personal"
    base.mkdir()
    personal.mkdir()
    (base / "greeting.md").write_text("base {name}", encoding="utf-8")
    (personal / "greeting.md").write_text("personal {name}", encoding="utf-8")

    loader = InstructionLoader(base_dir=base, personal_dir=personal)

    assert loader.is_overridden("greeting.md") is True
    assert loader.render("greeting.md", name="Ada") == "personal Ada"


def test_render_leaves_unknown_placeholders(tmp_path: Path):
    (tmp_path / "t.md").write_text("{known} and {unknown}\n", encoding="utf-8")
    loader = InstructionLoader(base_dir=tmp_path, personal_dir=tmp_path / "none")

    assert loader.render("t.md", known="yes") == "yes and {unknown}"


def test_missing_template_raises(tmp_path: Path):
    loader = InstructionLoader(base_dir=tmp_path, personal_dir=tmp_path / "none")

    with pytest.raises(FileNotFoundError):
        loader.load("absent.md")


def test_environment_overrides_base_dir(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("HELMSMAN_INSTRUCTIONS_DIR", str(tmp_path))

    assert InstructionLoader(personal_dir=tmp_path / "none").base_dir == tmp_path.resolve()


def test_packaged_system_prompt_renders_all_placeholders(monkeypatch, tmp_path: Path):
    monkeypatch.delenv("HELMSMAN_INSTRUCTIONS_DIR", raising=False)
    loader = InstructionLoader(personal_dir=tmp_path / "none")

    prompt = build_system_prompt(loader, tmp_path)

    assert loader.load(SYSTEM_PROMPT_TEMPLATE)
    assert str(tmp_path) in prompt
    assert "run_shell_command" in prompt
    assert "{current_directory}" not in prompt
    assert "{agents_content}" not in prompt


def test_agents_content_is_wrapped_or_empty(tmp_path: Path):
    assert load_agents_content(tmp_path) == ""

    (tmp_path / "AGENTS.md").write_text("  \n", encoding="utf-8")
    assert load_agents_content(tmp_path) == ""

    (tmp_path / "AGENTS.md").write_text("Use pytest.\n", encoding="utf-8")
    assert load_agents_content(tmp_path) == (
        "\n<project_specific_instructions>\nUse pytest.\n</project_specific_instructions>"
    )


def test_undecodable_agents_file_is_ignored(tmp_path: Path):
    (tmp_path / "AGENTS.md").write_bytes(b"Caf\xe9 rules\n")

    assert load_agents_content(tmp_path) == ""
