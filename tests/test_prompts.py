"""Tests for the prompts module."""

import pytest

from homeplan.lib.prompts import (
    load_prompt,
    render_prompt,
    clear_cache,
    PromptError,
    PROMPTS_DIR,
)

TASK_VARS = dict(
    task_title="Paint hallway",
    room="Hallway",
    project_name="Victorian Terrace",
    vision_statement="Light and calm",
)


class TestLoadPrompt:
    """Tests for load_prompt function."""

    def test_load_existing_prompt(self):
        """Should load an existing prompt template."""
        clear_cache()
        content = load_prompt("task_intro")
        assert "{task_title}" in content

    def test_html_comments_stripped(self):
        """Should strip HTML comments from loaded prompts."""
        clear_cache()
        content = load_prompt("task_intro")
        assert "<!--" not in content
        assert "-->" not in content
        assert "Variables:" not in content

    def test_load_nonexistent_prompt_raises(self):
        """Should raise PromptError for missing template."""
        clear_cache()
        with pytest.raises(PromptError) as exc_info:
            load_prompt("nonexistent_prompt_xyz")
        assert "not found" in str(exc_info.value)
        assert "nonexistent_prompt_xyz" in str(exc_info.value)

    def test_caching_works(self):
        """Should cache loaded prompts."""
        clear_cache()
        assert load_prompt("task_plan") is load_prompt("task_plan")

    def test_clear_cache(self):
        clear_cache()
        load_prompt("task_plan")
        load_prompt("task_plan")
        assert load_prompt.cache_info().hits == 1
        clear_cache()
        assert load_prompt.cache_info().hits == 0


class TestRenderPrompt:
    """Tests for render_prompt function."""

    def test_render_with_variables(self):
        clear_cache()
        result = render_prompt("task_intro", **TASK_VARS)
        assert '"Paint hallway"' in result
        assert "Light and calm" in result

    def test_render_missing_variable_raises(self):
        """Should raise PromptError with helpful message for missing variable."""
        clear_cache()
        with pytest.raises(PromptError) as exc_info:
            render_prompt("task_intro", task_title="Test")
        error_msg = str(exc_info.value)
        assert "Missing required variable" in error_msg
        assert "task_title" in error_msg  # Shows what was provided

    def test_render_nonexistent_template_raises(self):
        clear_cache()
        with pytest.raises(PromptError):
            render_prompt("nonexistent_xyz", foo="bar")

    def test_escaped_braces_in_directive_examples(self):
        """Directive examples keep literal JSON braces after rendering."""
        clear_cache()
        result = render_prompt("task_chat_supervising", plan_summary="1. [ ] Sand", **TASK_VARS)
        assert '[UPDATE_PLAN] {"cost": "£150-£200"}' in result

        result = render_prompt(
            "project_chat",
            project_name="Victorian Terrace",
            rooms="Hallway",
            rooms_with_photos="None yet",
            task_digest="None yet",
            has_images="No",
            has_detail="No",
            context_gaps="",
        )
        assert '[SUGGEST_TASK:{"title": "Task Title", "room": "Room Name"}]' in result

    def test_vision_prompt_has_no_variables(self):
        clear_cache()
        assert render_prompt("vision_statement") == load_prompt("vision_statement")


class TestPromptsDir:
    """Tests for prompts directory configuration."""

    def test_prompts_dir_exists(self):
        assert PROMPTS_DIR.is_dir()

    def test_all_expected_prompts_exist(self):
        """Should have a template for every call site."""
        expected = [
            "task_plan.md",
            "task_chat_gathering.md",
            "task_chat_supervising.md",
            "project_chat.md",
            "task_intro.md",
            "project_summary.md",
            "vision_statement.md",
        ]
        for filename in expected:
            path = PROMPTS_DIR / filename
            assert path.exists(), f"Missing prompt: {filename}"

    def test_prompts_have_documentation_header(self):
        """All prompts should have HTML comment documentation (in raw file)."""
        for prompt_file in PROMPTS_DIR.glob("*.md"):
            content = prompt_file.read_text()
            assert content.startswith("<!--"), f"{prompt_file.name} missing doc header"
            assert "Variables:" in content, f"{prompt_file.name} missing Variables docs"
