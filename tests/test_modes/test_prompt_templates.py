from __future__ import annotations

import json

import pytest

from conductor.modes.prompts import PromptTemplates
from conductor.storage.files import FileOperations


@pytest.fixture
def prompts() -> PromptTemplates:
    return PromptTemplates("echo", {"greeting": "Hello {name}", "farewell": "Bye ${name}"})


def test_render_should_support_every_placeholder_style(prompts: PromptTemplates) -> None:
    prompts.set("mixed", "{{ a }} / {{b}} / ${a} / {b}")
    assert prompts.render("mixed", a="x", b="y") == "x / y / x / y"


def test_render_should_json_encode_non_string_values(prompts: PromptTemplates) -> None:
    prompts.set("data", "count={count} flag={flag} none=[{none}] items={items}")
    rendered = prompts.render("data", count=3, flag=True, none=None, items=["a"])
    assert rendered == 'count=3 flag=true none=[] items=[\n  "a"\n]'


def test_render_should_not_reinterpret_substituted_text(prompts: PromptTemplates) -> None:
    assert prompts.render("greeting", name="{name} \\1") == "Hello {name} \\1"


def test_render_should_raise_for_unknown_templates(prompts: PromptTemplates) -> None:
    with pytest.raises(KeyError, match="Template not found: missing"):
        prompts.render("missing")


def test_load_should_overlay_flat_overrides(prompts: PromptTemplates, files: FileOperations) -> None:
    files.write("modes/echo/prompts.json", json.dumps({"greeting": "Hey {name}", "ignored": 5}))

    assert prompts.load(files, "modes/echo/prompts.json") == 1
    assert prompts.as_dict() == {"greeting": "Hey {name}", "farewell": "Bye ${name}"}


def test_load_should_accept_the_saved_shape(prompts: PromptTemplates, files: FileOperations) -> None:
    prompts.set("extra", "More {{ detail }}")
    prompts.save(files, "modes/echo/prompts.json")

    stored = json.loads(files.read("modes/echo/prompts.json").content)
    assert stored["version"] == "1.0.0"
    assert stored["mode_id"] == "echo"
    assert [entry["id"] for entry in stored["templates"]] == ["greeting", "farewell", "extra"]

    fresh = PromptTemplates("echo", {"greeting": "Hello {name}"})
    assert fresh.load(files, "modes/echo/prompts.json") == 3
    assert fresh.get("extra") == "More {{ detail }}"
    assert "farewell" in fresh


def test_load_should_keep_defaults_for_missing_or_corrupt_files(prompts: PromptTemplates, files: FileOperations) -> None:
    assert prompts.load(files, "modes/echo/prompts.json") == 0

    files.write("modes/echo/prompts.json", "{broken")
    assert prompts.load(files, "modes/echo/prompts.json") == 0
    assert prompts.get("greeting") == "Hello {name}"


def test_load_should_skip_malformed_entries(prompts: PromptTemplates, files: FileOperations) -> None:
    files.write(
        "modes/echo/prompts.json",
        json.dumps({"templates": [{"id": "greeting"}, {"id": "farewell", "template": "Later"}]}),
    )
    assert prompts.load(files, "modes/echo/prompts.json") == 1
    assert prompts.get("greeting") == "Hello {name}"
    assert prompts.get("farewell") == "Later"


def test_clear_and_reset_should_drop_and_restore_templates(prompts: PromptTemplates) -> None:
    prompts.set("greeting", "changed")
    prompts.clear()
    assert len(prompts) == 0

    prompts.reset()
    assert prompts.ids() == ["greeting", "farewell"]
    assert prompts.get("greeting") == "Hello {name}"


def test_render_should_not_substitute_inside_inserted_values(prompts: PromptTemplates) -> None:
    prompts.set("pair", "{a} / {b}")

    assert prompts.render("pair", a="{b}", b="X") == "{b} / X"
    assert prompts.render("pair", b="X", a="${b}") == "${b} / X"


def test_render_should_leave_unknown_placeholders_untouched(prompts: PromptTemplates) -> None:
    prompts.set("partial", "{{ known }} {{ unknown }} ${missing} {other}")
    assert prompts.render("partial", known="yes") == "yes {{ unknown }} ${missing} {other}"
