"""Tests for the template compiler"""

import pytest

from promptops.core.exceptions import TemplateCompilationError
from promptops.models.prompt_template import (
    CompilationOptions,
    PromptTemplate,
    PromptVariable,
    VariableConstraints,
    VariableType,
)
from promptops.prompts.compiler import TemplateCompiler, extract_variables, normalize_whitespace, tokenize, TokenKind


def make_template(text, variables=None):
    return PromptTemplate(
        name="test",
        category="general",
        template=text,
        variables=variables or [],
    )


def test_conditional_kept_when_truthy():
    """Test conditional block rendering"""
    compiler = TemplateCompiler()
    template = make_template("Hello {{name}}{{#if vip}}, VIP{{/if}}")

    assert compiler.compile(template, {"name": "A", "vip": True}) == "Hello A, VIP"
    assert compiler.compile(template, {"name": "A", "vip": False}) == "Hello A"


def test_conditional_falsy_values():
    """Empty string, zero and missing values are falsy; empty lists are not"""
    compiler = TemplateCompiler()
    template = make_template("{{#if flag}}yes{{/if}}")

    assert compiler.compile(template, {"flag": ""}) == ""
    assert compiler.compile(template, {"flag": 0}) == ""
    assert compiler.compile(template, {}) == ""
    assert compiler.compile(template, {"flag": []}) == "yes"
    assert compiler.compile(template, {"flag": "no"}) == "yes"


def test_loop_output_exact():
    """Test loop rendering with index and item"""
    compiler = TemplateCompiler(CompilationOptions(preserve_whitespace=True))
    template = make_template("{{#each items}}{{@index}}:{{this}} {{/each}}")

    assert compiler.compile(template, {"items": ["x", "y"]}) == "0:x 1:y "


def test_loop_first_last_and_trimming():
    compiler = TemplateCompiler()
    template = make_template("{{#each items}}[{{@first}}/{{@last}}]{{/each}}")

    assert compiler.compile(template, {"items": [1, 2, 3]}) == "[true/false][false/false][false/true]"

    trimmed = make_template("{{#each items}}{{this}} {{/each}}")
    assert compiler.compile(trimmed, {"items": ["x", "y"]}) == "x y"


def test_loop_over_non_sequence_renders_empty():
    compiler = TemplateCompiler()
    template = make_template("a{{#each items}}{{this}}{{/each}}b")

    assert compiler.compile(template, {"items": "not a list"}) == "ab"
    assert compiler.compile(template, {}) == "ab"


def test_nested_blocks_are_single_level():
    """An inner block of the same kind is emitted literally"""
    compiler = TemplateCompiler(CompilationOptions(escape_html=False))
    template = make_template("{{#if a}}x{{#if b}}y{{/if}}z{{/if}}")

    assert compiler.compile(template, {"a": True, "b": True}) == "x{{#if b}}yz{{/if}}"


def test_property_access_and_value_rendering():
    compiler = TemplateCompiler(CompilationOptions(escape_html=False))
    template = make_template("{{user.name}} {{count}} {{ratio}} {{ok}} {{tags}}")

    result = compiler.compile(
        template,
        {"user": {"name": "Ana"}, "count": 3.0, "ratio": 0.5, "ok": True, "tags": ["a", "b"]},
    )
    assert result == 'Ana 3 0.5 true ["a","b"]'


def test_escape_html_by_default():
    compiler = TemplateCompiler()
    template = make_template("Say {{text}}")

    assert compiler.compile(template, {"text": "<b>hi</b> & \"bye\""}) == (
        "Say &lt;b&gt;hi&lt;/b&gt; &amp; &quot;bye&quot;"
    )


def test_strict_mode_missing_variables():
    """Test that all missing names are reported together"""
    compiler = TemplateCompiler()
    template = make_template("{{first}} and {{second}} and {{first}}")

    with pytest.raises(TemplateCompilationError) as exc_info:
        compiler.compile(template, {})

    assert exc_info.value.missing_variables == ["first", "second"]
    assert "first" in exc_info.value.message


def test_non_strict_mode_uses_missing_value():
    compiler = TemplateCompiler(CompilationOptions(strict_mode=False, missing_value="?"))
    template = make_template("Hi {{name}}")

    assert compiler.compile(template, {}) == "Hi ?"


def test_declared_default_used_when_unbound():
    compiler = TemplateCompiler()
    template = make_template(
        "Tone: {{tone}}",
        [PromptVariable(name="tone", required=False, default="friendly")],
    )

    assert compiler.compile(template, {}) == "Tone: friendly"


def test_compilation_is_deterministic():
    compiler = TemplateCompiler()
    template = make_template("{{#if a}}A{{/if}} {{#each xs}}{{this}},{{/each}} {{b}}")
    bindings = {"a": 1, "xs": [1, 2], "b": {"k": "v"}}

    outputs = {compiler.compile(template, bindings) for _ in range(5)}
    assert len(outputs) == 1


def test_whitespace_normalization():
    assert normalize_whitespace("  a   b \n\n\n\n c\t\td  ") == "a b\n\nc d"


def test_unknown_tags_stay_literal():
    tokens = tokenize("{{ not a tag }}{{name}}")

    assert tokens[0].kind is TokenKind.TEXT
    assert tokens[1].kind is TokenKind.VARIABLE
    assert tokens[1].name == "name"


def test_extract_variables():
    names = extract_variables("{{#if vip}}{{name}}{{/if}}{{#each items}}{{this}}{{/each}}{{user.email}}{{name}}")

    assert names == ["vip", "name", "items", "user"]


def test_validate_type_error_names_expected_type():
    """Test type validation"""
    compiler = TemplateCompiler()
    template = make_template(
        "Age: {{age}}",
        [PromptVariable(name="age", type=VariableType.NUMBER, required=True)],
    )

    result = compiler.validate(template, {"age": "abc"})

    assert result.is_valid is False
    assert any("number" in error for error in result.errors)


def test_validate_collects_all_problems():
    compiler = TemplateCompiler()
    template = make_template(
        "{{code}} {{level}} {{extra}}",
        [
            PromptVariable(name="code", constraints=VariableConstraints(pattern=r"^[A-Z]+$", max_length=3)),
            PromptVariable(
                name="level",
                type=VariableType.NUMBER,
                constraints=VariableConstraints(min=1, max=5),
            ),
            PromptVariable(name="needed"),
        ],
    )

    result = compiler.validate(template, {"code": "abcd", "level": 9})

    assert result.is_valid is False
    assert result.missing_variables == ["needed"]
    assert "needed" in result.unused_variables
    assert any("pattern" in error for error in result.errors)
    assert any("no more than 3 characters" in error for error in result.errors)
    assert any("no more than 5" in error for error in result.errors)
    assert any("'extra' used in template but not defined" in warning for warning in result.warnings)


def test_validate_enum_and_compiled_prompt():
    compiler = TemplateCompiler()
    template = make_template(
        "Tone: {{tone}}",
        [PromptVariable(name="tone", constraints=VariableConstraints(enum=["formal", "casual"]))],
    )

    bad = compiler.validate(template, {"tone": "angry"})
    good = compiler.validate(template, {"tone": "casual"})

    assert any("must be one of: formal, casual" in error for error in bad.errors)
    assert good.is_valid is True
    assert good.compiled_prompt == "Tone: casual"


def test_validate_never_raises_on_missing_variables():
    compiler = TemplateCompiler()
    template = make_template("{{undeclared}}")

    result = compiler.validate(template, {})

    assert result.is_valid is False
    assert any("Compilation error" in error for error in result.errors)
    assert result.compiled_prompt is None
