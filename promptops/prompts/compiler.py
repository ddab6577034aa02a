"""
Template Compiler - Prompt DSL evaluation and validation

Supported tags, evaluated in three passes:
1. {{#if name}}...{{/if}}      kept when `name` is truthy, removed otherwise
2. {{#each name}}...{{/each}}  body repeated per element, with {{this}},
                               {{@index}}, {{@first}} and {{@last}}
3. {{name}} / {{name.prop}}    variable substitution

Blocks are single-level: a block opened inside another block of the same
kind is emitted as literal text.
"""

import html
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from promptops.core.exceptions import TemplateCompilationError
from promptops.models.prompt_template import (
    CompilationOptions,
    PromptTemplate,
    PromptVariable,
    ValidationResult,
    VariableType,
)
from promptops.prompts.values import Value, ValueKind


TAG_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
IF_OPEN_PATTERN = re.compile(r"\s*#if\s+(\w+)\s*")
IF_CLOSE_PATTERN = re.compile(r"\s*/if\s*")
EACH_OPEN_PATTERN = re.compile(r"\s*#each\s+(\w+)\s*")
EACH_CLOSE_PATTERN = re.compile(r"\s*/each\s*")
VARIABLE_PATTERN = re.compile(r"(\w+)(?:\.(\w+))?")
LOOP_ITEMS = ("this", "@index", "@first", "@last")


class TokenKind(str, Enum):
    TEXT = "text"
    VARIABLE = "variable"
    LOOP_ITEM = "loop_item"
    IF_OPEN = "if_open"
    IF_CLOSE = "if_close"
    EACH_OPEN = "each_open"
    EACH_CLOSE = "each_close"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str  # source text, used when the token is emitted literally
    name: Optional[str] = None
    prop: Optional[str] = None

    def as_text(self, text: Optional[str] = None) -> "Token":
        return Token(TokenKind.TEXT, self.text if text is None else text)


def tokenize(source: str) -> List[Token]:
    """Split template text into literal text and tag tokens"""
    tokens: List[Token] = []
    position = 0

    for match in TAG_PATTERN.finditer(source):
        if match.start() > position:
            tokens.append(Token(TokenKind.TEXT, source[position:match.start()]))
        tokens.append(_classify_tag(match.group(0), match.group(1)))
        position = match.end()

    if position < len(source):
        tokens.append(Token(TokenKind.TEXT, source[position:]))

    return tokens


def _classify_tag(raw: str, inner: str) -> Token:
    match = IF_OPEN_PATTERN.fullmatch(inner)
    if match:
        return Token(TokenKind.IF_OPEN, raw, name=match.group(1))
    if IF_CLOSE_PATTERN.fullmatch(inner):
        return Token(TokenKind.IF_CLOSE, raw)
    match = EACH_OPEN_PATTERN.fullmatch(inner)
    if match:
        return Token(TokenKind.EACH_OPEN, raw, name=match.group(1))
    if EACH_CLOSE_PATTERN.fullmatch(inner):
        return Token(TokenKind.EACH_CLOSE, raw)
    if inner in LOOP_ITEMS:
        return Token(TokenKind.LOOP_ITEM, raw, name=inner)
    match = VARIABLE_PATTERN.fullmatch(inner)
    if match:
        return Token(TokenKind.VARIABLE, raw, name=match.group(1), prop=match.group(2))
    return Token(TokenKind.TEXT, raw)


def extract_variables(source: str) -> List[str]:
    """Names referenced by variable, conditional and loop tags, in order"""
    names: Dict[str, None] = {}
    for token in tokenize(source):
        if token.kind in (TokenKind.VARIABLE, TokenKind.IF_OPEN, TokenKind.EACH_OPEN):
            names[token.name] = None
    return list(names)


def normalize_whitespace(text: str) -> str:
    """Collapse blank runs, strip each line and trim the result"""
    lines = [re.sub(r"[ \t\r\f\v]+", " ", line).strip() for line in text.split("\n")]
    collapsed = "\n".join(lines)
    collapsed = re.sub(r"\n{3,}", "\n\n", collapsed)
    return collapsed.strip()


def _find_close(tokens: List[Token], start: int, kind: TokenKind) -> Optional[int]:
    for index in range(start, len(tokens)):
        if tokens[index].kind is kind:
            return index
    return None


def _with_article(word: str) -> str:
    return f"an {word}" if word[0] in "aeiou" else f"a {word}"


EXPECTED_KINDS = {
    VariableType.STRING: ValueKind.STRING,
    VariableType.NUMBER: ValueKind.NUMBER,
    VariableType.BOOLEAN: ValueKind.BOOLEAN,
    VariableType.ARRAY: ValueKind.ARRAY,
    VariableType.OBJECT: ValueKind.OBJECT,
}


class TemplateCompiler:
    """Compile templates against a binding environment"""

    def __init__(self, options: Optional[CompilationOptions] = None):
        self.options = options or CompilationOptions()

    def compile(self, template: PromptTemplate, variables: Mapping[str, Any]) -> str:
        """
        Compile a template into its final string

        Raises:
            TemplateCompilationError: a variable is missing in strict mode, or
                evaluation failed
        """
        try:
            bindings = {name: Value.of(value) for name, value in variables.items()}
            tokens = tokenize(template.template)

            tokens = self._process_conditionals(tokens, bindings)
            tokens = self._process_loops(tokens, bindings)
            compiled = self._process_variables(tokens, bindings, template)

            if not self.options.preserve_whitespace:
                compiled = normalize_whitespace(compiled)

            if self.options.escape_html:
                compiled = html.escape(compiled, quote=True)

            return compiled
        except TemplateCompilationError:
            raise
        except Exception as e:
            raise TemplateCompilationError(
                f"Failed to compile template: {e}",
                template_id=template.id,
                version=template.version,
            ) from e

    def validate(
        self,
        template: PromptTemplate,
        variables: Mapping[str, Any],
        check_constraints: bool = True,
    ) -> ValidationResult:
        """
        Validate bindings against the declared schema.

        Never raises; every problem found is collected into the result.
        The compiled prompt is included when compilation succeeds.
        """
        errors: List[str] = []
        warnings: List[str] = []
        missing_variables: List[str] = []
        unused_variables: List[str] = []

        try:
            referenced = extract_variables(template.template)
            declared = {variable.name for variable in template.variables}

            for name in referenced:
                if name not in declared:
                    warnings.append(f"Variable '{name}' used in template but not defined in schema")

            for variable in template.variables:
                if variable.name not in referenced:
                    warnings.append(f"Variable '{variable.name}' defined but not used in template")
                    unused_variables.append(variable.name)

            for variable in template.variables:
                if variable.required and variable.name not in variables and not variable.has_default:
                    errors.append(f"Required variable '{variable.name}' is missing")
                    missing_variables.append(variable.name)

            for variable in template.variables:
                if variable.name in variables:
                    errors.extend(
                        self.check_value(variable, variables[variable.name], check_constraints)
                    )

            compiled_prompt = None
            try:
                compiled_prompt = self.compile(template, variables)
            except TemplateCompilationError as e:
                errors.append(f"Compilation error: {e.message}")

            return ValidationResult(
                is_valid=not errors,
                errors=errors,
                warnings=warnings,
                missing_variables=missing_variables,
                unused_variables=unused_variables,
                compiled_prompt=compiled_prompt,
            )
        except Exception as e:
            errors.append(f"Validation error: {e}")
            return ValidationResult(
                is_valid=False,
                errors=errors,
                warnings=warnings,
                missing_variables=missing_variables,
                unused_variables=unused_variables,
            )

    def check_value(
        self,
        variable: PromptVariable,
        value: Any,
        check_constraints: bool = True,
    ) -> List[str]:
        """Type and constraint violations for a single bound value"""
        errors: List[str] = []
        bound = Value.of(value)
        expected = EXPECTED_KINDS[variable.type]

        type_ok = bound.kind is expected
        if type_ok and expected is ValueKind.NUMBER and bound.data != bound.data:  # NaN
            type_ok = False
        if not type_ok:
            errors.append(
                f"Variable '{variable.name}' must be {_with_article(variable.type.value)}, "
                f"got {bound.kind.value}"
            )

        if not check_constraints or variable.constraints is None:
            return errors

        constraints = variable.constraints

        if bound.kind is ValueKind.STRING:
            if constraints.pattern:
                try:
                    if not re.search(constraints.pattern, bound.data):
                        errors.append(
                            f"Variable '{variable.name}' does not match pattern: {constraints.pattern}"
                        )
                except re.error as e:
                    errors.append(f"Variable '{variable.name}' has an invalid pattern: {e}")

            if constraints.min_length is not None and len(bound.data) < constraints.min_length:
                errors.append(
                    f"Variable '{variable.name}' must be at least {constraints.min_length} characters"
                )

            if constraints.max_length is not None and len(bound.data) > constraints.max_length:
                errors.append(
                    f"Variable '{variable.name}' must be no more than {constraints.max_length} characters"
                )

        if bound.kind is ValueKind.NUMBER:
            if constraints.min is not None and bound.data < constraints.min:
                errors.append(f"Variable '{variable.name}' must be at least {constraints.min}")

            if constraints.max is not None and bound.data > constraints.max:
                errors.append(f"Variable '{variable.name}' must be no more than {constraints.max}")

        if constraints.enum is not None and value not in constraints.enum:
            allowed = ", ".join(str(option) for option in constraints.enum)
            errors.append(f"Variable '{variable.name}' must be one of: {allowed}")

        return errors

    def _process_conditionals(self, tokens: List[Token], bindings: Dict[str, Value]) -> List[Token]:
        output: List[Token] = []
        index = 0

        while index < len(tokens):
            token = tokens[index]

            if token.kind is TokenKind.IF_OPEN:
                close = _find_close(tokens, index + 1, TokenKind.IF_CLOSE)
                if close is None:
                    output.append(token.as_text())
                    index += 1
                    continue

                condition = bindings.get(token.name, Value(ValueKind.NULL))
                if condition.is_truthy():
                    for inner in tokens[index + 1:close]:
                        output.append(inner.as_text() if inner.kind is TokenKind.IF_OPEN else inner)
                index = close + 1
                continue

            if token.kind is TokenKind.IF_CLOSE:
                output.append(token.as_text())
            else:
                output.append(token)
            index += 1

        return output

    def _process_loops(self, tokens: List[Token], bindings: Dict[str, Value]) -> List[Token]:
        output: List[Token] = []
        index = 0

        while index < len(tokens):
            token = tokens[index]

            if token.kind is TokenKind.EACH_OPEN:
                close = _find_close(tokens, index + 1, TokenKind.EACH_CLOSE)
                if close is None:
                    output.append(token.as_text())
                    index += 1
                    continue

                sequence = bindings.get(token.name, Value(ValueKind.NULL))
                body = [
                    inner.as_text() if inner.kind is TokenKind.EACH_OPEN else inner
                    for inner in tokens[index + 1:close]
                ]
                items = list(sequence.items())
                for position, item in enumerate(items):
                    loop_values = {
                        "this": item.render(),
                        "@index": str(position),
                        "@first": "true" if position == 0 else "false",
                        "@last": "true" if position == len(items) - 1 else "false",
                    }
                    for inner in body:
                        if inner.kind is TokenKind.LOOP_ITEM:
                            output.append(inner.as_text(loop_values[inner.name]))
                        else:
                            output.append(inner)
                index = close + 1
                continue

            if token.kind is TokenKind.EACH_CLOSE:
                output.append(token.as_text())
            else:
                output.append(token)
            index += 1

        return output

    def _process_variables(
        self,
        tokens: List[Token],
        bindings: Dict[str, Value],
        template: PromptTemplate,
    ) -> str:
        parts: List[str] = []
        missing: List[str] = []

        for token in tokens:
            if token.kind is not TokenKind.VARIABLE:
                parts.append(token.text)
                continue

            value = bindings.get(token.name)
            if value is None:
                declared = template.get_variable(token.name)
                if declared is not None and declared.has_default:
                    value = Value.of(declared.default)
                elif not self.options.strict_mode:
                    parts.append(self.options.missing_value)
                    continue
                else:
                    if token.name not in missing:
                        missing.append(token.name)
                    continue

            if token.prop:
                value = value.get(token.prop)

            parts.append(value.render())

        if missing:
            raise TemplateCompilationError(
                f"Missing required variable: {', '.join(missing)}",
                missing_variables=missing,
                template_id=template.id,
                version=template.version,
            )

        return "".join(parts)
