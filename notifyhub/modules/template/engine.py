"""Template engine for notification content.

Supports variable substitution with formatter chains, ``#if`` / ``#unless``
conditionals (with an optional ``{{else}}``) and ``#each`` iteration.

Block tags are parsed into a tree before any value is substituted, so a
substituted value can never introduce or break a block tag, and nested
blocks are resolved inside-out. Missing variables render as an empty string;
only structurally malformed templates raise ``TemplateError``.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from babel.dates import format_date, format_datetime

from notifyhub.core.config import settings
from notifyhub.modules.template.formatters import apply_formatters

logger = logging.getLogger(__name__)

TAG_REGEX = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
BLOCK_OPEN_REGEX = re.compile(r"^#(\w+)(?:\s+(.*))?$", re.DOTALL)
BLOCK_CLOSE_REGEX = re.compile(r"^/(\w+)$")

BLOCK_KINDS = ("if", "unless", "each")
ITEM_SCOPED_ROOTS = ("this", "@index", "@first", "@last")

# Roots filled in by the engine for every recipient
STANDARD_ROOTS = frozenset({"user", "app", "date"})


class TemplateError(Exception):
    """Raised for structurally malformed templates or unresolvable variables."""

    def __init__(
        self,
        message: str,
        template_id: Optional[str] = None,
        variables: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.template_id = template_id or "unknown"
        self.variables = variables or []

    def to_dict(self) -> dict:
        return {
            "error": "TemplateError",
            "message": self.message,
            "template_id": self.template_id,
            "variables": self.variables,
        }


@dataclass
class TemplateValidation:
    """Outcome of a static template check."""
    valid: bool
    errors: list[str] = field(default_factory=list)


# ==================== Parse tree ====================

@dataclass
class _Text:
    text: str


@dataclass
class _Variable:
    path: str
    formatters: list[str]


@dataclass
class _Block:
    kind: str
    expression: str
    body: list["_Node"] = field(default_factory=list)
    alternate: Optional[list["_Node"]] = None


_Node = Union[_Text, _Variable, _Block]


def _count(pattern: str, body: str) -> int:
    return len(re.findall(pattern, body))


def _count_errors(body: str) -> list[str]:
    errors = []

    open_braces = _count(r"\{\{", body)
    close_braces = _count(r"\}\}", body)
    if open_braces != close_braces:
        errors.append(
            f"Unbalanced braces: {open_braces} opening vs {close_braces} closing"
        )

    for kind in BLOCK_KINDS:
        opening = _count(r"\{\{\s*#" + kind + r"\b", body)
        closing = _count(r"\{\{\s*/" + kind + r"\s*\}\}", body)
        if opening != closing:
            errors.append(
                f"Unmatched {kind} statements: {opening} opening vs {closing} closing"
            )

    return errors


def _parse(body: str) -> list[_Node]:
    """Parse a template body into nodes, raising ValueError when malformed."""
    root: list[_Node] = []
    stack: list[tuple[_Block, list[_Node]]] = []
    current = root
    position = 0

    def add_text(text: str) -> None:
        if "{{" in text:
            raise ValueError("Unclosed '{{' delimiter")
        if "}}" in text:
            raise ValueError("Unexpected '}}' delimiter")
        if text:
            current.append(_Text(text))

    for match in TAG_REGEX.finditer(body):
        add_text(body[position:match.start()])
        position = match.end()
        content = match.group(1).strip()

        if "{{" in content:
            raise ValueError("Unclosed '{{' delimiter")

        opening = BLOCK_OPEN_REGEX.match(content)
        closing = BLOCK_CLOSE_REGEX.match(content)

        if opening:
            kind, expression = opening.group(1), (opening.group(2) or "").strip()
            if kind not in BLOCK_KINDS:
                raise ValueError(f"Unsupported block tag: #{kind}")
            if not expression:
                raise ValueError(f"#{kind} requires an expression")
            block = _Block(kind=kind, expression=expression)
            current.append(block)
            stack.append((block, current))
            current = block.body
        elif closing:
            kind = closing.group(1)
            if not stack or stack[-1][0].kind != kind:
                raise ValueError(f"Unexpected closing tag: /{kind}")
            _, current = stack.pop()
        elif content == "else":
            if not stack or stack[-1][0].kind == "each":
                raise ValueError("{{else}} is only allowed inside #if or #unless")
            block = stack[-1][0]
            if block.alternate is not None:
                raise ValueError("Duplicate {{else}} in block")
            block.alternate = []
            current = block.alternate
        else:
            path, *formatters = content.split("|")
            current.append(_Variable(path=path.strip(), formatters=[f.strip() for f in formatters]))

    add_text(body[position:])

    if stack:
        raise ValueError(f"Unclosed block: #{stack[-1][0].kind}")

    return root


# ==================== Context access ====================

def resolve_path(context: Any, path: str) -> Any:
    """Safely look up a dotted path in a nested context.

    Mappings are indexed by key, sequences by numeric segment and other
    objects by public attribute. Anything unresolvable yields None.
    """
    path = path.strip()
    if not path:
        return None
    current = context
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not part.isdigit():
                return None
            index = int(part)
            current = current[index] if index < len(current) else None
        elif part and not part.startswith("_"):
            current = getattr(current, part, None)
        else:
            return None
    return current


def _operand(token: str, context: Any) -> Any:
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in ('"', "'"):
        return token[1:-1]
    return resolve_path(context, token)


def evaluate_condition(condition: str, context: Any) -> bool:
    """Evaluate ``path``, ``!path``, ``a === b`` or ``a !== b``."""
    condition = condition.strip()

    if "!==" in condition:
        left, right = condition.split("!==", 1)
        return _operand(left, context) != _operand(right, context)

    if "===" in condition:
        left, right = condition.split("===", 1)
        return _operand(left, context) == _operand(right, context)

    if condition.startswith("!"):
        return not resolve_path(context, condition[1:])

    return bool(resolve_path(context, condition))


def stringify(value: Any) -> str:
    """Render a context value as text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(item) for item in value)
    return str(value)


def expand_variables(variables: Optional[Mapping[str, Any]]) -> dict:
    """Expand dot-path keys (``user.name``) into nested mappings."""
    expanded: dict = {}
    for key, value in (variables or {}).items():
        parts = str(key).split(".")
        target = expanded
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {} if not isinstance(child, Mapping) else dict(child)
                target[part] = child
            target = child
        leaf = parts[-1]
        if isinstance(value, Mapping):
            existing = target.get(leaf)
            target[leaf] = deep_merge(existing if isinstance(existing, Mapping) else {}, value)
        else:
            target[leaf] = value
    return expanded


def deep_merge(base: Mapping, override: Mapping) -> dict:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# ==================== Engine ====================

class TemplateEngine:
    """Stateless renderer for the notification template language."""

    @classmethod
    def render(
        cls,
        body: str,
        context: Optional[Mapping[str, Any]] = None,
        template_id: Optional[str] = None,
    ) -> str:
        """Render a template body against a context.

        Raises:
            TemplateError: If the body is structurally malformed.
        """
        errors = _count_errors(body)
        if errors:
            raise TemplateError(
                f"Template processing failed: {'; '.join(errors)}",
                template_id,
                cls.extract_variables(body),
            )
        try:
            nodes = _parse(body)
        except ValueError as exc:
            raise TemplateError(
                f"Template processing failed: {exc}",
                template_id,
                cls.extract_variables(body),
            ) from exc

        return cls._render_nodes(nodes, dict(context or {})).strip()

    @classmethod
    def validate(cls, body: str) -> TemplateValidation:
        """Statically check delimiters and block structure without rendering."""
        errors = _count_errors(body)
        if not errors:
            try:
                _parse(body)
            except ValueError as exc:
                errors.append(str(exc))
        return TemplateValidation(valid=not errors, errors=errors)

    @classmethod
    def extract_variables(cls, body: str) -> list[str]:
        """Return the distinct context paths a template references.

        Formatter arguments and item-scoped names inside ``#each`` are ignored.
        """
        variables: list[str] = []

        def add(path: str) -> None:
            path = path.strip()
            if not path or path.split(".")[0] in ITEM_SCOPED_ROOTS or path.startswith("@"):
                return
            if len(path) >= 2 and path[0] == path[-1] and path[0] in ('"', "'"):
                return
            if path not in variables:
                variables.append(path)

        for match in TAG_REGEX.finditer(body):
            content = match.group(1).strip()
            if content == "else" or content.startswith("/"):
                continue
            opening = BLOCK_OPEN_REGEX.match(content)
            if opening:
                expression = (opening.group(2) or "").strip()
                if opening.group(1) == "each":
                    add(expression)
                    continue
                for operator in ("!==", "==="):
                    if operator in expression:
                        for operand in expression.split(operator, 1):
                            add(operand)
                        break
                else:
                    add(expression.lstrip("!"))
                continue
            add(content.split("|")[0])

        return variables

    @classmethod
    def preview(cls, body: str, sample_data: Optional[Mapping[str, Any]] = None) -> str:
        """Render with a representative sample context."""
        now = datetime.now()
        default_context = {
            "user": {
                "name": "John Doe",
                "email": "john.doe@example.com",
                "phone": "+91 9876543210",
                "locale": "en",
            },
            "app": {
                "name": settings.APP_NAME,
                "url": settings.APP_URL,
                "version": settings.VERSION,
            },
            "date": {
                "now": _format_now(now),
                "formatted": format_date(now, format="medium", locale=settings.DATE_LOCALE.replace("-", "_")),
            },
        }
        context = deep_merge(default_context, expand_variables(sample_data))
        return cls.render(body, context)

    @classmethod
    def _render_nodes(cls, nodes: list[_Node], context: dict) -> str:
        parts = []
        for node in nodes:
            if isinstance(node, _Text):
                parts.append(node.text)
            elif isinstance(node, _Variable):
                value = resolve_path(context, node.path)
                parts.append(stringify(apply_formatters(value, node.formatters)))
            elif node.kind == "each":
                parts.append(cls._render_each(node, context))
            else:
                truthy = evaluate_condition(node.expression, context)
                if node.kind == "unless":
                    truthy = not truthy
                branch = node.body if truthy else (node.alternate or [])
                parts.append(cls._render_nodes(branch, context))
        return "".join(parts)

    @classmethod
    def _render_each(cls, node: _Block, context: dict) -> str:
        items = resolve_path(context, node.expression)
        if not isinstance(items, (list, tuple)):
            return ""

        last = len(items) - 1
        rendered = []
        for index, item in enumerate(items):
            item_context = {
                **context,
                "this": item,
                "@index": index,
                "@first": index == 0,
                "@last": index == last,
            }
            rendered.append(cls._render_nodes(node.body, item_context))
        return "".join(rendered)


def _format_now(now: datetime) -> str:
    try:
        return format_datetime(now, format="medium", locale=settings.DATE_LOCALE.replace("-", "_"))
    except ValueError:
        return now.isoformat()


def build_context(
    variables: Optional[Mapping[str, Any]] = None,
    user: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Merge request variables with the standard ``user``, ``app`` and ``date`` sets.

    Request variables may use dot-path keys. Standard values win over request
    values for the same path.
    """
    now = now or datetime.now()
    standard = {
        "user": dict(user or {}),
        "app": {"name": settings.APP_NAME, "url": settings.APP_URL},
        "date": {"now": _format_now(now)},
    }
    return deep_merge(expand_variables(variables), standard)


def render(body: str, context: Optional[Mapping[str, Any]] = None, template_id: Optional[str] = None) -> str:
    """Render a template body."""
    return TemplateEngine.render(body, context, template_id)


def validate_template(body: str) -> TemplateValidation:
    """Validate template syntax."""
    return TemplateEngine.validate(body)


def extract_variables(body: str) -> list[str]:
    """Extract variable paths from a template."""
    return TemplateEngine.extract_variables(body)


def preview_template(body: str, sample_data: Optional[Mapping[str, Any]] = None) -> str:
    """Preview a template with sample data."""
    return TemplateEngine.preview(body, sample_data)
