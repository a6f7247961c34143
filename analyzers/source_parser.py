#!/usr/bin/env python3
"""
Source Parser
=============
Turn a Python source file into a SourceUnit using the ``ast`` module.

Nothing is imported or executed. Malformed files never raise: the failure is
recorded as a diagnostic and the caller simply gets ``None`` back, so one bad
file cannot abort analysis of the others.
"""

import ast
import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from .base import (
    Argument,
    ArgumentKind,
    Declaration,
    DeclarationKind,
    SourceRange,
    SourceUnit,
    Visibility,
)
from .diagnostics import DiagnosticCollector, ParseFailure, Severity

logger = logging.getLogger("api_scanner.analyzers.source_parser")

# Sphinx-style attribute doc comment: "#: description"
_DOC_COMMENT = re.compile(r'^\s*#:\s?(.*)$')


class SourceParser:
    """Structural parser for Python source files."""

    def __init__(self, diagnostics: Optional[DiagnosticCollector] = None):
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()

    @staticmethod
    def module_name(path: str, root: Optional[str] = None) -> str:
        """Dotted module name of ``path`` relative to ``root``."""
        p = Path(path)
        if root:
            try:
                p = p.relative_to(root)
            except ValueError:
                pass
        parts = list(p.with_suffix("").parts)
        if parts and parts[-1] == "__init__":
            parts = parts[:-1]
        return ".".join(part for part in parts if part not in ("", ".", "/"))

    def parse(self, text: str, path: str = "<memory>", fingerprint: str = "",
              module: Optional[str] = None) -> Optional[SourceUnit]:
        """
        Parse source text into a SourceUnit.

        Args:
            text: Raw source text
            path: File path used in diagnostics
            fingerprint: Content fingerprint computed by the change detector
            module: Dotted module name (derived from path if omitted)

        Returns:
            SourceUnit, or None when the file could not be parsed
        """
        try:
            tree = ast.parse(text, filename=path)
        except SyntaxError as e:
            self.diagnostics.record(
                ParseFailure(f"Syntax error: {e.msg}", path=path),
                Severity.ERROR,
                line=e.lineno,
            )
            return None
        except (ValueError, RecursionError) as e:
            self.diagnostics.record(ParseFailure(f"Unparseable source: {e}", path=path), Severity.ERROR)
            return None

        lines = text.splitlines()
        declarations = []
        for node in tree.body:
            if isinstance(node, ast.ClassDef):
                declarations.append(self._class(node, lines, prefix=""))
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                declarations.append(self._function(node, DeclarationKind.FUNCTION, prefix=""))

        unit = SourceUnit(
            path=path,
            fingerprint=fingerprint,
            module=module if module is not None else self.module_name(path),
            declarations=tuple(declarations),
            doc=ast.get_docstring(tree),
        )
        logger.debug(f"Parsed {path}: {len(declarations)} top-level declarations")
        return unit

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _class(self, node: ast.ClassDef, lines: List[str], prefix: str) -> Declaration:
        qualname = f"{prefix}{node.name}"
        children = []
        body = node.body
        for index, child in enumerate(body):
            if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef)):
                children.append(self._function(child, DeclarationKind.METHOD, prefix=qualname + "."))
            elif isinstance(child, ast.ClassDef):
                children.append(self._class(child, lines, prefix=qualname + "."))
            elif isinstance(child, (ast.Assign, ast.AnnAssign)):
                following = body[index + 1] if index + 1 < len(body) else None
                children.extend(self._properties(child, following, lines, prefix=qualname + "."))

        return Declaration(
            name=node.name,
            qualname=qualname,
            kind=DeclarationKind.CLASS,
            range=_range(node),
            visibility=Visibility.from_name(node.name),
            doc=ast.get_docstring(node),
            decorators=tuple(_source(d) for d in node.decorator_list),
            bases=tuple(_source(b) for b in node.bases),
            children=tuple(children),
        )

    def _function(self, node, kind: DeclarationKind, prefix: str) -> Declaration:
        return Declaration(
            name=node.name,
            qualname=f"{prefix}{node.name}",
            kind=kind,
            range=_range(node),
            visibility=Visibility.from_name(node.name),
            doc=ast.get_docstring(node),
            decorators=tuple(_source(d) for d in node.decorator_list),
            annotation=_source(node.returns) if node.returns is not None else None,
            arguments=_arguments(node.args),
            returns=tuple(_source(r.value) for r in _own_returns(node) if r.value is not None),
            is_async=isinstance(node, ast.AsyncFunctionDef),
        )

    def _properties(self, node, following, lines: List[str], prefix: str) -> List[Declaration]:
        if isinstance(node, ast.AnnAssign):
            targets = [node.target]
            annotation = _source(node.annotation)
        else:
            targets = node.targets
            annotation = None

        doc = _attribute_doc(node, following, lines)
        value = _source(node.value) if node.value is not None else None

        result = []
        for target in targets:
            if not isinstance(target, ast.Name):
                continue
            result.append(Declaration(
                name=target.id,
                qualname=f"{prefix}{target.id}",
                kind=DeclarationKind.PROPERTY,
                range=_range(node),
                visibility=Visibility.from_name(target.id),
                doc=doc,
                annotation=annotation,
                value=value,
            ))
        return result


# =============================================================================
# HELPERS
# =============================================================================

def _source(node: ast.AST) -> str:
    return ast.unparse(node)


def _range(node: ast.AST) -> SourceRange:
    return SourceRange(
        start_line=getattr(node, "lineno", 0),
        start_column=getattr(node, "col_offset", 0),
        end_line=getattr(node, "end_lineno", None) or getattr(node, "lineno", 0),
        end_column=getattr(node, "end_col_offset", None) or 0,
    )


def _arguments(args: ast.arguments) -> Tuple[Argument, ...]:
    result = []
    positional = list(args.posonlyargs) + list(args.args)
    # Defaults align with the tail of the positional list
    offset = len(positional) - len(args.defaults)
    for i, arg in enumerate(positional):
        default = args.defaults[i - offset] if i >= offset else None
        result.append(_argument(arg, default, ArgumentKind.POSITIONAL))

    if args.vararg:
        result.append(_argument(args.vararg, None, ArgumentKind.VAR_POSITIONAL))

    for arg, default in zip(args.kwonlyargs, args.kw_defaults):
        result.append(_argument(arg, default, ArgumentKind.KEYWORD_ONLY))

    if args.kwarg:
        result.append(_argument(args.kwarg, None, ArgumentKind.VAR_KEYWORD))

    return tuple(result)


def _argument(arg: ast.arg, default: Optional[ast.expr], kind: ArgumentKind) -> Argument:
    return Argument(
        name=arg.arg,
        annotation=_source(arg.annotation) if arg.annotation is not None else None,
        default=_source(default) if default is not None else None,
        kind=kind,
    )


def _own_returns(func) -> List[ast.Return]:
    """Return statements of ``func`` itself, not of nested functions or classes."""
    found = []
    stack = list(func.body)
    while stack:
        node = stack.pop(0)
        if isinstance(node, ast.Return):
            found.append(node)
            continue
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)):
            continue
        stack.extend(ast.iter_child_nodes(node))
    return found


def _attribute_doc(node, following, lines: List[str]) -> Optional[str]:
    """Attribute documentation: a string right after the assignment, or ``#:`` comments above it."""
    if (isinstance(following, ast.Expr) and isinstance(following.value, ast.Constant)
            and isinstance(following.value.value, str)):
        return following.value.value.strip()

    comments = []
    line_no = node.lineno - 2
    while line_no >= 0:
        match = _DOC_COMMENT.match(lines[line_no])
        if not match:
            break
        comments.insert(0, match.group(1))
        line_no -= 1
    return "\n".join(comments).strip() or None
