#!/usr/bin/env python3
"""
Docstring Parser
=================
Extract structured tags from docstrings attached to declarations.

Supports multiple docstring formats:
- Sphinx (reStructuredText field lists)
- Google style sections
- NumPy style sections
- Epydoc ``@field`` lines
- Plain text

Output is an ordered list of tags; a tag may repeat (one ``param`` tag per
parameter). Lines that are not part of any tag are kept as description
fragments instead of being dropped. No semantic validation happens here.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger("api_scanner.analyzers.docblock_parser")


class TagKind(Enum):
    SUMMARY = "summary"
    DESCRIPTION = "description"
    PARAM = "param"
    TYPE = "type"
    RETURNS = "returns"
    RETURN_TYPE = "rtype"
    RAISES = "raises"
    VAR = "var"
    VAR_TYPE = "vartype"
    DEPRECATED = "deprecated"
    EXAMPLE = "example"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class DocTag:
    kind: TagKind
    name: str                          # tag name as written (e.g. "param", "ivar", "Args")
    body: str = ""
    target: Optional[str] = None       # parameter / attribute name the tag is about
    type_text: Optional[str] = None    # type written inside the tag


@dataclass
class DocBlock:
    """Ordered tags extracted from one docstring."""
    tags: List[DocTag] = field(default_factory=list)

    def all(self, kind: TagKind) -> List[DocTag]:
        return [t for t in self.tags if t.kind is kind]

    def first(self, kind: TagKind) -> Optional[DocTag]:
        for tag in self.tags:
            if tag.kind is kind:
                return tag
        return None

    @property
    def summary(self) -> Optional[str]:
        tag = self.first(TagKind.SUMMARY)
        return tag.body if tag else None

    @property
    def description(self) -> Optional[str]:
        parts = [t.body for t in self.all(TagKind.DESCRIPTION) if t.body]
        return "\n".join(parts).strip() or None

    @property
    def deprecated(self) -> bool:
        return self.first(TagKind.DEPRECATED) is not None

    @property
    def examples(self) -> List[str]:
        return [t.body for t in self.all(TagKind.EXAMPLE)]

    def param_type(self, name: str) -> Optional[str]:
        """Type text for parameter ``name``; explicit ``type`` tags win over inline param types."""
        for tag in self.all(TagKind.TYPE):
            if tag.target == name and tag.type_text:
                return tag.type_text
        for tag in self.all(TagKind.PARAM):
            if tag.target == name and tag.type_text:
                return tag.type_text
        return None

    def param_description(self, name: str) -> Optional[str]:
        for tag in self.all(TagKind.PARAM):
            if tag.target == name and tag.body:
                return tag.body
        return None

    def var_type(self, name: str) -> Optional[str]:
        for tag in self.all(TagKind.VAR_TYPE):
            if tag.target == name and tag.type_text:
                return tag.type_text
        for tag in self.all(TagKind.VAR):
            if tag.target == name and tag.type_text:
                return tag.type_text
        return None

    def var_description(self, name: str) -> Optional[str]:
        for tag in self.all(TagKind.VAR):
            if tag.target == name and tag.body:
                return tag.body
        return None

    def variables(self) -> List[str]:
        names = []
        for tag in self.tags:
            if tag.kind in (TagKind.VAR, TagKind.VAR_TYPE) and tag.target and tag.target not in names:
                names.append(tag.target)
        return names

    @property
    def return_type(self) -> Optional[str]:
        tag = self.first(TagKind.RETURN_TYPE)
        if tag and tag.type_text:
            return tag.type_text
        tag = self.first(TagKind.RETURNS)
        return tag.type_text if tag else None

    @property
    def returns(self) -> Optional[str]:
        tag = self.first(TagKind.RETURNS)
        return tag.body if tag and tag.body else None

    def to_dict(self) -> Dict[str, List[Dict[str, Optional[str]]]]:
        grouped: Dict[str, List[Dict[str, Optional[str]]]] = {}
        for tag in self.tags:
            grouped.setdefault(tag.kind.value, []).append(
                {"name": tag.name, "target": tag.target, "type": tag.type_text, "body": tag.body}
            )
        return grouped


# Sphinx field name -> tag kind
SPHINX_FIELDS = {
    'param': TagKind.PARAM,
    'parameter': TagKind.PARAM,
    'arg': TagKind.PARAM,
    'argument': TagKind.PARAM,
    'key': TagKind.PARAM,
    'keyword': TagKind.PARAM,
    'type': TagKind.TYPE,
    'returns': TagKind.RETURNS,
    'return': TagKind.RETURNS,
    'rtype': TagKind.RETURN_TYPE,
    'raises': TagKind.RAISES,
    'raise': TagKind.RAISES,
    'except': TagKind.RAISES,
    'exception': TagKind.RAISES,
    'var': TagKind.VAR,
    'ivar': TagKind.VAR,
    'cvar': TagKind.VAR,
    'vartype': TagKind.VAR_TYPE,
    'deprecated': TagKind.DEPRECATED,
    'example': TagKind.EXAMPLE,
}

# Google / NumPy section header -> tag kind
SECTION_HEADERS = {
    'args': TagKind.PARAM,
    'arguments': TagKind.PARAM,
    'parameters': TagKind.PARAM,
    'params': TagKind.PARAM,
    'keyword args': TagKind.PARAM,
    'returns': TagKind.RETURNS,
    'return': TagKind.RETURNS,
    'yields': TagKind.RETURNS,
    'raises': TagKind.RAISES,
    'attributes': TagKind.VAR,
    'example': TagKind.EXAMPLE,
    'examples': TagKind.EXAMPLE,
    'deprecated': TagKind.DEPRECATED,
}

_SPHINX_FIELD = re.compile(r'^:(\w+)(?:\s+([^:]+?))?:\s*(.*)$')
_EPYDOC_FIELD = re.compile(r'^@(\w+)(?:\s+([^:]+?))?:\s*(.*)$')
_GOOGLE_HEADER = re.compile(r'^(' + '|'.join(re.escape(h) for h in SECTION_HEADERS) + r'):\s*$', re.IGNORECASE)
_NUMPY_HEADER = re.compile(r'^(\w+(?: \w+)?)\s*$')
_NUMPY_UNDERLINE = re.compile(r'^-{3,}\s*$')
_GOOGLE_ENTRY = re.compile(r'^(\*{0,2}\w+)\s*(?:\(([^)]*)\))?\s*:\s*(.*)$')
_NUMPY_ENTRY = re.compile(r'^(\w+)\s*:\s*(.+)$')
_DEPRECATED_DIRECTIVE = re.compile(r'^\.\.\s+deprecated::\s*(.*)$')
_RETURNS_ENTRY = re.compile(r'^([\w.]+(?:\[[^\]]*\])?(?:\s*\|\s*[\w.]+(?:\[[^\]]*\])?)*):\s*(.*)$', re.DOTALL)
_OPTIONAL_SUFFIX = re.compile(r',\s*optional\s*$', re.IGNORECASE)


class DocBlockParser:
    """
    Extract structured tags from docstrings.

    Works on the raw docstring text only; the source parser has already
    located and dedented it.
    """

    @staticmethod
    def parse(docstring: Optional[str]) -> DocBlock:
        """
        Parse docstring text into an ordered DocBlock.

        Args:
            docstring: Raw docstring text (may be None)

        Returns:
            DocBlock with summary, description fragments and tags

        Example:
            >>> block = DocBlockParser.parse('''Fetch a user.
            ...
            ... :param int user_id: Primary key
            ... :rtype: User
            ... ''')
            >>> block.param_type("user_id"), block.return_type
            ('int', 'User')
        """
        block = DocBlock()
        if not docstring or not docstring.strip():
            return block

        lines = docstring.strip('\n').split('\n')
        lines = _dedent(lines)

        # Summary: first paragraph, first line
        first = lines[0].strip()
        if first and not _is_tag_line(first):
            block.tags.append(DocTag(TagKind.SUMMARY, 'summary', body=first))
            lines = lines[1:]

        i = 0
        in_example = False
        while i < len(lines):
            line = lines[i]
            stripped = line.strip()

            if not stripped:
                in_example = False
                i += 1
                continue

            # Doctest example lines
            if stripped.startswith('>>>') or (in_example and stripped.startswith('...')):
                block.tags.append(DocTag(TagKind.EXAMPLE, 'doctest', body=stripped))
                in_example = True
                i += 1
                continue
            in_example = False

            directive = _DEPRECATED_DIRECTIVE.match(stripped)
            if directive:
                body, i = _continuation(lines, i + 1, directive.group(1))
                block.tags.append(DocTag(TagKind.DEPRECATED, 'deprecated', body=body))
                continue

            field_match = _SPHINX_FIELD.match(stripped) or _EPYDOC_FIELD.match(stripped)
            if field_match:
                name, argument, body = field_match.groups()
                body, i = _continuation(lines, i + 1, body)
                block.tags.append(DocBlockParser._field_tag(name, argument, body))
                continue

            google = _GOOGLE_HEADER.match(stripped)
            if google:
                kind = SECTION_HEADERS[google.group(1).lower()]
                section, i = _section_lines(lines, i + 1)
                block.tags.extend(DocBlockParser._google_section(google.group(1), kind, section))
                continue

            numpy = _NUMPY_HEADER.match(stripped)
            if (numpy and i + 1 < len(lines) and _NUMPY_UNDERLINE.match(lines[i + 1].strip())
                    and numpy.group(1).lower() in SECTION_HEADERS):
                kind = SECTION_HEADERS[numpy.group(1).lower()]
                section, i = _numpy_section_lines(lines, i + 2)
                block.tags.extend(DocBlockParser._numpy_section(numpy.group(1), kind, section))
                continue

            # Anything else is kept verbatim as a description fragment
            block.tags.append(DocTag(TagKind.DESCRIPTION, 'description', body=stripped))
            i += 1

        return block

    @staticmethod
    def _field_tag(name: str, argument: Optional[str], body: str) -> DocTag:
        kind = SPHINX_FIELDS.get(name.lower(), TagKind.OPAQUE)
        argument = argument.strip() if argument else None

        if kind in (TagKind.PARAM, TagKind.VAR):
            # ":param int user_id:" carries an inline type before the name
            type_text, target = None, argument
            if argument and ' ' in argument:
                type_text, target = argument.rsplit(' ', 1)
            return DocTag(kind, name, body=body, target=target, type_text=type_text)

        if kind in (TagKind.TYPE, TagKind.VAR_TYPE):
            return DocTag(kind, name, target=argument, type_text=body or None)

        if kind is TagKind.RETURN_TYPE:
            return DocTag(kind, name, type_text=body or None)

        if kind is TagKind.RAISES:
            return DocTag(kind, name, body=body, target=argument)

        return DocTag(kind, name, body=body, target=argument)

    @staticmethod
    def _google_section(header: str, kind: TagKind, section: List[str]) -> List[DocTag]:
        tags = []
        if kind in (TagKind.PARAM, TagKind.VAR, TagKind.RAISES):
            current = None
            for line in section:
                entry = _GOOGLE_ENTRY.match(line) if not line.startswith((' ', '\t')) else None
                if entry:
                    if current:
                        tags.append(current)
                    target, type_text, body = entry.groups()
                    if kind is TagKind.RAISES:
                        current = DocTag(kind, header, body=body, target=target)
                    else:
                        current = DocTag(kind, header, body=body, target=target.lstrip('*'),
                                         type_text=_strip_optional(type_text) if type_text else None)
                elif current:
                    current = DocTag(current.kind, current.name,
                                     body=(current.body + ' ' + line.strip()).strip(),
                                     target=current.target, type_text=current.type_text)
                else:
                    tags.append(DocTag(TagKind.DESCRIPTION, 'description', body=line.strip()))
            if current:
                tags.append(current)
            return tags

        text = '\n'.join(l.strip() for l in section).strip()
        if kind is TagKind.RETURNS:
            # "User: the created user" -> type + body
            entry = _RETURNS_ENTRY.match(text)
            if entry:
                return [DocTag(kind, header, body=entry.group(2).strip(), type_text=entry.group(1).strip())]
        return [DocTag(kind, header, body=text)]

    @staticmethod
    def _numpy_section(header: str, kind: TagKind, section: List[str]) -> List[DocTag]:
        tags = []
        current = None
        for line in section:
            entry = _NUMPY_ENTRY.match(line) if not line.startswith((' ', '\t')) else None
            if kind is TagKind.RETURNS and not line.startswith((' ', '\t')) and not entry:
                # NumPy returns may be a bare type line
                if current:
                    tags.append(current)
                current = DocTag(kind, header, type_text=line.strip())
            elif entry:
                if current:
                    tags.append(current)
                type_text = _strip_optional(entry.group(2))
                if kind is TagKind.RETURNS:
                    current = DocTag(kind, header, type_text=type_text)
                else:
                    current = DocTag(kind, header, target=entry.group(1), type_text=type_text)
            elif current:
                current = DocTag(current.kind, current.name,
                                 body=(current.body + ' ' + line.strip()).strip(),
                                 target=current.target, type_text=current.type_text)
            else:
                tags.append(DocTag(TagKind.DESCRIPTION, 'description', body=line.strip()))
        if current:
            tags.append(current)
        return tags


# =============================================================================
# HELPERS
# =============================================================================

def _dedent(lines: List[str]) -> List[str]:
    # The first line of a docstring is usually not indented; dedent the rest.
    rest = [l for l in lines[1:] if l.strip()]
    if not rest:
        return [l.rstrip() for l in lines]
    indent = min(len(l) - len(l.lstrip()) for l in rest)
    return [lines[0].strip()] + [l[indent:].rstrip() for l in lines[1:]]


def _strip_optional(type_text: str) -> str:
    return _OPTIONAL_SUFFIX.sub('', type_text.strip()).strip()


def _is_tag_line(line: str) -> bool:
    return bool(_SPHINX_FIELD.match(line) or _EPYDOC_FIELD.match(line) or _GOOGLE_HEADER.match(line))


def _continuation(lines: List[str], start: int, body: str):
    """Join indented continuation lines of a field body."""
    parts = [body.strip()] if body and body.strip() else []
    i = start
    while i < len(lines) and lines[i].startswith((' ', '\t')) and lines[i].strip():
        parts.append(lines[i].strip())
        i += 1
    return ' '.join(parts), i


def _section_lines(lines: List[str], start: int):
    """Indented block following a Google-style header, dedented by one level."""
    section = []
    i = start
    while i < len(lines):
        line = lines[i]
        if line.strip() and not line.startswith((' ', '\t')):
            break
        if line.strip():
            section.append(line)
        i += 1
    if section:
        indent = min(len(l) - len(l.lstrip()) for l in section)
        section = [l[indent:] for l in section]
    return section, i


def _numpy_section_lines(lines: List[str], start: int):
    """Lines of a NumPy section up to the next header/underline pair."""
    section = []
    i = start
    while i < len(lines):
        if i + 1 < len(lines) and _NUMPY_UNDERLINE.match(lines[i + 1].strip()) and lines[i].strip():
            break
        if lines[i].strip():
            section.append(lines[i])
        i += 1
    return section, i
