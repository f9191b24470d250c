"""
=============================================================================
TEMPLATE COMPILER
=============================================================================

Splits a template into an ordered list of segments: literal text that is
copied to the output verbatim, and Python code that runs in the sandbox.

=============================================================================
TEMPLATE SYNTAX
=============================================================================

    <h1>Cart</h1>                         ← Literal
    <? total = sum(item["price"] for item in cart)
       append(f"<p>{total}</p>") ?>       ← Code (lines 2-3)
    <footer>bye</footer>                  ← Literal

    ┌──────────────────────────────────────────────────────────────────┐
    │  Literal("<h1>Cart</h1>\\n", line=1)                              │
    │  Code("total = ...\\nappend(...)", line=2, end_line=3)            │
    │  Literal("\\n<footer>bye</footer>\\n", line=3)                     │
    └──────────────────────────────────────────────────────────────────┘

Rules:

1. Blocks are "<?" ... "?>", matched non-greedily and allowed to span
   lines. An unterminated "<?" is plain text.

2. Code that starts on the "<?" line is taken to start at its column in
   the source file, then the whole block is dedented. Continuation lines
   are therefore written aligned with the first statement:

        <p><? if user:
              append(user)
              ?></p>

   A block whose code starts on the next line is simply dedented.

3. Each block is a separate unit of execution. Variables carry over from
   block to block; an "if" or "for" cannot span two blocks.

4. Only append() produces output. The value of an expression is never
   captured implicitly.

=============================================================================
LINE NUMBERS
=============================================================================

Every Code segment remembers the source line of its first character. The
executor compiles each segment padded with that many newlines, so Python
tracebacks and SyntaxErrors report template line numbers directly, with
no translation table.

=============================================================================
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union
import re
import textwrap


BLOCK_PATTERN = re.compile(r"<\?(.*?)\?>", re.DOTALL)


@dataclass(frozen=True)
class Literal:
    """Text emitted verbatim."""

    text: str
    line: int = 1


@dataclass(frozen=True)
class Code:
    """Python source of one block and the template lines it spans."""

    source: str
    line: int = 1
    end_line: int = 1


Segment = Union[Literal, Code]


@dataclass(frozen=True)
class CompiledTemplate:
    """
    The reusable compiled form of a template.

    Segments are in exactly the order they appear in the source. The
    original source is kept for diagnostic listings.
    """

    filename: str
    source: str = field(repr=False)
    segments: tuple = ()

    @property
    def code_segments(self) -> list[Code]:
        return [seg for seg in self.segments if isinstance(seg, Code)]

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form, used for the on-disk cache."""
        segments = []
        for seg in self.segments:
            if isinstance(seg, Code):
                segments.append({
                    "type": "code",
                    "source": seg.source,
                    "line": seg.line,
                    "end_line": seg.end_line,
                })
            else:
                segments.append({"type": "literal", "text": seg.text, "line": seg.line})
        return {"filename": self.filename, "source": self.source, "segments": segments}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompiledTemplate":
        """
        Rebuild a template from to_dict() output.

        Raises:
            KeyError, TypeError, ValueError: if `data` is not a compiled form.
        """
        segments = []
        for item in data["segments"]:
            if item["type"] == "code":
                segments.append(Code(item["source"], int(item["line"]), int(item["end_line"])))
            elif item["type"] == "literal":
                segments.append(Literal(item["text"], int(item["line"])))
            else:
                raise ValueError(f"Unknown segment type: {item['type']!r}")
        return cls(filename=data["filename"], source=data["source"], segments=tuple(segments))


def _line_at(source: str, index: int) -> int:
    return source.count("\n", 0, index) + 1


class TemplateCompiler:
    """
    Compiles template text into a CompiledTemplate.

    Usage:
        compiled = TemplateCompiler().compile("<b><? append(1 + 1) ?></b>")
        [type(s).__name__ for s in compiled.segments]
        # ['Literal', 'Code', 'Literal']
    """

    def compile(self, source: str, filename: str = "<template>") -> CompiledTemplate:
        segments: list = []
        last = 0

        for match in BLOCK_PATTERN.finditer(source):
            if match.start() > last:
                segments.append(Literal(source[last:match.start()], _line_at(source, last)))

            code = self._code_segment(source, match)
            if code is not None:
                segments.append(code)
            last = match.end()

        if last < len(source):
            segments.append(Literal(source[last:], _line_at(source, last)))

        return CompiledTemplate(filename=filename, source=source, segments=tuple(segments))

    def compile_file(self, path: Union[str, Path]) -> CompiledTemplate:
        """
        Read and compile a template file.

        Raises:
            OSError: if the file cannot be read.
        """
        path = Path(path)
        return self.compile(path.read_text(encoding="utf-8"), filename=str(path))

    def _code_segment(self, source: str, match: "re.Match[str]") -> Optional[Code]:
        start = match.start(1)
        column = start - (source.rfind("\n", 0, start) + 1)

        # Put the first line back at its source column before dedenting
        text = textwrap.dedent(" " * column + match.group(1))
        code = text.strip()
        if not code:
            return None

        leading = text[:len(text) - len(text.lstrip())]
        line = _line_at(source, start) + leading.count("\n")
        return Code(source=code, line=line, end_line=line + code.count("\n"))


# =============================================================================
# CONVENIENCE FUNCTION
# =============================================================================

def compile_template(source: str, filename: str = "<template>") -> CompiledTemplate:
    """Compile template text in one call."""
    return TemplateCompiler().compile(source, filename)
