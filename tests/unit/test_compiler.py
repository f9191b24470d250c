"""
Unit tests for the template compiler.
"""

import pytest

from cgiscript.template.compiler import (
    Code,
    CompiledTemplate,
    Literal,
    TemplateCompiler,
    compile_template,
)


class TestTemplateCompiler:
    """Tests for splitting templates into segments."""

    def test_literal_and_code(self):
        """Test the basic literal + block split."""
        compiled = compile_template("<h1>Hi</h1><? append(str(1+1)) ?>")

        assert compiled.segments == (
            Literal("<h1>Hi</h1>", line=1),
            Code("append(str(1+1))", line=1, end_line=1),
        )

    def test_text_after_block(self):
        """Test that trailing text becomes a literal."""
        compiled = compile_template("a<? x = 1 ?>b")
        assert [type(s) for s in compiled.segments] == [Literal, Code, Literal]
        assert compiled.segments[2].text == "b"

    def test_plain_text_only(self):
        """Test a template without blocks."""
        compiled = compile_template("<p>static</p>\n")
        assert compiled.segments == (Literal("<p>static</p>\n", line=1),)

    def test_empty_template(self):
        """Test that an empty source has no segments."""
        assert compile_template("").segments == ()

    def test_unterminated_block_is_literal(self):
        """Test that "<?" without "?>" is plain text."""
        compiled = compile_template("a <? b")
        assert compiled.segments == (Literal("a <? b", line=1),)

    def test_empty_block_skipped(self):
        """Test that a whitespace-only block produces no code segment."""
        compiled = compile_template("a<?   ?>b")
        assert compiled.segments == (Literal("a", line=1), Literal("b", line=1))

    def test_adjacent_blocks(self):
        """Test that back-to-back blocks keep their order."""
        compiled = compile_template("<? a = 1 ?><? append(a) ?>")
        assert [s.source for s in compiled.code_segments] == ["a = 1", "append(a)"]

    def test_block_on_own_lines(self):
        """Test that code starting after the opener is dedented."""
        source = "<ul>\n<?\n    for i in range(2):\n        append(i)\n?>\n</ul>"

        code = compile_template(source).code_segments[0]

        assert code.source == "for i in range(2):\n    append(i)"
        assert code.line == 3
        assert code.end_line == 4

    def test_continuation_aligned_to_opener_column(self):
        """Test that the first line counts at its source column."""
        source = (
            "<p><? if user:\n"
            "          append(user)\n"
            "      ?></p>"
        )

        code = compile_template(source).code_segments[0]

        assert code.source == "if user:\n    append(user)"
        assert code.line == 1
        assert code.end_line == 2

    def test_line_numbers(self):
        """Test that segments record the line they start on."""
        source = "line 1\nline 2\n<? x = 1 ?>\nline 4\n<? y = 2\nz = 3 ?>"

        compiled = compile_template(source)
        lines = [(type(s).__name__, s.line) for s in compiled.segments]

        assert lines == [
            ("Literal", 1),
            ("Code", 3),
            ("Literal", 3),
            ("Code", 5),
        ]

    def test_question_mark_inside_code(self):
        """Test that a lone ? in code does not end the block."""
        compiled = compile_template('<? append("why?") ?>')
        assert compiled.code_segments[0].source == 'append("why?")'

    def test_deterministic(self):
        """Test that compiling twice gives the same segments."""
        source = "<b><? append(1) ?></b>\n<? x = 2\nappend(x) ?>"
        assert compile_template(source).segments == compile_template(source).segments


class TestCompiledTemplate:
    """Tests for the compiled form."""

    def test_dict_round_trip(self):
        """Test that to_dict/from_dict preserve segments and source."""
        compiled = compile_template("a\n<? append(1) ?>\nb", filename="/srv/page.cgs")

        restored = CompiledTemplate.from_dict(compiled.to_dict())

        assert restored == compiled
        assert restored.filename == "/srv/page.cgs"

    def test_from_dict_rejects_unknown_segment(self):
        """Test that a foreign segment type is an error."""
        data = {"filename": "x", "source": "", "segments": [{"type": "macro"}]}
        with pytest.raises(ValueError):
            CompiledTemplate.from_dict(data)

    def test_compile_file(self, write_template):
        """Test that the file path becomes the filename."""
        path = write_template("<? append('ok') ?>")

        compiled = TemplateCompiler().compile_file(path)

        assert compiled.filename == str(path)
        assert compiled.source == "<? append('ok') ?>"
