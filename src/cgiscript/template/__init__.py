"""
Template compilation and caching.

    compiler.py   "<? code ?>" blocks → CompiledTemplate(Literal | Code segments)
    cache.py      CompilationCache, on-disk and keyed by source mtime
"""

from .cache import CacheEntry, CompilationCache
from .compiler import (
    BLOCK_PATTERN,
    Code,
    CompiledTemplate,
    Literal,
    Segment,
    TemplateCompiler,
    compile_template,
)

__all__ = [
    "BLOCK_PATTERN",
    "CacheEntry",
    "Code",
    "CompilationCache",
    "CompiledTemplate",
    "Literal",
    "Segment",
    "TemplateCompiler",
    "compile_template",
]
