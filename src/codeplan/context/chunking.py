"""Split files into chunks and condensed summaries for partial inclusion."""

from __future__ import annotations

from codeplan.context.models import CodeChunk, FileIndex, SymbolInfo

_C_STYLE = {"javascript", "typescript", "java", "csharp", "cpp", "c", "go", "rust"}


def elision_marker(language: str, what: str = "code omitted") -> str:
    prefix = "#" if language in ("python", "ruby", "shell", "") else "//"
    return f"{prefix} ... ({what}) ..."


def split_chunks(content: str, index: FileIndex | None, chunk_lines: int = 50) -> list[CodeChunk]:
    """Split `content` at the index's structural boundaries.

    Segments longer than `chunk_lines` are further cut into fixed-size
    windows. Files without boundaries produce no chunks.
    """
    if index is None or not index.chunk_boundaries:
        return []

    lines = content.split("\n")
    n = len(lines)
    starts = sorted({b for b in index.chunk_boundaries if 0 <= b < n} | {0})

    chunks: list[CodeChunk] = []
    for i, seg_start in enumerate(starts):
        seg_end = starts[i + 1] - 1 if i + 1 < len(starts) else n - 1
        window_start = seg_start
        while window_start <= seg_end:
            window_end = min(seg_end, window_start + chunk_lines - 1)
            chunks.append(
                CodeChunk(
                    id=f"{index.path}:{window_start}-{window_end}",
                    path=index.path,
                    start_line=window_start,
                    end_line=window_end,
                    content="\n".join(lines[window_start:window_end + 1]),
                    symbols=[
                        s.name for s in index.symbols
                        if window_start <= s.line <= window_end
                    ],
                )
            )
            window_start = window_end + 1

    return chunks


def assemble_chunks(chunks: list[CodeChunk], language: str) -> str:
    """Join chunks in line order, marking gaps between non-adjacent chunks."""
    sections: list[str] = []
    last_end = -1
    for chunk in sorted(chunks, key=lambda c: c.start_line):
        if last_end != -1 and chunk.start_line > last_end + 1:
            sections.append(elision_marker(language))
        sections.append(chunk.content)
        last_end = chunk.end_line
    return "\n".join(sections)


def extract_header(lines: list[str], index: FileIndex | None, max_lines: int = 15) -> list[str]:
    """Return the import block, or the leading comment block when there is none."""
    language = index.language if index else ""
    imports: list[str] = []
    in_block = False

    for line in lines:
        stripped = line.strip()
        if _is_import(stripped, line, language):
            imports.append(line)
            in_block = True
        elif in_block and stripped == "":
            continue
        elif in_block:
            break

    if imports:
        return imports
    if index and index.import_summary:
        return list(index.import_summary)

    header: list[str] = []
    for line in lines[:max_lines]:
        if not line.strip() and header:
            break
        header.append(line)
    return header


def _is_import(stripped: str, line: str, language: str) -> bool:
    if language == "python" or not language:
        if stripped.startswith(("import ", "from ")):
            return True
    if language in _C_STYLE or not language:
        if stripped.startswith("import ") or (stripped.startswith("const ") and "require(" in line):
            return True
        if stripped.startswith(("#include", "using ", "use ")):
            return True
    return False


def extract_symbol_block(
    lines: list[str],
    symbol: SymbolInfo,
    next_line: int | None,
    language: str,
    line_cap: int = 20,
    keep_lines: int = 15,
) -> str:
    """Extract a symbol's source, truncated to `keep_lines` past `line_cap`.

    The block always ends with an elision marker.
    """
    start = symbol.line
    if symbol.end_line is not None:
        end = symbol.end_line
    elif next_line is not None:
        end = next_line - 1
    else:
        end = len(lines) - 1
    end = min(end, start + 49, len(lines) - 1)

    block: list[str] = []
    depth = 0
    opened = False
    for i in range(start, end + 1):
        line = lines[i]
        if language == "python" and i > start and line.strip() and not line[0].isspace():
            break
        block.append(line)
        if language in _C_STYLE:
            depth += line.count("{") - line.count("}")
            opened = opened or "{" in line
            if opened and depth <= 0:
                break

    while block and not block[-1].strip():
        block.pop()

    if len(block) > line_cap:
        block = block[:keep_lines]
        block.append(elision_marker(language, "implementation details omitted"))
    else:
        block.append(elision_marker(language))
    return "\n".join(block)


def condensed_units(
    content: str,
    index: FileIndex | None,
    line_cap: int = 20,
    keep_lines: int = 15,
) -> list[str]:
    """Header section plus one block per top-level symbol, in file order."""
    lines = content.split("\n")
    language = index.language if index else ""
    units: list[str] = []

    header = extract_header(lines, index, keep_lines)
    if header:
        units.append("\n".join(header) + "\n" + elision_marker(language))

    if index is None:
        return units

    symbols = [s for s in index.top_level_symbols if 0 <= s.line < len(lines)]
    for i, symbol in enumerate(symbols):
        next_line = symbols[i + 1].line if i + 1 < len(symbols) else None
        units.append(
            extract_symbol_block(lines, symbol, next_line, language, line_cap, keep_lines)
        )
    return units
