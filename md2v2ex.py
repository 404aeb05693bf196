#!/usr/bin/env python3
"""
md2v2ex — Markdown to V2EX Default (BBCode-style) converter.

Usage:
    python md2v2ex.py input.md
    python md2v2ex.py input.md -o output.txt
    cat input.md | python md2v2ex.py --table=strip --links=url
"""
import re
import sys
import logging
import argparse
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Tuple, Union

__version__ = '1.0.0'

logger = logging.getLogger(__name__)

# Placeholder tag characters — NUL-delimited. NUL is removed from every input
# before conversion, so no document text can spell a token.
_PH_CB = '\x00CB'   # fenced code block
_PH_IC = '\x00IC'   # inline code
_PH_LK = '\x00LK'   # link / image URL
_PH_END = '\x00'

LINK_MODES = ('label', 'url', 'both')
TABLE_MODES = ('strip', 'space', 'keep')
HEADING_SEPARATORS = ('equals', 'dashes')


def _ph(tag: str, n: int) -> str:
    """Return a unique placeholder string for tag+counter."""
    return f'{tag}\x01{n}{_PH_END}'


class Placeholder(NamedTuple):
    """A protected span: the token standing in the text and what it restores to."""
    token: str
    content: str


def extract(text: str, pattern: Union[str, re.Pattern],
            formatter: Callable[[re.Match], str],
            tag: str = _PH_CB) -> Tuple[str, List[Placeholder]]:
    """Replace every match of *pattern* with a fresh placeholder token.

    *formatter* receives the match and returns the content the token will be
    restored to. Placeholders are returned in order of occurrence; the
    counter starts from zero on every call.
    """
    placeholders: List[Placeholder] = []

    def replacer(m: re.Match) -> str:
        token = _ph(tag, len(placeholders))
        placeholders.append(Placeholder(token, formatter(m)))
        return token

    return re.sub(pattern, replacer, text), placeholders


def restore(text: str, placeholders: List[Placeholder]) -> str:
    """Substitute every token in *text* with its stored content."""
    for placeholder in placeholders:
        text = text.replace(placeholder.token, placeholder.content)
    return text


def _check_choice(name: str, value: str, choices: Tuple[str, ...]) -> None:
    if value not in choices:
        raise ValueError(
            f'invalid {name} value {value!r}; expected one of: {", ".join(choices)}'
        )


@dataclass(frozen=True)
class ConvertOptions:
    """Conversion settings.

    Parameters
    ----------
    bold : bool, default True
        Emit ``[b]...[/b]`` for ``**bold**``; when False the markers are
        stripped and the text kept.
    links : {"label", "url", "both"}, default "both"
        ``both`` puts the label on one line and the URL on the next.
    table : {"strip", "space", "keep"}, default "space"
        ``strip`` drops tables, ``space`` joins cells with a single space,
        ``keep`` leaves the rows as written minus alignment rows.
    heading_separator : {"equals", "dashes"}, default "equals"
        ``equals`` underlines h1/h2 with ``======`` and the rest with
        ``------``; ``dashes`` uses ``------`` for every level.
    """

    bold: bool = True
    links: str = 'both'
    table: str = 'space'
    heading_separator: str = 'equals'

    def __post_init__(self):
        _check_choice('links', self.links, LINK_MODES)
        _check_choice('table', self.table, TABLE_MODES)
        _check_choice('heading_separator', self.heading_separator, HEADING_SEPARATORS)

    def create_updated(self, **kwargs) -> 'ConvertOptions':
        """Return a copy with the given fields replaced."""
        return replace(self, **kwargs)


class V2exConverter:
    """Convert Markdown text to V2EX Default (BBCode-style) syntax."""

    # Fenced code block: ```lang ... ``` (language tag is dropped)
    _FENCE = re.compile(r'```[\w+-]*[ \t]*\n(.*?)```', re.DOTALL)
    # Inline code, within one line
    _INLINE_CODE = re.compile(r'`([^`\n]+)`')
    # Heading
    _HEADING = re.compile(r'^(#{1,6})\s+(.+)$')
    # Blockquote marker, one level
    _BLOCKQUOTE = re.compile(r'^\s*>\s?')
    # Table row: starts and ends with |
    _TABLE_ROW = re.compile(r'^\s*\|.*\|\s*$')
    # Alignment cell of a table separator row: ---, :--, --:, :-:
    _TABLE_ALIGN = re.compile(r'^:?-+:?$')
    # Task list item
    _TASK_ITEM = re.compile(r'^([ \t]*)[-*+][ \t]+\[([ xX])\][ \t]+(.+)$', re.MULTILINE)
    # Unordered list item: -, *, + with optional leading spaces
    _UL_ITEM = re.compile(r'^(\s*)[-*+]\s+(.+)$')
    # HR: ---, *** or ___ (3+ of the same char) on its own line
    _HR = re.compile(r'^([-*_])\1{2,}[ \t]*$', re.MULTILINE)
    # HTML; neither pattern may cross a placeholder token
    _HTML_COMMENT = re.compile(r'<!--[^\x00]*?-->')
    _HTML_TAG = re.compile(r'<[^>\x00\n]+>')
    # Footnotes: whole definition line, then references
    _FOOTNOTE_DEF = re.compile(r'^\[\^[^\]]+\]:.*$', re.MULTILINE)
    _FOOTNOTE_REF = re.compile(r'\[\^[^\]]+\]')
    # Link destination: no whitespace, one level of balanced parentheses,
    # optional "title"
    _DEST = r'\(\s*((?:[^()\s]|\([^()\s]*\))+)(?:\s+"[^"]*")?\s*\)'
    # Images: ![alt](url)  — must be before link regex
    _IMAGE = re.compile(r'!\[([^\]]*)\]' + _DEST)
    # Links: [text](url)
    _LINK = re.compile(r'\[([^\]]+)\]' + _DEST)
    # Bold: **text** or __text__ (not intraword for underscores)
    _BOLD_STAR = re.compile(r'\*\*(.+?)\*\*')
    _BOLD_UNDERSCORE = re.compile(r'(?<!\w)__(.+?)__(?!\w)')
    # Italic: single delimiters only, run after bold
    _ITALIC_STAR = re.compile(r'(?<!\*)\*(?![\s*])(.+?)(?<![\s*])\*(?!\*)')
    _ITALIC_UNDERSCORE = re.compile(r'(?<!\w)_(?![\s_])(.+?)(?<![\s_])_(?!\w)')
    # Strikethrough: ~~text~~
    _STRIKE = re.compile(r'~~(.+?)~~')
    # Cleanup
    _BLANK_RUN = re.compile(r'\n{3,}')

    def __init__(self, options: Optional[ConvertOptions] = None):
        self.options = options if options is not None else ConvertOptions()

    def convert(self, text: str) -> str:
        if not isinstance(text, str):
            return ''
        text = self._sanitize(text)

        # Pass 1: Extract fenced code blocks → placeholders
        text, code_blocks = extract(
            text, self._FENCE,
            lambda m: f'[code]{m.group(1).rstrip()}[/code]', _PH_CB,
        )

        # Pass 2: Block structure
        text = self._process_blockquotes(text)
        text = self._process_headings(text)
        text = self._process_tables(text)
        text = self._process_task_lists(text)
        text = self._process_lists(text)
        text = self._process_horizontal_rules(text)

        # Pass 3: Extract inline code → placeholders
        text, inline_code = extract(
            text, self._INLINE_CODE,
            lambda m: f'[code]{m.group(1)}[/code]', _PH_IC,
        )
        logger.debug(
            'Protected %d code block(s) and %d inline code span(s)',
            len(code_blocks), len(inline_code),
        )

        # Pass 4: Inline rewrites
        text = self._strip_html(text)
        text = self._strip_footnotes(text)
        text, urls = self._process_links(text)
        text = self._process_emphasis(text)

        # Pass 5: Restore link URLs, inline code, then code blocks
        text = restore(text, urls)
        text = restore(text, inline_code)
        text = restore(text, code_blocks)

        # Pass 6: Cleanup
        return self._BLANK_RUN.sub('\n\n', text).strip()

    def _sanitize(self, text: str) -> str:
        text = text.replace('\r\n', '\n').replace('\r', '\n')
        return text.replace(_PH_END, '')

    # ------------------------------------------------------------------
    # Pass 2: Block structure
    # ------------------------------------------------------------------

    def _process_blockquotes(self, text: str) -> str:
        result = []
        buffer = []

        def flush():
            if buffer:
                result.append('[blockquote]' + '\n'.join(buffer) + '[/blockquote]')
                buffer.clear()

        for line in text.split('\n'):
            if line.lstrip().startswith('>'):
                buffer.append(self._BLOCKQUOTE.sub('', line, count=1))
            else:
                flush()
                result.append(line)
        flush()
        return '\n'.join(result)

    def _process_headings(self, text: str) -> str:
        result = []
        for line in text.split('\n'):
            m = self._HEADING.match(line)
            if m:
                result.append(m.group(2).strip())
                result.append(self._heading_separator(len(m.group(1))))
            else:
                result.append(line)
        return '\n'.join(result)

    def _heading_separator(self, level: int) -> str:
        if self.options.heading_separator == 'dashes' or level > 2:
            return '------'
        return '======'

    def _process_tables(self, text: str) -> str:
        result = []
        table_buffer = []

        def flush_table():
            if table_buffer:
                result.extend(self._format_table(table_buffer))
                table_buffer.clear()

        for line in text.split('\n'):
            if self._TABLE_ROW.match(line):
                table_buffer.append(line)
            else:
                flush_table()
                result.append(line)
        flush_table()
        return '\n'.join(result)

    def _format_table(self, rows: list) -> list:
        """Render one table region according to the table mode."""
        mode = self.options.table
        if mode == 'strip':
            return []
        rows = [r for r in rows if not self._is_alignment_row(r)]
        if mode == 'keep':
            return rows
        result = []
        for row in rows:
            cells = [c.strip() for c in row.split('|')]
            result.append(' '.join(c for c in cells if c))
        return result

    def _is_alignment_row(self, row: str) -> bool:
        cells = [c.strip() for c in row.split('|') if c.strip()]
        return all(self._TABLE_ALIGN.match(c) for c in cells)

    def _process_task_lists(self, text: str) -> str:
        def replacer(m: re.Match) -> str:
            checkbox = '[x]' if m.group(2).lower() == 'x' else '[ ]'
            return f'{m.group(1)}{checkbox} {m.group(3)}'

        return self._TASK_ITEM.sub(replacer, text)

    def _process_lists(self, text: str) -> str:
        result = []
        for line in text.split('\n'):
            m = self._UL_ITEM.match(line)
            if m:
                # Bullet dropped, indent capped at 4 characters
                result.append(m.group(1)[:4] + m.group(2))
            else:
                # Ordered items keep their numbers as plain text
                result.append(line)
        return '\n'.join(result)

    def _process_horizontal_rules(self, text: str) -> str:
        return self._HR.sub('------', text)

    # ------------------------------------------------------------------
    # Pass 4: Inline rewrites
    # ------------------------------------------------------------------

    def _strip_html(self, text: str) -> str:
        # Comments first so tags inside them go with the comment
        text = self._HTML_COMMENT.sub('', text)
        return self._HTML_TAG.sub('', text)

    def _strip_footnotes(self, text: str) -> str:
        text = self._FOOTNOTE_DEF.sub('', text)
        return self._FOOTNOTE_REF.sub('', text)

    def _process_links(self, text: str) -> Tuple[str, List[Placeholder]]:
        """Rewrite images and links; emitted URLs are kept as placeholders so
        the emphasis pass does not touch ``_`` or ``*`` inside them."""
        urls: List[Placeholder] = []
        mode = self.options.links

        def protect(url: str) -> str:
            token = _ph(_PH_LK, len(urls))
            urls.append(Placeholder(token, url))
            return token

        def link_replacer(m: re.Match) -> str:
            label = m.group(1)
            if mode == 'label':
                return label
            if mode == 'url':
                return protect(m.group(2))
            return f'{label}\n{protect(m.group(2))}'

        # Images first (subset of link syntax)
        text = self._IMAGE.sub(lambda m: protect(m.group(2)), text)
        text = self._LINK.sub(link_replacer, text)
        return text, urls

    def _process_emphasis(self, text: str) -> str:
        # Bold goes first so only single delimiters are left for italics
        bold = r'[b]\1[/b]' if self.options.bold else r'\1'
        text = self._BOLD_STAR.sub(bold, text)
        text = self._BOLD_UNDERSCORE.sub(bold, text)
        text = self._ITALIC_STAR.sub(r'\1', text)
        text = self._ITALIC_UNDERSCORE.sub(r'\1', text)
        return self._STRIKE.sub(r'\1', text)


def convert(markdown: str, options: Optional[ConvertOptions] = None) -> str:
    """Convert *markdown* to V2EX Default syntax.

    Never raises for string input; empty or whitespace-only input gives ''.
    """
    return V2exConverter(options).convert(markdown)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

_WARNING_CHECKS = (
    (
        (re.compile(r'!\[[^\]]*\]\([^)]+\)'),),
        'Images detected: V2EX Default cannot show inline images, '
        'they were converted to plain URLs',
    ),
    (
        (re.compile(r'^[ \t]*\|.*\|[ \t]*$', re.MULTILINE),),
        'Tables detected: V2EX Default has no table syntax, '
        'they were converted to plain text',
    ),
    (
        (re.compile(r'^[ \t]*[-*+][ \t]+\[[ xX]\][ \t]+\S', re.MULTILINE),),
        'Task lists detected: checkboxes were converted to plain [x] / [ ] markers',
    ),
    (
        (re.compile(r'\[\^[^\]]+\]'), re.compile(r'^\[\^[^\]]+\]:', re.MULTILINE)),
        'Footnotes detected: V2EX Default has no footnotes, they were removed',
    ),
    (
        (re.compile(r'<(?!/?(?:code|pre|b|i|strong|em)\b)[^>]+>'),),
        'HTML tags detected: V2EX may not support some of them, they were removed',
    ),
)


def get_warnings(markdown: str) -> List[str]:
    """Return one message per Markdown feature V2EX Default cannot render.

    Runs over the original text; has no effect on conversion.
    """
    if not isinstance(markdown, str):
        return []
    return [
        message for patterns, message in _WARNING_CHECKS
        if any(p.search(markdown) for p in patterns)
    ]


def is_v2ex_compatible(markdown: str) -> bool:
    return not get_warnings(markdown)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

class _ArgumentParser(argparse.ArgumentParser):
    """argparse parser that exits with status 1 on usage errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f'{self.prog}: error: {message}\n')


def _build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog='md2v2ex',
        description='Convert Markdown to V2EX Default (BBCode-style) syntax.',
        epilog='Reads standard input when no input file is given.',
    )
    parser.add_argument('input', nargs='?', default=None, help='Input Markdown file')
    parser.add_argument(
        '-o', '--output', default=None,
        help='Output file (default: standard output)',
    )
    parser.add_argument(
        '--no-bold', dest='bold', action='store_false',
        help='Strip bold markers instead of emitting [b]...[/b]',
    )
    parser.add_argument(
        '--links', choices=LINK_MODES, default='both',
        help='label: text only, url: URL only, both: text then URL (default)',
    )
    parser.add_argument(
        '--table', choices=TABLE_MODES, default='space',
        help='strip: remove tables, space: cells joined by spaces (default), '
             'keep: rows as written',
    )
    parser.add_argument(
        '--heading-separator', choices=HEADING_SEPARATORS, default='equals',
        help='equals: ====== under h1/h2 (default), dashes: ------ everywhere',
    )
    parser.add_argument(
        '--raw', action='store_true',
        help='Pass the input through unchanged',
    )
    parser.add_argument(
        '--warnings', action='store_true',
        help='Report Markdown features V2EX cannot render',
    )
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument(
        '-v', '--version', action='version', version=f'%(prog)s {__version__}',
    )
    return parser


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    root_logger.addHandler(handler)


def main(argv: Optional[List[str]] = None) -> None:
    if argv is None:
        argv = sys.argv[1:]
    parser = _build_parser()
    if not argv and sys.stdin.isatty():
        parser.print_help()
        return
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.input is not None:
        input_path = Path(args.input)
        if not input_path.exists():
            print(f'Error: file not found: {input_path}', file=sys.stderr)
            sys.exit(1)
        try:
            text = input_path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as exc:
            print(f'Error: cannot read {input_path}: {exc}', file=sys.stderr)
            sys.exit(1)
    else:
        try:
            text = sys.stdin.read()
        except (OSError, UnicodeDecodeError) as exc:
            print(f'Error: cannot read standard input: {exc}', file=sys.stderr)
            sys.exit(1)

    if args.warnings:
        for warning in get_warnings(text):
            logger.warning(warning)

    if args.raw:
        output = text
    else:
        options = ConvertOptions(
            bold=args.bold,
            links=args.links,
            table=args.table,
            heading_separator=args.heading_separator,
        )
        output = convert(text, options)

    if args.output:
        out_path = Path(args.output)
        try:
            out_path.write_text(output, encoding='utf-8')
        except OSError as exc:
            print(f'Error: cannot write {out_path}: {exc}', file=sys.stderr)
            sys.exit(1)
        print(f'Written to {out_path}', file=sys.stderr)
    else:
        if hasattr(sys.stdout, 'reconfigure'):
            sys.stdout.reconfigure(encoding='utf-8', errors='replace')
        print(output)


if __name__ == '__main__':
    main()
