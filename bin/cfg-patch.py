#!/usr/bin/env python3
"""
(C) 2026 Joseph Tingiris (joseph.tingiris@gmail.com)

Patch line-oriented game configuration files (console commands, cvars and binds).

Usage:
    python3 bin/cfg-patch.py [--debug ...] [--color auto|always|never] COMMAND ...

    python3 bin/cfg-patch.py patch TARGET PATCH [--out PATH] [--dry-run] [--duplicates last|error]
    python3 bin/cfg-patch.py validate FILE [FILE ...] [--duplicates last|error]

Examples:
    python3 bin/cfg-patch.py patch config.cfg autoexec.patch.cfg
    python3 bin/cfg-patch.py patch config.cfg autoexec.patch.cfg --dry-run > merged.cfg
    python3 bin/cfg-patch.py validate config.cfg autoexec.patch.cfg

Behavior:
    - Every non-blank, non-comment line is one statement:
        unbindall                   a command
        sensitivity "1.5"           a setting (cvar)
        bind "mouse1" "+attack"     a key bind
    - Arguments must be double-quoted. `//` starts a comment, except inside quotes.
    - Patch entries replace target entries with the same identity (command name,
      setting key or bound key); everything else in the patch is appended.
    - Output is canonical: commands first, then binds, then settings, each group
      sorted by name. Comments and blank lines are not preserved.
    - Nothing is written unless both files parse cleanly.
    - Set `CFG_PATCH_DEBUG=N` (or repeat `--debug`, e.g. `-dd`) for debug output on stderr.

Inputs / Outputs:
    TARGET, PATCH: UTF-8 config files, one statement per line.
    TARGET (or `--out`): merged config, rewritten in place.
    stdout: summary line, or the merged config with `--dry-run`.

Exit codes:
    0   Success
    1   Usage / bad args
    2   File read/write or other runtime error
    3   Parse or duplicate error in an input file
"""
from __future__ import annotations

import argparse
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Tuple, Union

USAGE_EXIT_CODE = 1
ERROR_EXIT_CODE = 2
PARSE_EXIT_CODE = 3

# color default output value, options: 'auto'|'always'|'never'
COLOR: str = 'auto'

# debug defaults; CFG_PATCH_DEBUG or --debug raise the level
DEBUG_LEVEL: int = 0

# duplicate identities inside one file: 'last' wins, or 'error'
DEFAULT_DUPLICATES = 'last'
DUPLICATE_POLICIES = ('last', 'error')

BIND_COMMAND = 'bind'
COMMENT_MARKER = '//'
QUOTE = '"'
SPACE = ' '


def usage(prog: str | None = None) -> None:
    """Print a concise usage message to stderr and exit with code 1."""
    if prog is None:
        prog = os.path.basename(sys.argv[0])
    msg = (
        f"Usage: {prog} [--debug ...] [--color auto|always|never] COMMAND ...\n\n"
        "Commands:\n"
        "  patch TARGET PATCH    Merge PATCH into TARGET (rewrites TARGET in place)\n"
        "  validate FILE ...     Check that each FILE parses\n\n"
        "Options:\n"
        "  --out PATH            (patch) Write the merged config to PATH instead of TARGET\n"
        "  --dry-run, -n         (patch) Print the merged config to stdout, write nothing\n"
        "  --duplicates last|error\n"
        "                        Duplicate identities inside one file: last wins, or fail\n"
        "  --debug, -d           Enable debug output on stderr (repeat for more detail)\n"
        "  --color, -c MODE      Colorize debug output (auto|always|never)\n"
        "  -h, --help            Show help and exit\n"
    )
    print(msg, file=sys.stderr)
    sys.exit(USAGE_EXIT_CODE)


def _color_enabled() -> bool:
    if COLOR == 'never':
        return False
    if COLOR == 'always':
        return True
    try:
        # auto (default)
        return sys.stderr.isatty()
    except Exception:
        return False


def debug_color(text: str, level: int) -> str:
    if not _color_enabled():
        return text

    colors = {
        1: '\x1b[33m',
        2: '\x1b[36m',
        3: '\x1b[35m',
    }

    code = colors.get(level, '\x1b[37m')
    return f"{code}{text}\x1b[0m"


def debug_echo(level: int, category: str, msg: str) -> None:
    """Emit a leveled debug message to stderr when `level` <= `DEBUG_LEVEL`."""
    if DEBUG_LEVEL <= 0 or level > DEBUG_LEVEL:
        return
    out = debug_color(f"[DEBUG:{level}:{category}] {msg}", level)
    sys.stderr.write(out + '\n')


def debug_level_from_env(value: str | None) -> int:
    """Translate a `CFG_PATCH_DEBUG` value into a debug level (any non-number enables level 1)."""
    if not value:
        return 0
    value = value.strip()
    if re.fullmatch(r'\d+', value):
        return int(value)
    return 1


#
# statements
#

@dataclass(frozen=True)
class Command:
    """A bare directive without arguments, e.g. `unbindall`."""

    name: str


@dataclass(frozen=True)
class Setting:
    """A key/value pair, e.g. `sensitivity "1.5"`."""

    key: str
    value: str


@dataclass(frozen=True)
class KeyBind:
    """A `bind "<key>" "<binding>"` directive."""

    key: str
    binding: str


Statement = Union[Command, Setting, KeyBind]

# output group order: commands, then binds, then settings (not alphabetical)
GROUP_RANK = {
    Command: 0,
    KeyBind: 1,
    Setting: 2,
}


def statement_identity(stmt: Statement) -> str:
    """Return the field that names the entry; payload fields are not part of it."""
    if isinstance(stmt, Command):
        return stmt.name
    return stmt.key


def statement_key(stmt: Statement) -> Tuple[int, str]:
    """Merge and sort key: (group rank, identity).

    Two statements with equal keys are the same entry even when their values
    or bindings differ.
    """
    return GROUP_RANK[type(stmt)], statement_identity(stmt)


def render_statement(stmt: Statement) -> str:
    if isinstance(stmt, Command):
        return stmt.name
    if isinstance(stmt, KeyBind):
        return f'{BIND_COMMAND} "{stmt.key}" "{stmt.binding}"'
    return f'{stmt.key} "{stmt.value}"'


def render_lines(statements: Iterable[Statement]) -> str:
    return ''.join(render_statement(stmt) + '\n' for stmt in statements)


#
# errors
#

class ParseError(Exception):
    """A single line could not be parsed; `remainder` is the input left at the failure."""

    kind = 'parse error'

    def __init__(self, remainder: str):
        self.remainder = remainder
        super().__init__(f"{self.kind}, {remainder!r}")


class InvalidIdentifier(ParseError):
    kind = 'invalid identifier'


class InvalidStringLiteral(ParseError):
    kind = 'invalid string literal'


class UnexpectedEndOfLine(ParseError):
    kind = 'unexpected end of line'


class ConfigFileError(Exception):
    """A failure tied to one line of a named input file."""

    def __init__(self, source: str, index: int, line: str, message: str):
        self.source = source
        self.index = index
        self.line = line
        super().__init__(f"{source} line {index + 1}: {message}")

    @property
    def lineno(self) -> int:
        return self.index + 1


class LineError(ConfigFileError):
    def __init__(self, source: str, index: int, line: str, error: ParseError):
        self.error = error
        super().__init__(source, index, line, str(error))


class DuplicateStatementError(ConfigFileError):
    def __init__(self, source: str, index: int, line: str, first_index: int, statement: Statement):
        self.first_index = first_index
        self.statement = statement
        kind = type(statement).__name__.lower()
        super().__init__(
            source, index, line,
            f"duplicate {kind} {statement_identity(statement)!r}, first defined on line {first_index + 1}")


#
# line parser
#

def skip_spaces(line: str, i: int) -> int:
    # only ASCII space separates tokens; tabs are content
    n = len(line)
    while i < n and line[i] == SPACE:
        i += 1
    return i


def at_line_end(line: str, i: int) -> bool:
    """True when nothing but a comment (or nothing) is left at `i`."""
    return i >= len(line) or line.startswith(COMMENT_MARKER, i)


def is_identifier_start(ch: str) -> bool:
    return ch.isalpha() or ch in '_@'


def is_identifier_char(ch: str) -> bool:
    return ch.isalnum() or ch in '_@'


def scan_identifier(line: str, i: int) -> int:
    """Return the end index of the identifier starting at `i`."""
    n = len(line)
    if i >= n or not is_identifier_start(line[i]):
        raise InvalidIdentifier(line[i:])
    i += 1
    while i < n and is_identifier_char(line[i]):
        i += 1
    return i


def scan_string_literal(line: str, i: int) -> Tuple[int, str]:
    """Return (end index, contents) of the quoted string starting at `i`."""
    if not line.startswith(QUOTE, i):
        raise InvalidStringLiteral(line[i:])
    close = line.find(QUOTE, i + 1)
    if close == -1:
        raise InvalidStringLiteral(line[i:])
    return close + 1, line[i + 1:close]


def parse_line(line: str) -> Statement | None:
    """Parse one config line.

    Returns None for blank and comment-only lines, a Command, Setting or
    KeyBind otherwise. Raises a ParseError subclass for malformed input.
    """
    i = skip_spaces(line, 0)
    if at_line_end(line, i):
        return None

    start = i
    i = scan_identifier(line, i)
    name = line[start:i]

    i = skip_spaces(line, i)
    if at_line_end(line, i):
        return Command(name)

    i, first = scan_string_literal(line, i)
    i = skip_spaces(line, i)
    if at_line_end(line, i):
        return Setting(name, first)

    # a second argument is only allowed for bind
    if name != BIND_COMMAND:
        raise UnexpectedEndOfLine(line[i:])

    i, second = scan_string_literal(line, i)
    i = skip_spaces(line, i)
    if at_line_end(line, i):
        return KeyBind(first, second)

    raise UnexpectedEndOfLine(line[i:])


#
# merge engine
#

def parse_lines(lines: Iterable[str], source: str = '<lines>') -> Iterator[Tuple[int, str, Statement]]:
    """Yield (zero-based index, line, statement) for every statement line in `lines`.

    A ParseError is re-raised as LineError with the file name and line index.
    """
    for index, line in enumerate(lines):
        line = line.rstrip('\n')
        try:
            stmt = parse_line(line)
        except ParseError as e:
            raise LineError(source, index, line, e) from e
        if stmt is None:
            continue
        debug_echo(3, 'parse', f"{source}:{index + 1}: {stmt!r}")
        yield index, line, stmt


def merge_into(collection: Dict[Tuple[int, str], Statement], lines: Iterable[str], source: str,
               duplicates: str = DEFAULT_DUPLICATES) -> int:
    """Insert or replace every statement of `lines` in `collection`; return the statement count."""
    if duplicates not in DUPLICATE_POLICIES:
        raise ValueError(f"unknown duplicates policy {duplicates!r}")

    seen: Dict[Tuple[int, str], int] = {}
    count = 0
    for index, line, stmt in parse_lines(lines, source):
        key = statement_key(stmt)
        if key in seen:
            if duplicates == 'error':
                raise DuplicateStatementError(source, index, line, seen[key], stmt)
            debug_echo(1, 'merge', f"{source}:{index + 1}: {render_statement(stmt)} overrides line {seen[key] + 1} of the same file")
        elif key in collection:
            debug_echo(2, 'merge', f"{source}:{index + 1}: {render_statement(collection[key])} -> {render_statement(stmt)}")
        else:
            debug_echo(2, 'merge', f"{source}:{index + 1}: + {render_statement(stmt)}")
        seen[key] = index
        collection[key] = stmt
        count += 1
    return count


def merge_lines(target_lines: Iterable[str], patch_lines: Iterable[str], duplicates: str = DEFAULT_DUPLICATES,
                target_name: str = 'target', patch_name: str = 'patch') -> List[Statement]:
    """Merge patch statements over target statements by identity.

    Returns the merged statements in output order (commands, binds, settings;
    each group sorted by identity). Raises ConfigFileError on the first bad line
    of either input; nothing is returned in that case.
    """
    collection: Dict[Tuple[int, str], Statement] = {}
    target_count = merge_into(collection, target_lines, target_name, duplicates)
    patch_count = merge_into(collection, patch_lines, patch_name, duplicates)
    debug_echo(1, 'merge', f"{target_count} target + {patch_count} patch statements -> {len(collection)} merged")
    return sorted(collection.values(), key=statement_key)


#
# files
#

def read_lines(path: Path) -> List[str]:
    with open(path, 'r', encoding='utf-8') as handle:
        lines = handle.readlines()
    debug_echo(1, 'io', f"read {len(lines)} lines from '{path}'")
    return lines


def apply_patch(target: Path, patch: Path, out: Path | None = None,
                duplicates: str = DEFAULT_DUPLICATES) -> Tuple[List[Statement], str]:
    """Merge `patch` into `target` and write the result to `out` (default: `target`).

    Both files are read and merged before anything is written, so a bad line
    leaves the destination untouched.
    """
    target_lines = read_lines(target)
    patch_lines = read_lines(patch)
    statements = merge_lines(target_lines, patch_lines, duplicates=duplicates,
                             target_name=str(target), patch_name=str(patch))
    text = render_lines(statements)
    if out is None:
        out = target
    out.write_text(text, encoding='utf-8')
    debug_echo(1, 'io', f"wrote {len(statements)} statements to '{out}'")
    return statements, text


def validate_file(path: Path, duplicates: str = DEFAULT_DUPLICATES) -> int:
    """Parse every line of `path`; return the number of distinct statements."""
    collection: Dict[Tuple[int, str], Statement] = {}
    merge_into(collection, read_lines(path), str(path), duplicates)
    return len(collection)


#
# CLI
#

def report_config_error(exc: ConfigFileError) -> None:
    print(f"error: {exc}", file=sys.stderr)
    print(f"  {exc.lineno:5d} | {exc.line}", file=sys.stderr)


def require_file(path: Path) -> bool:
    if path.is_file():
        return True
    print(f"error: could not find the file '{path}'", file=sys.stderr)
    return False


def cmd_patch(args: argparse.Namespace) -> int:
    if not require_file(args.target) or not require_file(args.patch):
        return ERROR_EXIT_CODE

    try:
        if args.dry_run:
            statements = merge_lines(read_lines(args.target), read_lines(args.patch), duplicates=args.duplicates,
                                     target_name=str(args.target), patch_name=str(args.patch))
            sys.stdout.write(render_lines(statements))
            return 0
        statements, _ = apply_patch(args.target, args.patch, out=args.out, duplicates=args.duplicates)
    except ConfigFileError as e:
        report_config_error(e)
        return PARSE_EXIT_CODE
    except (OSError, UnicodeDecodeError) as e:
        print(f"error: {e}", file=sys.stderr)
        return ERROR_EXIT_CODE

    out = args.out if args.out is not None else args.target
    print(f"Patched '{args.target}' with '{args.patch}' -> '{out}' ({len(statements)} statements)")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    rc = 0
    for path in args.files:
        if not require_file(path):
            rc = max(rc, ERROR_EXIT_CODE)
            continue
        try:
            count = validate_file(path, duplicates=args.duplicates)
        except ConfigFileError as e:
            report_config_error(e)
            rc = max(rc, PARSE_EXIT_CODE)
            continue
        except (OSError, UnicodeDecodeError) as e:
            print(f"error: {e}", file=sys.stderr)
            rc = max(rc, ERROR_EXIT_CODE)
            continue
        print(f"OK: {path} ({count} statements)")
    return rc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Patch line-oriented game configuration files by command/key identity.',
        epilog="Example: %(prog)s patch config.cfg autoexec.patch.cfg"
    )
    # repeat for more detail: -d merge summary and file i/o, -dd each merged entry, -ddd each parsed line
    parser.add_argument('--debug', '-d', action='count', default=0, dest='debug',
                        help='Enable debug output on stderr; repeat to raise the level.')
    parser.add_argument('--color', '-c', dest='color', choices=['auto', 'always', 'never'], default='auto',
                        help='Colorize debug output (auto|always|never)')

    commands = parser.add_subparsers(dest='command', metavar='COMMAND')

    patch = commands.add_parser('patch', help='Merge PATCH into TARGET.')
    patch.add_argument('target', type=Path, help='Config file to patch (rewritten in place)')
    patch.add_argument('patch', type=Path, help='Config file whose entries override TARGET')
    patch.add_argument('--out', '-o', type=Path, default=None,
                       help='Write the merged config to this path instead of TARGET')
    patch.add_argument('--dry-run', '-n', dest='dry_run', action='store_true',
                       help='Print the merged config to stdout and write nothing')
    patch.add_argument('--duplicates', choices=DUPLICATE_POLICIES, default=DEFAULT_DUPLICATES,
                       help='Duplicate identities inside one file: last wins, or error (default: last)')
    patch.set_defaults(func=cmd_patch)

    validate = commands.add_parser('validate', help='Check that each FILE parses.')
    validate.add_argument('files', type=Path, nargs='+', metavar='FILE', help='Config file(s) to check')
    validate.add_argument('--duplicates', choices=DUPLICATE_POLICIES, default=DEFAULT_DUPLICATES,
                          help='Duplicate identities inside one file: last wins, or error (default: last)')
    validate.set_defaults(func=cmd_validate)

    return parser


def main(argv: List[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        usage()

    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        # argparse exits 0 for --help and 2 for bad args
        if exc.code == 0:
            return 0
        return USAGE_EXIT_CODE

    if args.command is None:
        usage()

    global DEBUG_LEVEL, COLOR
    COLOR = args.color
    DEBUG_LEVEL = max(args.debug, debug_level_from_env(os.environ.get('CFG_PATCH_DEBUG')))

    return args.func(args)


if __name__ == '__main__':
    raise SystemExit(main())
