#!/usr/bin/env python3
"""
(C) 2026 Joseph Tingiris (joseph.tingiris@gmail.com)

Three-way merge of VS Code keybindings.json (JSONC) files.

Usage
    ./bin/keybindings-merge.py [OPTIONS] LOCAL REMOTE [BASE]

Options
    -o, --out PATH                  Write merged text to PATH (default: stdout).
    -k, --normalized-keys FILE      JSON object mapping raw keys to canonical keys
                                    (default: computed from all input keys).
    -e, --escalate-binding-conflicts
                                    Turn added/updated commands into conflicts when
                                    they bind a key that conflicts at binding level.
    -j, --json                      Print {"mergeContent", "hasChanges", "hasConflicts"}
                                    as JSON instead of the merged text.
    -s, --summary                   Print a one line summary to stderr.
    -c, --color WHEN                Colorize debug output: auto (default), always, never.
    -d, --debug [SPEC]              Repeatable. A level (e.g. `3`) or a filter
                                    (`command=NAME`, `target=CATEGORY`, `level=N`).
    -h, --help                      Show usage/help and exit with code 99.

Examples
    ./bin/keybindings-merge.py local.json remote.json base.json
    ./bin/keybindings-merge.py -o merged.json -s local.json remote.json
    ./bin/keybindings-merge.py --debug 2 --debug target=merge local.json remote.json base.json

    # as a git merge driver (.git/config):
    #   [merge "keybindings"]
    #       driver = keybindings-merge.py -o %A %A %B %O

Behavior
    - Parses all inputs as JSONC (comments and trailing commas) with json5.
    - Level 1 compares the files grouped by normalized key. When local and
      remote agree, local is returned unchanged. When only one side moved
      away from BASE, that side is returned verbatim.
    - Level 2 runs only when both sides moved: the files are grouped by
      command (`cmd` and `-cmd` share a group) and remote changes are applied
      onto local as positional edits, so comments and formatting of untouched
      entries survive.
    - Commands changed differently on both sides, or deleted on one side and
      edited on the other, are conflicts. Conflicts are never resolved
      automatically: the whole output is wrapped in `<<<<<<< local` /
      `=======` / `>>>>>>> remote` markers for manual resolution.
    - A missing BASE (or `-`) means everything on both sides is new.

Inputs / Outputs
    LOCAL, REMOTE, BASE: JSONC files with a top-level keybinding array.
    stdout|--out: merged JSONC text (not parseable when conflicts remain).
    stderr: diagnostics, summary and debug output.

Important notes
    - Requires Python 3.10 or newer.
    - Record schema is not validated; missing `key`/`command` read as "".

Exit codes
    0   Merged without conflicts
    1   Merged with conflicts
    2   File read/parse/write or other runtime error
    99  Usage/help displayed or missing/invalid required args
"""

from __future__ import annotations
from typing import Any, Callable, Iterable, List, Mapping, Sequence

import argparse
import json
import re
import sys
from dataclasses import dataclass, field, replace

import json5

# ---- Python version check ----
if sys.version_info < (3, 10):
    sys.stderr.write("Error: this script requires Python 3.10 or newer. Please upgrade your Python installation.\n")
    sys.exit(2)

CONFLICT_EXIT_CODE = 1
ERROR_EXIT_CODE = 2
USAGE_EXIT_CODE = 99

DEFAULT_EOL = "\n"
DEFAULT_INDENT = "\t"

CONFLICT_MARKER_LOCAL = "<<<<<<< local"
CONFLICT_MARKER_SEPARATOR = "======="
CONFLICT_MARKER_REMOTE = ">>>>>>> remote"

# canonical modifier order; unknown modifiers follow alphabetically
MODIFIER_ORDER = ["ctrl", "shift", "alt", "meta"]

MODIFIER_ALIASES = {
    "control": "ctrl",
    "option": "alt",
    "opt": "alt",
    "cmd": "meta",
    "command": "meta",
    "win": "meta",
    "super": "meta",
}

# color default output value, options: 'auto'|'always'|'never'
COLOR: str = "auto"

# debug defaults
DEBUG_LEVEL: int = 0  # off
DEBUG_TARGET_CATEGORY: str | None = None  # set via --debug target=['parse', 'group', 'compare', 'merge', 'edit']
DEBUG_TARGET_COMMAND: str = ""  # set via --debug command=


def _color_enabled() -> bool:
    if COLOR == "never":
        return False
    if COLOR == "always":
        return True
    try:
        # auto (default)
        return sys.stderr.isatty()
    except Exception:
        return False


def debug_color(text: str, level: int) -> str:
    if not _color_enabled():
        return text

    # simple level -> color mapping
    colors = {
        1: "\x1b[33m",
        2: "\x1b[36m",
        3: "\x1b[35m",
        4: "\x1b[34m",
    }

    code = colors.get(level, "\x1b[37m")
    return f"{code}{text}\x1b[0m"


def debug_echo(level: int, category: str, command: str | None, msg: str) -> None:
    """Emit a filtered, leveled debug message to stderr.

    Messages are emitted when `level` <= `DEBUG_LEVEL` and category/command
    filters (if set) match. Always writes to stderr.
    """
    if DEBUG_LEVEL <= 0:
        return
    if level > DEBUG_LEVEL:
        return
    if DEBUG_TARGET_CATEGORY and DEBUG_TARGET_CATEGORY != "all" and category != DEBUG_TARGET_CATEGORY:
        return
    if DEBUG_TARGET_COMMAND:
        if not command:
            return
        if command != DEBUG_TARGET_COMMAND:
            return
    out = f"[DEBUG:{level}:{category}] {msg}"
    out = debug_color(out, level)
    try:
        sys.stderr.write(out + "\n")
    except Exception:
        pass


# ---- Record model ----

class _Missing:
    """Marker for an absent `args` property (distinct from JSON null)."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@dataclass(frozen=True)
class Keybinding:
    """One keybinding entry.

    `command` never carries the `-` prefix; `unbind` is True for entries that
    remove a default binding (`"command": "-name"`).
    """

    key: str
    command: str
    unbind: bool = False
    when: str | None = None
    args: Any = MISSING
    source: dict | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_object(cls, obj: dict) -> "Keybinding":
        command = str(obj.get("command", "") or "")
        unbind = command.startswith("-")
        when = obj.get("when")
        return cls(
            key=str(obj.get("key", "") or ""),
            command=command[1:] if unbind else command,
            unbind=unbind,
            when=None if when is None else str(when),
            args=obj["args"] if "args" in obj else MISSING,
            source=obj,
        )

    @property
    def command_id(self) -> str:
        """Command string as written in the file."""
        return f"-{self.command}" if self.unbind else self.command

    def with_key(self, key: str) -> "Keybinding":
        return replace(self, key=key)

    def to_object(self) -> dict:
        """Return the JSON object for this entry, keeping the original property order."""
        obj = dict(self.source) if self.source else {}
        obj["key"] = self.key
        obj["command"] = self.command_id
        if self.when is not None:
            obj["when"] = self.when
        else:
            obj.pop("when", None)
        if self.args is not MISSING:
            obj["args"] = self.args
        else:
            obj.pop("args", None)
        return obj


# ---- Helpers: robust scanning that respects strings and comments ----

@dataclass(frozen=True)
class ItemSpan:
    """Offsets of one top-level array element; `comma` is the separator after it or -1."""

    start: int
    end: int
    comma: int = -1


def find_array_items(text: str) -> tuple[int, int, list[ItemSpan]]:
    """
    Locate the top-level array and every element in it.

    Returns (open_bracket, close_bracket, spans). Spans cover the element value
    only; comments and whitespace around it are not part of the span. Span
    order matches the order json5 parses the elements in.
    Raises ValueError if the array is not found.
    """
    i = 0
    n = len(text)
    in_string = False
    string_char = ""
    esc = False
    in_line_comment = False
    in_block_comment = False
    open_idx = -1
    depth = 0
    spans: list[ItemSpan] = []
    start = -1
    end = -1

    while i < n:
        ch = text[i]
        next2 = text[i:i + 2]
        if in_line_comment:
            if ch == "\n":
                in_line_comment = False
            i += 1
            continue
        if in_block_comment:
            if next2 == "*/":
                in_block_comment = False
                i += 2
            else:
                i += 1
            continue
        if in_string:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == string_char:
                in_string = False
                end = i + 1
            i += 1
            continue
        if next2 == "//":
            in_line_comment = True
            i += 2
            continue
        if next2 == "/*":
            in_block_comment = True
            i += 2
            continue
        if ch.isspace():
            i += 1
            continue
        if open_idx == -1:
            if ch in ('"', "'"):
                in_string = True
                string_char = ch
            elif ch == "[":
                open_idx = i
                depth = 1
            i += 1
            continue
        if depth == 1 and ch in ",]":
            if start != -1:
                spans.append(ItemSpan(start, end, i if ch == "," else -1))
                start = -1
            if ch == "]":
                return open_idx, i, spans
            i += 1
            continue
        if start == -1:
            start = i
        if ch in ('"', "'"):
            in_string = True
            string_char = ch
            i += 1
            continue
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
        end = i + 1
        i += 1

    if open_idx == -1:
        raise ValueError("No top-level '[' found in file (is this a keybindings.json array?)")
    raise ValueError("Matching ']' for top-level '[' not found")


def get_eol(text: str) -> str:
    """Line ending used by the document."""
    if "\r\n" in text:
        return "\r\n"
    return DEFAULT_EOL


def detect_indent(text: str) -> str:
    """Indentation of the first array element, or DEFAULT_INDENT."""
    try:
        _, _, spans = find_array_items(text)
    except ValueError:
        return DEFAULT_INDENT
    return _indent_of(text, spans)


def _indent_of(text: str, spans: Sequence[ItemSpan]) -> str:
    if not spans:
        return DEFAULT_INDENT
    line_start = text.rfind("\n", 0, spans[0].start) + 1
    leading = text[line_start:spans[0].start]
    if leading and not leading.strip():
        return leading
    return DEFAULT_INDENT


# ---- JSONC parsing ----

def parse_keybindings(text: str) -> list[Keybinding]:
    """
    Parse a JSONC keybindings array.
    Raises ValueError when the text is not parseable or not an array of objects.
    """
    try:
        value = json5.loads(text)
    except ValueError as exc:
        raise ValueError(f"unable to parse keybindings: {exc}") from exc
    if not isinstance(value, list):
        raise ValueError(f"expected a top-level array of keybindings, found {type(value).__name__}")
    bindings: list[Keybinding] = []
    for idx, obj in enumerate(value):
        if not isinstance(obj, dict):
            raise ValueError(f"keybindings entry #{idx} is not an object: {obj!r}")
        bindings.append(Keybinding.from_object(obj))
    debug_echo(3, "parse", None, f"parsed {len(bindings)} keybindings")
    return bindings


# ---- Positional editing ----

@dataclass(frozen=True)
class Edit:
    """One positional edit; `binding` None deletes, index -1 appends."""

    index: int
    binding: Keybinding | None = None


def render_keybinding(binding: Keybinding, indent: str, eol: str) -> str:
    """Render one entry as a JSON object whose closing brace sits at `indent`."""
    inner_indent = indent * 2
    lines: list[str] = []
    for name, value in binding.to_object().items():
        value_text = json.dumps(value, indent=indent, ensure_ascii=False)
        value_text = value_text.replace("\n", eol + inner_indent)
        lines.append(f"{inner_indent}{json.dumps(name)}: {value_text}")
    if not lines:
        return "{}"
    return "{" + eol + ("," + eol).join(lines) + eol + indent + "}"


def edit(text: str, eol: str, index: int, binding: Keybinding | None) -> str:
    """
    Apply one positional edit to the top-level array of `text`.

    binding None: delete the element at `index`.
    index -1 (or past the end): append `binding`.
    otherwise: insert `binding` before the element at `index`.
    """
    return apply_edits(text, eol, [Edit(index, binding)])


def apply_edits(text: str, eol: str, edits: Sequence[Edit]) -> str:
    """
    Apply edits whose indices all refer to the same parse of `text`.

    The array is scanned once and rebuilt element by element. Insertions at
    an index land before the element at that index and keep their given
    order. A deleted element goes away with the separator and comments in
    front of it; deleting every element leaves `[]`. Appends follow the last
    element. Raises IndexError when a deletion names no element.
    """
    if not edits:
        return text
    open_idx, close_idx, spans = find_array_items(text)
    count = len(spans)
    deleted: set[int] = set()
    inserts: dict[int, list[Keybinding]] = {}
    appends: list[Keybinding] = []
    for item in edits:
        if item.binding is None:
            if item.index < 0 or item.index >= count:
                raise IndexError(f"cannot delete keybinding #{item.index}; document has {count}")
            deleted.add(item.index)
        elif item.index < 0 or item.index >= count:
            appends.append(item.binding)
        else:
            inserts.setdefault(item.index, []).append(item.binding)

    indent = _indent_of(text, spans)
    separator = "," + eol + indent

    def gap(index: int) -> str:
        # separator, whitespace and comments between an element and its predecessor
        previous_end = spans[index - 1].end if index else open_idx + 1
        return text[previous_end:spans[index].start]

    parts: list[str] = []
    for index, span in enumerate(spans):
        elements = [render_keybinding(binding, indent, eol) for binding in inserts.get(index, [])]
        if index not in deleted:
            elements.append(text[span.start:span.end])
        if not elements:
            continue
        leading = gap(index)
        if not parts and index:
            # new first element: keep what preceded the old first one, drop the separator
            leading = gap(0) + text[spans[index - 1].comma + 1:span.start].lstrip()
        parts.append(leading + separator.join(elements))
    rendered = [render_keybinding(binding, indent, eol) for binding in appends]

    if not parts:
        if spans:
            last = spans[-1]
            cut = last.comma + 1 if last.comma != -1 else last.end
            inner = gap(0) + text[cut:close_idx]
        else:
            inner = text[open_idx + 1:close_idx]
        if not rendered:
            if not inner.strip():
                inner = ""
            return text[:open_idx + 1] + inner + text[close_idx:]
        head = (text[:open_idx + 1] + inner).rstrip()
        return head + eol + indent + separator.join(rendered) + eol + text[close_idx:]

    body = "".join(parts) + "".join(separator + element for element in rendered)
    return text[:open_idx + 1] + body + text[spans[-1].end:]


# ---- When-clause expressions ----

class WhenNode:
    """Base node type for when-expression AST."""

    def to_str(self) -> str:
        raise NotImplementedError

    def simplified(self) -> "WhenNode":
        raise NotImplementedError

    def canonical(self) -> str:
        return self.simplified().to_str()

    def equals(self, other: "WhenNode") -> bool:
        return self.canonical() == other.canonical()


class WhenLeaf(WhenNode):
    """Leaf operand node."""

    def __init__(self, text: str):
        self.text = text

    def to_str(self) -> str:
        return self.text

    def simplified(self) -> WhenNode:
        text = normalize_operand(self.text)
        match = COMPARISON_RE.match(text)
        if not match:
            return WhenLeaf(text)
        lhs, op, rhs = match.group(1), match.group(2), match.group(3).strip()
        if op != "=~" and len(rhs) >= 2 and rhs[0] == rhs[-1] == "'":
            rhs = rhs[1:-1]
        if op in ("==", "!=") and rhs in ("true", "false"):
            # `a == true` is `a`, `a != true` is `!a`
            leaf = WhenLeaf(lhs)
            if (op == "==") == (rhs == "true"):
                return leaf
            return WhenNot(leaf)
        return WhenLeaf(f"{lhs} {op} {rhs}")


class WhenNot(WhenNode):
    """Unary negation node."""

    def __init__(self, child: WhenNode):
        self.child = child

    def to_str(self) -> str:
        child_str = self.child.to_str()
        if isinstance(self.child, (WhenAnd, WhenOr)) or (
            isinstance(self.child, WhenLeaf) and COMPARISON_RE.match(child_str)
        ):
            child_str = f"({child_str})"
        return f"!{child_str}"

    def simplified(self) -> WhenNode:
        child = self.child.simplified()
        if isinstance(child, WhenNot):
            return child.child
        return WhenNot(child)


class _WhenGroup(WhenNode):
    operator = ""

    def __init__(self, children: list[WhenNode]):
        self.children = children

    def to_str(self) -> str:
        # operands are sorted and de-duplicated so operand order does not matter
        rendered: dict[str, WhenNode] = {}
        for child in self.children:
            rendered.setdefault(child.to_str(), child)
        ordered = sorted(rendered, key=lambda token: (natural_key(token), token))
        if len(ordered) == 1:
            return ordered[0]
        parts = []
        for token in ordered:
            if isinstance(rendered[token], _WhenGroup):
                token = f"({token})"
            parts.append(token)
        return f" {self.operator} ".join(parts)

    def simplified(self) -> WhenNode:
        flat: dict[str, WhenNode] = {}
        for child in self.children:
            child = child.simplified()
            members = child.children if type(child) is type(self) else [child]
            for member in members:
                flat.setdefault(member.to_str(), member)
        if len(flat) == 1:
            return next(iter(flat.values()))
        return type(self)(list(flat.values()))


class WhenAnd(_WhenGroup):
    """AND-expression node."""

    operator = "&&"


class WhenOr(_WhenGroup):
    """OR-expression node."""

    operator = "||"


COMPARISON_RE = re.compile(r"^([^\s=!<>~]+)\s*(==|!=|=~|>=|<=|<|>)\s*(.*)$")


def normalize_operand(text: str) -> str:
    """Normalize whitespace within one when operand."""
    return re.sub(r"\s+", " ", text).strip()


def natural_key(text: str) -> list[object]:
    """Natural sort helper."""
    parts = re.split(r"(\d+)", text)
    result: list[object] = []
    for part in parts:
        if part.isdigit():
            result.append(int(part))
        else:
            result.append(part.lower())
    return result


def tokenize_when(expr: str) -> list[tuple[str, str]]:
    """Tokenize a VS Code when expression while preserving strings/regex."""
    tokens: list[tuple[str, str]] = []
    buf = ""
    i = 0
    n = len(expr)
    in_single = False
    in_double = False
    in_regex = False
    regex_escape = False
    prev_nonspace = ""

    def flush_buf() -> None:
        nonlocal buf
        if buf.strip():
            tokens.append(("OPERAND", normalize_operand(buf)))
        buf = ""

    while i < n:
        ch = expr[i]

        if in_single:
            buf += ch
            if ch == "\\":
                if i + 1 < n:
                    buf += expr[i + 1]
                    i += 1
            elif ch == "'":
                in_single = False
            i += 1
            continue

        if in_double:
            buf += ch
            if ch == "\\":
                if i + 1 < n:
                    buf += expr[i + 1]
                    i += 1
            elif ch == '"':
                in_double = False
            i += 1
            continue

        if in_regex:
            buf += ch
            if regex_escape:
                regex_escape = False
            elif ch == "\\":
                regex_escape = True
            elif ch == "/":
                in_regex = False
            i += 1
            continue

        if ch.isspace():
            buf += ch
            i += 1
            continue

        if ch == "'":
            in_single = True
            buf += ch
            i += 1
            continue

        if ch == '"':
            in_double = True
            buf += ch
            i += 1
            continue

        if ch == "/" and prev_nonspace == "~":
            in_regex = True
            buf += ch
            i += 1
            continue

        if expr.startswith("&&", i) or expr.startswith("||", i):
            flush_buf()
            tokens.append(("OP", expr[i:i + 2]))
            i += 2
            prev_nonspace = ""
            continue

        if ch in "()":
            flush_buf()
            tokens.append(("OP", ch))
            i += 1
            prev_nonspace = ch
            continue

        if ch == "!":
            nxt = expr[i + 1] if i + 1 < n else ""
            if nxt == "=":
                buf += ch
                i += 1
                prev_nonspace = ch
                continue
            if not buf.strip():
                flush_buf()
                tokens.append(("OP", "!"))
                i += 1
                prev_nonspace = "!"
                continue

        buf += ch
        prev_nonspace = ch
        i += 1

    flush_buf()
    return tokens


def parse_when(expr: str) -> WhenNode:
    """Parse a when expression into a small AST."""
    tokens = tokenize_when(expr)
    idx = 0

    def peek() -> tuple[str, str] | None:
        return tokens[idx] if idx < len(tokens) else None

    def consume() -> tuple[str, str] | None:
        nonlocal idx
        token = tokens[idx] if idx < len(tokens) else None
        idx += 1
        return token

    def parse_primary() -> WhenNode:
        token = peek()
        if not token:
            return WhenLeaf("")
        if token[0] == "OP" and token[1] == "(":
            consume()
            node = parse_or()
            next_token = peek()
            if next_token and next_token[0] == "OP" and next_token[1] == ")":
                consume()
            return node
        if token[0] == "OPERAND":
            consume()
            return WhenLeaf(token[1])
        return WhenLeaf("")

    def parse_unary() -> WhenNode:
        token = peek()
        if token and token[0] == "OP" and token[1] == "!":
            consume()
            return WhenNot(parse_unary())
        return parse_primary()

    def parse_and() -> WhenNode:
        children = [parse_unary()]
        while True:
            token = peek()
            if token and token[0] == "OP" and token[1] == "&&":
                consume()
                children.append(parse_unary())
            else:
                break
        if len(children) == 1:
            return children[0]
        return WhenAnd(children)

    def parse_or() -> WhenNode:
        children = [parse_and()]
        while True:
            token = peek()
            if token and token[0] == "OP" and token[1] == "||":
                consume()
                children.append(parse_and())
            else:
                break
        if len(children) == 1:
            return children[0]
        return WhenOr(children)

    return parse_or()


def parse_when_expr(when_val: str | None) -> WhenNode | None:
    """Parse a when clause; empty or absent clauses yield None."""
    if when_val is None or not when_val.strip():
        return None
    return parse_when(when_val)


def canonicalize_when(when_val: str | None) -> str:
    """Canonical rendering used for when-clause equality."""
    node = parse_when_expr(when_val)
    if node is None:
        return ""
    return node.canonical()


# ---- Key normalization ----

def normalize_key_for_compare(key_value: str) -> str:
    """Normalize key text so equivalent spellings compare equal."""
    key_value = key_value.strip().lower()
    if not key_value:
        return ""

    normalized_chords: list[str] = []
    for chord in key_value.split():
        if chord == "+" or chord.endswith("++"):
            literal = "+"
            head = chord[:-2]
        else:
            bits = chord.split("+")
            literal = bits[-1]
            head = "+".join(bits[:-1])
        modifiers = [MODIFIER_ALIASES.get(bit, bit) for bit in head.split("+") if bit]
        unique_modifiers = list(dict.fromkeys(modifiers))
        ordered_modifiers = [token for token in MODIFIER_ORDER if token in unique_modifiers]
        ordered_modifiers.extend(sorted(token for token in unique_modifiers if token not in MODIFIER_ORDER))
        normalized_chords.append("+".join(ordered_modifiers + [literal]))

    return " ".join(normalized_chords)


def build_normalized_keys(*binding_lists: Iterable[Keybinding]) -> dict[str, str]:
    """Build the raw key -> canonical key table for every key seen."""
    table: dict[str, str] = {}
    for bindings in binding_lists:
        for binding in bindings:
            if binding.key not in table:
                table[binding.key] = normalize_key_for_compare(binding.key)
    return table


def lookup_normalized_key(normalized_keys: Mapping[str, str], key: str) -> str:
    return normalized_keys.get(key, key)


# ---- Grouping ----

def group_by(bindings: Iterable[Keybinding], projection: Callable[[Keybinding], str]) -> dict[str, list[Keybinding]]:
    """Group entries by projection; groups keep document order."""
    groups: dict[str, list[Keybinding]] = {}
    for binding in bindings:
        groups.setdefault(projection(binding), []).append(binding)
    return groups


def by_keybinding(bindings: Iterable[Keybinding], normalized_keys: Mapping[str, str]) -> dict[str, list[Keybinding]]:
    return group_by(bindings, lambda binding: lookup_normalized_key(normalized_keys, binding.key))


def by_command(bindings: Iterable[Keybinding]) -> dict[str, list[Keybinding]]:
    # `cmd` and `-cmd` share a group
    return group_by(bindings, lambda binding: binding.command)


# ---- Equality ----

def json_values_equal(a: Any, b: Any) -> bool:
    """Deep JSON value equality; `true` != `1` and an absent value != null."""
    if a is MISSING or b is MISSING:
        return a is b
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(json_values_equal(a[name], b[name]) for name in a)
    if isinstance(a, list) and isinstance(b, list):
        if len(a) != len(b):
            return False
        return all(json_values_equal(x, y) for x, y in zip(a, b))
    if type(a) is not type(b):
        return False
    return a == b


def is_same_keybinding(a: Keybinding, b: Keybinding) -> bool:
    if a.command != b.command or a.unbind != b.unbind:
        return False
    if a.key != b.key:
        return False
    when_a = parse_when_expr(a.when)
    when_b = parse_when_expr(b.when)
    if (when_a is None) != (when_b is None):
        return False
    if when_a is not None and when_b is not None and not when_a.equals(when_b):
        return False
    return json_values_equal(a.args, b.args)


def are_same_keybindings(value1: Sequence[Keybinding], value2: Sequence[Keybinding]) -> bool:
    """Order-sensitive list equality."""
    if len(value1) != len(value2):
        return False
    return all(is_same_keybinding(a, b) for a, b in zip(value1, value2))


def are_same_keybindings_with_same_command(value1: Sequence[Keybinding], value2: Sequence[Keybinding]) -> bool:
    """Compare bind entries and unbind entries independently."""
    if not are_same_keybindings([b for b in value1 if not b.unbind], [b for b in value2 if not b.unbind]):
        return False
    return are_same_keybindings([b for b in value1 if b.unbind], [b for b in value2 if b.unbind])


# ---- Compare ----

@dataclass(frozen=True)
class CompareResult:
    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    updated: frozenset[str] = frozenset()

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.updated)


def all_added(grouping: Mapping[str, Sequence[Keybinding]]) -> CompareResult:
    """Compare result against a missing base: everything is new."""
    return CompareResult(added=frozenset(grouping))


def _compare(
    from_map: Mapping[str, Sequence[Keybinding]],
    to_map: Mapping[str, Sequence[Keybinding]],
    rekey: Callable[[str, Keybinding], str],
    same: Callable[[Sequence[Keybinding], Sequence[Keybinding]], bool],
) -> CompareResult:
    added = frozenset(key for key in to_map if key not in from_map)
    removed = frozenset(key for key in from_map if key not in to_map)
    updated: set[str] = set()
    for key, from_value in from_map.items():
        if key in removed:
            continue
        to_value = to_map.get(key)
        if to_value is None:
            raise AssertionError(f"grouping key {key!r} vanished during compare")
        value1 = [binding.with_key(rekey(key, binding)) for binding in from_value]
        value2 = [binding.with_key(rekey(key, binding)) for binding in to_value]
        if not same(value1, value2):
            updated.add(key)
    return CompareResult(added=added, removed=removed, updated=frozenset(updated))


def compare_by_keybinding(
    from_map: Mapping[str, Sequence[Keybinding]],
    to_map: Mapping[str, Sequence[Keybinding]],
) -> CompareResult:
    result = _compare(from_map, to_map, lambda key, _binding: key, are_same_keybindings)
    debug_echo(2, "compare", None, f"by keybinding: added={sorted(result.added)} removed={sorted(result.removed)} updated={sorted(result.updated)}")
    return result


def compare_by_command(
    from_map: Mapping[str, Sequence[Keybinding]],
    to_map: Mapping[str, Sequence[Keybinding]],
    normalized_keys: Mapping[str, str],
) -> CompareResult:
    result = _compare(
        from_map,
        to_map,
        lambda _key, binding: lookup_normalized_key(normalized_keys, binding.key),
        are_same_keybindings_with_same_command,
    )
    debug_echo(2, "compare", None, f"by command: added={sorted(result.added)} removed={sorted(result.removed)} updated={sorted(result.updated)}")
    return result


# ---- Merge resolution ----

@dataclass(frozen=True)
class CommandMergeResult:
    """Edits to apply onto local, plus keys needing manual resolution."""

    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    updated: frozenset[str] = frozenset()
    conflicts: frozenset[str] = frozenset()

    def combine(self, delta: "CommandMergeResult") -> "CommandMergeResult":
        conflicts = self.conflicts | delta.conflicts
        return CommandMergeResult(
            added=(self.added | delta.added) - conflicts,
            removed=(self.removed | delta.removed) - conflicts,
            updated=(self.updated | delta.updated) - conflicts,
            conflicts=conflicts,
        )


@dataclass(frozen=True)
class MergeResult:
    """Binding-level outcome; the key sets are filled only when both sides moved."""

    has_local_forwarded: bool
    has_remote_forwarded: bool
    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    updated: frozenset[str] = frozenset()
    conflicts: frozenset[str] = frozenset()


@dataclass(frozen=True)
class MergeOutcome:
    merge_content: str
    has_changes: bool
    has_conflicts: bool

    def to_json(self) -> dict:
        return {
            "mergeContent": self.merge_content,
            "hasChanges": self.has_changes,
            "hasConflicts": self.has_conflicts,
        }


MergeRule = Callable[[CompareResult, CompareResult, CompareResult, frozenset], CommandMergeResult]


def removed_in_local(local_to_remote: CompareResult, base_to_local: CompareResult, base_to_remote: CompareResult, conflicts: frozenset) -> CommandMergeResult:
    # deleted locally while edited remotely
    return CommandMergeResult(conflicts=frozenset(
        key for key in base_to_local.removed if key not in conflicts and key in base_to_remote.updated
    ))


def removed_in_remote(local_to_remote: CompareResult, base_to_local: CompareResult, base_to_remote: CompareResult, conflicts: frozenset) -> CommandMergeResult:
    candidates = [key for key in base_to_remote.removed if key not in conflicts]
    return CommandMergeResult(
        removed=frozenset(key for key in candidates if key not in base_to_local.updated),
        conflicts=frozenset(key for key in candidates if key in base_to_local.updated),
    )


def added_in_local(local_to_remote: CompareResult, base_to_local: CompareResult, base_to_remote: CompareResult, conflicts: frozenset) -> CommandMergeResult:
    return CommandMergeResult(conflicts=frozenset(
        key for key in base_to_local.added
        if key not in conflicts and key in base_to_remote.added and key in local_to_remote.updated
    ))


def added_in_remote(local_to_remote: CompareResult, base_to_local: CompareResult, base_to_remote: CompareResult, conflicts: frozenset) -> CommandMergeResult:
    candidates = [key for key in base_to_remote.added if key not in conflicts]
    return CommandMergeResult(
        added=frozenset(key for key in candidates if key not in base_to_local.added),
        conflicts=frozenset(
            key for key in candidates if key in base_to_local.added and key in local_to_remote.updated
        ),
    )


def updated_in_local(local_to_remote: CompareResult, base_to_local: CompareResult, base_to_remote: CompareResult, conflicts: frozenset) -> CommandMergeResult:
    return CommandMergeResult(conflicts=frozenset(
        key for key in base_to_local.updated
        if key not in conflicts and key in base_to_remote.updated and key in local_to_remote.updated
    ))


def updated_in_remote(local_to_remote: CompareResult, base_to_local: CompareResult, base_to_remote: CompareResult, conflicts: frozenset) -> CommandMergeResult:
    candidates = [key for key in base_to_remote.updated if key not in conflicts]
    return CommandMergeResult(
        updated=frozenset(key for key in candidates if key not in base_to_local.updated),
        conflicts=frozenset(
            key for key in candidates if key in base_to_local.updated and key in local_to_remote.updated
        ),
    )


# order matters: a key placed in conflicts is skipped by every later rule
MERGE_RULES: tuple[MergeRule, ...] = (
    removed_in_local,
    removed_in_remote,
    added_in_local,
    added_in_remote,
    updated_in_local,
    updated_in_remote,
)


def compute_merge_result(local_to_remote: CompareResult, base_to_local: CompareResult, base_to_remote: CompareResult) -> CommandMergeResult:
    result = CommandMergeResult()
    for rule in MERGE_RULES:
        delta = rule(local_to_remote, base_to_local, base_to_remote, result.conflicts)
        debug_echo(3, "merge", None, f"{rule.__name__}: {delta}")
        result = result.combine(delta)
    return result


def compute_merge_result_by_keybinding(
    local: Sequence[Keybinding],
    remote: Sequence[Keybinding],
    base: Sequence[Keybinding] | None,
    normalized_keys: Mapping[str, str],
) -> MergeResult:
    local_by_keybinding = by_keybinding(local, normalized_keys)
    remote_by_keybinding = by_keybinding(remote, normalized_keys)
    base_by_keybinding = by_keybinding(base, normalized_keys) if base is not None else None

    local_to_remote = compare_by_keybinding(local_by_keybinding, remote_by_keybinding)
    if local_to_remote.is_empty():
        return MergeResult(has_local_forwarded=False, has_remote_forwarded=False)

    if base_by_keybinding is not None:
        base_to_local = compare_by_keybinding(base_by_keybinding, local_by_keybinding)
    else:
        base_to_local = all_added(local_by_keybinding)
    if base_to_local.is_empty():
        # remote has moved forward and local has not
        return MergeResult(has_local_forwarded=False, has_remote_forwarded=True)

    if base_by_keybinding is not None:
        base_to_remote = compare_by_keybinding(base_by_keybinding, remote_by_keybinding)
    else:
        base_to_remote = all_added(remote_by_keybinding)
    if base_to_remote.is_empty():
        return MergeResult(has_local_forwarded=True, has_remote_forwarded=False)

    result = compute_merge_result(local_to_remote, base_to_local, base_to_remote)
    return MergeResult(
        has_local_forwarded=True,
        has_remote_forwarded=True,
        added=result.added,
        removed=result.removed,
        updated=result.updated,
        conflicts=result.conflicts,
    )


def escalate_reserved_conflicts(
    result: CommandMergeResult,
    remote_by_command: Mapping[str, Sequence[Keybinding]],
    reserved_keys: frozenset[str],
    normalized_keys: Mapping[str, str],
) -> CommandMergeResult:
    """
    Turn added/updated commands into conflicts when one of their remote bind
    entries (unbind entries are ignored) uses a canonical key in `reserved_keys`.
    """
    if not reserved_keys:
        return result
    escalated = set()
    for command in result.added | result.updated:
        for binding in remote_by_command.get(command, []):
            if not binding.unbind and lookup_normalized_key(normalized_keys, binding.key) in reserved_keys:
                debug_echo(1, "merge", command, f"{command}: {binding.key} is in conflict at binding level")
                escalated.add(command)
                break
    return result.combine(CommandMergeResult(conflicts=frozenset(escalated)))


# ---- Content rewriting ----

def _require_group(grouping: Mapping[str, list[Keybinding]], command: str) -> list[Keybinding]:
    bindings = grouping.get(command)
    if bindings is None:
        raise AssertionError(f"command {command!r} missing from remote grouping")
    return bindings


def command_positions(bindings: Sequence[Keybinding]) -> dict[str, list[int]]:
    """Map each command to the indices of its entries (bind and unbind)."""
    positions: dict[str, list[int]] = {}
    for index, binding in enumerate(bindings):
        positions.setdefault(binding.command, []).append(index)
    return positions


def remove_keybindings(positions: Mapping[str, list[int]], command: str) -> list[Edit]:
    edits = [Edit(index) for index in positions.get(command, [])]
    debug_echo(2, "edit", command, f"remove {command}: {len(edits)} entries")
    return edits


def add_keybindings(bindings: Sequence[Keybinding]) -> list[Edit]:
    debug_echo(2, "edit", bindings[0].command if bindings else None, f"append {len(bindings)} entries")
    return [Edit(-1, binding) for binding in bindings]


def update_keybindings(positions: Mapping[str, list[int]], command: str, bindings: Sequence[Keybinding]) -> list[Edit]:
    """Replace every entry of `command` with `bindings` at the first entry's position."""
    indices = positions.get(command)
    if not indices:
        raise AssertionError(f"command {command!r} to update is not present in local content")
    location = indices[0]
    edits = [Edit(index) for index in indices]
    edits.extend(Edit(location, binding) for binding in bindings)
    debug_echo(2, "edit", command, f"update {command}: {len(indices)} -> {len(bindings)} entries at #{location}")
    return edits


def wrap_conflicts(merge_content: str, remote_content: str, eol: str) -> str:
    return (
        f"{CONFLICT_MARKER_LOCAL}{eol}"
        + merge_content
        + f"{eol}{CONFLICT_MARKER_SEPARATOR}{eol}"
        + remote_content
        + f"{eol}{CONFLICT_MARKER_REMOTE}"
    )


def merge(
    local_content: str,
    remote_content: str,
    base_content: str | None,
    normalized_keys: Mapping[str, str] | None = None,
    escalate_binding_conflicts: bool = False,
) -> MergeOutcome:
    """
    Three-way merge of keybindings documents.

    normalized_keys: raw key -> canonical key; computed when omitted.
    escalate_binding_conflicts: feed binding-level conflicts into
        escalate_reserved_conflicts (off by default).
    Raises ValueError when any input cannot be parsed.
    """
    local = parse_keybindings(local_content)
    remote = parse_keybindings(remote_content)
    base = parse_keybindings(base_content) if base_content else None
    if normalized_keys is None:
        normalized_keys = build_normalized_keys(local, remote, base or [])

    keybindings_result = compute_merge_result_by_keybinding(local, remote, base, normalized_keys)
    debug_echo(
        1, "merge", None,
        f"local forwarded={keybindings_result.has_local_forwarded} remote forwarded={keybindings_result.has_remote_forwarded}",
    )

    if not keybindings_result.has_local_forwarded and not keybindings_result.has_remote_forwarded:
        # no changes found between local and remote
        return MergeOutcome(local_content, has_changes=False, has_conflicts=False)

    if not keybindings_result.has_local_forwarded:
        return MergeOutcome(remote_content, has_changes=True, has_conflicts=False)

    if not keybindings_result.has_remote_forwarded:
        return MergeOutcome(local_content, has_changes=True, has_conflicts=False)

    # both local and remote have moved forward
    local_by_command = by_command(local)
    remote_by_command = by_command(remote)
    base_by_command = by_command(base) if base is not None else None
    local_to_remote = compare_by_command(local_by_command, remote_by_command, normalized_keys)
    if base_by_command is not None:
        base_to_local = compare_by_command(base_by_command, local_by_command, normalized_keys)
        base_to_remote = compare_by_command(base_by_command, remote_by_command, normalized_keys)
    else:
        base_to_local = all_added(local_by_command)
        base_to_remote = all_added(remote_by_command)

    commands_result = compute_merge_result(local_to_remote, base_to_local, base_to_remote)
    reserved_keys = keybindings_result.conflicts if escalate_binding_conflicts else frozenset()
    commands_result = escalate_reserved_conflicts(commands_result, remote_by_command, reserved_keys, normalized_keys)
    debug_echo(1, "merge", None, f"commands: {commands_result}")

    # every edit refers to the one parse of local, applied in a single pass
    eol = get_eol(local_content)
    positions = command_positions(local)
    edits: list[Edit] = []

    for command in sorted(commands_result.removed):
        edits.extend(remove_keybindings(positions, command))

    for command in sorted(commands_result.added):
        edits.extend(add_keybindings(_require_group(remote_by_command, command)))

    for command in sorted(commands_result.updated):
        edits.extend(update_keybindings(positions, command, _require_group(remote_by_command, command)))

    merge_content = apply_edits(local_content, eol, edits)

    has_conflicts = bool(commands_result.conflicts)
    if has_conflicts:
        merge_content = wrap_conflicts(merge_content, remote_content, eol)

    return MergeOutcome(merge_content, has_changes=True, has_conflicts=has_conflicts)


# ---- CLI ----

def configure_debug(specs: list[str | None] | None) -> None:
    """Update debug globals from repeated --debug values."""
    global DEBUG_LEVEL, DEBUG_TARGET_COMMAND, DEBUG_TARGET_CATEGORY
    DEBUG_LEVEL = 0
    if not specs:
        return
    max_level = 0
    for spec in specs:
        if spec is None:
            spec = "1"
        spec = str(spec).strip()
        # numeric spec
        if re.fullmatch(r"\d+", spec):
            max_level = max(max_level, int(spec))
            continue
        # key=value spec
        if "=" in spec:
            k, v = spec.split("=", 1)
            k = k.strip().lower()
            v = v.strip().strip('"').strip("'")
            if k == "command":
                DEBUG_TARGET_COMMAND = v
            elif k in ("target", "category"):
                DEBUG_TARGET_CATEGORY = v
            elif k == "level":
                if re.fullmatch(r"\d+", v):
                    max_level = max(max_level, int(v))
    if max_level == 0:
        max_level = 1
    DEBUG_LEVEL = max_level


def read_text(path: str) -> str:
    # newline='' keeps CRLF documents intact
    with open(path, "r", encoding="utf-8", newline="") as handle:
        return handle.read()


def write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as handle:
        handle.write(text)


def load_normalized_keys(path: str) -> dict[str, str]:
    """Load a raw key -> canonical key table from a JSON object file."""
    value = json.loads(read_text(path))
    if not isinstance(value, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        raise ValueError(f"{path}: expected a JSON object of string keys and string values")
    return value


def main(argv: List[str] | None = None) -> int:
    """CLI entrypoint."""
    global COLOR
    argv = sys.argv[1:] if argv is None else argv

    parser = argparse.ArgumentParser(
        description="Three-way merge of VS Code keybindings.json (JSONC) files.",
        epilog=(
            "Examples:\n"
            "  %(prog)s local.json remote.json base.json\n"
            "\n"
            "  %(prog)s -o merged.json -s local.json remote.json\n"
            "\n"
            "  git merge driver:\n"
            "    %(prog)s -o %%A %%A %%B %%O\n"
            "\n"
            "Exit codes: 0 merged, 1 merged with conflicts, 2 error, 99 usage.\n"
        ),
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("local", help="Local keybindings file.")
    parser.add_argument("remote", help="Remote keybindings file.")
    parser.add_argument("base", nargs="?", default=None, help="Common ancestor file; omit or '-' for none.")
    parser.add_argument("-o", "--out", default=None, metavar="PATH", help="Write merged text to PATH (default: stdout).")
    parser.add_argument(
        "-k",
        "--normalized-keys",
        default=None,
        metavar="FILE",
        help="JSON object mapping raw keys to canonical keys (default: computed).",
    )
    parser.add_argument(
        "-e",
        "--escalate-binding-conflicts",
        action="store_true",
        help="Turn commands binding a key in conflict at binding level into conflicts.",
    )
    parser.add_argument("-j", "--json", action="store_true", help="Print the merge outcome as JSON.")
    parser.add_argument("-s", "--summary", action="store_true", help="Print a one line summary to stderr.")
    parser.add_argument("-c", "--color", choices=["auto", "always", "never"], default="auto", help="Colorize debug output (auto|always|never).")
    parser.add_argument(
        "-d",
        "--debug",
        nargs="?",
        const="1",
        action="append",
        help='Enable debug. Use level (integer), or a key=value filter like "command=NAME, target=NAME, or level=N".',
    )

    if not argv:
        parser.print_help()
        return USAGE_EXIT_CODE

    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        code = exc.code if exc.code is not None else 2
        try:
            numeric_code = int(code)
            if numeric_code in (0, 2):
                return USAGE_EXIT_CODE
            return numeric_code
        except Exception:
            return USAGE_EXIT_CODE

    COLOR = args.color
    configure_debug(args.debug)

    try:
        local_text = read_text(args.local)
        remote_text = read_text(args.remote)
        base_text = read_text(args.base) if args.base not in (None, "-") else None
        normalized_keys = load_normalized_keys(args.normalized_keys) if args.normalized_keys else None
    except (OSError, ValueError) as exc:
        print(f"error: failed to read input: {exc}", file=sys.stderr)
        return ERROR_EXIT_CODE

    try:
        outcome = merge(
            local_text,
            remote_text,
            base_text,
            normalized_keys=normalized_keys,
            escalate_binding_conflicts=args.escalate_binding_conflicts,
        )
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return ERROR_EXIT_CODE

    if args.out:
        try:
            write_text(args.out, outcome.merge_content)
        except OSError as exc:
            print(f"error: failed to write '{args.out}': {exc}", file=sys.stderr)
            return ERROR_EXIT_CODE

    if args.json:
        sys.stdout.write(json.dumps(outcome.to_json(), indent=2, ensure_ascii=False) + "\n")
    elif not args.out:
        sys.stdout.write(outcome.merge_content)

    if args.summary:
        base_label = f"'{args.base}'" if base_text is not None else "none"
        print(
            f"Merged '{args.local}' + '{args.remote}' (base: {base_label}): "
            f"changes={'yes' if outcome.has_changes else 'no'} "
            f"conflicts={'yes' if outcome.has_conflicts else 'no'}",
            file=sys.stderr,
        )

    if outcome.has_conflicts:
        return CONFLICT_EXIT_CODE
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
