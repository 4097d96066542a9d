#!/usr/bin/env python3
"""
URM Assembler

Usage: python urm_assemble.py <infile> [outfile=<infile>.urm] [-p]

Source syntax (one statement per line):
    # comment
    [A1] instruction        label bound to the instruction's position
    @def <header>           open a macro definition
    @end                    close it

Instructions:
    v <- v + 1              increment
    v <- v - 1              decrement (saturates at 0)
    if v != 0 goto L        jump when v is non-zero
    nop
    print v                 write the value of v
    state                   write every register

Operands:
    y, x1, x2, ..., z1, z2, ...     Variables
    A0-E<n>                         Labels

Macro bodies may use:
    {name}      placeholders from the header
    $name       automatic temp variables, fresh per expansion
    %Gn         automatic labels (G in A-E), fresh per expansion

The built-in prologue (see urm_prologue.py) is assembled ahead of the user
source, so line numbers in errors count prologue lines first.
"""

import sys
import os
import re
from typing import Callable, Dict, List, Optional, Tuple
from urm_program import (
    Program, Instruction, Variable, Label, OPCODES, LABEL_GROUPS,
    disassemble, instruction_codes,
)
from urm_prologue import PROLOGUE

VAR = r'(y|[xz]\d+)'

LABEL_RE = re.compile(r'^\[(\w+)\]')
HEADER_TOKEN_RE = re.compile(r'\{(\w+)\}|(\s+)|([^\s{]+|\{)')
AUTO_VAR_RE = re.compile(r'\$(\w+)')
AUTO_LABEL_RE = re.compile(r'%([A-E])(\d+)')

# Pre-scan patterns
TEMP_VAR_SCAN_RE = re.compile(r'\bz(\d+)\b')
LABEL_SCAN_RE = re.compile(r'\b([A-E])(\d+)\b')


def _unary(name: str) -> Callable[[re.Match], Instruction]:
    return lambda m: Instruction(OPCODES[name], Variable.parse(m.group(1)))


# Primitive matchers, tried in order
PRIMITIVES: List[Tuple[re.Pattern, Callable[[re.Match], Instruction]]] = [
    (re.compile(rf'^{VAR}\s*<-\s*\1\s*\+\s*1$'), _unary('INC')),
    (re.compile(rf'^{VAR}\s*<-\s*\1\s*-\s*1$'), _unary('DEC')),
    (re.compile(rf'^if\s+{VAR}\s*!=\s*0\s+goto\s+(\w+)$'),
     lambda m: Instruction(OPCODES['JNZ'], Variable.parse(m.group(1)), Label.parse(m.group(2)))),
    (re.compile(r'^nop$'), lambda m: Instruction(OPCODES['NOP'])),
    (re.compile(rf'^print\s+{VAR}$'), _unary('PRINT')),
    (re.compile(r'^state$'), lambda m: Instruction(OPCODES['STATE'])),
]


def parse_instruction(text: str) -> Optional[Instruction]:
    """Parse a primitive instruction.

    Returns None when no primitive grammar matches; raises ValueError when one
    matches but a variable or label token is malformed.
    """
    text = text.strip()
    for pattern, build in PRIMITIVES:
        m = pattern.match(text)
        if m:
            return build(m)
    return None


class AssemblerError(Exception):
    """Assembler error with line information."""
    def __init__(self, message: str, line_num: int = 0, line: str = "", offset: int = 0):
        self.message = message
        self.line_num = line_num
        self.line = line
        self.offset = offset  # Number of prologue lines ahead of user source
        super().__init__(f"Line {line_num}: {message}\n  {line}")

    @property
    def user_line_num(self) -> Optional[int]:
        """Line number relative to the user source, or None inside the prologue."""
        if self.line_num < self.offset:
            return None
        return self.line_num - self.offset


def compile_header(header: str) -> Tuple[re.Pattern, Dict[str, int]]:
    """Compile a macro header into a line-anchored pattern and placeholder map.

    Literal text is escaped. Each placeholder becomes a group matching one
    word token; a repeated placeholder becomes a backreference to its first
    group. Whitespace between two word-like items must be present, whitespace
    next to an operator is optional.
    """
    items: List[Tuple[str, str]] = []
    for m in HEADER_TOKEN_RE.finditer(header.strip()):
        if m.group(1) is not None:
            items.append(('placeholder', m.group(1)))
        elif m.group(2) is not None:
            items.append(('space', m.group(2)))
        else:
            items.append(('literal', m.group(3)))

    def edge_is_word(item: Tuple[str, str], first: bool) -> bool:
        kind, text = item
        if kind == 'placeholder':
            return True
        ch = text[0] if first else text[-1]
        return ch.isalnum() or ch == '_'

    pattern = ''
    groups: Dict[str, int] = {}
    for i, (kind, text) in enumerate(items):
        if kind == 'placeholder':
            if text in groups:
                pattern += f'(?:\\{groups[text]})'
            else:
                groups[text] = len(groups) + 1
                pattern += r'(\w+)'
        elif kind == 'space':
            before, after = items[i - 1], items[i + 1]
            if edge_is_word(before, False) and edge_is_word(after, True):
                pattern += r'\s+'
            else:
                pattern += r'\s*'
        else:
            pattern += re.escape(text)

    return re.compile(f'^{pattern}$'), groups


class Macro:
    """A macro definition: compiled header plus unexpanded body lines."""

    def __init__(self, header: str):
        self.header = header
        self.pattern, self.replacements = compile_header(header)
        self.instructions: List[str] = []

        # Whole-token placeholder substitution, never inside $name or %Gn
        names = sorted(self.replacements, key=len, reverse=True)
        self.substitution = None
        if names:
            alternatives = '|'.join(re.escape(name) for name in names)
            self.substitution = re.compile(rf'(?<![\w$%])({alternatives})(?!\w)')

    def match(self, line: str) -> Optional[re.Match]:
        return self.pattern.match(line)

    def substitute(self, line: str, m: re.Match) -> str:
        """Replace placeholders in a body line with text captured by m."""
        if self.substitution is None:
            return line
        return self.substitution.sub(lambda p: m.group(self.replacements[p.group(1)]), line)

    def __repr__(self) -> str:
        return f"Macro({self.header!r}, {len(self.instructions)} lines)"


class Assembler:
    """URM Assembler."""

    def __init__(self, prologue: str = PROLOGUE, verbose: bool = False):
        self.prologue = prologue
        self.verbose = verbose
        self.code: List[Instruction] = []
        self.labels: Dict[Label, int] = {}
        self.macros: List[Macro] = []
        self.max_temp_var = 0
        self.max_label: Dict[str, int] = {group: 0 for group in LABEL_GROUPS}
        self.current_macro: Optional[Macro] = None
        self.macro_line_num = 0
        self.macro_line = ""
        self.line_num = 0
        self.current_line = ""
        self.offset = 0

    def error(self, message: str):
        """Raise an assembler error."""
        raise AssemblerError(message, self.line_num, self.current_line, self.offset)

    def prescan(self, lines: List[str]):
        """Seed the freshness counters from every literal name in the source."""
        for line in lines:
            for m in TEMP_VAR_SCAN_RE.finditer(line):
                self.max_temp_var = max(self.max_temp_var, int(m.group(1)))
            for m in LABEL_SCAN_RE.finditer(line):
                group = m.group(1)
                self.max_label[group] = max(self.max_label[group], int(m.group(2)))

    def fresh_temp_var(self) -> Variable:
        self.max_temp_var += 1
        return Variable('z', self.max_temp_var)

    def fresh_label(self, group: str) -> Label:
        self.max_label[group] += 1
        return Label(self.max_label[group], LABEL_GROUPS.index(group))

    def bind_label(self, line: str) -> str:
        """Bind a leading [Label] to the next instruction, return the rest."""
        m = LABEL_RE.match(line)
        if not m:
            return line

        label = Label.parse(m.group(1))
        if label in self.labels:
            self.error(f"Redefined label {label}")
        self.labels[label] = len(self.code)
        return line[m.end():].strip()

    def find_macro(self, line: str) -> Tuple[Optional[Macro], Optional[re.Match]]:
        """First macro, in definition order, whose header matches line."""
        for macro in self.macros:
            m = macro.match(line)
            if m:
                return macro, m
        return None, None

    def expand_macro(self, macro: Macro, m: re.Match):
        """Expand one invocation of macro, recursing into nested invocations."""
        auto_labels: Dict[str, Label] = {}
        auto_vars: Dict[str, Variable] = {}

        def replace_label(token: re.Match) -> str:
            if token.group(0) not in auto_labels:
                auto_labels[token.group(0)] = self.fresh_label(token.group(1))
            return str(auto_labels[token.group(0)])

        def replace_var(token: re.Match) -> str:
            if token.group(1) not in auto_vars:
                auto_vars[token.group(1)] = self.fresh_temp_var()
            return str(auto_vars[token.group(1)])

        for template in macro.instructions:
            line = AUTO_LABEL_RE.sub(replace_label, template)
            line = self.bind_label(line)
            line = macro.substitute(line, m)
            line = AUTO_VAR_RE.sub(replace_var, line)

            if not line:
                continue

            inst = parse_instruction(line)
            if inst is not None:
                self.code.append(inst)
                continue

            nested, nested_match = self.find_macro(line)
            if nested is not None:
                self.expand_macro(nested, nested_match)
            elif self.verbose:
                print(f"Line {self.line_num}: dropped '{line}' while expanding '{macro.header}'",
                      file=sys.stderr)

    def assemble_directive(self, directive: str, operands: str):
        """Handle @def / @end."""
        if directive == '@def':
            if self.current_macro is not None:
                self.error("Unexpected nested @def directive")
            if not operands:
                self.error("Missing macro header")
            self.current_macro = Macro(operands)
            self.macro_line_num = self.line_num
            self.macro_line = self.current_line
        elif directive == '@end':
            if self.current_macro is None:
                self.error("Unexpected @end directive")
            if operands:
                self.error(f"Unexpected text after @end: {operands}")
            self.macros.append(self.current_macro)
            self.current_macro = None
        else:
            self.error(f"Unknown directive: {directive}")

    def assemble_line(self, line: str):
        """Assemble a single line."""
        line = line.strip()
        if not line or line.startswith('#'):
            return

        if line.startswith('@'):
            parts = line.split(None, 1)
            self.assemble_directive(parts[0], parts[1].strip() if len(parts) > 1 else '')
            return

        if self.current_macro is not None:
            self.current_macro.instructions.append(line)
            return

        line = self.bind_label(line)
        if not line:
            return  # Label on its own line binds to the next instruction

        inst = parse_instruction(line)
        if inst is not None:
            self.code.append(inst)
            return

        macro, m = self.find_macro(line)
        if macro is None:
            self.error(f"Expression {line} is not a valid instruction")
        self.expand_macro(macro, m)

    def assemble(self, source: str) -> Program:
        """Assemble source (with the prologue ahead of it) into a program."""
        self.code = []
        self.labels = {}
        self.macros = []
        self.max_temp_var = 0
        self.max_label = {group: 0 for group in LABEL_GROUPS}
        self.current_macro = None

        prologue_lines = self.prologue.splitlines()
        lines = prologue_lines + source.splitlines()
        self.offset = len(prologue_lines)

        self.prescan(lines)

        for i, line in enumerate(lines):
            self.line_num = i
            self.current_line = line
            try:
                self.assemble_line(line)
            except AssemblerError:
                raise
            except RecursionError:
                raise AssemblerError("Macro expansion does not terminate", i, line, self.offset)
            except Exception as e:
                raise AssemblerError(str(e), i, line, self.offset)

        if self.current_macro is not None:
            raise AssemblerError("Unterminated @def directive", self.macro_line_num,
                                 self.macro_line, self.offset)

        if self.verbose:
            print(f"Assembled {len(self.code)} instructions, {len(self.labels)} labels, "
                  f"{len(self.macros)} macros", file=sys.stderr)

        return Program(list(self.code), dict(self.labels))


def main():
    import argparse

    parser = argparse.ArgumentParser(description='URM Assembler')
    parser.add_argument('infile', help='Input source file')
    parser.add_argument('outfile', nargs='?', default=None, help='Output program image')
    parser.add_argument('--print', '-p', dest='print_code', action='store_true',
                        help='Print the assembled listing instead of writing an image')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--dump-labels', action='store_true', help='Print label positions after assembly')

    args = parser.parse_args()

    # Read source file
    try:
        with open(args.infile, 'r') as f:
            source = f.read()
    except FileNotFoundError:
        print(f"Error: File not found: {args.infile}", file=sys.stderr)
        sys.exit(1)

    # Assemble
    assembler = Assembler(verbose=args.verbose)
    try:
        program = assembler.assemble(source)
    except AssemblerError as e:
        print(f"Assembler error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.dump_labels:
        for label, index in sorted(program.labels.items()):
            print(f"{label}: {index}")

    if args.print_code:
        print(disassemble(program))
        try:
            codes = instruction_codes(program)
            print(f"\n# Instruction codes: {codes}")
        except ValueError as e:
            print(f"\n# No instruction codes: {e}")
        return

    if not args.outfile:
        args.outfile = os.path.splitext(args.infile)[0] + '.urm'

    # Write output
    try:
        with open(args.outfile, 'wb') as f:
            f.write(program.encode())
        print(f"Output written to {args.outfile}")
    except OSError as e:
        print(f"Error writing output: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
