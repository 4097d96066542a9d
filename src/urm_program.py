"""
Program model and image encoding/decoding for the URM toolchain.

Image Format (zstd-compressed):
  Header (14 bytes):
    Bytes 0-3:   MAGIC 'URMP'
    Bytes 4-5:   VERSION
    Bytes 6-9:   Instruction count
    Bytes 10-13: Label count

  Instruction record (10 bytes):
    Byte 0:      Opcode
    Byte 1:      Variable kind (0=y, 1=x, 2=z)
    Bytes 2-5:   Variable index (0 for y)
    Bytes 6-9:   Jump target label key (NO_LABEL when unused)

  Label record (8 bytes):
    Bytes 0-3:   Label key (number * 5 + group index)
    Bytes 4-7:   Instruction index the label is bound to
"""

from zstd import compress, decompress
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import struct

# Magic bytes for program images
MAGIC = b'URMP'
VERSION = 1

HEADER_FORMAT = '<4sHII'
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
INSTRUCTION_FORMAT = '<BBII'
INSTRUCTION_SIZE = struct.calcsize(INSTRUCTION_FORMAT)
LABEL_FORMAT = '<II'
LABEL_SIZE = struct.calcsize(LABEL_FORMAT)

NO_LABEL = 0xFFFFFFFF

# Opcodes
OPCODES = {
    'INC':   0,
    'DEC':   1,
    'JNZ':   2,
    'NOP':   3,
    'PRINT': 4,
    'STATE': 5,
}

OPCODE_NAMES = {v: k for k, v in OPCODES.items()}

# Variable kinds
VAR_KINDS = {
    'y': 0,
    'x': 1,
    'z': 2,
}

VAR_KIND_NAMES = {v: k for k, v in VAR_KINDS.items()}

# Label groups, in key order
LABEL_GROUPS = 'ABCDE'


@dataclass(frozen=True)
class Variable:
    """A register: y, x<n> or z<n> (n >= 1)."""
    kind: str
    index: int = 0

    @classmethod
    def parse(cls, token: str) -> 'Variable':
        """Parse a variable token, raising ValueError on malformed input."""
        token = token.strip()
        if token == 'y':
            return cls('y')
        if token[:1] in ('x', 'z'):
            digits = token[1:]
            if digits.isdigit() and int(digits) >= 1:
                return cls(token[0], int(digits))
            raise ValueError(f"Invalid variable index: {token}")
        raise ValueError(f"Invalid variable name: {token}")

    def __str__(self) -> str:
        if self.kind == 'y':
            return 'y'
        return f"{self.kind}{self.index}"


@dataclass(frozen=True, order=True)
class Label:
    """A jump target: group A-E plus a non-negative number.

    Ordering follows the key number * 5 + group index, so A1 < B1 < ... < E1 < A2.
    """
    number: int
    group_index: int

    @classmethod
    def parse(cls, token: str) -> 'Label':
        """Parse a label token, raising ValueError on malformed input."""
        token = token.strip()
        group, digits = token[:1], token[1:]
        if not group or group not in LABEL_GROUPS or not digits.isdigit():
            raise ValueError(f"Invalid label name: {token}")
        return cls(int(digits), LABEL_GROUPS.index(group))

    @classmethod
    def from_key(cls, key: int) -> 'Label':
        return cls(key // len(LABEL_GROUPS), key % len(LABEL_GROUPS))

    @property
    def group(self) -> str:
        return LABEL_GROUPS[self.group_index]

    @property
    def key(self) -> int:
        return self.number * len(LABEL_GROUPS) + self.group_index

    def __str__(self) -> str:
        return f"{self.group}{self.number}"


@dataclass(frozen=True)
class Instruction:
    """A single machine instruction."""
    op: int
    var: Optional[Variable] = None
    to: Optional[Label] = None

    def encode(self) -> bytes:
        """Encode instruction to a fixed-size record."""
        kind = VAR_KINDS[self.var.kind] if self.var else 0
        index = self.var.index if self.var else 0
        target = self.to.key if self.to is not None else NO_LABEL
        return struct.pack(INSTRUCTION_FORMAT, self.op, kind, index, target)

    @classmethod
    def decode(cls, data: bytes) -> 'Instruction':
        """Decode a fixed-size record to an instruction."""
        if len(data) < INSTRUCTION_SIZE:
            raise ValueError(f"Need {INSTRUCTION_SIZE} bytes to decode instruction")

        op, kind, index, target = struct.unpack(INSTRUCTION_FORMAT, data[:INSTRUCTION_SIZE])

        if op not in OPCODE_NAMES:
            raise ValueError(f"Unknown opcode: {op}")
        if kind not in VAR_KIND_NAMES:
            raise ValueError(f"Unknown variable kind: {kind}")

        name = OPCODE_NAMES[op]
        var = None
        if name in ('INC', 'DEC', 'JNZ', 'PRINT'):
            var_kind = VAR_KIND_NAMES[kind]
            if var_kind == 'y' and index != 0:
                raise ValueError(f"Invalid variable index for y: {index}")
            if var_kind != 'y' and index < 1:
                raise ValueError(f"Invalid variable index: {var_kind}{index}")
            var = Variable(var_kind, index)
        to = Label.from_key(target) if name == 'JNZ' else None
        return cls(op, var, to)

    def __str__(self) -> str:
        """Canonical source form."""
        name = OPCODE_NAMES.get(self.op)
        if name == 'INC':
            return f"{self.var} <- {self.var} + 1"
        if name == 'DEC':
            return f"{self.var} <- {self.var} - 1"
        if name == 'JNZ':
            return f"if {self.var} != 0 goto {self.to}"
        if name == 'PRINT':
            return f"print {self.var}"
        if name == 'STATE':
            return "state"
        return "nop"


@dataclass
class Program:
    """An assembled program: instruction array plus label table."""
    instructions: List[Instruction] = field(default_factory=list)
    labels: Dict[Label, int] = field(default_factory=dict)

    def target(self, label: Label) -> int:
        """Index a jump to label lands on; undefined labels land past the end."""
        return self.labels.get(label, len(self.instructions))

    def encode(self) -> bytes:
        """Encode program to a compressed image."""
        header = struct.pack(
            HEADER_FORMAT,
            MAGIC,
            VERSION,
            len(self.instructions),
            len(self.labels)
        )
        code_bytes = b''.join(inst.encode() for inst in self.instructions)
        label_bytes = b''.join(
            struct.pack(LABEL_FORMAT, label.key, index)
            for label, index in sorted(self.labels.items())
        )

        return compress(header + code_bytes + label_bytes, 22)

    @classmethod
    def decode(cls, data: bytes) -> 'Program':
        """Decode a compressed image to a program."""
        try:
            data = decompress(data)
        except Exception as e:
            raise ValueError(f"Not a program image: {e}")

        if len(data) < HEADER_SIZE:
            raise ValueError("Data too short for program header")

        magic, version, inst_count, label_count = struct.unpack(HEADER_FORMAT, data[:HEADER_SIZE])

        if magic != MAGIC:
            raise ValueError(f"Invalid magic bytes: {magic}")
        if not 1 <= version <= VERSION:
            raise ValueError(f"Unsupported version: {version}")

        expected = HEADER_SIZE + inst_count * INSTRUCTION_SIZE + label_count * LABEL_SIZE
        if len(data) < expected:
            raise ValueError(f"Truncated program image: {len(data)} of {expected} bytes")

        program = cls()
        offset = HEADER_SIZE
        for _ in range(inst_count):
            program.instructions.append(Instruction.decode(data[offset:offset + INSTRUCTION_SIZE]))
            offset += INSTRUCTION_SIZE

        for _ in range(label_count):
            key, index = struct.unpack(LABEL_FORMAT, data[offset:offset + LABEL_SIZE])
            program.labels[Label.from_key(key)] = index
            offset += LABEL_SIZE

        return program


def pair(x: int, y: int) -> int:
    """Pairing function <x, y> = 2^x (2y + 1) - 1."""
    return (1 << x) * (2 * y + 1) - 1


def label_ordinal(label: Label) -> int:
    """#(L) with A1=1, B1=2, ..., E1=5, A2=6."""
    if label.number < 1:
        raise ValueError(f"Label {label} has no ordinal")
    return label.key - len(LABEL_GROUPS) + 1


def variable_ordinal(var: Variable) -> int:
    """#(V) with Y=1, X1=2, Z1=3, X2=4, Z2=5."""
    if var.kind == 'y':
        return 1
    return 2 * var.index + (1 if var.kind == 'z' else 0)


def instruction_codes(program: Program) -> List[int]:
    """Code #(I) of every instruction, in program order."""
    bound: Dict[int, Label] = {}
    for label, index in program.labels.items():
        if index not in bound or label < bound[index]:
            bound[index] = label

    codes = []
    for i, inst in enumerate(program.instructions):
        name = OPCODE_NAMES[inst.op]
        a = label_ordinal(bound[i]) if i in bound else 0

        if name == 'NOP':
            # nop is coded as y <- y
            b, var = 0, Variable('y')
        elif name == 'INC':
            b, var = 1, inst.var
        elif name == 'DEC':
            b, var = 2, inst.var
        elif name == 'JNZ':
            b, var = label_ordinal(inst.to) + 2, inst.var
        else:
            raise ValueError(f"Instruction '{inst}' has no code")

        codes.append(pair(a, pair(b, variable_ordinal(var) - 1)))

    return codes


def _primes():
    found: List[int] = []
    candidate = 2
    while True:
        if all(candidate % p for p in found if p * p <= candidate):
            found.append(candidate)
            yield candidate
        candidate += 1


def program_number(program: Program) -> int:
    """Program number [#(I1), ..., #(Ik)] - 1.

    Grows extremely fast; only practical for short programs with small labels.
    """
    number = 1
    for prime, code in zip(_primes(), instruction_codes(program)):
        number *= prime ** code
    return number - 1


def disassemble(program: Program) -> str:
    """Render program as a listing."""
    bound: Dict[int, List[Label]] = {}
    for label, index in sorted(program.labels.items()):
        bound.setdefault(index, []).append(label)

    lines = [
        f"# Instructions: {len(program.instructions)}",
        f"# Labels: {len(program.labels)}",
        "",
    ]

    for i, inst in enumerate(program.instructions):
        prefix = ''.join(f"[{label}]" for label in bound.get(i, []))
        lines.append(f"{i:04d}: {prefix:<12} {inst}".rstrip())

    # Labels bound past the last instruction
    for index in sorted(k for k in bound if k >= len(program.instructions)):
        prefix = ''.join(f"[{label}]" for label in bound[index])
        lines.append(f"{index:04d}: {prefix}")

    return '\n'.join(lines)
