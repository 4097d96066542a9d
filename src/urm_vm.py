#!/usr/bin/env python3
"""
URM VM

Usage: python urm_vm.py <program> [x1 x2 ...] [--trace] [--max-steps N]

Runs either a source file (assembled on load) or a program image written by
urm_assemble.py. Positional integers are the initial values of x1, x2, ...
and the final value of y is printed on exit.

Registers:
  y       Single output register, starts at 0
  x1..    Input registers, grow on write, read as 0 past the end
  z1..    Temp registers, same growth rules as x

All registers hold non-negative integers; decrement saturates at 0. A jump to
a label that was never defined halts the machine.
"""

import sys
from typing import Iterable, List, Optional, TextIO
from urm_program import Program, Instruction, Variable, OPCODES

# zstd frame magic, used to tell program images from source text
ZSTD_MAGIC = b'\x28\xb5\x2f\xfd'


class Registers:
    """Register file: y plus growable x and z sequences indexed from 1."""

    def __init__(self, inputs: Iterable[int] = ()):
        self.y = 0
        self.x: List[int] = []
        self.z: List[int] = []
        for value in inputs:
            if value < 0:
                raise ValueError(f"Register values must be non-negative: {value}")
            self.x.append(value)

    def _bank(self, var: Variable) -> List[int]:
        return self.x if var.kind == 'x' else self.z

    def get(self, var: Variable) -> int:
        if var.kind == 'y':
            return self.y
        bank = self._bank(var)
        if var.index <= len(bank):
            return bank[var.index - 1]
        return 0

    def set(self, var: Variable, value: int):
        if var.kind == 'y':
            self.y = value
            return
        bank = self._bank(var)
        while var.index > len(bank):
            bank.append(0)
        bank[var.index - 1] = value

    def snapshot(self) -> str:
        """One-line dump of every register."""
        parts = [f"y = {self.y}"]
        parts += [f"x{i} = {v}" for i, v in enumerate(self.x, 1)]
        parts += [f"z{i} = {v}" for i, v in enumerate(self.z, 1)]
        return ' '.join(parts)


class VM:
    """URM VM."""

    def __init__(self, program: Program, inputs: Iterable[int] = (), out: Optional[TextIO] = None):
        self.program = program
        self.regs = Registers(inputs)
        self.pc = 0
        self.steps = 0

        # Output stream for print/state
        self.out = out

        # Debug options
        self.trace = False

    @property
    def halted(self) -> bool:
        return self.pc >= len(self.program.instructions)

    def emit(self, text: str):
        print(text, file=self.out if self.out is not None else sys.stdout)

    def execute(self, inst: Instruction):
        """Apply one instruction and advance the program counter."""
        op = inst.op
        var = inst.var

        if op == OPCODES['INC']:
            self.regs.set(var, self.regs.get(var) + 1)
        elif op == OPCODES['DEC']:
            self.regs.set(var, max(self.regs.get(var) - 1, 0))
        elif op == OPCODES['JNZ']:
            if self.regs.get(var) > 0:
                # Undefined labels resolve past the end, which halts
                self.pc = self.program.target(inst.to)
                return
        elif op == OPCODES['PRINT']:
            self.emit(f"{var} = {self.regs.get(var)}")
        elif op == OPCODES['STATE']:
            self.emit(self.regs.snapshot())

        self.pc += 1

    def step(self) -> bool:
        """Execute one instruction. Returns False if halted."""
        if self.halted:
            return False

        inst = self.program.instructions[self.pc]

        if self.trace:
            self.print_state(inst)

        self.execute(inst)
        self.steps += 1
        return True

    def run(self, max_steps: Optional[int] = None) -> int:
        """Run until halted, or until max_steps when given. Returns y."""
        while not self.halted:
            if max_steps is not None and self.steps >= max_steps:
                print(f"Warning: Execution stopped after {max_steps} steps", file=sys.stderr)
                break
            self.step()

        return self.regs.y

    def print_state(self, inst: Optional[Instruction] = None):
        """Print current VM state."""
        print(f"[{self.steps:06d}] PC={self.pc:04d} {self.regs.snapshot()}")
        if inst:
            print(f"         {inst}")


def load_program(path: str) -> Program:
    """Load a program image, or assemble a source file."""
    with open(path, 'rb') as f:
        data = f.read()

    if path.endswith('.urm') or data.startswith(ZSTD_MAGIC):
        return Program.decode(data)

    from urm_assemble import Assembler
    return Assembler().assemble(data.decode('utf-8'))


def main():
    import argparse
    from urm_assemble import AssemblerError

    parser = argparse.ArgumentParser(
        description='URM VM',
        usage='%(prog)s [options] program [x1 x2 ...]'
    )
    parser.add_argument('--trace', '-t', action='store_true', help='Trace execution')
    parser.add_argument('--max-steps', '-m', type=int, default=None, help='Maximum steps (default: unbounded)')
    parser.add_argument('--state', action='store_true', help='Print every register on exit')
    parser.add_argument('program', help='Source file or program image')
    parser.add_argument('inputs', nargs='*', type=int, help='Initial values of x1, x2, ...')

    args = parser.parse_args()

    try:
        program = load_program(args.program)
    except FileNotFoundError:
        print(f"Error: Program not found: {args.program}", file=sys.stderr)
        sys.exit(1)
    except AssemblerError as e:
        print(f"Assembler error: {e}", file=sys.stderr)
        sys.exit(1)
    except (ValueError, UnicodeDecodeError) as e:
        print(f"Error loading program: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        vm = VM(program, args.inputs)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    vm.trace = args.trace

    y = vm.run(args.max_steps)

    if args.state:
        print(vm.regs.snapshot())
    print(f"Y = {y}")


if __name__ == '__main__':
    main()
