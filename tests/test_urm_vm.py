import io

import pytest

from urm_assemble import Assembler
from urm_program import Program, Instruction, Variable, Label, OPCODES
from urm_vm import VM, Registers


def run(source: str, *inputs, **kwargs) -> VM:
    vm = VM(Assembler().assemble(source), inputs, **kwargs)
    vm.run()
    return vm


def test_unset_register_reads_zero_without_growing():
    regs = Registers([4])
    assert regs.get(Variable('x', 7)) == 0
    assert regs.get(Variable('z', 2)) == 0
    assert regs.x == [4]
    assert regs.z == []


def test_write_grows_register_file():
    regs = Registers()
    regs.set(Variable('z', 4), 9)
    assert regs.z == [0, 0, 0, 9]
    regs.set(Variable('z', 2), 1)
    assert regs.z == [0, 1, 0, 9]


def test_negative_input_is_rejected():
    with pytest.raises(ValueError):
        Registers([1, -1])


def test_decrement_saturates_at_zero():
    program = Program([Instruction(OPCODES['DEC'], Variable('x', 1))] * 3)
    vm = VM(program, [1])
    vm.run()
    assert vm.regs.get(Variable('x', 1)) == 0


def test_jump_to_undefined_label_halts():
    program = Program([
        Instruction(OPCODES['INC'], Variable('x', 1)),
        Instruction(OPCODES['JNZ'], Variable('x', 1), Label.parse('E9')),
        Instruction(OPCODES['INC'], Variable('y')),
    ])
    vm = VM(program)
    assert vm.step()
    assert vm.step()
    assert vm.pc == 3
    assert vm.halted
    assert not vm.step()
    assert vm.regs.y == 0


def test_jump_not_taken_on_zero():
    program = Program(
        [Instruction(OPCODES['JNZ'], Variable('x', 1), Label.parse('A1')), Instruction(OPCODES['NOP'])],
        {Label.parse('A1'): 0},
    )
    vm = VM(program)
    vm.step()
    assert vm.pc == 1


def test_forward_jump_end_to_end():
    vm = run('x1 <- x1 + 1\nif x1 != 0 goto A0\n[A0] nop', 1)
    assert vm.regs.y == 0
    assert vm.regs.get(Variable('x', 1)) == 2
    assert vm.halted


def test_copy_is_non_destructive():
    vm = run('y <- x1', 3)
    assert vm.regs.y == 3
    assert vm.regs.get(Variable('x', 1)) == 3


@pytest.mark.parametrize('source, inputs, expected', [
    ('y <- 0', (), 0),
    ('y <- x1 + x2', (2, 3), 5),
    ('y <- x1 - x2', (5, 3), 2),
    ('y <- x1 - x2', (3, 5), 0),
    ('y <- x1 * x2', (3, 4), 12),
    ('y <- x1 * x2', (0, 4), 0),
    ('y <- x1 / x2', (7, 2), 3),
    ('y <- x1 / x2', (1, 2), 0),
    ('inc y\ninc y\ndec y', (), 1),
    ('mov y x2', (1, 6), 6),
])
def test_prologue_arithmetic(source, inputs, expected):
    assert run(source, *inputs).regs.y == expected


def test_repeated_recursive_macro_runs_correctly():
    vm = run('y <- x1 * x2\ny <- x1 * x2', 2, 5)
    assert vm.regs.y == 10
    assert vm.regs.get(Variable('x', 1)) == 2
    assert vm.regs.get(Variable('x', 2)) == 5


@pytest.mark.parametrize('inputs, expected', [((2, 5), 1), ((5, 2), 0), ((3, 3), 0)])
def test_conditional_macros(inputs, expected):
    source = '\n'.join([
        'jlt x1 x2 A1',
        'goto E1',
        '[A1] y <- y + 1',
    ])
    assert run(source, *inputs).regs.y == expected


def test_jze_macro():
    source = 'jze x1 B1\ny <- y + 1\n[B1] nop'
    assert run(source, 0).regs.y == 0
    assert run(source, 4).regs.y == 1


def test_print_and_state():
    out = io.StringIO()
    run('x2 <- x2 + 1\nprint x2\nprint z1\nstate', 5, out=out)
    assert out.getvalue().splitlines() == ['x2 = 1', 'z1 = 0', 'y = 0 x1 = 5 x2 = 1']


def test_max_steps_bounds_infinite_loop(capsys):
    vm = VM(Assembler().assemble('[A1] goto A1'))
    vm.run(max_steps=10)
    assert vm.steps == 10
    assert not vm.halted
    assert 'stopped after 10 steps' in capsys.readouterr().err


def test_trace(capsys):
    vm = VM(Assembler().assemble('y <- y + 1'))
    vm.trace = True
    vm.run()
    out = capsys.readouterr().out
    assert 'PC=0000' in out
    assert 'y <- y + 1' in out
