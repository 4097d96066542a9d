import struct

import pytest
from zstd import compress

from urm_program import (
    Program, Instruction, Variable, Label, OPCODES,
    disassemble, instruction_codes, program_number,
)


def test_variable_parse():
    assert Variable.parse('y') == Variable('y')
    assert Variable.parse('x1') == Variable('x', 1)
    assert Variable.parse('z12') == Variable('z', 12)


@pytest.mark.parametrize('token', ['x0', 'x', 'z', 'xa', 'w1', 'yy', ''])
def test_variable_parse_rejects_malformed(token):
    with pytest.raises(ValueError):
        Variable.parse(token)


def test_label_parse():
    label = Label.parse('C3')
    assert label.group == 'C'
    assert label.number == 3
    assert label.key == 3 * 5 + 2
    assert str(label) == 'C3'
    assert Label.parse('A0').key == 0


@pytest.mark.parametrize('token', ['F1', 'A', 'a1', '1A', 'Ax', ''])
def test_label_parse_rejects_malformed(token):
    with pytest.raises(ValueError):
        Label.parse(token)


def test_label_ordering_follows_key():
    labels = [Label.parse(t) for t in ['A2', 'E1', 'B1', 'A1']]
    assert [str(label) for label in sorted(labels)] == ['A1', 'B1', 'E1', 'A2']
    assert Label.from_key(Label.parse('D7').key) == Label.parse('D7')


def test_instruction_str():
    x1 = Variable('x', 1)
    assert str(Instruction(OPCODES['INC'], x1)) == 'x1 <- x1 + 1'
    assert str(Instruction(OPCODES['DEC'], x1)) == 'x1 <- x1 - 1'
    assert str(Instruction(OPCODES['JNZ'], x1, Label.parse('B2'))) == 'if x1 != 0 goto B2'
    assert str(Instruction(OPCODES['NOP'])) == 'nop'
    assert str(Instruction(OPCODES['PRINT'], Variable('y'))) == 'print y'
    assert str(Instruction(OPCODES['STATE'])) == 'state'


def test_undefined_target_lands_past_end():
    program = Program([Instruction(OPCODES['NOP'])], {Label.parse('A1'): 0})
    assert program.target(Label.parse('A1')) == 0
    assert program.target(Label.parse('E9')) == 1


def test_image_encode_decode():
    program = Program(
        [
            Instruction(OPCODES['INC'], Variable('z', 3)),
            Instruction(OPCODES['JNZ'], Variable('y'), Label.parse('E4')),
            Instruction(OPCODES['PRINT'], Variable('x', 2)),
            Instruction(OPCODES['STATE']),
        ],
        {Label.parse('E4'): 0, Label.parse('A1'): 4},
    )
    assert Program.decode(program.encode()) == program


def test_image_rejects_bad_magic():
    with pytest.raises(ValueError, match='magic'):
        Program.decode(compress(b'NOPE' + bytes(10), 3))


def test_image_rejects_short_data():
    with pytest.raises(ValueError, match='too short'):
        Program.decode(compress(b'URMP', 3))


def test_image_rejects_garbage():
    with pytest.raises(ValueError):
        Program.decode(b'this is not an image')


def test_instruction_codes():
    # [A1] x1 <- x1 + 1  is  <1, <1, 1>> = 21
    program = Program([Instruction(OPCODES['INC'], Variable('x', 1))], {Label.parse('A1'): 0})
    assert instruction_codes(program) == [21]
    assert program_number(program) == 2 ** 21 - 1


def test_instruction_codes_jump_and_nop():
    program = Program([
        Instruction(OPCODES['NOP']),
        Instruction(OPCODES['JNZ'], Variable('x', 1), Label.parse('A1')),
    ])
    # nop is <0, <0, 0>> = 0, jump is <0, <#(A1) + 2, 1>> = <0, <3, 1>> = <0, 23> = 46
    assert instruction_codes(program) == [0, 46]


def test_instruction_codes_reject_print():
    program = Program([Instruction(OPCODES['PRINT'], Variable('y'))])
    with pytest.raises(ValueError):
        instruction_codes(program)


def test_disassemble():
    program = Program(
        [Instruction(OPCODES['INC'], Variable('x', 1)), Instruction(OPCODES['NOP'])],
        {Label.parse('B1'): 1, Label.parse('E1'): 2},
    )
    listing = disassemble(program)
    assert '# Instructions: 2' in listing
    assert 'x1 <- x1 + 1' in listing
    assert '[B1]' in listing.splitlines()[4]
    assert listing.splitlines()[-1] == '0002: [E1]'


def pack_image(version=1, inst_count=1, label_count=0, records=b''):
    return compress(struct.pack('<4sHII', b'URMP', version, inst_count, label_count) + records, 3)


@pytest.mark.parametrize('image, message', [
    (pack_image(version=2), 'Unsupported version: 2'),
    (pack_image(version=0), 'Unsupported version: 0'),
    (pack_image(inst_count=2, records=struct.pack('<BBII', 3, 0, 0, 0)), 'Truncated program image'),
    (pack_image(label_count=1, records=struct.pack('<BBII', 3, 0, 0, 0)), 'Truncated program image'),
    (pack_image(records=struct.pack('<BBII', 9, 0, 0, 0)), 'Unknown opcode: 9'),
    (pack_image(records=struct.pack('<BBII', 0, 7, 1, 0)), 'Unknown variable kind: 7'),
    (pack_image(records=struct.pack('<BBII', 0, 1, 0, 0xFFFFFFFF)), 'Invalid variable index: x0'),
    (pack_image(records=struct.pack('<BBII', 4, 2, 0, 0xFFFFFFFF)), 'Invalid variable index: z0'),
    (pack_image(records=struct.pack('<BBII', 1, 0, 3, 0xFFFFFFFF)), 'Invalid variable index for y: 3'),
])
def test_image_rejects_malformed_records(image, message):
    with pytest.raises(ValueError, match=message):
        Program.decode(image)


def test_image_accepts_hand_packed_record():
    image = pack_image(records=struct.pack('<BBII', 0, 1, 2, 0xFFFFFFFF))
    assert Program.decode(image).instructions == [Instruction(OPCODES['INC'], Variable('x', 2))]
