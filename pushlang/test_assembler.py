import pytest

from pushlang.assembler import PLACEHOLDER, Assembler, compile_source
from pushlang.binformat import (HEADER_SIZE, decode_i64, decode_u64,
                                encode_u64, read_header)
from pushlang.errors import AssemblyError
from pushlang.instructions import OPERAND_OPCODES, OPERAND_SIZE, Opcode, instruction_size
from pushlang.lexer import lex


def instructions(program):
    """Walks the code section, returns (offset, opcode, operand) tuples."""
    header = read_header(program)
    pos = header.code_offset
    out = []
    while pos < header.data_offset:
        opcode = Opcode(program[pos])
        operand = None
        if opcode in OPERAND_OPCODES:
            decode = decode_u64 if OPERAND_OPCODES[opcode] else decode_i64
            operand = decode(program, pos + 1)
        out.append((pos, opcode, operand))
        pos += instruction_size(opcode)
    assert pos == header.data_offset
    return out


def test_header_and_push():
    program = compile_source("5 3 +")
    header = read_header(program)
    assert header.code_offset == HEADER_SIZE
    assert header.data_offset == len(program)
    assert [(op, arg) for _, op, arg in instructions(program)] == [
        (Opcode.PUSH, 5), (Opcode.PUSH, 3), (Opcode.ADD, None), (Opcode.EXIT, None),
    ]


def test_opcode_values():
    program = compile_source("dup swap over + - = > ! putd")
    code = program[HEADER_SIZE:]
    assert list(code[:8]) == [0x02, 0x03, 0x04, 0x05, 0x06, 0x07, 0x08, 0x0C]
    assert code[8] == 0x0B
    assert code[-1] == 0xFF


def test_builtin_ids():
    ops = [arg for _, op, arg in instructions(compile_source("putd puts alloc write")) if op is Opcode.CALL]
    assert ops == [0, 1, 2, 3]


def test_string_literals_go_to_data_section():
    program = compile_source('"ab" "cde"')
    header = read_header(program)
    assert program[header.data_offset:] == b"abcde"
    pushes = [arg for _, op, arg in instructions(program) if op is Opcode.PUSH]
    assert pushes == [2, 0, 3, 2]


def test_if_else_targets():
    program = compile_source("1 if 42 else 0 end")
    ins = instructions(program)
    offsets = {op: pos for pos, op, _ in ins}
    branch = next(i for i in ins if i[1] is Opcode.BRANCH)
    jump = next(i for i in ins if i[1] is Opcode.JUMP)
    # false condition lands just after the else jump, on the `0` push
    assert branch[2] == jump[0] + instruction_size(Opcode.JUMP)
    assert jump[2] == offsets[Opcode.EXIT]


def test_if_without_else_targets_end():
    program = compile_source("1 if 42 end 7")
    ins = instructions(program)
    branch = next(i for i in ins if i[1] is Opcode.BRANCH)
    assert [i for i in ins if i[0] == branch[2]][0][2] == 7


def test_while_do_end_targets():
    program = compile_source("0 while dup 3 > do 1 + end")
    ins = instructions(program)
    loop_start = ins[1][0]
    branch = next(i for i in ins if i[1] is Opcode.BRANCH)
    jump = next(i for i in ins if i[1] is Opcode.JUMP)
    assert jump[2] == loop_start
    assert branch[2] == jump[0] + instruction_size(Opcode.JUMP)
    assert branch[2] == ins[-1][0]


@pytest.mark.parametrize("source", [
    "1 if 2 else 3 end",
    "0 while dup 3 > do 1 if 2 else 3 end 1 + end",
    "1 if 0 while dup 2 > do 1 + end else 1 if 2 end end",
    "1 if 1 if 1 if 1 end end end",
    "0 while 1 if 0 else 1 end do end",
])
def test_nested_targets_stay_in_code_section(source):
    assembler = Assembler()
    program = assembler.assemble(lex(source))
    header = read_header(program)
    assert assembler.xrefs == []
    for offset in assembler.placeholders:
        assert program[offset:offset + OPERAND_SIZE] != encode_u64(PLACEHOLDER)
    starts = {pos for pos, _, _ in instructions(program)}
    for _, op, arg in instructions(program):
        if op in (Opcode.BRANCH, Opcode.JUMP):
            assert header.code_offset <= arg < header.data_offset
            assert arg in starts


@pytest.mark.parametrize("source, message", [
    ("end", "without matching"),
    ("else", "without matching"),
    ("1 if 2 end end", "without matching"),
    ("0 while 1 + end", "no 'do'"),
    ("1 if 2 do 3 end", "do must be preceded by while"),
    ("do end", "do must be preceded by while"),
    ("0 while 1 do 2 else 3 end", "else must follow if"),
    ("1 if 2 else 3 else 4 end", "else must follow if"),
    ("1 if 2", "'if' is never closed"),
    ("0 while 1 do 2", "'do' is never closed"),
    ("while", "'while' is never closed"),
])
def test_malformed_nesting(source, message):
    with pytest.raises(AssemblyError, match=message):
        compile_source(source)


def test_error_location():
    with pytest.raises(AssemblyError, match=r"t.push:2:1: "):
        compile_source("1 2\nend", "t.push")


def test_empty_program_is_just_exit():
    program = compile_source("")
    assert program[HEADER_SIZE:] == bytes([Opcode.EXIT])


def test_patching_twice_fails():
    assembler = Assembler("t.push")
    offset = assembler._emit_placeholder(Opcode.JUMP)
    assembler._patch(offset, assembler.cursor)
    with pytest.raises(AssemblyError, match="already patched"):
        assembler._patch(offset, assembler.cursor)


def test_unresolved_placeholder_fails():
    assembler = Assembler("t.push")
    assembler._emit_placeholder(Opcode.BRANCH)
    with pytest.raises(AssemblyError, match="never resolved"):
        assembler.assemble([])
