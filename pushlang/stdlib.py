"""Built-in routines reachable through the CALL instruction.

Each routine takes the running machine and consumes/produces operand stack
values. Operand order for routines reading heap bytes matches what a string
literal pushes: length first, address on top.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Dict

from .instructions import Builtin

if TYPE_CHECKING:
    from .vm import Machine


def putd(machine: Machine) -> None:
    """ ( n -- ) print n in decimal followed by a newline """
    machine.emit(f"{machine.pop()}\n".encode("ascii"))


def puts(machine: Machine) -> None:
    """ ( len addr -- ) print a string stored on the heap """
    address = machine.pop()
    length = machine.pop()
    machine.emit(machine.read_heap(address, length))


def alloc(machine: Machine) -> None:
    """ ( n -- addr ) grow the heap by n zeroed bytes """
    machine.push(machine.grow_heap(machine.pop()))


def write(machine: Machine) -> None:
    """ ( size addr -- ) write heap bytes verbatim """
    address = machine.pop()
    size = machine.pop()
    machine.emit(machine.read_heap(address, size))


ROUTINES: Dict[int, Callable[["Machine"], None]] = {
    Builtin.PUTD:  putd,
    Builtin.PUTS:  puts,
    Builtin.ALLOC: alloc,
    Builtin.WRITE: write,
}
