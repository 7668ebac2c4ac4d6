# coding: utf-8

#---------------------------------------------------------------------------------------
# (C)2023 Robert Woodhead. Creative Commons Attribution License
#---------------------------------------------------------------------------------------

# Usage: python3 assembler.py [-s] [-d] [-o {hack output file}] {asm input file}
#
# Generates .hack output file of the same name (or the one given with -o); if -s
# switch is used, some handy symbol tables are produced.
#
# Assembles the standard HACK instruction set:
#
#   @value      A-instruction, value is a decimal constant (0..32767) or a symbol.
#   (LABEL)     Defines LABEL as the ROM address of the next instruction.
#   dest=comp;jump  C-instruction, dest= and ;jump are optional.
#
# Comments start with // and run to the end of the line. Blank lines are ignored,
# as is whitespace inside C-instructions.
#
# Symbols that are not predefined and not labels are variables, allocated in RAM
# starting at address 16 in order of first use.
#
# All syntax errors in a file are reported, not just the first one, and no output
# file is created if there are any.

import os
import sys
import shutil
import argparse
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Any

Values = Dict[str, int]     # Name:Values pairs, for example in symbol tables
Operation = Dict[str, Any]  # An assembler operation, one per non-comment line.
Line = Tuple[int, str, str] # Line number, line, original (unmunged) line

DEBUG = False               # Debug output flag
MAXRAM = 16384              # Limit of ram space
MAXROM = 32768              # Limit of rom space
FIRST_VARIABLE = 16         # Locations 0-15 are reserved, so 16 is the first available
MAXCONSTANT = 32767         # Largest value that fits in an @-instruction

# The predefined symbols. R0-R15 deliberately alias SP..THAT.

PREDEFINED: Values = {

    'R0': 0,
    'R1': 1,
    'R2': 2,
    'R3': 3,
    'R4': 4,
    'R5': 5,
    'R6': 6,
    'R7': 7,
    'R8': 8,
    'R9': 9,
    'R10': 10,
    'R11': 11,
    'R12': 12,
    'R13': 13,
    'R14': 14,
    'R15': 15,

    'SP': 0,
    'LCL': 1,
    'ARG': 2,
    'THIS': 3,
    'THAT': 4,

    'SCREEN': 16384,
    'KBD': 24576,

}

# Bit strings for building C-instructions: 111 + comp(7) + dest(3) + jump(3).

CPREFIX = '111'

# Bits for jmps; None is the absent field.

JMPS: Dict[Optional[str], str] = {

    None:   '000',
    'JGT':  '001',
    'JEQ':  '010',
    'JGE':  '011',
    'JLT':  '100',
    'JNE':  '101',
    'JLE':  '110',
    'JMP':  '111',

}

# Bits for destinations.

DESTS: Dict[Optional[str], str] = {

    None:   '000',
    'M':    '001',
    'D':    '010',
    'MD':   '011',
    'A':    '100',
    'AM':   '101',
    'AD':   '110',
    'AMD':  '111',

}

# Bits for comps, including the a-bit.

COMPS: Dict[str, str] = {

    '0':    '0101010',
    '1':    '0111111',
    '-1':   '0111010',
    'D':    '0001100',
    'A':    '0110000',
    '!D':   '0001101',
    '!A':   '0110001',
    '-D':   '0001111',
    '-A':   '0110011',
    'D+1':  '0011111',
    'A+1':  '0110111',
    'D-1':  '0001110',
    'A-1':  '0110010',
    'D+A':  '0000010',
    'D-A':  '0010011',
    'A-D':  '0000111',
    'D&A':  '0000000',
    'D|A':  '0010101',

    'M':    '1110000',
    '!M':   '1110001',
    '-M':   '1110011',
    'M+1':  '1110111',
    'M-1':  '1110010',
    'D+M':  '1000010',
    'D-M':  '1010011',
    'M-D':  '1000111',
    'D&M':  '1000000',
    'D|M':  '1010101',

}

# Errors. Each carries the source line it was found on (if any) and, once
# assembly is aborted, the list of all the errors found in the same run.

class AssemblyError(Exception):

    def __init__(self, message: str, line: Optional[Line] = None):

        super().__init__(message)
        self.message = message
        self.line = line
        self.errors: List['AssemblyError'] = [self]

    def __str__(self) -> str:

        if self.line is None:
            return self.message
        return f'Error in line {self.line[0]}: {self.message}'

class MalformedLine(AssemblyError):
    """Line is not an @-instruction, (LABEL) or C-instruction, or is otherwise unusable."""

class UnknownMnemonic(AssemblyError):
    """A dest, comp or jump field that is not part of the HACK instruction set."""

class MissingComp(AssemblyError):
    """C-instruction without a comp field."""

class OutOfMemory(AssemblyError):
    """Ran out of RAM while allocating variables."""

# The symbol table. The lists of symbols of particular types let us print a
# nicely formatted symbol table at the end of assembly; the upper case index
# lets us warn about likely typos.

class SymbolTable:

    def __init__(self):

        self.symbols: Values = dict(PREDEFINED)
        self.next_ram_idx = FIRST_VARIABLE
        self.predefined: List[str] = list(PREDEFINED.keys())
        self.labels: List[str] = []
        self.variables: List[str] = []
        self.ucase_symbols: Dict[str, str] = {s.upper(): s for s in PREDEFINED}

    def __contains__(self, name: str) -> bool:

        return name in self.symbols

    def __getitem__(self, name: str) -> int:

        return self.symbols[name]

    def case_clash(self, name: str) -> Optional[str]:
        """Return an existing symbol that only differs from name in case, if there is one."""

        other = self.ucase_symbols.get(name.upper())
        return other if other is not None and other != name else None

    def add_label(self, name: str, rom: int) -> None:

        self.symbols[name] = rom
        self.labels.append(name)
        self.ucase_symbols.setdefault(name.upper(), name)

    def allocate(self, name: str) -> int:

        if self.next_ram_idx >= MAXRAM:
            raise OutOfMemory(f'Out of RAM (data) memory allocating variable [{name}]')

        address = self.next_ram_idx
        self.symbols[name] = address
        self.variables.append(name)
        self.ucase_symbols.setdefault(name.upper(), name)
        self.next_ram_idx += 1
        return address

# Determine if a string is a decimal constant.

def is_constant(s: str) -> bool:

    return s != '' and s.isascii() and s.isdigit()

# Strip comments and surrounding whitespace, drop the lines that end up empty.
# We keep the original line around for use in errors and warnings.

def clean(lines: Iterable[str]) -> Iterator[Line]:

    for i, l in enumerate(lines):
        cleaned = l.split('//', 1)[0].strip()
        if cleaned != '':
            yield (i+1, cleaned, l.rstrip('\r\n'))

# Parse a C-instruction into an Operation. Whitespace inside a C-instruction is
# insignificant, so it is all smashed out first.

def c_operation(line: Line, rom: int) -> Operation:

    o = ''.join(line[1].split())

    if ';' in o:
        dc, jmp = o.split(';', 1)
    else:
        dc, jmp = o, None

    if '=' in dc:
        dest, comp = dc.split('=', 1)
    else:
        dest, comp = None, dc

    op = {'cType': 'C', 'dest': dest, 'comp': comp, 'jump': jmp, 'rom': rom, 'line': line}

    if comp == '':
        op['error'] = MissingComp('C-instruction has no comp part', line)
    elif comp not in COMPS:
        op['error'] = UnknownMnemonic(f'Unknown alu operation [{comp}]', line)
    elif dest not in DESTS:
        op['error'] = UnknownMnemonic(f'Unknown destination [{dest}]', line)
    elif jmp not in JMPS:
        op['error'] = UnknownMnemonic(f'Unknown jump [{jmp}]', line)

    return op

# Parse a line into an Operation dictionary. cTypes are:
#
# A=Aop, C=Cop, L=Label
#
# rom is the ROM address of the instruction, or for a label, of the next instruction.

def operation(line: Line, rom: int) -> Operation:

    o = line[1]

    if o[0] == '@':             # @-op
        o = o[1:]
        op = {'cType': 'A', 'symbol': o, 'rom': rom, 'line': line}
        if o == '':
            op['error'] = MalformedLine('@ has no value or symbol', line)
        elif is_constant(o) and int(o) > MAXCONSTANT:
            op['error'] = MalformedLine(f'@ constant [{o}] out of 0..{MAXCONSTANT} range', line)
        return op
    elif o.startswith('('):     # (LABEL)
        op = {'cType': 'L', 'symbol': o[1:-1], 'rom': rom, 'line': line}
        if not o.endswith(')'):
            op['error'] = MalformedLine('Label definition does not end in )', line)
        elif op['symbol'] == '':
            op['error'] = MalformedLine('Empty symbol', line)
        elif is_constant(op['symbol']):
            op['error'] = MalformedLine('Cannot define a constant as a symbol', line)
        return op
    else:                       # C-operation
        return c_operation(line, rom)

# Pass 0: turn the cleaned lines into operations, handing out ROM addresses to
# the @ and C instructions as we go.

def parse(lines: Iterable[Line]) -> List[Operation]:

    ops: List[Operation] = []
    rom = 0

    for line in lines:
        op = operation(line, rom)
        if op['cType'] != 'L':
            rom += 1
            if rom > MAXROM:
                op.setdefault('error', MalformedLine('Program too large!', line))
        ops.append(op)

    return ops

# Pass 1: populate the symbol table with the () labels.

def pass1(ops: List[Operation], table: SymbolTable) -> None:

    for o in ops:
        if o['cType'] == 'L' and 'error' not in o:
            sym = o['symbol']
            if sym in table:
                o['error'] = MalformedLine(f'Symbol [{sym}] previously defined', o['line'])
            else:
                other = table.case_clash(sym)
                if other is not None:
                    o['warning'] = f'Label [{sym}] differs only in case from [{other}]'
                table.add_label(sym, o['rom'])

# Collect the errors attached to the operations. If there are any, raise the
# first one, with all of them attached.

def check(ops: List[Operation]) -> None:

    errors = [o['error'] for o in ops if 'error' in o]

    if errors:
        errors[0].errors = errors
        raise errors[0]

# Generate the code for an Operation. @-instructions may allocate a new variable
# the first time a symbol is seen. If we actually get to this point, the code has
# no syntax errors.

def codegen(o: Operation, table: SymbolTable) -> str:

    match o['cType']:

        case 'A':   # @-Instruction
            sym = o['symbol']
            if is_constant(sym):
                av = int(sym)
            elif sym in table:
                av = table[sym]
            else:
                other = table.case_clash(sym)
                if other is not None:
                    o['warning'] = f'Variable [{sym}] differs only in case from [{other}]'
                try:
                    av = table.allocate(sym)
                except OutOfMemory as oops:
                    oops.line = o['line']
                    raise
            return f'{av:016b}'

        case 'C':   # C-Instruction
            return CPREFIX + COMPS[o['comp']] + DESTS[o['dest']] + JMPS[o['jump']]

        case other:
            raise ValueError(f'No code for operation type [{other}]')

# Pass 2: generate the binary, one 16 character line per instruction, in ROM order.

def pass2(ops: List[Operation], table: SymbolTable) -> Iterator[str]:

    for o in ops:
        if o['cType'] != 'L':
            yield codegen(o, table)

# Print out the operations when debugging.

def dump(ops: List[Operation], title: str) -> None:

    if DEBUG:
        print(title)
        for o in ops:
            print(o)
        print()

# Passes 0 and 1, shared by the in-memory and file assemblers.

def prepare(lines: Iterable[str], table: SymbolTable) -> List[Operation]:

    ops = parse(clean(lines))
    dump(ops, 'Pass 0')
    pass1(ops, table)
    dump(ops, 'Pass 1')
    check(ops)
    return ops

# Assemble a program held in memory (a list of lines or a string); returns the
# binary lines without line terminators.

def assemble(source: Any, table: Optional[SymbolTable] = None) -> List[str]:

    if isinstance(source, str):
        source = source.splitlines()

    table = table if table is not None else SymbolTable()
    ops = prepare(source, table)
    return list(pass2(ops, table))

# Assemble fname into oname. The input is only open while it is being parsed,
# and the output only while it is being written. Returns the operations and the
# symbol table for reporting.

def assemble_file(fname: str, oname: str, table: Optional[SymbolTable] = None) -> Tuple[List[Operation], SymbolTable]:

    table = table if table is not None else SymbolTable()

    with open(fname, encoding='utf-8') as asmfile:
        ops = prepare(asmfile, table)

    with open(oname, 'w', encoding='ascii', newline='\n') as hackfile:
        for p in pass2(ops, table):
            hackfile.write(p + '\n')

    dump(ops, 'Pass 2')

    return ops, table

# Print out a segment of the symbol table in a nicely formatted way.

def print_symbols(symbols: Values, valid: List[str], title: str, byname: bool):

    # .sort() helper functions, permits sorting by value or name (case-insensitive).

    def byValues(s: str):
        return symbols[s]

    def byNames(s: str):
        return s.upper()

    # Filter out the desired symbols.

    valid_symbols = [s for s in symbols.keys() if s in valid]

    if not valid_symbols:
        return

    if byname:
        valid_symbols.sort(key=byNames)
    else:
        valid_symbols.sort(key=byValues)

    # How wide is a column of symbols and values?

    num_symbols = len(valid_symbols)
    max_width = max([len(s) for s in valid_symbols])

    # Create the ruler that goes at the top of a column,
    # and the separator the divides the columns.

    ruler = '-'*max_width + ' -----'
    separator = ' | '

    # How many columns can we fit in a line? At least one, even if the screen
    # isn't wide enough.

    num_cols = min([(shutil.get_terminal_size().columns - len(separator)) // (len(ruler) + len(separator)), num_symbols])

    if num_cols == 0:
        num_cols = 1

    # Given that many columns, how many rows do we need? Once we know that,
    # the number of columns needed may be less than the maximum we can fit.

    num_rows = (num_symbols + num_cols - 1) // num_cols
    num_cols = (num_symbols + num_rows - 1) // num_rows

    formatted_symbols = [f'{s:{max_width}} {symbols[s]:5}' for s in valid_symbols]

    print(title + (' (by name)' if byname else ' (by value)'))
    print(separator.join([ruler for i in range(0, num_cols)]))

    # Print the symbols a row at a time, but ordered column-first, which is
    # easier to read. The final column may have some empty entries.

    for row in range(0, num_rows):
        print(separator.join([formatted_symbols[num_rows * col + row] if num_rows * col + row < num_symbols else '' for col in range(0, num_cols)]))

    print()

def print_symbol_tables(table: SymbolTable) -> None:

    print()
    print_symbols(table.symbols, table.predefined, 'Predefined Symbols', byname=True)
    print_symbols(table.symbols, table.labels, 'Branch Addresses', byname=True)
    print_symbols(table.symbols, table.labels, 'Branch Addresses', byname=False)
    print_symbols(table.symbols, table.variables, 'Variables', byname=True)
    print_symbols(table.symbols, table.variables, 'Variables', byname=False)

def print_warnings(ops: List[Operation]) -> None:

    for w in [o for o in ops if 'warning' in o]:
        print('Warning in line ' + str(w['line'][0]) + ': ' + w['warning'])
        print('\t' + w['line'][2])

def print_errors(oops: AssemblyError) -> None:

    for e in oops.errors:
        print(str(e))
        if e.line is not None:
            print('\t' + e.line[2])

# Main level. Returns the exit status.

def main(argv: Optional[List[str]] = None) -> int:

    global DEBUG

    parser = argparse.ArgumentParser(
                    prog = 'assembler.py',
                    description = 'Assembles HACK programs',
                    epilog = 'Results are stored in a .hack file with the same name as the .asm file, unless -o is used')

    parser.add_argument('filename', help='The HACK .asm file to be assembled')
    parser.add_argument('-o', '--output', required=False, help='the .hack file to write')
    parser.add_argument('-s', '--symbols', action='store_true', required=False, help='prints helpful symbol tables')
    parser.add_argument('-d', '--debug', action='store_true', required=False, help='prints the operations after each pass')

    args = parser.parse_args(argv)

    DEBUG = args.debug
    fname = args.filename
    oname = args.output if args.output else fname[:-4] + '.hack'

    if not fname.endswith('.asm'):
        print('Error: Input filename must end in .asm')
        return 1

    if not os.path.isfile(fname):
        print(f'Error: Input file [{fname}] does not exist')
        return 1

    table = SymbolTable()

    try:
        ops, table = assemble_file(fname, oname, table)
    except AssemblyError as oops:
        print_errors(oops)
        print(f'Assembly aborted -- {len(oops.errors)} error(s) detected.')
        return 1
    except (OSError, UnicodeError) as oops:
        print(f'Error: {oops}')
        return 1

    if args.symbols:
        print_symbol_tables(table)

    print_warnings(ops)

    pc = len([o for o in ops if o['cType'] != 'L'])
    ram = table.next_ram_idx

    print(f'Program length: {pc} (of {MAXROM}, {int(pc*100/MAXROM)}%), RAM usage: {ram} (of {MAXRAM}, {int(ram*100/MAXRAM)}%)')
    print('Assembly successful - results written to ' + oname)

    return 0

if __name__ == '__main__':

    sys.exit(main())
