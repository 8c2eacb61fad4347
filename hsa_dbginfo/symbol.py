# (c) Copyright 2022 Aaron Kimball

import hsa_dbginfo.binutils as binutils

class Symbol(object):
    """
    A symbol table entry from a kernel binary's .symtab section.
    """

    def __init__(self, elf_sym):
        self.name = elf_sym.name
        self.size = elf_sym.entry['st_size']
        self.addr = elf_sym.entry['st_value']
        self.kind = elf_sym.entry['st_info']['type']

        # st_shndx is an int for a regular section, or a string like 'SHN_UNDEF' / 'SHN_ABS'.
        shndx = elf_sym.entry['st_shndx']
        self.section_index = shndx if isinstance(shndx, int) else None

    def demangled(self):
        return binutils.demangle(self.name)

    def __repr__(self):
        sect = '-' if self.section_index is None else str(self.section_index)
        return f'{self.name} @ {self.addr:04x} <len={self.size}> [{self.kind}, sect={sect}]'
