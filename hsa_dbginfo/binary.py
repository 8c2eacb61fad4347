# (c) Copyright 2022 Aaron Kimball
#
# In-memory kernel binary images and the ELF sections / symbols within them.

import io
import struct

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection

from hsa_dbginfo.symbol import Symbol

ELF_MAGIC = b'\x7fELF'

_EI_CLASS = 4
_ELFCLASS32 = 1
_ELFCLASS64 = 2

# Failures pyelftools may surface while walking a malformed image.
_ELF_PARSE_ERRORS = (ELFError, ValueError, IndexError, KeyError, AssertionError, OverflowError,
                     TypeError, struct.error)


class KernelBinary(object):
    """
    An immutable byte buffer holding a kernel binary (usually an ELF container).

    Every lookup on a malformed or non-ELF buffer reports "not found" (None or
    an empty list); the ELF structures are never trusted to be well formed.
    """

    def __init__(self, data):
        if data is None:
            data = b''
        self._data = bytes(data)
        self._elf = None
        self._elf_parsed = False

    def __len__(self):
        return len(self._data)

    def __bool__(self):
        return len(self._data) > 0

    def data(self):
        return self._data

    def _elf_class(self):
        if len(self._data) <= 16 or not self._data.startswith(ELF_MAGIC):
            return None
        return self._data[_EI_CLASS]

    def is_elf32(self):
        return self._elf_class() == _ELFCLASS32

    def is_elf64(self):
        return self._elf_class() == _ELFCLASS64

    def is_elf(self):
        return self.is_elf32() or self.is_elf64()

    def sub_buffer(self, offset, size):
        """
        Return a new KernelBinary copied from [offset, offset+size), or None if that range
        does not lie within this buffer.
        """
        if offset < 0 or size < 0 or offset + size > len(self._data):
            return None
        return KernelBinary(self._data[offset:offset + size])

    def trimmed(self, start_trim, end_trim):
        """
        Return a new KernelBinary with start_trim bytes removed from the front and end_trim
        bytes removed from the back. Returns None if the trims overlap.
        """
        if start_trim < 0 or end_trim < 0 or start_trim + end_trim > len(self._data):
            return None
        return self.sub_buffer(start_trim, len(self._data) - start_trim - end_trim)

    def elf(self):
        """
        Return the pyelftools ELFFile over this buffer, or None if it is not a readable ELF.
        """
        if not self._elf_parsed:
            self._elf_parsed = True
            if self.is_elf():
                try:
                    self._elf = ELFFile(io.BytesIO(self._data))
                except _ELF_PARSE_ERRORS:
                    self._elf = None
        return self._elf

    def _sections(self):
        elf = self.elf()
        if elf is None:
            return []
        try:
            return list(elf.iter_sections())
        except _ELF_PARSE_ERRORS:
            return []

    @staticmethod
    def _section_image(section):
        try:
            if section['sh_type'] == 'SHT_NOBITS':
                return b''
            return section.data()[0:section['sh_size']]
        except _ELF_PARSE_ERRORS:
            return None

    def section_by_index(self, index):
        """
        Return a KernelBinary holding the contents of section #index, or None.
        Section 0 is the null section and is never returned.
        """
        sections = self._sections()
        if index <= 0 or index >= len(sections):
            return None
        image = KernelBinary._section_image(sections[index])
        if image is None:
            return None
        return KernelBinary(image)

    def section_by_name(self, name):
        """
        Return a tuple (KernelBinary, sh_link) for the first section named 'name', or None.
        """
        for section in self._sections():
            if section.name == name:
                image = KernelBinary._section_image(section)
                if image is None:
                    return None
                return KernelBinary(image), section['sh_link']
        return None

    def has_section(self, name):
        return name in self.section_names()

    def section_names(self):
        """
        Return the names of all sections in the image, in header order. Unnamed sections
        are skipped.
        """
        return [s.name for s in self._sections() if s.name]

    def symbols(self):
        """
        Return a list of Symbol entries from .symtab.
        """
        elf = self.elf()
        if elf is None:
            return []
        try:
            symtab = elf.get_section_by_name('.symtab')
            if not isinstance(symtab, SymbolTableSection):
                return []
            return [Symbol(sym) for sym in symtab.iter_symbols()]
        except _ELF_PARSE_ERRORS:
            return []

    def symbol_names(self):
        return [sym.name for sym in self.symbols() if sym.name]

    def symbol(self, name):
        """
        Return a KernelBinary holding the bytes covered by symbol 'name' within its section,
        or None if the symbol, its section, or its bytes cannot be found.
        """
        sym = None
        for candidate in self.symbols():
            if candidate.name == name:
                sym = candidate
                break

        if sym is None or sym.section_index is None:
            return None

        sections = self._sections()
        if sym.section_index <= 0 or sym.section_index >= len(sections):
            return None

        section = sections[sym.section_index]
        image = KernelBinary._section_image(section)
        if image is None:
            return None

        offset = sym.addr - section['sh_addr']
        if offset < 0 or offset + sym.size > len(image):
            return None
        return KernelBinary(image[offset:offset + sym.size])
