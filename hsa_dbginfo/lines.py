# (c) Copyright 2022 Aaron Kimball
#
# Source line keys and the bidirectional line <--> address mapping of one debug level.

from sortedcontainers import SortedDict, SortedList


class SourceLine(object):
    """
    A (file path, line number) position in source code. The path is '' when unknown.

    SourceLines order by path and then by line; the unknown path sorts before all others.
    """

    def __init__(self, path='', line=0):
        self.path = path or ''
        self.line = line

    def __bool__(self):
        return self.line > 0

    def __lt__(self, other):
        return (self.path, self.line) < (other.path, other.line)

    def __eq__(self, other):
        if not isinstance(other, SourceLine):
            return False
        return self.path == other.path and self.line == other.line

    def __ne__(self, other):
        return not self.__eq__(other)

    def __gt__(self, other):
        return other.__lt__(self)

    def __le__(self, other):
        return not other.__lt__(self)

    def __ge__(self, other):
        return not self.__lt__(other)

    def __hash__(self):
        return hash((self.path, self.line))

    def same_file(self, other):
        return isinstance(other, SourceLine) and self.path == other.path

    def __repr__(self):
        return f'{self.path or "<unknown>"}:{self.line}'


class MachineAddress(object):
    """
    The 'line' key of a low-level debug tree. A low-level line table maps each ISA address
    to the high-level (BRIG) address it was generated from; that high-level address is
    recorded as a MachineAddress.
    """

    def __init__(self, address):
        self.address = address

    # MachineAddress keys have no file; every key is in the same "file".
    path = ''

    @property
    def line(self):
        return self.address

    def __bool__(self):
        return True

    def __lt__(self, other):
        return self.address < other.address

    def __eq__(self, other):
        if not isinstance(other, MachineAddress):
            return False
        return self.address == other.address

    def __ne__(self, other):
        return not self.__eq__(other)

    def __gt__(self, other):
        return other.__lt__(self)

    def __le__(self, other):
        return not other.__lt__(self)

    def __ge__(self, other):
        return not self.__lt__(other)

    def __hash__(self):
        return hash(('addr', self.address))

    def same_file(self, other):
        return isinstance(other, MachineAddress)

    def __repr__(self):
        return f'@{self.address:#x}'


class LineMapping(object):
    """
    Maps line keys (SourceLine or MachineAddress) to the addresses generated for them,
    and addresses back to their line keys.
    """

    def __init__(self):
        self._line_to_addrs = SortedDict()  # key -> SortedList of addresses
        self._addr_to_lines = SortedDict()  # address -> [keys...] in line-program order

    def __len__(self):
        return len(self._addr_to_lines)

    @property
    def first_path(self):
        """
        The first non-empty file path among the mapped lines, in sorted order, or None.
        """
        for key in self._line_to_addrs.keys():
            if key.path:
                return key.path
        return None

    def add(self, key, addr):
        """
        Record that 'addr' was generated for 'key'.
        @return False if this (key, addr) pair was already present.
        """
        addrs = self._line_to_addrs.get(key)
        if addrs is None:
            addrs = SortedList()
            self._line_to_addrs[key] = addrs
        elif addr in addrs:
            return False

        addrs.add(addr)
        self._addr_to_lines.setdefault(addr, []).append(key)

        return True

    def mapped_addresses(self):
        return list(self._addr_to_lines.keys())

    def mapped_lines(self):
        return list(self._line_to_addrs.keys())

    def addresses_for_line(self, key):
        return list(self._line_to_addrs.get(key, []))

    def lines_for_address(self, addr):
        return list(self._addr_to_lines.get(addr, []))

    def _floor_address(self, addr):
        """ Return the greatest mapped address <= addr, or None. """
        idx = self._addr_to_lines.bisect_right(addr)
        if idx == 0:
            return None
        return self._addr_to_lines.keys()[idx - 1]

    def line_for_address(self, addr):
        """
        Return the line key for the instruction at 'addr': the last key recorded at the greatest
        mapped address <= addr. Returns None if addr precedes every mapped address.
        """
        floor = self._floor_address(addr)
        if floor is None:
            return None
        return self._addr_to_lines[floor][-1]

    def nearest_line(self, key):
        """
        Return the mapped key in the same file as 'key' that is closest to it: the first at or
        after key, or failing that the last one before it. None if nothing in that file is mapped.
        """
        lines = self._line_to_addrs.keys()
        idx = self._line_to_addrs.bisect_left(key)
        if idx < len(lines) and lines[idx].same_file(key):
            return lines[idx]
        if idx > 0 and lines[idx - 1].same_file(key):
            return lines[idx - 1]
        return None

    def nearest_address(self, addr):
        """
        Return the greatest mapped address <= addr; or failing that, the smallest mapped
        address above it. None if nothing is mapped.
        """
        floor = self._floor_address(addr)
        if floor is not None:
            return floor
        if len(self._addr_to_lines):
            return self._addr_to_lines.keys()[0]
        return None
