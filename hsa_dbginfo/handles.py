# (c) Copyright 2022 Aaron Kimball
#
# Generation-checked handles for the variables a Session hands out.

class VariableHandle(object):
    """
    Opaque reference to a VariableInfo held in a HandleTable.

    A handle with a non-empty member path is a borrowed view of a member of the variable
    in its slot; it is valid exactly as long as that variable's handle is.
    """

    def __init__(self, table, index, generation, path=()):
        self._table = table
        self.index = index
        self.generation = generation
        self.path = tuple(path)

    def is_borrowed(self):
        return len(self.path) > 0

    def member(self, i):
        return VariableHandle(self._table, self.index, self.generation, self.path + (i,))

    def owned_by(self, table):
        return self._table is table

    def get(self):
        """ Return the VariableInfo this handle refers to, or None if it is no longer valid. """
        return self._table.resolve(self)

    def __repr__(self):
        path = ''.join(f'.{i}' for i in self.path)
        return f'<var #{self.index}/{self.generation}{path}>'


class HandleTable(object):
    """
    Slot map of VariableInfo objects. Released slots are reused with a new generation number,
    so stale handles to them no longer resolve.
    """

    def __init__(self):
        self._slots = []        # [VariableInfo or None]
        self._generations = []  # Generation number of each slot.
        self._free = []         # Indexes of unused slots.
        self._live = 0

    def __len__(self):
        return self._live

    def add(self, var):
        """
        Store var and return an owned handle to it.
        """
        if len(self._free):
            index = self._free.pop()
        else:
            index = len(self._slots)
            self._slots.append(None)
            self._generations.append(0)

        self._slots[index] = var
        self._live += 1
        return VariableHandle(self, index, self._generations[index])

    def _slot_valid(self, handle):
        if not isinstance(handle, VariableHandle) or not handle.owned_by(self):
            return False
        if handle.index < 0 or handle.index >= len(self._slots):
            return False
        return self._slots[handle.index] is not None and \
            self._generations[handle.index] == handle.generation

    def resolve(self, handle):
        """
        Return the VariableInfo for handle, or None if it is stale, released or from another
        table.
        """
        if not self._slot_valid(handle):
            return None

        var = self._slots[handle.index]
        for i in handle.path:
            if i < 0 or i >= len(var.members):
                return None
            var = var.members[i]
        return var

    def release(self, handle):
        """
        Release an owned handle. Releasing a borrowed member handle does nothing.
        @return True if a slot was freed.
        """
        if not self._slot_valid(handle) or handle.is_borrowed():
            return False

        self._slots[handle.index] = None
        self._generations[handle.index] += 1
        self._free.append(handle.index)
        self._live -= 1
        return True

    def release_all(self):
        for index in range(len(self._slots)):
            if self._slots[index] is not None:
                self._slots[index] = None
                self._generations[index] += 1
                self._free.append(index)
        self._live = 0
