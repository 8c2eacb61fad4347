# (c) Copyright 2022 Aaron Kimball
#
# The code scope tree and the variables declared within it.
#
# Scopes live in a flat arena owned by ScopeTree and refer to their parent and children by
# index, so the tree can be walked in either direction without reference cycles.

import collections

from hsa_dbginfo.location import LocationRegister, UINT32_MAX, UINT64_MAX


class DebugInfoInvariantError(Exception):
    """ The debug info violates a structural rule the resolver relies upon. """
    pass


class ScopeKind(object):
    COMPILATION_UNIT    = 0
    FUNCTION            = 1
    INLINED_FUNCTION    = 2
    CODE_SCOPE          = 3     # lexical block
    HSA_ARGUMENT_SCOPE  = 4

    FUNCTION_KINDS = (FUNCTION, INLINED_FUNCTION)

    @staticmethod
    def name_of(kind):
        return { ScopeKind.COMPILATION_UNIT: 'compile_unit', ScopeKind.FUNCTION: 'function',
                 ScopeKind.INLINED_FUNCTION: 'inlined', ScopeKind.CODE_SCOPE: 'block',
                 ScopeKind.HSA_ARGUMENT_SCOPE: 'arg_scope' }.get(kind, '???')


class Encoding(object):
    """ How a variable's value bytes are to be interpreted. """
    NONE        = 0
    POINTER     = 1
    BOOLEAN     = 2
    FLOAT       = 3
    INTEGER     = 4
    UINTEGER    = 5
    CHARACTER   = 6
    UCHARACTER  = 7


class Indirection(object):
    DIRECT      = 0
    POINTER     = 1
    REFERENCE   = 2
    ARRAY       = 3


class IndirectionDetail(object):
    """ The address space an indirect variable points into. """
    UNKNOWN     = 0
    PRIVATE     = 1
    GLOBAL      = 2
    READONLY    = 3
    GROUP       = 4


class AddressRange(object):
    """
    A half-open interval [low, high) of addresses.
    """
    def __init__(self, low, high):
        self.low = low
        self.high = high

    def includes(self, addr):
        return self.low <= addr and addr < self.high

    def __repr__(self):
        return f'[{self.low:#x}, {self.high:#x})'

    def __lt__(self, other):
        return (self.low, self.high) < (other.low, other.high)

    def __eq__(self, other):
        if not isinstance(other, AddressRange):
            return False
        return self.low == other.low and self.high == other.high

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash((self.low, self.high))


# An additional location of a variable, valid for pc in [low_pc, high_pc).
LocatedRange = collections.namedtuple('LocatedRange', ['low_pc', 'high_pc', 'location'])


class VariableInfo(object):
    """
    A variable, parameter, constant or struct member visible in some code scope.
    """

    def __init__(self):
        self.name = ''
        self.type_name = ''
        self.size = 0
        self.encoding = Encoding.NONE
        self.indirection = Indirection.DIRECT
        self.indirection_detail = IndirectionDetail.UNKNOWN
        self.is_param = False
        self.is_out_param = False
        self.low_pc = 0
        self.high_pc = UINT64_MAX
        self.brig_offset = UINT32_MAX
        self.const_value = None         # bytes, for constants.
        self.location = None            # VariableLocation, for non-constants.
        self.additional_locations = []  # [LocatedRange] for pc ranges beyond the main location.
        self.members = []               # [VariableInfo] for structs and unions.

    def is_constant(self):
        return self.const_value is not None

    def is_register_param(self):
        return (self.is_param and not self.is_constant() and self.location is not None and
                self.location.register_kind == LocationRegister.REGISTER)

    def check_invariants(self):
        """
        Raise DebugInfoInvariantError if this variable (or one of its members) is inconsistent.
        """
        if self.is_constant():
            if len(self.additional_locations):
                raise DebugInfoInvariantError(
                    f"Constant '{self.name}' has {len(self.additional_locations)} additional locations")
            if self.location is not None:
                raise DebugInfoInvariantError(f"Constant '{self.name}' also has a location")
        for member in self.members:
            member.check_invariants()

    def copy(self):
        """
        Return a copy of this variable. Locations and members are copied as well; the
        constant value bytes are shared (bytes are immutable).
        """
        out = VariableInfo()
        out.__dict__.update(self.__dict__)
        if self.location is not None:
            out.location = self.location.copy()
        out.additional_locations = [LocatedRange(r.low_pc, r.high_pc, r.location.copy())
                                    for r in self.additional_locations]
        out.members = [m.copy() for m in self.members]
        return out

    def location_for_pc(self, pc):
        """
        Return the location of this variable at $PC=pc. The main location is used unless an
        additional location's pc range covers pc.
        """
        if self.low_pc <= pc and pc < self.high_pc:
            return self.location
        for extra in self.additional_locations:
            if extra.low_pc <= pc and pc < extra.high_pc:
                return extra.location
        return self.location

    def at_pc(self, pc):
        """
        Return this variable as seen at $PC=pc: self if the main location applies, or a copy
        carrying the additional location that covers pc.
        """
        loc = self.location_for_pc(pc)
        if loc is self.location:
            return self

        for extra in self.additional_locations:
            if extra.location is loc:
                out = self.copy()
                out.location = loc.copy()
                out.low_pc = extra.low_pc
                out.high_pc = extra.high_pc
                out.additional_locations = []
                return out
        return self

    def member_by_path(self, path):
        """
        Find a member by dotted path (e.g. 'pos.x'). Returns None if there is no such member.
        """
        if isinstance(path, str):
            path = path.split('.')
        var = self
        for part in path:
            found = None
            for member in var.members:
                if member.name == part:
                    found = member
                    break
            if found is None:
                return None
            var = found
        return var

    def leaf_member_paths(self, prefix=None):
        """
        Return dotted names for every leaf beneath this variable. A variable with no members
        is its own leaf.
        """
        name = self.name if prefix is None else f'{prefix}.{self.name}'
        if not len(self.members):
            return [name]
        out = []
        for member in self.members:
            out.extend(member.leaf_member_paths(name))
        return out

    def iter_tree(self):
        """ Yield this variable and all of its members, depth-first. """
        yield self
        for member in self.members:
            yield from member.iter_tree()

    def __repr__(self):
        if self.is_constant():
            where = f'const={self.const_value.hex()}'
        else:
            where = repr(self.location)
        return f'{self.type_name} {self.name} <size={self.size}> {where}'


class CodeScope(object):
    """
    A node in the scope tree: a compile unit, function, inlined function, lexical block, or
    HSA argument scope.
    """

    def __init__(self, index, kind, parent=None):
        self.index = index
        self.kind = kind
        self.parent = parent        # Index of parent scope; None for the root.
        self.children = []          # Indexes of child scopes.
        self.name = ''
        self.ranges = []            # [AddressRange]
        self.inherited_ranges = False
        self.frame_base = None      # VariableLocation
        self.workitem_offset = None # VariableLocation
        self.is_kernel = False
        self.call_site = None       # SourceLine / MachineAddress where an inlined function was called.
        self.inline_origin_name = None
        self.variables = []         # [VariableInfo] declared directly in this scope.
        self.visible = {}           # name -> VariableInfo visible from this scope (incl. ancestors).

    def function_name(self):
        return self.inline_origin_name or self.name

    def is_function(self):
        return self.kind in ScopeKind.FUNCTION_KINDS

    def lowest_address(self):
        return min(r.low for r in self.ranges)

    def highest_address(self):
        return max(r.high for r in self.ranges)

    def contains(self, addr):
        for r in self.ranges:
            if r.includes(addr):
                return True
        return False

    def add_range(self, low, high):
        self.ranges.append(AddressRange(low, high))

    def __repr__(self):
        name = self.function_name() or ''
        return f'<{ScopeKind.name_of(self.kind)} {name} {self.ranges}>'


class ScopeTree(object):
    """
    Arena holding every CodeScope of one debug level. Scope 0 is the root.
    """

    def __init__(self):
        self._scopes = []

    def __len__(self):
        return len(self._scopes)

    def __iter__(self):
        return iter(self._scopes)

    def add_scope(self, kind, parent=None):
        """
        Create a new scope as a child of scope index 'parent' (or the root if parent is None).
        """
        scope = CodeScope(len(self._scopes), kind, parent)
        self._scopes.append(scope)
        if parent is not None:
            self._scopes[parent].children.append(scope.index)
        return scope

    def remove_last_scope(self, scope):
        """
        Drop 'scope', which must be the most recently added leaf.
        """
        if scope.index != len(self._scopes) - 1 or len(scope.children):
            raise DebugInfoInvariantError('Only the newest leaf scope can be removed')
        self._scopes.pop()
        if scope.parent is not None:
            self._scopes[scope.parent].children.remove(scope.index)

    def root(self):
        if not len(self._scopes):
            return None
        return self._scopes[0]

    def scope(self, index):
        return self._scopes[index]

    def parent_of(self, scope):
        if scope.parent is None:
            return None
        return self._scopes[scope.parent]

    def children_of(self, scope):
        return [self._scopes[i] for i in scope.children]

    def ancestors(self, scope):
        """
        Return [scope, parent, grandparent, ..., root].
        """
        out = []
        while scope is not None:
            out.append(scope)
            scope = self.parent_of(scope)
        return out

    def enclosing_function(self, scope):
        """
        Return the nearest function or inlined function scope, starting from 'scope' itself.
        """
        for s in self.ancestors(scope):
            if s.is_function():
                return s
        return None

    def innermost_scope(self, addr):
        """
        Return the most deeply nested scope containing addr, or None if the root does not
        contain it.
        """
        scope = self.root()
        if scope is None or not scope.contains(addr):
            return None

        descended = True
        while descended:
            descended = False
            for child in self.children_of(scope):
                if child.contains(addr):
                    scope = child
                    descended = True
                    break
        return scope

    def iter_breadth_first(self):
        root = self.root()
        if root is None:
            return
        q = collections.deque([root])
        while len(q):
            scope = q.popleft()
            yield scope
            q.extend(self.children_of(scope))

    def compute_visible_variables(self):
        """
        Compute each scope's visible variable set. Moving down from the root, a scope sees all
        that its parent sees, with its own declarations replacing any of the same name.
        """
        for scope in self.iter_breadth_first():
            parent = self.parent_of(scope)
            visible = dict(parent.visible) if parent is not None else {}
            for var in scope.variables:
                visible.pop(var.name, None) # Shadowed names move to the inner declaration.
                visible[var.name] = var
            scope.visible = visible
