# (c) Copyright 2022 Aaron Kimball
#
# Compose a high-level (HSAIL/BRIG) and a low-level (ISA) LevelStore so that queries phrased in
# source terms are answered in machine terms.
#
# The two levels are linked through BRIG offsets: the low-level line table maps each ISA
# address to the BRIG offset it was generated from, and low-level variables record the BRIG
# offset of the high-level variable they implement (DW_AT_HSA_brig_offset).

from hsa_dbginfo.lines import MachineAddress
from hsa_dbginfo.location import LocationRegister, UINT32_MAX, UINT64_MAX
from hsa_dbginfo.stack import CallStackFrame


def default_address_resolver(hl_addr):
    """ Return the low-level line key for a high-level address. """
    return MachineAddress(hl_addr)


def default_line_resolver(ll_key):
    """ Return the high-level address a low-level line key stands for. """
    if ll_key is None:
        return None
    return ll_key.address


def default_location_resolver(hl_location, ll_addr, ll_store):
    """
    Translate the location of a high-level variable into the location of the low-level
    variable that implements it at ll_addr.

    Only symbolic (LocationRegister.NONE) high-level locations can be translated; their offset
    is the BRIG offset to look for among the low-level variables.

    @return a new VariableLocation, or None if no low-level variable matches.
    """
    if hl_location is None or hl_location.register_kind != LocationRegister.NONE:
        return None

    brig_offset = hl_location.offset
    ll_var = ll_store.matching_variable(ll_addr, lambda v: v.brig_offset == brig_offset)
    if ll_var is None or ll_var.location is None:
        return None

    out = ll_var.location.copy()
    out.offset += hl_location.const_addition
    if out.resource == UINT64_MAX:
        out.resource = hl_location.resource
    if out.memory_region == UINT32_MAX:
        out.memory_region = hl_location.memory_region
    out.piece_offset += hl_location.piece_offset
    out.piece_size = min(out.piece_size, hl_location.piece_size)
    return out


class TwoLevelResolver(object):
    """
    Same query interface as LevelStore; takes low-level addresses and returns low-level
    addresses, but source lines and variable names come from the high level.
    """

    def __init__(self, hl_store, ll_store, address_resolver=None, line_resolver=None,
                 location_resolver=None, verboseprint=None):
        self.hl = hl_store
        self.ll = ll_store
        self._address_resolver = address_resolver or default_address_resolver
        self._line_resolver = line_resolver or default_line_resolver
        self._location_resolver = location_resolver or default_location_resolver
        self._verboseprint = verboseprint

    def _hl_address(self, ll_addr):
        """ The high-level address the instruction at ll_addr was generated from. """
        return self._line_resolver(self.ll.line_for_address(ll_addr))

    def _ll_addresses(self, hl_addr, first_only=False):
        return self.ll.addresses_for_line(self._address_resolver(hl_addr), first_only=first_only)

    def _translate_all(self, hl_addrs, first_only=False):
        out = set()
        for hl_addr in hl_addrs:
            out.update(self._ll_addresses(hl_addr, first_only) or [])
        if not len(out):
            return None
        return sorted(out)

    ###### Lines and addresses

    def line_for_address(self, ll_addr):
        hl_addr = self._hl_address(ll_addr)
        if hl_addr is None:
            return None
        return self.hl.line_for_address(hl_addr)

    def addresses_for_line(self, key, high_level_only=False, first_only=False):
        """
        Return the low-level addresses generated for a source line.

        @param high_level_only if True, return the high-level addresses instead.
        @param first_only if True, only the first low-level address of each high-level one.
        """
        hl_addrs = self.hl.addresses_for_line(key)
        if hl_addrs is None:
            return None
        if high_level_only:
            return hl_addrs
        return self._translate_all(hl_addrs, first_only)

    def nearest_line(self, key):
        return self.hl.nearest_line(key)

    def nearest_address(self, ll_addr):
        return self.ll.nearest_address(ll_addr)

    def mapped_addresses(self):
        return [a for a in self.ll.mapped_addresses() if self.line_for_address(a) is not None]

    def mapped_lines(self):
        return self.hl.mapped_lines()

    ###### Variables

    def _resolve_tree(self, var, ll_addr):
        """
        Replace the high-level locations of var and its members with low-level ones.
        Return False if any cannot be resolved.
        """
        if var.is_constant():
            return True
        loc = self._location_resolver(var.location, ll_addr, self.ll)
        if loc is None:
            return False
        var.location = loc
        var.additional_locations = []
        for member in var.members:
            if not self._resolve_tree(member, ll_addr):
                return False
        return True

    def variable(self, ll_addr, name):
        hl_addr = self._hl_address(ll_addr)
        if hl_addr is None:
            return None
        hl_var = self.hl.variable(hl_addr, name)
        if hl_var is None or hl_var.is_constant():
            return hl_var

        out = hl_var.copy()
        if not self._resolve_tree(out, ll_addr):
            if self._verboseprint:
                self._verboseprint('No low-level location for ', name, ' at ', ll_addr)
            return None
        return out

    def matching_variable(self, ll_addr, predicate):
        return self.ll.matching_variable(ll_addr, predicate)

    def variables_in_frame(self, ll_addr, stack_depth, leaf_members_only):
        hl_addr = self._hl_address(ll_addr)
        if hl_addr is None:
            return None
        return self.hl.variables_in_frame(hl_addr, stack_depth, leaf_members_only)

    def variable_register_numbers(self):
        return self.ll.variable_register_numbers()

    ###### Call stack & stepping

    def virtual_call_stack(self, ll_addr):
        hl_addr = self._hl_address(ll_addr)
        if hl_addr is None:
            return None
        hl_frames = self.hl.virtual_call_stack(hl_addr)
        if hl_frames is None:
            return None

        ll_root = self.ll.tree.root()
        module_base = ll_root.lowest_address()
        ll_scope = self.ll.tree.innermost_scope(ll_addr)
        ll_func = self.ll.tree.enclosing_function(ll_scope) if ll_scope is not None else None
        fallback_base = ll_func.lowest_address() if ll_func is not None else module_base

        frames = []
        for frame in hl_frames:
            ll_bases = self._ll_addresses(frame.function_base, first_only=True)
            function_base = ll_bases[0] if ll_bases else fallback_base
            frames.append(CallStackFrame(ll_addr, function_base, module_base,
                                         frame.source_location, frame.function_name))
        return frames

    def step_targets(self, ll_addr, step_over):
        hl_addr = self._hl_address(ll_addr)
        if hl_addr is None:
            return None
        hl_targets = self.hl.step_targets(hl_addr, step_over)
        if hl_targets is None:
            return None
        return self._translate_all(hl_targets)
