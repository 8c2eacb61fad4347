# (c) Copyright 2022 Aaron Kimball
#
# Queries over the scope tree and line mapping of one debug level.

from hsa_dbginfo.location import LocationRegister
from hsa_dbginfo.scopes import ScopeKind
from hsa_dbginfo.stack import CallStackFrame


class LevelStore(object):
    """
    Answers address, line, variable and call stack queries for one level of debug info.

    Every query returns None when it finds nothing.
    """

    def __init__(self, tree, lines, verboseprint=None):
        self.tree = tree
        self.lines = lines
        self._verboseprint = verboseprint
        self._step_cache = {}

    def _vprint(self, *args):
        if self._verboseprint:
            self._verboseprint(*args)

    ###### Lines and addresses

    def line_for_address(self, addr):
        """
        Return the line key for the instruction at addr, or None if addr is outside the
        compile unit.
        """
        root = self.tree.root()
        if root is None or not root.contains(addr):
            return None
        return self.lines.line_for_address(addr)

    def addresses_for_line(self, key, high_level_only=False, first_only=False):
        """
        Return the addresses generated for the line key, lowest first.

        @param high_level_only only meaningful for a two-level resolver.
        @param first_only if True, return only the lowest address.
        """
        addrs = self.lines.addresses_for_line(key)
        if not len(addrs):
            return None
        if first_only:
            return addrs[:1]
        return addrs

    def nearest_line(self, key):
        return self.lines.nearest_line(key)

    def nearest_address(self, addr):
        return self.lines.nearest_address(addr)

    def mapped_addresses(self):
        return self.lines.mapped_addresses()

    def mapped_lines(self):
        return self.lines.mapped_lines()

    ###### Variables

    def variable(self, addr, name):
        """
        Look up a variable by name, as seen from the code at addr. A dotted name (e.g. 'pos.x')
        names a struct member.
        """
        scope = self.tree.innermost_scope(addr)
        if scope is None or not name:
            return None

        parts = name.split('.')
        var = scope.visible.get(parts[0])
        if var is None:
            return None
        if len(parts) > 1:
            var = var.member_by_path(parts[1:])
            if var is None:
                return None
        return var.at_pc(addr)

    def matching_variable(self, addr, predicate):
        """
        Return the first variable or member visible at addr for which predicate(var) is True.
        """
        scope = self.tree.innermost_scope(addr)
        if scope is None:
            return None

        for top in scope.visible.values():
            for var in top.iter_tree():
                if predicate(var):
                    return var.at_pc(addr)
        return None

    def _function_scopes(self, scope):
        return [s for s in self.tree.ancestors(scope) if s.kind in ScopeKind.FUNCTION_KINDS]

    def variables_in_frame(self, addr, stack_depth, leaf_members_only):
        """
        Return the names of the variables visible in a frame of the virtual call stack at addr.

        @param stack_depth 0 for the innermost frame; k for the code that called into the
            (k-1)'th inlined function, counting outward.
        @param leaf_members_only if True, struct variables are replaced by the dotted names of
            their leaf members.
        """
        scope = self.tree.innermost_scope(addr)
        if scope is None:
            return None

        if stack_depth > 0:
            funcs = self._function_scopes(scope)
            if stack_depth >= len(funcs):
                return None
            scope = self.tree.parent_of(funcs[stack_depth - 1])
            if scope is None:
                return None

        names = []
        for var in scope.visible.values():
            if leaf_members_only:
                names.extend(var.leaf_member_paths())
            else:
                names.append(var.name)
        return names

    def variable_register_numbers(self):
        """
        Return the register numbers that hold variables or frame bases anywhere in the tree.
        """
        regs = []

        def _add(loc):
            if loc is not None and loc.register_kind == LocationRegister.REGISTER and \
                    loc.register_number not in regs:
                regs.append(loc.register_number)

        for scope in self.tree.iter_breadth_first():
            _add(scope.frame_base)
            for top in scope.variables:
                for var in top.iter_tree():
                    if var.is_constant():
                        continue
                    _add(var.location)
                    for extra in var.additional_locations:
                        _add(extra.location)
        return regs

    ###### Call stack & stepping

    def virtual_call_stack(self, addr):
        """
        Return the chain of (inlined) functions containing addr as a list of CallStackFrame,
        outermost first.

        The outermost real function reports the line at addr; each inlined function
        reports the place it was called from.
        """
        scope = self.tree.innermost_scope(addr)
        if scope is None:
            return None

        funcs = self._function_scopes(scope)
        if not len(funcs):
            return None

        module_base = self.tree.root().lowest_address()
        frames = []
        for func in reversed(funcs):
            if func.kind == ScopeKind.INLINED_FUNCTION:
                source_location = func.call_site
            else:
                source_location = self.line_for_address(addr)
            frames.append(CallStackFrame(addr, func.lowest_address(), module_base,
                                         source_location, func.function_name()))
        return frames

    def step_targets(self, addr, step_over):
        """
        Return the addresses where execution may next stop when stepping from addr.

        @param step_over if True, the addresses of other lines within the current function,
            not counting inlined calls it makes. If False (step out), the addresses of the
            calling function that lie outside the current one.
        """
        scope = self.tree.innermost_scope(addr)
        if scope is None:
            return None
        func = self.tree.enclosing_function(scope)
        if func is None:
            return None

        line = self.line_for_address(addr)
        key = (func.index, line, step_over)
        if key in self._step_cache:
            return self._step_cache[key]

        targets = []
        if step_over:
            for a in self.lines.mapped_addresses():
                if not func.contains(a):
                    continue
                if self.tree.enclosing_function(self.tree.innermost_scope(a)) is not func:
                    continue # Inside a nested inlined call.
                if self.lines.line_for_address(a) != line:
                    targets.append(a)
        else:
            parent = self.tree.parent_of(func)
            caller = self.tree.enclosing_function(parent) if parent is not None else None
            if caller is not None:
                targets = [a for a in self.lines.mapped_addresses()
                           if caller.contains(a) and not func.contains(a)]

        result = targets if len(targets) else None
        self._vprint('Step targets from ', addr, ' (over=', step_over, '): ', result)
        self._step_cache[key] = result
        return result
