#!/usr/bin/env python3
# (c) Copyright 2022 Aaron Kimball

import unittest

from hsa_dbginfo.location import LocationRegister, VariableLocation
from hsa_dbginfo.scopes import AddressRange, DebugInfoInvariantError, LocatedRange, \
    ScopeKind, ScopeTree, VariableInfo
from dbg_testcase import *

def _var(name, reg=None):
    var = VariableInfo()
    var.name = name
    var.location = VariableLocation()
    if reg is not None:
        var.location.register_kind = LocationRegister.REGISTER
        var.location.register_number = reg
    return var


class TestScopeTree(unittest.TestCase):
    """
    Tree:
        cu [0, 0x100)
          func [0x10, 0x80)      a, b
            block [0x20, 0x40)   a
            inlined [0x50, 0x60) c
    """

    def __init__(self, methodName='runTest'):
        super().__init__(methodName)

    def setUp(self):
        tree = ScopeTree()
        self.cu = tree.add_scope(ScopeKind.COMPILATION_UNIT)
        self.cu.add_range(0, 0x100)
        self.func = tree.add_scope(ScopeKind.FUNCTION, self.cu.index)
        self.func.add_range(0x10, 0x80)
        self.func.name = 'func'
        self.block = tree.add_scope(ScopeKind.CODE_SCOPE, self.func.index)
        self.block.add_range(0x20, 0x40)
        self.inlined = tree.add_scope(ScopeKind.INLINED_FUNCTION, self.func.index)
        self.inlined.add_range(0x50, 0x60)
        self.inlined.inline_origin_name = 'helper'

        self.outer_a = _var('a', 1)
        self.func.variables = [self.outer_a, _var('b', 2)]
        self.inner_a = _var('a', 3)
        self.block.variables = [self.inner_a]
        self.inlined.variables = [_var('c', 4)]
        tree.compute_visible_variables()
        self.tree = tree

    def test_links(self):
        self.assertEqual(len(self.tree), 4)
        self.assertIs(self.tree.root(), self.cu)
        self.assertIs(self.tree.parent_of(self.block), self.func)
        self.assertIsNone(self.tree.parent_of(self.cu))
        self.assertEqual(self.tree.children_of(self.func), [self.block, self.inlined])
        self.assertEqual(self.tree.ancestors(self.block), [self.block, self.func, self.cu])

    def test_innermost_scope(self):
        self.assertIs(self.tree.innermost_scope(0x8), self.cu)
        self.assertIs(self.tree.innermost_scope(0x10), self.func)
        self.assertIs(self.tree.innermost_scope(0x3f), self.block)
        self.assertIs(self.tree.innermost_scope(0x40), self.func)
        self.assertIs(self.tree.innermost_scope(0x55), self.inlined)
        self.assertIsNone(self.tree.innermost_scope(0x100))

    def test_enclosing_function(self):
        self.assertIs(self.tree.enclosing_function(self.block), self.func)
        self.assertIs(self.tree.enclosing_function(self.inlined), self.inlined)
        self.assertIsNone(self.tree.enclosing_function(self.cu))
        self.assertEqual(self.inlined.function_name(), 'helper')
        self.assertEqual(self.func.function_name(), 'func')

    def test_shadowing(self):
        self.assertIs(self.block.visible['a'], self.inner_a)
        self.assertIs(self.func.visible['a'], self.outer_a)
        self.assertIs(self.inlined.visible['a'], self.outer_a)
        self.assertEqual(sorted(self.block.visible.keys()), ['a', 'b'])
        self.assertEqual(sorted(self.inlined.visible.keys()), ['a', 'b', 'c'])
        self.assertEqual(self.cu.visible, {})

    def test_breadth_first(self):
        order = [s.index for s in self.tree.iter_breadth_first()]
        self.assertEqual(order, [self.cu.index, self.func.index, self.block.index,
                                 self.inlined.index])

    def test_remove_last_scope(self):
        with self.assertRaises(DebugInfoInvariantError):
            self.tree.remove_last_scope(self.block)
        self.tree.remove_last_scope(self.inlined)
        self.assertEqual(len(self.tree), 3)
        self.assertEqual(self.func.children, [self.block.index])

    def test_ranges(self):
        scope = self.tree.add_scope(ScopeKind.CODE_SCOPE, self.func.index)
        scope.add_range(0x70, 0x78)
        scope.add_range(0x60, 0x68)
        self.assertEqual(scope.lowest_address(), 0x60)
        self.assertEqual(scope.highest_address(), 0x78)
        self.assertTrue(scope.contains(0x64))
        self.assertFalse(scope.contains(0x6c))
        self.assertEqual(AddressRange(1, 2), AddressRange(1, 2))
        self.assertLess(AddressRange(1, 2), AddressRange(1, 3))


class TestVariableInfo(unittest.TestCase):

    def __init__(self, methodName='runTest'):
        super().__init__(methodName)

    def _struct(self):
        var = _var('pos', 7)
        var.members = [_var('x', 7), _var('y', 7)]
        var.members[1].members = [_var('lo', 7), _var('hi', 7)]
        return var

    def test_constant_with_additional_locations(self):
        var = VariableInfo()
        var.name = 'k'
        var.const_value = b'\x01\x00'
        var.check_invariants()

        var.additional_locations = [LocatedRange(0, 4, VariableLocation())]
        with self.assertRaises(DebugInfoInvariantError):
            var.check_invariants()

    def test_non_constant_may_lack_additional_locations(self):
        # Having no additional locations does not make a variable constant.
        var = _var('v', 1)
        self.assertEqual(var.additional_locations, [])
        self.assertFalse(var.is_constant())
        var.check_invariants()

    def test_constant_with_location(self):
        var = _var('k', 1)
        var.const_value = b'\x01'
        with self.assertRaises(DebugInfoInvariantError):
            var.check_invariants()

    def test_at_pc(self):
        var = _var('v', 1)
        var.low_pc = 0x10
        var.high_pc = 0x20
        var.additional_locations = [LocatedRange(0x20, 0x30, _var('tmp', 2).location)]

        self.assertIs(var.at_pc(0x18), var)
        moved = var.at_pc(0x28)
        self.assertIsNot(moved, var)
        self.assertEqual(moved.location.register_number, 2)
        self.assertEqual((moved.low_pc, moved.high_pc), (0x20, 0x30))
        self.assertEqual(moved.additional_locations, [])
        self.assertEqual(var.location.register_number, 1)
        # Outside every range, the main location is reported.
        self.assertIs(var.at_pc(0x40), var)

    def test_members(self):
        var = self._struct()
        self.assertEqual(var.leaf_member_paths(), ['pos.x', 'pos.y.lo', 'pos.y.hi'])
        self.assertEqual(var.member_by_path('y.hi').name, 'hi')
        self.assertEqual(var.member_by_path(['y', 'lo']).name, 'lo')
        self.assertIsNone(var.member_by_path('z'))
        self.assertEqual([v.name for v in var.iter_tree()], ['pos', 'x', 'y', 'lo', 'hi'])

    def test_copy(self):
        var = self._struct()
        dup = var.copy()
        dup.members[1].members[0].location.offset = 8
        dup.location.register_number = 9
        self.assertEqual(var.members[1].members[0].location.offset, 0)
        self.assertEqual(var.location.register_number, 7)
        self.assertIsNot(dup.members, var.members)


if __name__ == "__main__":
    unittest.main(verbosity=2)
