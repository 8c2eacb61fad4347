# (c) Copyright 2022 Aaron Kimball
#
# Virtual call stack frames.

import hsa_dbginfo.binutils as binutils


class CallStackFrame(object):
    """
    One frame of a virtual call stack. Kernels are fully inlined, so a "call stack" is the chain
    of inlined functions containing some $PC; each level of inlining is reported as a frame.
    """

    def __init__(self, program_counter, function_base, module_base, source_location,
                 function_name):
        self.program_counter = program_counter  # $PC
        self.function_base = function_base      # lowest address of the function's scope
        self.module_base = module_base          # lowest address of the compile unit
        self.source_location = source_location  # SourceLine, or None
        self.function_name = function_name

    def demangled(self):
        return binutils.demangle(self.function_name) or '???'

    def __eq__(self, other):
        if not isinstance(other, CallStackFrame):
            return False
        return (self.program_counter, self.function_base, self.module_base,
                self.source_location, self.function_name) == \
               (other.program_counter, other.function_base, other.module_base,
                other.source_location, other.function_name)

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash((self.program_counter, self.function_base, self.module_base,
                     self.source_location, self.function_name))

    def __repr__(self):
        out = f'{self.program_counter:04x}: {self.demangled()}'
        if self.source_location:
            out += f'  ({self.source_location})'
        return out
