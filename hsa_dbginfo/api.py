# (c) Copyright 2022 Aaron Kimball
#
# Public interface used by a debugger agent: plain functions over a Session that report
# success or failure as a DbgInfoErr code.
#
# Sized outputs follow one convention. An array query takes an optional caller-owned list
# 'buf'; with buf=None only the element count is returned. If buf is too short,
# BUFFERTOOSMALL is returned along with the count needed. Otherwise the first 'count' slots
# are filled and the rest set to None. String queries take a bytearray in the same manner and
# write a NUL-terminated UTF-8 string; their count includes the NUL.

import collections
import posixpath

from hsa_dbginfo.handles import VariableHandle
from hsa_dbginfo.lines import SourceLine
from hsa_dbginfo.session import DebugInfoError, HighLevelInfoError, LowLevelInfoError, \
    NoBinaryError, NoHighLevelBinaryError, NoLowLevelBinaryError, Session
from hsa_dbginfo.stack import CallStackFrame
from hsa_dbginfo.term import MsgLevel


class DbgInfoErr(object):
    """
    Result codes for the functions in this module.
    """
    SUCCESS             = 0
    PARAMETER           = 1     # Missing or invalid argument.
    NOBINARY            = 2
    NOHLBINARY          = 3
    NOLLBINARY          = 4
    HLINFO              = 5     # High-level (or single-level) debug info could not be parsed.
    LLINFO              = 6     # Low-level debug info could not be parsed.
    NOTFOUND            = 7
    BUFFERTOOSMALL      = 8
    VARIABLEVALUETYPE   = 9     # Asked a constant for its location, or vice versa.
    OUTOFMEMORY         = 10
    NOSOURCE            = 11
    UNEXPECTED          = 12

    _messages = {
        SUCCESS: 'Success',
        PARAMETER: 'Invalid parameter',
        NOBINARY: 'No binary or binary is not an ELF image',
        NOHLBINARY: 'No high-level debug binary',
        NOLLBINARY: 'No low-level debug binary',
        HLINFO: 'Could not read high-level debug info',
        LLINFO: 'Could not read low-level debug info',
        NOTFOUND: 'Not found',
        BUFFERTOOSMALL: 'Output buffer too small',
        VARIABLEVALUETYPE: 'Wrong kind of variable value',
        OUTOFMEMORY: 'Out of memory',
        NOSOURCE: 'No HSAIL source in binary',
        UNEXPECTED: 'Unexpected error',
    }

    @staticmethod
    def get_message(err):
        return DbgInfoErr._messages.get(err, f'Unknown error code {err}')


_LOAD_ERROR_CODES = {
    NoBinaryError: DbgInfoErr.NOBINARY,
    NoHighLevelBinaryError: DbgInfoErr.NOHLBINARY,
    NoLowLevelBinaryError: DbgInfoErr.NOLLBINARY,
    HighLevelInfoError: DbgInfoErr.HLINFO,
    LowLevelInfoError: DbgInfoErr.LLINFO,
}

# Fields reported by variable_data().
VariableData = collections.namedtuple('VariableData',
    ['name_len', 'type_name_len', 'size', 'encoding', 'is_constant', 'is_output'])


###### Output helpers

def _check_buf(buf):
    """ An empty buffer is an error; use None to ask for the length only. """
    return buf is None or len(buf) > 0


def _output_array(values, buf):
    count = len(values)
    if buf is None:
        return DbgInfoErr.SUCCESS, count
    if not len(buf):
        return DbgInfoErr.PARAMETER, 0
    if len(buf) < count:
        return DbgInfoErr.BUFFERTOOSMALL, count

    for i in range(len(buf)):
        buf[i] = values[i] if i < count else None
    return DbgInfoErr.SUCCESS, count


def _output_string(text, buf):
    encoded = (text or '').encode('utf-8') + b'\x00'
    count = len(encoded)
    if buf is None:
        return DbgInfoErr.SUCCESS, count
    if not len(buf):
        return DbgInfoErr.PARAMETER, 0
    if len(buf) < count:
        return DbgInfoErr.BUFFERTOOSMALL, count

    buf[0:count] = encoded
    return DbgInfoErr.SUCCESS, count


def _valid_session(dbg):
    return isinstance(dbg, Session) and dbg.is_loaded()


def _resolve_var(var):
    if not isinstance(var, VariableHandle):
        return None
    return var.get()


###### Construction and release

def _load(dbg, load_fn, *args):
    """
    Call a Session load method; return the DbgInfoErr for its outcome.
    """
    try:
        load_fn(*args)
    except DebugInfoError as e:
        dbg.msg_q(MsgLevel.ERR, f'Could not load debug info: {e}')
        return _LOAD_ERROR_CODES.get(type(e), DbgInfoErr.UNEXPECTED)
    except MemoryError:
        dbg.msg_q(MsgLevel.ERR, 'Out of memory while loading debug info')
        return DbgInfoErr.OUTOFMEMORY
    return DbgInfoErr.SUCCESS


def _init(load_method_name, args, print_q, force_config):
    dbg = Session(print_q, force_config)
    err = _load(dbg, getattr(dbg, load_method_name), *args)
    if err != DbgInfoErr.SUCCESS:
        dbg.close()
        return None, err
    return dbg, DbgInfoErr.SUCCESS


def init_and_identify_binary(data, print_q=None, force_config=None):
    """
    Load a kernel binary of either kind: an HSA 1.0 two-level container if it looks like one,
    single-level debug info otherwise.
    @return (Session, DbgInfoErr)
    """
    if not data:
        return None, DbgInfoErr.NOBINARY

    dbg = Session(print_q, force_config)
    try:
        dbg.load_hsa_1_0(data)
        return dbg, DbgInfoErr.SUCCESS
    except DebugInfoError as e:
        dbg.verboseprint('Not loadable as a two-level kernel (', str(e), '); trying single-level')

    err = _load(dbg, dbg.load_single_level, data)
    if err != DbgInfoErr.SUCCESS:
        dbg.close()
        return None, err
    return dbg, DbgInfoErr.SUCCESS


def init_with_single_level_binary(data, print_q=None, force_config=None):
    """ @return (Session, DbgInfoErr) """
    if not data:
        return None, DbgInfoErr.NOBINARY
    return _init('load_single_level', (data,), print_q, force_config)


def init_with_hsa_1_0_binary(data, print_q=None, force_config=None):
    """ @return (Session, DbgInfoErr) """
    if not data:
        return None, DbgInfoErr.NOBINARY
    return _init('load_hsa_1_0', (data,), print_q, force_config)


def init_with_two_binaries(hl_data, ll_data, print_q=None, force_config=None):
    """ @return (Session, DbgInfoErr) """
    if not hl_data:
        return None, DbgInfoErr.NOHLBINARY
    if not ll_data:
        return None, DbgInfoErr.NOLLBINARY
    return _init('load_two_levels', (hl_data, ll_data), print_q, force_config)


def release_debug_info(dbg):
    if isinstance(dbg, Session):
        dbg.close()


def release_code_locations(locs):
    """ SourceLines are ordinary objects; this only clears the caller's list. """
    if locs is None:
        return
    for i in range(len(locs)):
        locs[i] = None


def release_frame_contexts(frames):
    if frames is None:
        return
    for i in range(len(frames)):
        frames[i] = None


def release_variables(dbg, variables):
    """
    Release variable handles from variable() or frame_variables(). Member handles from
    variable_members() are left alone.
    """
    if variables is None or not isinstance(dbg, Session):
        return
    for i in range(len(variables)):
        if variables[i] is not None:
            dbg.variables.release(variables[i])
        variables[i] = None


def enable_logging(dbg):
    if isinstance(dbg, Session):
        dbg.set_conf('dbginfo.verbose', True)


def disable_logging(dbg):
    if isinstance(dbg, Session):
        dbg.set_conf('dbginfo.verbose', False)


###### Source text and code locations

def get_hsail_text(dbg):
    """ @return (DbgInfoErr, str) """
    if not _valid_session(dbg):
        return DbgInfoErr.PARAMETER, None
    text = dbg.hsail_source()
    if not text:
        return DbgInfoErr.NOSOURCE, None
    return DbgInfoErr.SUCCESS, text


def make_code_location(path, line):
    return SourceLine(path or '', line)


def code_location_details(loc, buf=None):
    """
    @param buf if not None, a bytearray that receives the file path.
    @return (DbgInfoErr, line number, path length)
    """
    if not isinstance(loc, SourceLine) or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0, 0
    (err, path_len) = _output_string(loc.path, buf)
    if err != DbgInfoErr.SUCCESS:
        return err, 0, path_len
    return DbgInfoErr.SUCCESS, loc.line, path_len


def frame_context_details(frame, buf=None):
    """
    @param buf if not None, a bytearray that receives the function name.
    @return (DbgInfoErr, pc, function base, module base, SourceLine, function name length)
    """
    if not isinstance(frame, CallStackFrame) or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0, 0, 0, None, 0
    (err, name_len) = _output_string(frame.function_name, buf)
    if err != DbgInfoErr.SUCCESS:
        return err, 0, 0, 0, None, name_len

    src = frame.source_location
    loc = make_code_location(src.path, src.line) if src is not None else SourceLine()
    return (DbgInfoErr.SUCCESS, frame.program_counter, frame.function_base, frame.module_base,
            loc, name_len)


###### Lines and addresses

def addr_to_line(dbg, addr):
    """ @return (DbgInfoErr, SourceLine) """
    if not _valid_session(dbg):
        return DbgInfoErr.PARAMETER, None
    line = dbg.store().line_for_address(addr)
    if line is None:
        return DbgInfoErr.NOTFOUND, None
    return DbgInfoErr.SUCCESS, make_code_location(line.path, line.line)


def line_to_addrs(dbg, loc, buf=None):
    """
    Fill buf with the addresses generated for a source line. For two-level kernels, this is the
    first low-level address of each high-level address of the line.
    @return (DbgInfoErr, count)
    """
    if not _valid_session(dbg) or not isinstance(loc, SourceLine) or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0
    addrs = dbg.store().addresses_for_line(loc, first_only=dbg.is_two_level())
    if addrs is None:
        return DbgInfoErr.NOTFOUND, 0
    return _output_array(addrs, buf)


def nearest_mapped_line(dbg, loc):
    """
    Return the mapped line closest to loc. A loc without a path refers to the first file of
    the line table; a path without a directory matches any mapped file of that name.
    @return (DbgInfoErr, SourceLine)
    """
    if not _valid_session(dbg) or not isinstance(loc, SourceLine):
        return DbgInfoErr.PARAMETER, None

    store = dbg.store()
    path = loc.path
    if not path:
        path = dbg.first_file_name() or ''
    else:
        for key in store.mapped_lines():
            if key.path and posixpath.basename(key.path) == path:
                path = key.path
                break

    line = store.nearest_line(SourceLine(path, loc.line))
    if line is None:
        return DbgInfoErr.NOTFOUND, None
    return DbgInfoErr.SUCCESS, make_code_location(line.path, line.line)


def nearest_mapped_addr(dbg, addr):
    """ @return (DbgInfoErr, address) """
    if not _valid_session(dbg):
        return DbgInfoErr.PARAMETER, 0
    found = dbg.store().nearest_address(addr)
    if found is None:
        return DbgInfoErr.NOTFOUND, 0
    return DbgInfoErr.SUCCESS, found


def first_file_name(dbg, buf=None):
    """ @return (DbgInfoErr, path length) """
    if not _valid_session(dbg) or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0
    path = dbg.first_file_name()
    if not path:
        return DbgInfoErr.NOTFOUND, 0
    return _output_string(path, buf)


def all_mapped_addrs(dbg, buf=None):
    """ @return (DbgInfoErr, count) """
    if not _valid_session(dbg) or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0
    addrs = dbg.store().mapped_addresses()
    if not len(addrs):
        return DbgInfoErr.NOTFOUND, 0
    return _output_array(addrs, buf)


def addr_call_stack(dbg, addr, buf=None):
    """
    Fill buf with the CallStackFrames of the virtual (inlined) call stack at addr.
    @return (DbgInfoErr, count)
    """
    if not _valid_session(dbg) or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0
    frames = dbg.store().virtual_call_stack(addr)
    if frames is None:
        return DbgInfoErr.NOTFOUND, 0
    return _output_array(frames, buf)


def step_addresses(dbg, addr, step_out, buf=None):
    """ @return (DbgInfoErr, count) """
    if not _valid_session(dbg) or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0
    addrs = dbg.store().step_targets(addr, not step_out)
    if addrs is None:
        return DbgInfoErr.NOTFOUND, 0
    return _output_array(addrs, buf)


###### Variables

def _variable_from(dbg, store, addr, name):
    if store is None or not name:
        return None, DbgInfoErr.PARAMETER
    var = store.variable(addr, name)
    if var is None:
        return None, DbgInfoErr.NOTFOUND
    return dbg.variables.add(var.copy()), DbgInfoErr.SUCCESS


def variable(dbg, addr, current_scope_only, name):
    """
    Look up a variable (or dotted struct member) by name, as visible from addr. The returned
    handle must be released with release_variables().

    current_scope_only is accepted for interface compatibility; every visible variable is
    searched.
    @return (VariableHandle, DbgInfoErr)
    """
    if not _valid_session(dbg):
        return None, DbgInfoErr.PARAMETER
    return _variable_from(dbg, dbg.store(), addr, name)


def low_level_variable(dbg, addr, current_scope_only, name):
    """
    As variable(), but searches the low-level (ISA) debug info of a two-level kernel.
    @return (VariableHandle, DbgInfoErr)
    """
    if not _valid_session(dbg):
        return None, DbgInfoErr.PARAMETER
    if not dbg.is_two_level():
        return None, DbgInfoErr.NOLLBINARY
    return _variable_from(dbg, dbg.low_level_store(), addr, name)


def frame_variables(dbg, addr, stack_depth, leaf_members, buf=None):
    """
    Fill buf with handles to the variables of a frame of the virtual call stack at addr.
    @return (DbgInfoErr, count)
    """
    if not _valid_session(dbg) or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0
    names = dbg.store().variables_in_frame(addr, stack_depth, leaf_members)
    if names is None:
        return DbgInfoErr.NOTFOUND, 0

    count = len(names)
    if buf is None or len(buf) < count:
        return _output_array(names, buf)

    handles = []
    for name in names:
        (handle, err) = variable(dbg, addr, False, name)
        if err != DbgInfoErr.SUCCESS:
            release_variables(dbg, handles)
            if err == DbgInfoErr.NOTFOUND:
                err = DbgInfoErr.UNEXPECTED # Names listed for the frame must resolve.
            return err, 0
        handles.append(handle)
    return _output_array(handles, buf)


def variable_data(var, name_buf=None, type_name_buf=None):
    """
    @param name_buf if not None, a bytearray that receives the variable name.
    @param type_name_buf if not None, a bytearray that receives the type name.
    @return (DbgInfoErr, VariableData)
    """
    info = _resolve_var(var)
    if info is None or not _check_buf(name_buf) or not _check_buf(type_name_buf):
        return DbgInfoErr.PARAMETER, None

    (err, name_len) = _output_string(info.name, name_buf)
    if err == DbgInfoErr.SUCCESS:
        (err, type_name_len) = _output_string(info.type_name, type_name_buf)
    else:
        type_name_len = len((info.type_name or '').encode('utf-8')) + 1

    data = VariableData(name_len, type_name_len, info.size, info.encoding, info.is_constant(),
                        info.is_param and info.is_out_param)
    return err, data


def variable_location(var):
    """ @return (DbgInfoErr, VariableLocation) """
    info = _resolve_var(var)
    if info is None:
        return DbgInfoErr.PARAMETER, None
    if info.is_constant():
        return DbgInfoErr.VARIABLEVALUETYPE, None
    if info.location is None:
        return DbgInfoErr.NOTFOUND, None
    return DbgInfoErr.SUCCESS, info.location.copy()


def variable_const_value(var, buf=None):
    """
    @param buf if not None, a bytearray that receives the constant's value bytes.
    @return (DbgInfoErr, size)
    """
    info = _resolve_var(var)
    if info is None or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0
    if not info.is_constant():
        return DbgInfoErr.VARIABLEVALUETYPE, 0

    value = info.const_value
    size = len(value)
    if buf is not None:
        if len(buf) < size:
            return DbgInfoErr.BUFFERTOOSMALL, size
        buf[0:size] = value
    return DbgInfoErr.SUCCESS, size


def variable_indirection(var):
    """ @return (DbgInfoErr, Indirection, IndirectionDetail) """
    info = _resolve_var(var)
    if info is None:
        return DbgInfoErr.PARAMETER, 0, 0
    return DbgInfoErr.SUCCESS, info.indirection, info.indirection_detail


def variable_members(var, buf=None):
    """
    Fill buf with handles to the members of a struct variable. These are borrowed from var;
    they are valid while var is, and need not be released.
    @return (DbgInfoErr, count)
    """
    info = _resolve_var(var)
    if info is None or not _check_buf(buf):
        return DbgInfoErr.PARAMETER, 0
    members = [var.member(i) for i in range(len(info.members))]
    return _output_array(members, buf)


def variable_range(var):
    """ @return (DbgInfoErr, low pc, high pc) """
    info = _resolve_var(var)
    if info is None:
        return DbgInfoErr.PARAMETER, 0, 0
    return DbgInfoErr.SUCCESS, info.low_pc, info.high_pc
