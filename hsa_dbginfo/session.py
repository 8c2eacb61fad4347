# (c) Copyright 2022 Aaron Kimball
#
# A Session owns the debug info loaded for one kernel: its scope trees and line mappings for one
# or two levels, the query store over them, the variable handles given to callers, and the
# configuration and logging used while doing all of that.

import os
import os.path
import struct
import traceback

from hsa_dbginfo.binary import KernelBinary
import hsa_dbginfo.dump as dump
from hsa_dbginfo.dwarf_parser import DebugInfoParseError, DebugLevel, parse_debug_info
from hsa_dbginfo.handles import HandleTable
from hsa_dbginfo.resolver import TwoLevelResolver
from hsa_dbginfo.scopes import DebugInfoInvariantError
import hsa_dbginfo.serialize as serialize
from hsa_dbginfo.store import LevelStore
import hsa_dbginfo.term as term
from hsa_dbginfo.term import MsgLevel

_LOCAL_CONF_FILENAME = os.path.expanduser("~/.hsa_dbginfo.conf")

# If set in the environment when a Session is created, that Session logs verbosely.
_LOGGING_ENV_VAR = 'HWDBG_DBGINFO_ENABLE_LOGGING'

_DEFAULT_HL_SECTION_PREFIX = '.hsahldebug_'
_DEFAULT_LL_SECTION = '.debug_.sc_elf'
_DEFAULT_SOURCE_SECTION = '.source'

_dbginfo_conf_keys = [
    "dbginfo.colors",
    "dbginfo.conf.formatversion",
    "dbginfo.hl.section_prefix",    # Name prefix of the section holding the nested HL ELF.
    "dbginfo.ll.section",           # Name of the section holding the LL ELF.
    "dbginfo.print_die.offset",     # Dump the DIE subtree at this offset while parsing.
    "dbginfo.source.section",       # Name of the HL ELF section holding HSAIL source text.
    "dbginfo.verbose",
]

# BRIG section header: uint64 byteCount, uint32 headerByteCount, uint32 nameLength, name...
_BRIG_SECTION_HEADER = struct.Struct('<QI')

_PARSE_ERRORS = (DebugInfoParseError, DebugInfoInvariantError)


def _silent(*args):
    """
        dummy method to turn verboseprint() calls to nothing
    """
    pass


class DebugInfoError(Exception):
    """ Debug info could not be loaded into a Session. """
    pass

class NoBinaryError(DebugInfoError):
    """ No kernel binary, or it is not an ELF image. """
    pass

class NoHighLevelBinaryError(DebugInfoError):
    """ The high-level (HSAIL/BRIG) debug ELF is missing. """
    pass

class NoLowLevelBinaryError(DebugInfoError):
    """ The low-level (ISA) debug ELF is missing. """
    pass

class HighLevelInfoError(DebugInfoError):
    """ The high-level debug info could not be parsed. """
    pass

class LowLevelInfoError(DebugInfoError):
    """ The low-level debug info could not be parsed. """
    pass


def _as_binary(data):
    if data is None:
        return None
    if isinstance(data, KernelBinary):
        return data
    return KernelBinary(data)


def hsail_text_from_section(section_bytes):
    """
    Extract HSAIL source text from the contents of a .source section. The text may be preceded
    by a BRIG section header, which is skipped if it is plausible.
    """
    data = bytes(section_bytes)
    if len(data) >= _BRIG_SECTION_HEADER.size:
        (byte_count, header_byte_count) = _BRIG_SECTION_HEADER.unpack_from(data, 0)
        if 0 < header_byte_count and header_byte_count < byte_count and byte_count <= len(data):
            data = data[header_byte_count:byte_count]

    nul = data.find(b'\x00')
    if nul >= 0:
        data = data[:nul]
    return data.decode('utf-8', errors='replace')


class Session(object):
    """
    Debug info for one kernel.

    Usage:
        session = Session(print_q)
        session.load_hsa_1_0(kernel_bytes)
        line = session.store().line_for_address(pc)
        ...
        session.close()

    @param print_q if not None, a queue.Queue of (text, MsgLevel) that receives log messages.
    @param force_config if not None, a dict of config values used instead of the config file.
    """

    def __init__(self, print_q=None, force_config=None):
        self._print_q = print_q
        self.verboseprint = _silent  # verboseprint() method is either _silent() or _verbose_print_all()

        self._init_config_from_file(force_config)
        if os.environ.get(_LOGGING_ENV_VAR):
            self.set_conf('dbginfo.verbose', True)

        self.variables = HandleTable()
        self._init_clear_state()

    def _init_clear_state(self):
        self._hl_store = None
        self._ll_store = None
        self._store = None
        self._hsail_source = None
        self._loaded = False

    def msg_q(self, color, *args):
        """
        Enqueue a msg for printing to the console. Adds the stringified message and color/priority
        level to the print queue. Discarded if this Session has no print queue.

        @param color either a term color string (term.COLOR_BOLD) or MsgLevel enum
        @param args a set of arguments to stringify and concatenate.
        """
        if self._print_q is None:
            return

        def _str_fn(x):
            if isinstance(x, str):
                return x
            else:
                return repr(x)

        msg_str = "".join(list(map(_str_fn, args)))
        self._print_q.put((msg_str, color))

    ###### Configuration

    def _set_conf_defaults(self, conf_map=None):
        """
        Populate conf_map with all our config keys, and initialize any default values.
        """
        if conf_map is None:
            conf_map = {}

        for k in _dbginfo_conf_keys:
            conf_map[k] = None

        conf_map["dbginfo.conf.formatversion"] = serialize.DBGINFO_CONF_FMT_VERSION
        conf_map["dbginfo.colors"] = True
        conf_map["dbginfo.verbose"] = False
        conf_map["dbginfo.hl.section_prefix"] = _DEFAULT_HL_SECTION_PREFIX
        conf_map["dbginfo.ll.section"] = _DEFAULT_LL_SECTION
        conf_map["dbginfo.source.section"] = _DEFAULT_SOURCE_SECTION

        return conf_map

    def _init_config_from_file(self, force_config=None):
        """
        If the user has a config file (see _LOCAL_CONF_FILENAME) then initialize self._config
        from that.
        """
        defaults = self._set_conf_defaults()
        if force_config is not None:
            # If given a forced input config, initialize our config from there.
            for (key, val) in force_config.items():
                defaults[key] = val

        if os.path.exists(_LOCAL_CONF_FILENAME) and force_config is None:
            new_conf = serialize.load_config_file(self._print_q, _LOCAL_CONF_FILENAME,
                                                  'config', defaults)
        else:
            new_conf = defaults

        self._config = new_conf
        self._config_verbose_print()

        if force_config is None:
            self.verboseprint("Loaded config from file: ", _LOCAL_CONF_FILENAME)
        else:
            self.verboseprint("Used programmatic configuration")
        self.verboseprint("Loaded configuration: ", self._config)

    def set_conf(self, key, val):
        """
        Set a key-value pair in the configuration map.
        Then process any triggers associated with that key.
        """
        if key not in _dbginfo_conf_keys:
            raise KeyError("Not a valid conf key: %s" % key)

        self._config[key] = val

        # Process triggers for specific keys
        if key == "dbginfo.verbose":
            self._config_verbose_print()

    def get_conf(self, key):
        if key not in _dbginfo_conf_keys:
            raise KeyError("Not a valid conf key: %s" % key)
        return self._config[key]

    def use_colors(self):
        """
        Return True if output printed on behalf of this Session should be colorized.
        """
        return bool(self._config['dbginfo.colors'])

    def get_conf_keys(self):
        """
        Return the set of valid configuration keys for use with set_conf().
        """
        return _dbginfo_conf_keys

    def _make_verbose_print_fn(self):
        """
        Return a 'verboseprint()' method that curries the self._print_q field.
        """

        def _verbose_print_all(*args):
            """
            Verbose printing method that lazily concatenates its arguments rather than requiring
            callers to compute an f'string that might get swallowed by _silent() if verbose printing is
            disabled.
            """
            self.msg_q(MsgLevel.DEBUG, term.format_verbose(*args))

        return _verbose_print_all

    def _config_verbose_print(self):
        if self._config['dbginfo.verbose']:
            self.verboseprint = self._make_verbose_print_fn()
        else:
            self.verboseprint = _silent

    ###### Loading

    def _parse(self, binary, level, err_cls):
        try:
            tree, lines = parse_debug_info(binary, level, self)
        except _PARSE_ERRORS as e:
            self._report_load_error(e)
            raise err_cls(str(e)) from e

        store = LevelStore(tree, lines, self.verboseprint)
        if self.get_conf('dbginfo.verbose'):
            for line in dump.format_scope_tree(tree):
                self.verboseprint(line)
            for line in dump.format_line_table(lines):
                self.verboseprint(line)
        return store

    def _report_load_error(self, e):
        self.msg_q(MsgLevel.ERR, f'Error while reading debug info: {e}')
        if self.get_conf("dbginfo.verbose"):
            # Also print stack trace details.
            tb_lines = traceback.extract_tb(e.__traceback__)
            self.verboseprint("".join(traceback.format_list(tb_lines)))

    def load_single_level(self, binary):
        """
        Load a kernel whose ELF holds one self-contained level of DWARF debug info.
        """
        binary = _as_binary(binary)
        if not binary:
            raise NoBinaryError('No kernel binary')
        if not binary.is_elf():
            raise NoBinaryError('Kernel binary is not an ELF image')

        self._init_clear_state()
        self.verboseprint('Loading single-level debug info (', len(binary), ' bytes)')
        self._hl_store = self._parse(binary, DebugLevel.SINGLE, HighLevelInfoError)
        self._store = self._hl_store
        self._loaded = True

    def load_two_levels(self, hl_binary, ll_binary):
        """
        Load high-level (HSAIL/BRIG) and low-level (ISA) debug ELF images, and link them.
        """
        hl_binary = _as_binary(hl_binary)
        ll_binary = _as_binary(ll_binary)
        if not hl_binary or not hl_binary.is_elf():
            raise NoHighLevelBinaryError('No high-level debug ELF')
        if not ll_binary or not ll_binary.is_elf():
            raise NoLowLevelBinaryError('No low-level debug ELF')

        hsail_source = self._hsail_source
        self._init_clear_state()
        self._hsail_source = hsail_source

        self.verboseprint('Loading high-level debug info (', len(hl_binary), ' bytes)')
        hl_store = self._parse(hl_binary, DebugLevel.HIGH, HighLevelInfoError)
        self.verboseprint('Loading low-level debug info (', len(ll_binary), ' bytes)')
        ll_store = self._parse(ll_binary, DebugLevel.LOW, LowLevelInfoError)

        self._hl_store = hl_store
        self._ll_store = ll_store
        self._store = TwoLevelResolver(hl_store, ll_store, verboseprint=self.verboseprint)
        self._loaded = True

    def load_hsa_1_0(self, binary):
        """
        Load an HSA 1.0 kernel container. The high-level debug ELF is nested in a section
        whose name starts with 'dbginfo.hl.section_prefix'; the low-level debug ELF is in
        the 'dbginfo.ll.section' section, or is the container itself.
        """
        binary = _as_binary(binary)
        if not binary:
            raise NoBinaryError('No kernel binary')
        if not binary.is_elf():
            raise NoBinaryError('Kernel binary is not an ELF image')

        prefix = self.get_conf('dbginfo.hl.section_prefix')
        hl_binary = None
        for name in binary.section_names():
            if name.startswith(prefix):
                self.verboseprint('High-level debug info in section ', name)
                hl_binary = binary.section_by_name(name)[0]
                break
        if not hl_binary:
            raise NoHighLevelBinaryError(f'No section named {prefix}*')

        source = hl_binary.section_by_name(self.get_conf('dbginfo.source.section'))
        self._hsail_source = hsail_text_from_section(source[0].data()) if source else None

        ll_section = binary.section_by_name(self.get_conf('dbginfo.ll.section'))
        if ll_section:
            ll_binary = ll_section[0]
        elif binary.has_section('.debug_info') and binary.has_section('.debug_line'):
            self.verboseprint('Using kernel container as low-level debug info')
            ll_binary = binary
        else:
            raise NoLowLevelBinaryError(
                f"No section {self.get_conf('dbginfo.ll.section')} and no DWARF in container")

        self.load_two_levels(hl_binary, ll_binary)

    ###### Accessors

    def is_loaded(self):
        return self._loaded

    def is_two_level(self):
        return self._ll_store is not None

    def store(self):
        """
        Return the query store: a LevelStore, or a TwoLevelResolver for two-level kernels.
        """
        return self._store

    def high_level_store(self):
        return self._hl_store

    def low_level_store(self):
        return self._ll_store

    def hsail_source(self):
        return self._hsail_source

    def first_file_name(self):
        """
        Return the first source file named in the (high-level) line table, or None.
        """
        if self._hl_store is None:
            return None
        return self._hl_store.lines.first_path

    def close(self):
        """
        Release every variable handle still held and forget the loaded debug info.
        """
        if len(self.variables):
            self.verboseprint('Releasing ', len(self.variables), ' unreleased variables')
        self.variables.release_all()
        self._init_clear_state()
