# (c) Copyright 2022 Aaron Kimball
#
# Methods that pipe out to programs included in gnu binutils (c++filt).

import locale
import re
import subprocess

# undesirable suffixes on demangled names
_clone_regex = re.compile(r'\[clone \.[A-Za-z_]+.*\]$')

# Cache of names already run through c++filt; kernel names repeat across queries.
_demangled_names = {}


def demangle(name, hide_params=False):
    """
        Use c++filt in binutils to demangle a C++ name into a human-readable one.
        This is best-effort: if c++filt is not installed, the name is returned as-is.
    """
    if name is None:
        return None
    elif not name.startswith('_Z'):
        return name # Not an Itanium-mangled name.

    key = (name, hide_params)
    if key in _demangled_names:
        return _demangled_names[key]

    args = ['c++filt', name]
    if hide_params:
        args.append('-p')  # Suppress method arguments in output.
    try:
        pipe = subprocess.Popen(args, stdin=None, stdout=subprocess.PIPE,
                                encoding=locale.getpreferredencoding())
    except OSError:
        return name # No c++filt on this host.

    stdout, _ = pipe.communicate()
    demangled = stdout.split("\n")[0].strip() or name

    # Remove any '[clone .constprop.NN]', etc suffixes.
    demangled = _clone_regex.sub('', demangled)

    _demangled_names[key] = demangled
    return demangled
