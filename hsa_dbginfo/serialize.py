# (c) Copyright 2022 Aaron Kimball

from hsa_dbginfo.term import MsgLevel

DBGINFO_CONF_FMT_VERSION = 1


def _warn(print_q, msg):
    if print_q is not None:
        print_q.put((msg, MsgLevel.WARN))


def load_config_file(print_q, filename, map_name='config', defaults=None):
    """
        Read a configuration file map.
        This is actually a python file that will be evaluated in a sterile environment.
        It should contain two variables afterward:
        - `formatversion` specifies this serialization version
        - `{map_name}` is a dict of k-v pairs.

        If `defaults` is a map, then its values populate anything omitted from the loaded map.
        Problems with the file are reported on print_q (if not None) and the defaults are used.

        TODO(aaron): This is insecure.
    """
    if defaults is None:
        defaults = {}
    new_conf = defaults.copy()

    # The loaded config will be a map named '{map_name}' within an otherwise-empty environment
    init_env = {}
    init_env[map_name] = {}

    try:
        with open(filename, "r") as f:
            conf_text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        _warn(print_q, f"Warning: cannot read config file '{filename}': {e}")
        return new_conf

    try:
        exec(conf_text, init_env, init_env)
    except Exception as e:
        # error parsing or executing the config file.
        _warn(print_q, f"Warning: error parsing config file '{filename}': {e}")
        init_env[map_name] = {}
        init_env['formatversion'] = DBGINFO_CONF_FMT_VERSION

    fmtver = init_env.get('formatversion')
    loaded_conf = init_env.get(map_name)
    if not isinstance(fmtver, int) or fmtver > DBGINFO_CONF_FMT_VERSION:
        _warn(print_q, f"Error: Cannot read config file '{filename}' with version {fmtver}")
        loaded_conf = {} # Disregard the unsupported configuration data.
    elif not isinstance(loaded_conf, dict):
        _warn(print_q, f"Error in format for config file '{filename}'")
        loaded_conf = {}

    # Merge loaded data on top of our default config.
    for (k, v) in loaded_conf.items():
        new_conf[k] = v

    return new_conf
