import ast
import logging
import os
import os.path
from configparser import RawConfigParser
from typing import Any, Dict, List, Optional, Tuple, cast

import yaml

try:
    from yaml import CSafeLoader as SafeLoader
except ImportError:
    from yaml import SafeLoader  # type: ignore

from yaml.error import YAMLError

from declauth.common.exception import DeclauthException

base_logger = logging.getLogger("declauth.config")

COMPONENTS = ("server", "authorization", "logging")


class ConfigError(DeclauthException):
    _msg_fmt = "Invalid configuration."


def environ_bool(env_name: str, default: bool) -> bool:
    val = os.getenv(env_name, "default").lower()
    if val in ["on", "true", "1"]:
        return True
    if val in ["off", "false", "0"]:
        return False
    if val == "default":
        return default
    raise ValueError(
        f"Environment variable {env_name} set to invalid value {val} (use either on/true/1 or off/false/0)"
    )


# In test mode, a missing configuration file is not reported
TEST_MODE = environ_bool("DECLAUTH_TEST", False)

# Base configuration file of each component, the first one found being used
CONFIG_FILES = {
    component: [f"/etc/declauth/{component}.conf", f"/usr/etc/declauth/{component}.conf"] for component in COMPONENTS
}

# Directories of snippets overriding options of the base configuration, applied in order
CONFIG_SNIPPETS_DIRS = {
    component: [f"/usr/etc/declauth/{component}.conf.d", f"/etc/declauth/{component}.conf.d"]
    for component in COMPONENTS
}

# Configuration file given through the environment, replacing both of the above
CONFIG_ENV = {component: os.environ.get(f"DECLAUTH_{component.upper()}_CONFIG", "") for component in COMPONENTS}

# Parsed configuration of each component, read on first access
_config: Optional[Dict[str, RawConfigParser]] = None


def _read_snippets(component: str, parser: RawConfigParser) -> None:
    for snippets_dir in CONFIG_SNIPPETS_DIRS.get(component, []):
        if not os.path.isdir(snippets_dir):
            continue

        snippets = sorted(
            os.path.join(snippets_dir, name)
            for name in os.listdir(snippets_dir)
            if os.path.isfile(os.path.join(snippets_dir, name))
        )
        applied = parser.read(snippets)

        for snippet in set(snippets) - set(applied):
            base_logger.error("Configuration snippet %s for %s could not be parsed", snippet, component)

        if applied:
            base_logger.info("Applied configuration snippets from %s", snippets_dir)


def _read_config(component: str) -> RawConfigParser:
    # RawConfigParser, so that the logging configuration is read without interpolation
    parser = RawConfigParser()
    env_path = CONFIG_ENV.get(component)

    if env_path:
        if os.path.isfile(env_path):
            base_logger.info("Reading configuration from %s", parser.read(env_path))
            return parser

        base_logger.info(
            "Configuration file %s for %s set through environment variable not found, "
            "falling back to installed configuration",
            env_path,
            component,
        )

    for path in CONFIG_FILES.get(component, []):
        if parser.read(path):
            base_logger.info("Reading configuration from %s", path)
            _read_snippets(component, parser)
            return parser

    if not TEST_MODE:
        base_logger.debug(
            "Config file not found in %s, using defaults for component %s", CONFIG_FILES[component], component
        )

    return parser


def get_config(component: str) -> RawConfigParser:
    """Find the configuration file to use for the given component and apply the
    overrides defined by configuration snippets.

    If a configuration file path is set through a DECLAUTH_*_CONFIG environment
    variable, that file is the only one read for the component. Otherwise the
    first file found in CONFIG_FILES is used as the base configuration and the
    snippets from the component's ".conf.d" directories are applied on top of it,
    in lexical order.

    A missing configuration file is not an error: every option read through the
    accessors below has a fallback, so the parser is simply left empty.

    :raises: :class:`ConfigError`: the component is not one of COMPONENTS
    """
    global _config

    if not component:
        raise ConfigError("No component provided to get_config")

    if component not in CONFIG_FILES:
        raise ConfigError(f"Invalid component '{component}'")

    if _config is None:
        _config = {}

    if component not in _config:
        _config[component] = _read_config(component)

    return _config[component]


def reset() -> None:
    """Drops every cached configuration so that the next access reads the files again"""
    global _config
    _config = None


def _lookup(component: str, option: str, section: Optional[str]) -> Tuple[str, Optional[str]]:
    """Returns the section to read ``option`` from and the value of the environment variable overriding it, if set.
    The variable is named ``DECLAUTH_<COMPONENT>[_<SECTION>]_<OPTION>``."""
    env_name = "_".join(part.upper() for part in ("DECLAUTH", component, section, option) if part)
    env_value = os.environ.get(env_name)

    if env_value is not None:
        where = f"section {section} of " if section else ""
        base_logger.info(
            'option "%s" in %s%s.conf was overriden by environment variable %s', option, where, component, env_name
        )

    return section or component, env_value


def getlist(
    component: str, option: str, section: Optional[str] = None, fallback: Optional[List[Any]] = None
) -> List[Any]:
    """Reads an option holding a Python list literal, e.g. ``admins = ['alice', 'bob']``

    :raises: :class:`ConfigError`: the option is missing (and no fallback is given) or is not a list
    """
    section, env_value = _lookup(component, option, section)
    read = env_value if env_value is not None else get_config(component).get(section, option, fallback="")
    read = read.strip('" ')

    if not read:
        if fallback is not None:
            return fallback
        raise ConfigError(f"Could not find option '{option}' in section '{section}' of component '{component}'")

    try:
        value = ast.literal_eval(read)
    except (ValueError, SyntaxError) as e:
        raise ConfigError(f"Option '{option}' in section '{section}' of component '{component}' is malformed") from e

    if not isinstance(value, list):
        raise ConfigError(f"Option '{option}' in section '{section}' of component '{component}' should be a list")

    return [i.strip() if isinstance(i, str) else i for i in value]


def get(component: str, option: str, section: Optional[str] = None, fallback: str = "") -> str:
    section, env_value = _lookup(component, option, section)

    if env_value is None:
        env_value = get_config(component).get(section, option, fallback=fallback)

    return env_value.strip('" ')


def getint(component: str, option: str, section: Optional[str] = None, fallback: int = -1) -> int:
    section, env_value = _lookup(component, option, section)

    if env_value is not None:
        return int(env_value)

    return get_config(component).getint(section, option, fallback=fallback)


def getboolean(component: str, option: str, section: Optional[str] = None, fallback: bool = False) -> bool:
    section, env_value = _lookup(component, option, section)

    if env_value is not None:
        return RawConfigParser.BOOLEAN_STATES.get(env_value.lower().strip('" '), fallback)

    return get_config(component).getboolean(section, option, fallback=fallback)


def getfloat(component: str, option: str, section: Optional[str] = None, fallback: float = -1.0) -> float:
    section, env_value = _lookup(component, option, section)

    if env_value is not None:
        return float(env_value)

    return get_config(component).getfloat(section, option, fallback=fallback)


def has_option(component: str, option: str, section: Optional[str] = None) -> bool:
    section, env_value = _lookup(component, option, section)
    return env_value is not None or get_config(component).has_option(section, option)


def load_yaml(path: str) -> Dict[Any, Any]:
    """Reads a YAML document which must contain a mapping at its top level (an empty document yields an empty dict)

    :raises: :class:`OSError`: the file cannot be read
    :raises: :class:`ValueError`: the file is not valid YAML or does not contain a mapping
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.load(f, Loader=SafeLoader)
        except YAMLError as err:
            raise ValueError(f"could not parse '{path}' as YAML: {err}") from err

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ValueError(f"YAML document in '{path}' does not contain a mapping")

    return cast(Dict[Any, Any], data)
