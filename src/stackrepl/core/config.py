"""
stackrepl configuration.

Options are read from INI files, later files overriding earlier ones:

    stackrepl/data/stackrepl.cfg.dist  defaults installed with the package
    /etc/stackrepl/stackrepl.cfg
    etc/stackrepl.cfg
    stackrepl.cfg
    $STACKREPL_CONFIG                  one extra file, when set

Any single option can also be set from the environment as
STACKREPL_<SECTION>_<OPTION>, dashes turned into underscores:

    STACKREPL_PLUGINS_AZURE_NATIVE=v1.6.0 stackrepl --stack dev --project demo
"""

from __future__ import annotations

import configparser
from os import environ
from os.path import abspath, dirname, exists, expanduser, isabs, join

from twisted.python import log

ENV_PREFIX = "STACKREPL"
CONFIG_ENV = "STACKREPL_CONFIG"

# shipped as package data, so it is found in a checkout and when installed
DEFAULTS_PATH = join(dirname(dirname(abspath(__file__))), "data", "stackrepl.cfg.dist")


def to_environ_key(section: str, option: str) -> str:
    return "_".join((ENV_PREFIX, section, option)).upper().replace("-", "_")


class EnvironmentConfigParser(configparser.ConfigParser):
    """
    ConfigParser where the environment has the last word on any option.
    Option names keep their case so that plugin names such as
    azure-native can be used as keys.
    """

    def optionxform(self, optionstr: str) -> str:
        return optionstr

    def has_option(self, section: str, option: str) -> bool:
        if to_environ_key(section, option) in environ:
            return True
        return super().has_option(section, option)

    def get(self, section: str, option: str, *, raw: bool = False, **kwargs) -> str:  # type: ignore
        key = to_environ_key(section, option)
        if key in environ:
            return environ[key]
        return super().get(section, option, raw=raw, **kwargs)

    def section_items(self, section: str) -> dict[str, str]:
        """
        Options of a section as a dict, environment overrides applied. A
        missing section is empty.
        """
        if not self.has_section(section):
            return {}
        return {option: self.get(section, option) for option in self.options(section)}

    def getpath(self, section: str, option: str, base: str = ".", fallback: str = ".") -> str:
        """
        A path option; relative paths are taken relative to C{base}.
        """
        path = expanduser(self.get(section, option, fallback=fallback))
        if isabs(path):
            return path
        return join(base, path)


def readConfigFile(cfgfile: list[str] | str) -> EnvironmentConfigParser:
    """
    Read config files and return the parser

    @param cfgfile: filename or list of filenames
    """
    parser = EnvironmentConfigParser(interpolation=configparser.ExtendedInterpolation())
    parser.read(cfgfile)
    return parser


def get_config_path() -> list[str]:
    """
    Existing configuration files, in the order they are applied
    """
    # src/stackrepl/core/config.py -> checkout root
    root = dirname(dirname(dirname(dirname(abspath(__file__)))))
    candidates = [
        DEFAULTS_PATH,
        "/etc/stackrepl/stackrepl.cfg",
        join(root, "etc", "stackrepl.cfg"),
        join(root, "stackrepl.cfg"),
    ]
    if environ.get(CONFIG_ENV):
        candidates.append(environ[CONFIG_ENV])

    found = [path for path in candidates if exists(path)]
    log.msg(
        eventid="stackrepl.config.read",
        files=found,
        format="Reading configuration from %(files)r",
    )
    return found


ReplConfig = readConfigFile(get_config_path())
