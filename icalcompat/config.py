import json
import logging
import os

"""
Configuration file handling.  A configuration file is a JSON (or YAML)
object with one section per name, like::

    {
        "default": {"default_timezone": "Europe/Vienna"},
        "office": {"inherits": "default", "prodid": "-//Example Corp//Office//EN"}
    }

Recognized keys are ``default_timezone``, ``known_timezones`` (see
:meth:`icalcompat.timezones.TimezoneCatalog.from_config`) and
``prodid`` (to be passed as ``base_prodid`` to
:meth:`icalcompat.event.Event.to_ical`).
"""

log = logging.getLogger("icalcompat")


def config_section(config, section="default"):
    """
    Returns a configuration section, with the keys of the section it
    inherits from (recursively) filled in.
    """
    if not config:
        return {}
    if section in config and "inherits" in config[section]:
        ret = config_section(config, config[section]["inherits"])
    else:
        ret = {}
    if section in config:
        ret.update(config[section])
    ret.pop("inherits", None)
    return ret


def read_config(fn=None):
    """
    Reads a JSON or YAML configuration file.  If no file name is given,
    the default locations are searched.  Returns an empty dict (or None,
    when searching) if nothing usable was found.
    """
    if not fn:
        cfgdir = f"{os.environ.get('HOME', '/')}/.config"
        for config_file in (
            f"{cfgdir}/icalcompat/icalcompat.conf",
            f"{cfgdir}/icalcompat/icalcompat.yaml",
            f"{cfgdir}/icalcompat/icalcompat.json",
            "/etc/icalcompat.conf",
        ):
            cfg = read_config(config_file)
            if cfg:
                return cfg
        return None

    try:
        try:
            with open(fn, "rb") as config_file:
                return json.load(config_file)
        except json.decoder.JSONDecodeError:
            ## Late import.  yaml is an optional dependency.
            try:
                import yaml
            except ImportError:
                log.error(
                    f"config file {fn} exists but is not valid json, and pyyaml is not installed."
                )
                return {}
            try:
                with open(fn, "rb") as config_file:
                    return yaml.load(config_file, yaml.SafeLoader)
            except yaml.YAMLError:
                log.error(
                    f"config file {fn} exists but is neither valid json nor yaml.  Check the syntax."
                )

    except FileNotFoundError:
        log.info(f"no config file found at {fn}")
    except ValueError:
        log.error("error in config file.  It will be ignored", exc_info=True)
    return {}
