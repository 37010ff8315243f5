#!/usr/bin/env python3

"""
ohllama_config.py

Locates ~/.ohllama, creates the default config.toml and systems/default.md on
first run, and loads the configuration (config.toml, then OHLLAMA_* variables
from the environment or ~/.ohllama/.env).
"""
import os
import sys
import logging
import tomllib
from collections import namedtuple
from pathlib import Path

import tomli_w
from dotenv import load_dotenv

USER_HOME_ENV = "HOME"
OHLLAMA_DIR = ".ohllama"
SYSTEMS_DIR = "systems"
CONFIG_FILE = "config.toml"
ENV_FILE = ".env"
DEFAULT_SYSTEM_FILE = "default.md"

DEFAULT_URL = "http://localhost"
DEFAULT_PORT = 11434
DEFAULT_MODEL = "dolphin-llama3"
DEFAULT_TIMEOUT = 300.0

DEFAULT_SYSTEM_PROMPT = (
    "You are an AI working with cli input, an expert at processing instructions and command output.\n"
    "Your return output in format that is easily processable by other tools.\n"
    "You return no additional comments or remarks.\n"
    "Just return the output of what you were asked to do."
)

Paths = namedtuple("Paths", ["base", "config", "systems", "default_system", "env"])
Config = namedtuple("Config", ["url", "port", "model", "timeout"])


class ConfigError(Exception):
    """Environment, config file or first-run setup problem the user has to fix."""


def resolve_paths(environ=None):
    environ = os.environ if environ is None else environ
    home = environ.get(USER_HOME_ENV)
    if not home:
        raise ConfigError(f"Missing ${USER_HOME_ENV} env.")
    base = Path(home) / OHLLAMA_DIR
    systems = base / SYSTEMS_DIR
    return Paths(
        base=base,
        config=base / CONFIG_FILE,
        systems=systems,
        default_system=systems / DEFAULT_SYSTEM_FILE,
        env=base / ENV_FILE,
    )


def default_config_text():
    return tomli_w.dumps({"url": DEFAULT_URL, "port": DEFAULT_PORT, "model": DEFAULT_MODEL})


def _create_once(path, text):
    # "x" fails if the file exists, so a concurrent run or a user edit is never clobbered
    try:
        with open(path, 'x', encoding='utf-8') as f:
            f.write(text)
    except FileExistsError:
        return False
    logging.debug(f"Created {path}")
    return True


def setup(paths):
    """Create the config dir, config.toml and systems/default.md if any is missing.

    Safe to call on every run: existing files are left untouched. Returns True
    when something had to be created.
    """
    if paths.base.is_dir() and paths.config.is_file() and paths.default_system.is_file():
        return False

    try:
        paths.systems.mkdir(parents=True, exist_ok=True)
        created_config = _create_once(paths.config, default_config_text())
        created_system = _create_once(paths.default_system, DEFAULT_SYSTEM_PROMPT)
    except OSError as e:
        raise ConfigError(f"Failed creating ohllama files in {paths.base}: {e}") from e
    return created_config or created_system


def _check_str(data, key, default):
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Config key '{key}' must be a non-empty string, got {value!r}")
    return value


def _check_port(value, source):
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ConfigError(f"{source} must be an integer, got {value!r}") from None
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 65535:
        raise ConfigError(f"{source} must be a port number between 0 and 65535, got {value!r}")
    return value


def _check_timeout(value, source):
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ConfigError(f"{source} must be a number of seconds, got {value!r}") from None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{source} must be a positive number of seconds, got {value!r}")
    return float(value)


def parse_config(text, source=CONFIG_FILE):
    """Parse config.toml text into a Config, filling in defaults for missing keys."""
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed parsing TOML config {source}: {e}") from e

    return Config(
        url=_check_str(data, "url", DEFAULT_URL),
        port=_check_port(data.get("port", DEFAULT_PORT), "Config key 'port'"),
        model=_check_str(data, "model", DEFAULT_MODEL),
        timeout=_check_timeout(data.get("timeout", DEFAULT_TIMEOUT), "Config key 'timeout'"),
    )


def apply_env_overrides(config, environ=None):
    environ = os.environ if environ is None else environ
    overrides = {}
    if environ.get("OHLLAMA_URL"):
        overrides["url"] = environ["OHLLAMA_URL"]
    if environ.get("OHLLAMA_PORT"):
        overrides["port"] = _check_port(environ["OHLLAMA_PORT"], "OHLLAMA_PORT")
    if environ.get("OHLLAMA_MODEL"):
        overrides["model"] = environ["OHLLAMA_MODEL"]
    if environ.get("OHLLAMA_TIMEOUT"):
        overrides["timeout"] = _check_timeout(environ["OHLLAMA_TIMEOUT"], "OHLLAMA_TIMEOUT")
    if overrides:
        logging.debug(f"Environment overrides: {', '.join(sorted(overrides))}")
    return config._replace(**overrides)


def load_config(paths, environ=None):
    """Read config.toml and apply OHLLAMA_* overrides.

    ~/.ohllama/.env is loaded into the process environment first; variables
    already set in the shell win over the file.
    """
    try:
        text = paths.config.read_text(encoding='utf-8')
    except OSError as e:
        raise ConfigError(f"Failed reading config file {paths.config}: {e}") from e

    config = parse_config(text, source=str(paths.config))
    if environ is None:
        if paths.env.is_file():
            load_dotenv(dotenv_path=paths.env, override=False)
        environ = os.environ
    return apply_env_overrides(config, environ)


def main():
    # Print the resolved configuration, handy for checking overrides
    try:
        paths = resolve_paths()
        setup(paths)
        config = load_config(paths)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Config dir: {paths.base}")
    for key, value in config._asdict().items():
        print(f"{key} = {value}")


if __name__ == "__main__":
    main()
