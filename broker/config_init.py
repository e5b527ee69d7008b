from configparser import ConfigParser
import os

from broker.rabbit_wrapper import ConnectionConfig


def read_config_file(config_file):
    """Environment variables first, then the config file."""
    config = ConfigParser(os.environ, interpolation=None)
    # If the config file does not exist the parser is left untouched
    config.read(config_file)
    return config


def setting(config, section, key, default=None):
    """Return ``$KEY`` if set, else ``[section] KEY``, else *default*.

    A missing key without a default raises ``KeyError``.
    """
    value = os.getenv(key)
    if value is not None:
        return value
    if config.has_option(section, key):
        return config[section][key]
    if default is not None:
        return default
    raise KeyError(key)


def optional_setting(config, section, key):
    """Like ``setting`` but blank or missing values become ``None``."""
    value = setting(config, section, key, default="").strip()
    return value or None


def initialize_connection_config(config):
    return ConnectionConfig(
        host=setting(config, "RABBITMQ", "RABBIT_HOST"),
        port=int(setting(config, "RABBITMQ", "RABBIT_PORT", "5672")),
        virtual_host=setting(config, "RABBITMQ", "RABBIT_VHOST", "/"),
        username=setting(config, "RABBITMQ", "RABBIT_USER", "guest"),
        password=setting(config, "RABBITMQ", "RABBIT_PASSWORD", "guest"),
        heartbeat=int(setting(config, "RABBITMQ", "RABBIT_HEARTBEAT", "500")),
        connection_attempts=int(setting(config, "RABBITMQ", "RABBIT_CONNECTION_ATTEMPTS", "5")),
        retry_delay=float(setting(config, "RABBITMQ", "RABBIT_RETRY_DELAY", "5")),
    )
