from dataclasses import dataclass
import logging
import os
from typing import Optional

from broker.config_init import initialize_connection_config, optional_setting, read_config_file, setting
from broker.rabbit_wrapper import ConnectionConfig, DeliveryMode
from recovery.retry_loader import RefailPolicy

CONFIG_FILE = os.getenv("CONFIG_FILE", "config.ini")


@dataclass(frozen=True)
class PublishConfig:
    connection: ConnectionConfig
    queue: str
    second_queue: Optional[str] = None
    message: Optional[str] = None
    input_file: Optional[str] = None
    count: int = 1
    correlation_id: Optional[str] = None
    delivery_mode: DeliveryMode = DeliveryMode.PERSISTENT
    ttl_ms: int = 0
    failed_dir: Optional[str] = None
    retry_dir: Optional[str] = None
    refail_policy: RefailPolicy = RefailPolicy.KEEP
    logging_level: str = "INFO"


def initialize_config(config_file=CONFIG_FILE):
    """ Parse env variables or config file to find program config params

    Function that search and parse program configuration parameters in the
    program environment variables first and the in a config file.
    If at least one of the required parameters is not found a KeyError exception
    is thrown. If a parameter could not be parsed, a ValueError is thrown.
    If parsing succeeded, the function returns a PublishConfig
    """
    config = read_config_file(config_file)

    try:
        publish_config = PublishConfig(
            connection=initialize_connection_config(config),
            queue=setting(config, "PUBLISH", "QUEUE"),
            second_queue=optional_setting(config, "PUBLISH", "SECOND_QUEUE"),
            message=optional_setting(config, "PUBLISH", "MESSAGE"),
            input_file=optional_setting(config, "PUBLISH", "INPUT_FILE"),
            count=int(setting(config, "PUBLISH", "COUNT", "1")),
            correlation_id=optional_setting(config, "PUBLISH", "CORRELATION_ID"),
            delivery_mode=DeliveryMode.parse(setting(config, "PUBLISH", "DELIVERY_MODE", "PERSISTENT")),
            ttl_ms=int(setting(config, "PUBLISH", "TTL_MS", "0")),
            failed_dir=optional_setting(config, "PUBLISH", "FAILED_DIR"),
            retry_dir=optional_setting(config, "PUBLISH", "RETRY_DIR"),
            refail_policy=RefailPolicy.parse(setting(config, "PUBLISH", "REFAIL_POLICY", "keep")),
            logging_level=setting(config, "DEFAULT", "LOGGING_LEVEL", "INFO"),
        )
    except KeyError as e:
        raise KeyError("Key was not found. Error: {} .Aborting publisher".format(e))
    except ValueError as e:
        raise ValueError("Key could not be parsed. Error: {}. Aborting publisher".format(e))

    if publish_config.count < 1:
        raise ValueError(f"COUNT must be at least 1, got {publish_config.count}. Aborting publisher")

    logging.debug(f"action: config | result: success | queue: {publish_config.queue} | "
                  f"failed_dir: {publish_config.failed_dir} | retry_dir: {publish_config.retry_dir}")
    return publish_config
