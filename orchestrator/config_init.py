from dataclasses import dataclass
from enum import Enum
import logging
import os
from typing import Optional

from broker.config_init import initialize_connection_config, optional_setting, read_config_file, setting
from broker.rabbit_wrapper import ConnectionConfig, DeliveryMode

CONFIG_FILE = os.getenv("CONFIG_FILE", "config.ini")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class Mode(Enum):
    """Which stages of the pipeline a run executes."""
    CONSUME = "consume"
    PUBLISH = "publish"
    BOTH = "both"

    @classmethod
    def parse(cls, name: str) -> "Mode":
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown mode '{name}'. Choose one of {[m.value for m in cls]}")

    @property
    def consumes(self) -> bool:
        return self in (Mode.CONSUME, Mode.BOTH)

    @property
    def publishes(self) -> bool:
        return self in (Mode.PUBLISH, Mode.BOTH)


@dataclass(frozen=True)
class OrchestrationConfig:
    connection: ConnectionConfig
    source_queue: Optional[str]
    dest_queue: Optional[str]
    work_dir: str
    mode: Mode = Mode.BOTH
    message_count: int = 0
    consume_timeout: float = 10.0
    browse_only: bool = False
    use_correlation: bool = True
    file_pattern: str = "*"
    file_extension: str = ".txt"
    transformer: str = "PASSTHROUGH"
    delivery_mode: DeliveryMode = DeliveryMode.PERSISTENT
    dry_run: bool = False
    cleanup_input: bool = True
    cleanup_output: bool = True
    input_dir: Optional[str] = None
    output_dir: Optional[str] = None
    failed_dir: Optional[str] = None
    processed_dir: Optional[str] = None
    logging_level: str = "INFO"

    @property
    def input_path(self) -> str:
        return self.input_dir or os.path.join(self.work_dir, "input")

    @property
    def output_path(self) -> str:
        return self.output_dir or os.path.join(self.work_dir, "output")

    @property
    def failed_path(self) -> str:
        return self.failed_dir or os.path.join(self.work_dir, "failed")

    @property
    def processed_path(self) -> str:
        return self.processed_dir or os.path.join(self.work_dir, "processed")


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"'{value}' is not a boolean")


def initialize_config(config_file=CONFIG_FILE):
    """ Parse env variables or config file to find program config params."""
    config = read_config_file(config_file)

    try:
        orch_config = OrchestrationConfig(
            connection=initialize_connection_config(config),
            source_queue=optional_setting(config, "ORCHESTRATION", "SOURCE_QUEUE"),
            dest_queue=optional_setting(config, "ORCHESTRATION", "DEST_QUEUE"),
            work_dir=setting(config, "ORCHESTRATION", "WORK_DIR"),
            mode=Mode.parse(setting(config, "ORCHESTRATION", "MODE", "both")),
            message_count=int(setting(config, "ORCHESTRATION", "MESSAGE_COUNT", "0")),
            consume_timeout=float(setting(config, "ORCHESTRATION", "CONSUME_TIMEOUT", "10")),
            browse_only=parse_bool(setting(config, "ORCHESTRATION", "BROWSE_ONLY", "false")),
            use_correlation=parse_bool(setting(config, "ORCHESTRATION", "USE_CORRELATION", "true")),
            file_pattern=setting(config, "ORCHESTRATION", "FILE_PATTERN", "*"),
            file_extension=setting(config, "ORCHESTRATION", "FILE_EXTENSION", ".txt"),
            transformer=setting(config, "ORCHESTRATION", "TRANSFORMER", "PASSTHROUGH").upper(),
            delivery_mode=DeliveryMode.parse(setting(config, "ORCHESTRATION", "DELIVERY_MODE", "PERSISTENT")),
            dry_run=parse_bool(setting(config, "ORCHESTRATION", "DRY_RUN", "false")),
            cleanup_input=parse_bool(setting(config, "ORCHESTRATION", "CLEANUP_INPUT", "true")),
            cleanup_output=parse_bool(setting(config, "ORCHESTRATION", "CLEANUP_OUTPUT", "true")),
            input_dir=optional_setting(config, "ORCHESTRATION", "INPUT_DIR"),
            output_dir=optional_setting(config, "ORCHESTRATION", "OUTPUT_DIR"),
            failed_dir=optional_setting(config, "ORCHESTRATION", "FAILED_DIR"),
            processed_dir=optional_setting(config, "ORCHESTRATION", "PROCESSED_DIR"),
            logging_level=setting(config, "DEFAULT", "LOGGING_LEVEL", "INFO"),
        )
    except KeyError as e:
        raise KeyError(f"Key was not found. Error: {e}. Aborting orchestrator")
    except ValueError as e:
        raise ValueError(f"Key could not be parsed. Error: {e}. Aborting orchestrator")

    if orch_config.mode.consumes and not orch_config.source_queue:
        raise KeyError(f"SOURCE_QUEUE is required in mode '{orch_config.mode.value}'. Aborting orchestrator")
    if orch_config.mode.publishes and not orch_config.dest_queue:
        raise KeyError(f"DEST_QUEUE is required in mode '{orch_config.mode.value}'. Aborting orchestrator")
    if orch_config.message_count < 0:
        raise ValueError("MESSAGE_COUNT must not be negative. Aborting orchestrator")

    logging.info(f"Orchestration Config Initialized. Mode: {orch_config.mode.value} | "
                 f"source: {orch_config.source_queue} | dest: {orch_config.dest_queue}")
    return orch_config
