import logging
import sys

from broker.rabbit_publisher import RabbitPublisher
from broker.rabbit_wrapper import RabbitMQConsumer, RabbitMQProducer
from broker.utils.logger import config_logger
from orchestrator.config_init import initialize_config
from orchestrator.orchestrator import Orchestrator
from orchestrator.transformers import get_transformer


def main():
    config = initialize_config()
    config_logger(config.logging_level)

    consumer = None
    publisher = None
    exit_code = 1
    try:
        transformer = get_transformer(config.transformer)

        if not config.dry_run and config.mode.consumes:
            consumer = RabbitMQConsumer(config.connection, config.source_queue)
        if not config.dry_run and config.mode.publishes:
            producer = RabbitMQProducer(config.connection, delivery_mode=config.delivery_mode)
            publisher = RabbitPublisher(producer)

        orchestrator = Orchestrator(
            config,
            transformer,
            source=consumer.drain if consumer else None,
            publisher=publisher,
        )
        report = orchestrator.run()
        exit_code = 0 if report.failures == 0 else 1

    except KeyboardInterrupt:
        logging.info("Orchestrator stopped by user")
    except Exception as e:
        logging.error(f"Orchestrator error: {e}", exc_info=True)
    finally:
        if consumer:
            consumer.stop()
        if publisher:
            publisher.close()
        logging.info("Orchestrator shutdown complete.")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
