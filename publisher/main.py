import logging
import sys

from broker.rabbit_publisher import RabbitPublisher
from broker.rabbit_wrapper import RabbitMQProducer
from broker.utils.logger import config_logger
from publisher.config_init import initialize_config
from publisher.publish_command import EXIT_FAILURE, PublishCommand


def main():
    config = initialize_config()
    config_logger(config.logging_level)

    publisher = None
    exit_code = EXIT_FAILURE
    try:
        logging.info(f"Connecting to {config.connection.host}:{config.connection.port}...")
        producer = RabbitMQProducer(config.connection, delivery_mode=config.delivery_mode)
        publisher = RabbitPublisher(producer, second_queue=config.second_queue, ttl_ms=config.ttl_ms)

        exit_code = PublishCommand(config, publisher).run()

    except KeyboardInterrupt:
        logging.info("Publisher stopped by user")
    except Exception as e:
        logging.error(f"Publisher error: {e}", exc_info=True)
    finally:
        if publisher:
            publisher.close()
        logging.info("Publisher shutdown complete.")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
