"""RabbitMQ access for the publish and orchestration services.

Everything that talks to the broker goes through the classes in
``broker.rabbit_wrapper``; the recovery code only ever sees the
``recovery.publisher.Publisher`` interface implemented by
``broker.rabbit_publisher.RabbitPublisher``.
"""
