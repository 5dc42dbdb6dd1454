from .producer import RabbitMQProducer

__all__ = ["RabbitMQProducer"]
