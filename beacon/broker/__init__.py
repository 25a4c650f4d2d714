"""Kafka topics, message encoding, and the event publisher."""

from __future__ import annotations

from .config import KafkaConfig, SecurityProtocol, TopicNames
from .errors import BrokerConfigError, BrokerUnavailableError
from .messages import RetryMessage, build_retry_message, retry_headers
from .publisher import EventPublisher, KafkaEventPublisher

__all__ = [
    "BrokerConfigError",
    "BrokerUnavailableError",
    "EventPublisher",
    "KafkaConfig",
    "KafkaEventPublisher",
    "RetryMessage",
    "SecurityProtocol",
    "TopicNames",
    "build_retry_message",
    "retry_headers",
]
