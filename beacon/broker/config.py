"""Kafka connection settings shared by the gateway, worker and republisher.

Usage
-----
Load from environment variables:

>>> import os
>>> os.environ["BEACON_KAFKA_BROKERS"] = "localhost:9092"
>>> os.environ["BEACON_KAFKA_SECURITY_PROTOCOL"] = "PLAINTEXT"
>>> config = KafkaConfig.from_env()
>>> config.topics.main
'beacon-events'

"""

from __future__ import annotations

import dataclasses as dc
import enum
import os
import typing as typ

from beacon.broker.errors import BrokerConfigError

_DEFAULT_CLIENT_ID = "beacon"
_DEFAULT_USERNAME = "avnadmin"
_DEFAULT_GROUP_ID = "beacon-worker-group"
_DEFAULT_CONNECT_TIMEOUT_MS = 10_000
_DEFAULT_REQUEST_TIMEOUT_MS = 30_000


class SecurityProtocol(enum.StrEnum):
    """Kafka transport security modes supported by aiokafka."""

    PLAINTEXT = "PLAINTEXT"
    SSL = "SSL"
    SASL_PLAINTEXT = "SASL_PLAINTEXT"
    SASL_SSL = "SASL_SSL"

    @property
    def uses_ssl(self) -> bool:
        """Return True when the transport is TLS-wrapped."""
        return self in {SecurityProtocol.SSL, SecurityProtocol.SASL_SSL}

    @property
    def uses_sasl(self) -> bool:
        """Return True when SASL authentication is required."""
        return self in {SecurityProtocol.SASL_PLAINTEXT, SecurityProtocol.SASL_SSL}


@dc.dataclass(frozen=True, slots=True)
class TopicNames:
    """Names of the main, retry, and dead-letter topics."""

    main: str = "beacon-events"
    retry: str = "beacon-events-retry"
    dead_letter: str = "beacon-events-dlq"

    @classmethod
    def from_env(cls) -> TopicNames:
        """Read topic overrides from ``BEACON_KAFKA_*_TOPIC`` variables."""
        defaults = cls()
        return cls(
            main=_env_str("BEACON_KAFKA_TOPIC", defaults.main),
            retry=_env_str("BEACON_KAFKA_RETRY_TOPIC", defaults.retry),
            dead_letter=_env_str("BEACON_KAFKA_DLQ_TOPIC", defaults.dead_letter),
        )

    def consumed(self) -> tuple[str, ...]:
        """Topics the delivery worker subscribes to."""
        if self.retry == self.main:
            return (self.main,)
        return (self.main, self.retry)


def _env_str(env_var: str, default: str) -> str:
    raw = os.environ.get(env_var, "")
    return raw.strip() or default


def _env_positive_int(env_var: str, default: int) -> int:
    raw = os.environ.get(env_var, "")
    if not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise BrokerConfigError.invalid_parameter(
            env_var, raw, "Must be a positive integer"
        ) from exc
    if value < 1:
        raise BrokerConfigError.invalid_parameter(
            env_var, raw, "Must be a positive integer"
        )
    return value


def normalize_certificate(raw: str) -> str:
    r"""Turn escaped ``\n`` sequences into real newlines.

    Managed Kafka providers hand out PEM bundles that are often pasted into
    a single-line environment variable.
    """
    return raw.replace("\\n", "\n") if "\\n" in raw else raw


@dc.dataclass(frozen=True, slots=True)
class KafkaConfig:
    """Connection settings for aiokafka producers and consumers.

    Attributes
    ----------
    brokers
        Bootstrap servers as ``host:port`` strings.
    security_protocol
        Transport security mode; ``SASL_SSL`` by default.
    username, password
        SASL/PLAIN credentials.
    ca_certificate
        PEM-encoded CA bundle used to verify the brokers.
    client_id
        Client identifier reported to the brokers.
    connect_timeout_ms
        Upper bound on the initial producer connection.
    request_timeout_ms
        Per-request timeout passed to aiokafka.
    group_id
        Consumer group of the delivery worker.
    topics
        Topic names.

    """

    brokers: tuple[str, ...]
    security_protocol: SecurityProtocol = SecurityProtocol.SASL_SSL
    username: str = _DEFAULT_USERNAME
    password: str | None = None
    ca_certificate: str | None = None
    client_id: str = _DEFAULT_CLIENT_ID
    connect_timeout_ms: int = _DEFAULT_CONNECT_TIMEOUT_MS
    request_timeout_ms: int = _DEFAULT_REQUEST_TIMEOUT_MS
    group_id: str = _DEFAULT_GROUP_ID
    topics: TopicNames = dc.field(default_factory=TopicNames)

    @staticmethod
    def _parse_brokers() -> tuple[str, ...]:
        raw = os.environ.get("BEACON_KAFKA_BROKERS", "")
        brokers = tuple(part.strip() for part in raw.split(",") if part.strip())
        if not brokers:
            raise BrokerConfigError.missing("BEACON_KAFKA_BROKERS")
        return brokers

    @staticmethod
    def _parse_security_protocol() -> SecurityProtocol:
        raw = os.environ.get("BEACON_KAFKA_SECURITY_PROTOCOL", "")
        if not raw.strip():
            return SecurityProtocol.SASL_SSL
        try:
            return SecurityProtocol(raw.strip().upper())
        except ValueError as exc:
            valid = ", ".join(protocol.value for protocol in SecurityProtocol)
            raise BrokerConfigError.invalid_parameter(
                "BEACON_KAFKA_SECURITY_PROTOCOL", raw, f"Valid options are: {valid}"
            ) from exc

    @classmethod
    def from_env(cls) -> KafkaConfig:
        """Build configuration from ``BEACON_KAFKA_*`` environment variables.

        Returns
        -------
        KafkaConfig
            Configuration with values from the environment or defaults.

        Raises
        ------
        BrokerConfigError
            If brokers are missing, SASL is enabled without a password, TLS
            is enabled without a CA certificate, or a timeout is invalid.

        """
        brokers = cls._parse_brokers()
        protocol = cls._parse_security_protocol()

        password = os.environ.get("BEACON_KAFKA_PASSWORD") or None
        if protocol.uses_sasl and password is None:
            raise BrokerConfigError.missing("BEACON_KAFKA_PASSWORD")

        raw_ca = os.environ.get("BEACON_KAFKA_CA_CERTIFICATE", "")
        ca_certificate = normalize_certificate(raw_ca) if raw_ca.strip() else None
        if protocol.uses_ssl and ca_certificate is None:
            raise BrokerConfigError.missing("BEACON_KAFKA_CA_CERTIFICATE")

        return cls(
            brokers=brokers,
            security_protocol=protocol,
            username=_env_str("BEACON_KAFKA_USERNAME", _DEFAULT_USERNAME),
            password=password,
            ca_certificate=ca_certificate,
            client_id=_env_str("BEACON_KAFKA_CLIENT_ID", _DEFAULT_CLIENT_ID),
            connect_timeout_ms=_env_positive_int(
                "BEACON_KAFKA_CONNECT_TIMEOUT_MS", _DEFAULT_CONNECT_TIMEOUT_MS
            ),
            request_timeout_ms=_env_positive_int(
                "BEACON_KAFKA_REQUEST_TIMEOUT_MS", _DEFAULT_REQUEST_TIMEOUT_MS
            ),
            group_id=_env_str("BEACON_KAFKA_GROUP_ID", _DEFAULT_GROUP_ID),
            topics=TopicNames.from_env(),
        )

    def client_options(self) -> dict[str, typ.Any]:
        """Return keyword arguments common to aiokafka producers and consumers."""
        options: dict[str, typ.Any] = {
            "bootstrap_servers": list(self.brokers),
            "client_id": self.client_id,
            "security_protocol": self.security_protocol.value,
            "request_timeout_ms": self.request_timeout_ms,
        }
        if self.security_protocol.uses_sasl:
            options["sasl_mechanism"] = "PLAIN"
            options["sasl_plain_username"] = self.username
            options["sasl_plain_password"] = self.password
        if self.security_protocol.uses_ssl:
            from aiokafka.helpers import create_ssl_context

            options["ssl_context"] = create_ssl_context(cadata=self.ca_certificate)
        return options


__all__ = ["KafkaConfig", "SecurityProtocol", "TopicNames", "normalize_certificate"]
