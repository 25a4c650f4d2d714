"""Errors raised by the Kafka broker layer."""

from __future__ import annotations


class BrokerConfigError(Exception):
    """Raised when Kafka configuration is missing or invalid."""

    @classmethod
    def missing(cls, env_var: str) -> BrokerConfigError:
        """Create error for a required environment variable that is unset.

        Parameters
        ----------
        env_var
            Name of the missing variable.

        Returns
        -------
        BrokerConfigError
            Error naming the variable.

        """
        return cls(f"{env_var} environment variable is required")

    @classmethod
    def invalid_parameter(
        cls, env_var: str, value: str, constraint: str
    ) -> BrokerConfigError:
        """Create error for an environment value that fails validation."""
        return cls(f"Invalid {env_var} '{value}'. {constraint}")


class BrokerUnavailableError(Exception):
    """Raised when the broker cannot accept a message.

    Callers treat this as transient: the gateway answers ``503`` and the
    delivery worker declines to commit the offset.
    """

    @classmethod
    def not_started(cls) -> BrokerUnavailableError:
        """Create error for use of a publisher before ``start()``."""
        return cls("Kafka producer is not started")

    @classmethod
    def connect_failed(cls, detail: str) -> BrokerUnavailableError:
        """Create error for a failed initial connection."""
        return cls(f"Kafka producer failed to connect: {detail}")

    @classmethod
    def publish_failed(cls, topic: str, detail: str) -> BrokerUnavailableError:
        """Create error for a send that was not acknowledged."""
        return cls(f"Kafka publish to {topic!r} failed: {detail}")

    @classmethod
    def deadline_exceeded(cls, timeout_s: float) -> BrokerUnavailableError:
        """Create error for a publish that outlived the request deadline."""
        return cls(f"Kafka publish did not complete within {timeout_s:g}s")


__all__ = ["BrokerConfigError", "BrokerUnavailableError"]
