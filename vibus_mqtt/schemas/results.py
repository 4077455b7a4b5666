"""
Result and Error Types
======================

Bounded Context: Failure Reporting

Every fallible operation of the telemetry core returns an ``MqttResult``
value instead of raising:

    >>> result = manager.subscribe("vibus/autobus/+/posizione", qos=1)
    >>> if not result.is_success:
    ...     print(result.error)

Errors are frozen dataclasses so they can be compared in tests and logged
as structured metadata.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Generic, TypeVar, Union

T = TypeVar('T')


@dataclass(frozen=True)
class MqttError:
    """Base class of the error taxonomy."""

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict (for log metadata)."""
        return {'kind': self.kind, **asdict(self)}


@dataclass(frozen=True)
class ConnectionFailed(MqttError):
    reason: str

    def __str__(self) -> str:
        return f"Connection failed: {self.reason}"


@dataclass(frozen=True)
class SubscriptionFailed(MqttError):
    topic: str
    reason: str

    def __str__(self) -> str:
        return f"Subscription to {self.topic} failed: {self.reason}"


@dataclass(frozen=True)
class MessageParsingFailed(MqttError):
    topic: str
    payload: str
    reason: str

    def __str__(self) -> str:
        return f"Cannot parse message on {self.topic}: {self.reason}"


@dataclass(frozen=True)
class BrokerUnreachable(MqttError):
    broker_url: str

    def __str__(self) -> str:
        return f"Broker unreachable: {self.broker_url}"


@dataclass(frozen=True)
class AuthenticationFailed(MqttError):
    broker_url: str

    def __str__(self) -> str:
        return f"Authentication failed for {self.broker_url}"


@dataclass(frozen=True)
class UnknownError(MqttError):
    reason: str

    def __str__(self) -> str:
        return f"Unknown error: {self.reason}"


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful outcome carrying ``data``."""
    data: T = None

    @property
    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """Failed outcome carrying a typed ``error``."""
    error: MqttError

    @property
    def is_success(self) -> bool:
        return False


MqttResult = Union[Success[T], Failure]
