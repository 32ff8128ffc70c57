"""Closed set of drift kinds reported by the checker."""

from dataclasses import dataclass, field
from typing import Optional, Union

from .topology import REDIS_ROLE, SENTINEL_ROLE


@dataclass(frozen=True)
class NoMaster:
    """No live Redis node reports the master role."""


@dataclass(frozen=True)
class MultipleMasters:
    """More than one live Redis node reports the master role."""

    master_ips: tuple[str, ...]


@dataclass(frozen=True)
class SentinelMisconfigured:
    """A sentinel monitors the wrong address or uses a stale quorum."""

    sentinel_ip: str
    monitored: Optional[str]
    expected_master: str
    quorum: Optional[int]
    expected_quorum: int


@dataclass(frozen=True)
class SentinelNeedsReset:
    """A sentinel's cached peer or replica table disagrees with the live population."""

    sentinel_ip: str
    known: int
    expected: int
    table: str = "sentinels"


@dataclass(frozen=True)
class ConfigDrift:
    """A node's applied config lines or credential differ from the declared spec."""

    role: str
    ip: str
    reason: str = "config"

    def __post_init__(self):
        if self.role not in (REDIS_ROLE, SENTINEL_ROLE):
            raise ValueError(f"unknown role {self.role!r}")


@dataclass(frozen=True)
class UnreachableNode:
    """A listed pod that did not answer during the check; no heal action."""

    role: str
    ip: str


Discrepancy = Union[
    NoMaster,
    MultipleMasters,
    SentinelMisconfigured,
    SentinelNeedsReset,
    ConfigDrift,
    UnreachableNode,
]

DISCREPANCY_KINDS = (
    NoMaster,
    MultipleMasters,
    SentinelMisconfigured,
    SentinelNeedsReset,
    ConfigDrift,
    UnreachableNode,
)


@dataclass
class DiscrepancySet:
    """Discrepancies of one pass grouped by the stage that handles them."""

    no_master: bool = False
    multiple_masters: Optional[MultipleMasters] = None
    sentinels: dict[str, Discrepancy] = field(default_factory=dict)
    config_drift: list[ConfigDrift] = field(default_factory=list)
    unreachable: list[UnreachableNode] = field(default_factory=list)

    @classmethod
    def group(cls, discrepancies: list[Discrepancy]) -> "DiscrepancySet":
        """
        Sort discrepancies into their stage buckets.

        Raises:
            TypeError: On a value outside the closed set
        """
        grouped = cls()
        for item in discrepancies:
            if isinstance(item, NoMaster):
                grouped.no_master = True
            elif isinstance(item, MultipleMasters):
                grouped.multiple_masters = item
            elif isinstance(item, (SentinelMisconfigured, SentinelNeedsReset)):
                # one restore + monitor per sentinel covers both kinds
                grouped.sentinels.setdefault(item.sentinel_ip, item)
            elif isinstance(item, ConfigDrift):
                if item not in grouped.config_drift:
                    grouped.config_drift.append(item)
            elif isinstance(item, UnreachableNode):
                grouped.unreachable.append(item)
            else:
                raise TypeError(f"unknown discrepancy {item!r}")
        return grouped
