"""Commands and queries against individual Redis and Sentinel endpoints."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import (
    AuthenticationError,
    ConnectionError as RedisConnectionError,
    ResponseError,
    TimeoutError as RedisTimeoutError,
)

from .exceptions import NodeUnreachable, ProtocolRejected
from .topology import REDIS_ROLE, SENTINEL_ROLE

logger = logging.getLogger(__name__)


@dataclass
class RedisRole:
    """Replication role reported by a Redis node."""

    is_master: bool
    master_host: Optional[str] = None
    master_port: Optional[int] = None


@dataclass
class SentinelMonitor:
    """What a sentinel currently monitors for the master group."""

    master_addr: Optional[str]
    quorum: Optional[int]
    known_sentinels: int = 0
    known_replicas: int = 0
    settings: dict[str, str] = field(default_factory=dict)


def split_config_line(line: str) -> tuple[str, str]:
    """Split a ``key value`` config line into its key and value."""
    key, value = line.split(None, 1)
    return key, value.strip()


class RedisNodeClient:
    """
    Talks to one node per call over a short-lived connection.

    The client performs no retries: a connection failure or timeout surfaces
    as NodeUnreachable, a refused command as ProtocolRejected.
    """

    def __init__(
        self,
        redis_port: int = 6379,
        sentinel_port: int = 26379,
        master_group: str = "mymaster",
        timeout: float = 5.0,
    ):
        """
        Initialize node client.

        Args:
            redis_port: Port Redis listens on
            sentinel_port: Port Sentinel listens on
            master_group: Name sentinels monitor the master under
            timeout: Socket connect/read timeout in seconds
        """
        self.redis_port = redis_port
        self.sentinel_port = sentinel_port
        self.master_group = master_group
        self.timeout = timeout

    @asynccontextmanager
    async def _session(
        self, ip: str, role: str, password: Optional[str] = None
    ) -> AsyncIterator[redis.Redis]:
        port = self.redis_port if role == REDIS_ROLE else self.sentinel_port
        conn = redis.Redis(
            host=ip,
            port=port,
            password=password or None,
            socket_timeout=self.timeout,
            socket_connect_timeout=self.timeout,
            decode_responses=True,
        )
        try:
            yield conn
        except AuthenticationError as e:
            raise ProtocolRejected(ip, f"authentication rejected: {e}", role=role) from e
        except ResponseError as e:
            raise ProtocolRejected(ip, f"command refused: {e}", role=role) from e
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise NodeUnreachable(ip, f"unreachable: {e}", role=role) from e
        finally:
            await conn.aclose()

    # Redis

    async def get_role(self, ip: str, password: Optional[str] = None) -> RedisRole:
        async with self._session(ip, REDIS_ROLE, password) as conn:
            info = await conn.info("replication")
        if info.get("role") == "master":
            return RedisRole(is_master=True)
        return RedisRole(
            is_master=False,
            master_host=info.get("master_host"),
            master_port=int(info["master_port"]) if info.get("master_port") else None,
        )

    async def make_master(self, ip: str, password: Optional[str] = None) -> bool:
        """
        Promote a node. No-op if it already is master.

        Returns:
            True if the node changed role
        """
        async with self._session(ip, REDIS_ROLE, password) as conn:
            info = await conn.info("replication")
            if info.get("role") == "master":
                return False
            logger.debug(f"SLAVEOF NO ONE on {ip}")
            await conn.slaveof()
        return True

    async def make_replica_of(
        self, ip: str, master_ip: str, password: Optional[str] = None
    ) -> bool:
        """
        Point a node at the given master. No-op if it already replicates it.

        Returns:
            True if the node was re-pointed
        """
        async with self._session(ip, REDIS_ROLE, password) as conn:
            info = await conn.info("replication")
            if (
                info.get("role") == "slave"
                and info.get("master_host") == master_ip
                and int(info.get("master_port") or 0) == self.redis_port
            ):
                return False
            logger.debug(f"SLAVEOF {master_ip} {self.redis_port} on {ip}")
            await conn.slaveof(master_ip, self.redis_port)
        return True

    async def get_redis_config(
        self, ip: str, keys: list[str], password: Optional[str] = None
    ) -> dict[str, str]:
        """Read the applied value of each given config key."""
        applied: dict[str, str] = {}
        async with self._session(ip, REDIS_ROLE, password) as conn:
            for key in keys:
                result = await conn.config_get(key)
                if key in result:
                    applied[key] = str(result[key])
        return applied

    async def set_custom_redis_config(
        self, ip: str, lines: list[str], password: Optional[str] = None
    ) -> int:
        """
        Apply config lines, plus the replication credential when one is set.

        Keys whose applied value already matches are skipped.

        Returns:
            Number of keys written
        """
        wanted = [split_config_line(line) for line in lines]
        if password:
            wanted.append(("masterauth", password))

        written = 0
        async with self._session(ip, REDIS_ROLE, password) as conn:
            for key, value in wanted:
                current = await conn.config_get(key)
                if str(current.get(key, "")) == value:
                    continue
                logger.debug(f"CONFIG SET {key} on {ip}")
                await conn.config_set(key, value)
                written += 1
        return written

    # Sentinel

    async def get_sentinel_monitor(self, ip: str) -> SentinelMonitor:
        async with self._session(ip, SENTINEL_ROLE) as conn:
            try:
                state = await conn.sentinel_master(self.master_group)
            except ResponseError as e:
                if "no such master" in str(e).lower():
                    return SentinelMonitor(master_addr=None, quorum=None)
                raise
        return SentinelMonitor(
            master_addr=state.get("ip"),
            quorum=int(state["quorum"]) if state.get("quorum") is not None else None,
            known_sentinels=int(state.get("num-other-sentinels", 0)),
            known_replicas=int(state.get("num-slaves", 0)),
            settings={str(k): str(v) for k, v in state.items()},
        )

    async def monitor_master(
        self, ip: str, master_ip: str, quorum: int, password: Optional[str] = None
    ) -> bool:
        """
        Make a sentinel monitor master_ip with the given quorum.

        No-op if it already does.

        Returns:
            True if the monitor was replaced
        """
        current = await self.get_sentinel_monitor(ip)
        if current.master_addr == master_ip and current.quorum == quorum:
            return False

        async with self._session(ip, SENTINEL_ROLE) as conn:
            if current.master_addr is not None:
                await conn.sentinel_remove(self.master_group)
            logger.debug(f"SENTINEL MONITOR {master_ip} quorum {quorum} on {ip}")
            await conn.sentinel_monitor(self.master_group, master_ip, self.redis_port, quorum)
            if password:
                await conn.sentinel_set(self.master_group, "auth-pass", password)
        return True

    async def reset_sentinel(self, ip: str) -> None:
        """Drop the sentinel's cached peers and replicas; they are rediscovered."""
        async with self._session(ip, SENTINEL_ROLE) as conn:
            logger.debug(f"SENTINEL RESET * on {ip}")
            await conn.sentinel_reset("*")

    async def get_sentinel_config(self, ip: str, keys: list[str]) -> dict[str, str]:
        """Read the applied value of each given master-group setting."""
        monitor = await self.get_sentinel_monitor(ip)
        return {key: monitor.settings[key] for key in keys if key in monitor.settings}

    async def set_custom_sentinel_config(self, ip: str, lines: list[str]) -> int:
        """
        Apply master-group settings, skipping those already in place.

        Returns:
            Number of settings written
        """
        wanted = [split_config_line(line) for line in lines]
        if not wanted:
            return 0
        current = await self.get_sentinel_monitor(ip)

        written = 0
        async with self._session(ip, SENTINEL_ROLE) as conn:
            for key, value in wanted:
                if current.settings.get(key) == value:
                    continue
                logger.debug(f"SENTINEL SET {key} on {ip}")
                await conn.sentinel_set(self.master_group, key, value)
                written += 1
        return written
