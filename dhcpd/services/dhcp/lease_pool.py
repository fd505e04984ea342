from dataclasses import replace
from ipaddress import IPv4Address
from logging import Logger
from random import Random
from threading import RLock
from time import time
from typing import Callable

from dhcpd.services.dhcp.errors import NoSuchOffer, PoolExhausted
from dhcpd.services.dhcp.models import AllocationPolicy, Lease, LeaseState, PoolConfig


class LeasePool:
    """
    Purpose:
        Own every lease of the configured address range and drive its
        lifecycle FREE -> OFFERED -> BOUND -> EXPIRED/RELEASED.

    Dependencies:
        - threading.RLock: one lock serializes every operation, including
          the periodic reclaim, so no caller observes a half-made offer.
        - PoolConfig: immutable range, mask and timing.
        - clock: callable returning epoch seconds, injectable for tests.

    Usage:
        pool = LeasePool(config, logger)
        address = pool.offer(client_id)
        pool.confirm(client_id, address)
        pool.release(client_id)
        pool.reclaim_expired(time())

    Notes:
        - Clients are keyed by raw hardware address bytes.
        - Only OFFERED and BOUND leases are tracked; an address without one,
          or whose lease is past expiry, is free.
        - At most one active lease per address and per client.
    """

    def __init__(
        self,
        config: PoolConfig,
        logger: Logger,
        clock: Callable[[], float] = time,
        rng: Random | None = None,
    ):
        self._lock = RLock()
        self._config = config
        self.logger = logger
        self._clock = clock
        self._random = rng or Random()
        self._by_address: dict[IPv4Address, Lease] = {}
        self._by_client: dict[bytes, Lease] = {}

    @property
    def config(self) -> PoolConfig:
        return self._config

    @property
    def size(self) -> int:
        return self._config.size

    def offer(self, client_id: bytes) -> IPv4Address:
        """Reserve an address for `client_id`.

        A client that already holds a live offer or binding gets the same
        address back; an offer has its timeout refreshed, a binding is left
        untouched.

        Raises:
            PoolExhausted: every address in range is offered or bound.
        """
        with self._lock:
            _now = self._clock()
            _existing = self._by_client.get(client_id)
            if _existing is not None:
                if not _existing.is_expired(_now):
                    if _existing.state == LeaseState.OFFERED:
                        _existing.expiry = _now + self._config.offer_timeout
                    self.logger.debug(
                        "Re-offering IP:%s to MAC:%s (%s).",
                        _existing.address,
                        client_id.hex(":"),
                        _existing.state.value,
                    )
                    return _existing.address
                self._free(_existing, LeaseState.EXPIRED)

            _address = self._pick_free_address(_now)
            if _address is None:
                raise PoolExhausted(
                    f"No free address in {self._config.start_address}-{self._config.end_address}."
                )

            _lease = Lease(
                client_id=client_id,
                address=_address,
                state=LeaseState.OFFERED,
                expiry=_now + self._config.offer_timeout,
            )
            self._by_address[_address] = _lease
            self._by_client[client_id] = _lease
            self.logger.debug("Offered IP:%s to MAC:%s.", _address, client_id.hex(":"))
            return _address

    def confirm(self, client_id: bytes, address: IPv4Address) -> None:
        """Turn the client's live offer of `address` into a binding.

        Raises:
            NoSuchOffer: no unexpired offer of `address` to `client_id`.
        """
        _address = IPv4Address(address)
        with self._lock:
            _now = self._clock()
            _lease = self._by_client.get(client_id)
            if (
                _lease is None
                or _lease.state != LeaseState.OFFERED
                or _lease.address != _address
                or _lease.is_expired(_now)
            ):
                raise NoSuchOffer(f"No active offer of {_address} to {client_id.hex(':')}.")

            _lease.state = LeaseState.BOUND
            _lease.expiry = _now + self._config.lease_duration
            self.logger.info("Bound IP:%s to MAC:%s.", _address, client_id.hex(":"))

    def renew(self, client_id: bytes, address: IPv4Address) -> None:
        """Extend an unexpired binding of `address` to `client_id`.

        Raises:
            NoSuchOffer: the client holds no live binding of `address`.
        """
        _address = IPv4Address(address)
        with self._lock:
            _now = self._clock()
            _lease = self._by_client.get(client_id)
            if (
                _lease is None
                or _lease.state != LeaseState.BOUND
                or _lease.address != _address
                or _lease.is_expired(_now)
            ):
                raise NoSuchOffer(f"No active binding of {_address} to {client_id.hex(':')}.")

            _lease.expiry = _now + self._config.lease_duration
            self.logger.debug("Renewed IP:%s for MAC:%s.", _address, client_id.hex(":"))

    def release(self, client_id: bytes) -> None:
        """Return whatever the client holds to the free set; no-op if nothing."""
        with self._lock:
            _lease = self._by_client.get(client_id)
            if _lease is None:
                self.logger.debug("Release from MAC:%s without lease.", client_id.hex(":"))
                return
            self._free(_lease, LeaseState.RELEASED)
            self.logger.info("Released IP:%s from MAC:%s.", _lease.address, client_id.hex(":"))

    def withdraw_offer(self, client_id: bytes) -> bool:
        """Free the client's lease only if it is still an offer."""
        with self._lock:
            _lease = self._by_client.get(client_id)
            if _lease is None or _lease.state != LeaseState.OFFERED:
                return False
            self._free(_lease, LeaseState.RELEASED)
            self.logger.debug("Withdrew offer IP:%s from MAC:%s.", _lease.address, client_id.hex(":"))
            return True

    def reclaim_expired(self, now: float | None = None) -> int:
        """Free every offer or binding whose expiry is at or before `now`.

        Returns:
            int: number of leases reclaimed.
        """
        with self._lock:
            _now = self._clock() if now is None else now
            _expired = [_lease for _lease in self._by_address.values() if _lease.is_expired(_now)]
            for _lease in _expired:
                self._free(_lease, LeaseState.EXPIRED)
                self.logger.debug(
                    "Expired IP:%s of MAC:%s.", _lease.address, _lease.client_id.hex(":")
                )
            return len(_expired)

    def is_free(self, address: IPv4Address) -> bool:
        _address = IPv4Address(address)
        with self._lock:
            _lease = self._by_address.get(_address)
            return self._config.contains(_address) and (_lease is None or _lease.is_expired(self._clock()))

    def contains(self, address: IPv4Address) -> bool:
        return self._config.contains(address)

    def lease_for(self, client_id: bytes) -> Lease | None:
        """Copy of the client's active lease, or None."""
        with self._lock:
            _lease = self._by_client.get(client_id)
            return replace(_lease) if _lease else None

    def leases(self) -> list[Lease]:
        """Copies of all active leases ordered by address."""
        with self._lock:
            return [replace(self._by_address[_address]) for _address in sorted(self._by_address)]

    def free_count(self) -> int:
        with self._lock:
            _now = self._clock()
            return self._config.size - sum(
                1 for _lease in self._by_address.values() if not _lease.is_expired(_now)
            )

    def _free(self, lease: Lease, state: LeaseState) -> None:
        with self._lock:
            if self._by_address.get(lease.address) is lease:
                del self._by_address[lease.address]
            if self._by_client.get(lease.client_id) is lease:
                del self._by_client[lease.client_id]
            lease.state = state

    def _pick_free_address(self, now: float) -> IPv4Address | None:
        """Lowest (or random) address with no live lease.

        An expired lease not yet reclaimed does not block its address; it is
        freed here when its address is picked.
        """
        with self._lock:
            _start = int(self._config.start_address)
            _end = int(self._config.end_address)

            if self._config.allocation == AllocationPolicy.RANDOM:
                _free = [
                    _ip_int for _ip_int in range(_start, _end + 1) if self._is_available(IPv4Address(_ip_int), now)
                ]
                _picked = IPv4Address(self._random.choice(_free)) if _free else None
            else:
                _picked = next(
                    (
                        IPv4Address(_ip_int)
                        for _ip_int in range(_start, _end + 1)
                        if self._is_available(IPv4Address(_ip_int), now)
                    ),
                    None,
                )

            if _picked is not None and _picked in self._by_address:
                _stale = self._by_address[_picked]
                self._free(_stale, LeaseState.EXPIRED)
                self.logger.debug("Expired IP:%s of MAC:%s on reuse.", _picked, _stale.client_id.hex(":"))
            return _picked

    def _is_available(self, address: IPv4Address, now: float) -> bool:
        _lease = self._by_address.get(address)
        return _lease is None or _lease.is_expired(now)
