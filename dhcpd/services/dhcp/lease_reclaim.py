import threading
from logging import Logger

from dhcpd.services.dhcp.lease_pool import LeasePool


class LeaseReclaimService:
    """Periodically frees expired offers and bindings of a LeasePool."""

    _worker: threading.Thread | None = None

    @classmethod
    def init(cls, logger: Logger, pool: LeasePool, interval: float = 30.0):
        """Initilise
        Args:
            logger: Logger instance where to log.
            pool: Pool to reclaim from.
            interval: Seconds between reclaim runs.
        """
        if cls._worker is not None and cls._worker.is_alive():
            raise RuntimeError("LeaseReclaimService running, stop first.")
        cls.logger = logger
        cls._pool = pool
        cls._interval = interval
        cls._stop_event = threading.Event()

    @classmethod
    def start(cls):
        if cls._worker is not None and cls._worker.is_alive():
            raise RuntimeError("LeaseReclaimService already running")

        cls._stop_event.clear()
        cls._worker = threading.Thread(target=cls._work, name="dhcp-lease-reclaim", daemon=True)
        cls._worker.start()
        cls.logger.info("%s started.", cls.__name__)

    @classmethod
    def stop(cls, timeout: float = 1.0):
        if cls._worker is not None and cls._worker.is_alive():
            cls._stop_event.set()
            cls._worker.join(timeout=timeout)
            cls.logger.info("%s stopped.", cls.__name__)
        cls._worker = None

    @classmethod
    def run_once(cls) -> int:
        _reclaimed = cls._pool.reclaim_expired()
        if _reclaimed:
            cls.logger.info("Reclaimed %s expired leases.", _reclaimed)
        return _reclaimed

    @classmethod
    def _work(cls):
        while not cls._stop_event.wait(cls._interval):
            try:
                cls.run_once()
            except Exception as err:
                cls.logger.warning("Lease reclaim error: %s.", err)
