from logging import Logger
from queue import Empty, Full, Queue
from threading import RLock, Thread, current_thread
from time import time
from typing import Callable

from cachetools import TTLCache

from dhcpd.config.config import config
from dhcpd.services.dhcp.errors import MalformedMessage, MissingTypeOption
from dhcpd.services.dhcp.lease_pool import LeasePool
from dhcpd.services.dhcp.lease_reclaim import LeaseReclaimService
from dhcpd.services.dhcp.message import Message
from dhcpd.services.dhcp.message_handler import DHCPMessageHandler, type_name
from dhcpd.services.dhcp.models import DHCPSocket, PoolConfig, ServerConfig
from dhcpd.services.dhcp.stats import DHCPStats
from dhcpd.services.logger.logger import MainLogger

dhcp_logger: Logger = MainLogger.get_logger(service_name="DHCP")


class DHCPServer:
    """
    Purpose:
        Receive DHCP datagrams on one UDP socket, run each through
        decode -> negotiate -> encode and send the reply back to the
        datagram's source address.

    Dependencies:
        - DHCPSocket: select based receive, so stop() is never stuck.
        - DHCPMessageHandler + LeasePool: negotiation and lease state.
        - LeaseReclaimService: periodic expiry under the pool lock.
        - cachetools.TTLCache: recently seen (xid, mac, type) keys.

    Usage:
        DHCPServer.init()
        DHCPServer.start()
        ...
        DHCPServer.stop()

    Notes:
        - A datagram that fails to decode is logged and dropped; it never
          stops the listener or a worker.
        - Failing to bind the port is the only fatal error, start() raises.
    """

    _lock = RLock()
    _dedup_lock = RLock()
    _initialised = False
    _running = False
    _workers: dict[str, Thread] = {}
    _socket: DHCPSocket | None = None

    @classmethod
    def init(
        cls,
        pool_config: PoolConfig | None = None,
        server_config: ServerConfig | None = None,
        clock: Callable[[], float] = time,
    ) -> None:
        """Build pool, handler and queues.

        Args:
            pool_config: Address range and timing, default from config.yaml.
            server_config: Socket and worker settings, default from config.yaml.
            clock: Epoch seconds source shared by pool and dedup cache.
        """
        with cls._lock:
            if cls._running:
                raise RuntimeError("Server running, stop before init.")

            cls.pool_config: PoolConfig = pool_config or config.pool_config()
            cls.server_config: ServerConfig = server_config or config.server_config()
            cls.pool = LeasePool(cls.pool_config, logger=dhcp_logger, clock=clock)

            cls._received_queue: Queue = Queue(maxsize=cls.server_config.rcvd_queue_size)
            cls._dedup_cache: TTLCache | None = None
            if cls.server_config.dedup_ttl > 0:
                cls._dedup_cache = TTLCache(
                    maxsize=cls.server_config.dedup_size,
                    ttl=cls.server_config.dedup_ttl,
                    timer=clock,
                )

            DHCPMessageHandler.init(logger=dhcp_logger, pool=cls.pool, server_config=cls.server_config)
            LeaseReclaimService.init(
                logger=dhcp_logger, pool=cls.pool, interval=cls.server_config.reclaim_interval
            )
            cls._initialised = True
            dhcp_logger.debug(
                "%s initialised, pool %s-%s.",
                cls.__name__,
                cls.pool_config.start_address,
                cls.pool_config.end_address,
            )

    @classmethod
    def start(cls):
        """Bind the socket and start listener, workers and reclaim threads.

        Raises:
            RuntimeError: not initialised or already running.
            OSError: the port could not be bound.
        """
        if not cls._initialised:
            raise RuntimeError("Not init.")
        if cls._running:
            raise RuntimeError("Server already running.")

        with cls._lock:
            _cfg = cls.server_config
            try:
                cls._socket = DHCPSocket(host=_cfg.host, port=_cfg.port, buffer_size=_cfg.rcvbuf_size)
            except OSError as err:
                dhcp_logger.critical("Failed to bind %s:%s: %s.", _cfg.host, _cfg.port, err)
                raise

            cls._running = True
            LeaseReclaimService.start()

            _listener = Thread(target=cls._traffic_listener, name="dhcp-traffic-listener", daemon=True)
            _listener.start()
            cls._workers["dhcp-traffic-listener"] = _listener

            for _index in range(_cfg.workers):
                _worker = Thread(target=cls._processor, name=f"dhcp-worker-{_index}", daemon=True)
                _worker.start()
                cls._workers[f"dhcp-worker-{_index}"] = _worker

            dhcp_logger.info("Started %s on %s:%s.", cls.__name__, *cls._socket.address)

    @classmethod
    def stop(cls):
        if not cls._running:
            raise RuntimeError("Server not running.")

        with cls._lock:
            cls._running = False
            LeaseReclaimService.stop(timeout=cls.server_config.worker_join_timeout)
            for _name, _thread in cls._workers.items():
                if _thread.is_alive():
                    _thread.join(timeout=cls.server_config.worker_join_timeout)
            cls._workers.clear()
            if cls._socket is not None:
                cls._socket.close()
                cls._socket = None
            dhcp_logger.info("Stopped %s.", cls.__name__)

    @classmethod
    def is_running(cls) -> bool:
        return cls._running

    @classmethod
    def address(cls) -> tuple[str, int] | None:
        """Bound (host, port), None when not running."""
        with cls._lock:
            return cls._socket.address if cls._socket else None

    @classmethod
    def _traffic_listener(cls):
        """Poll the socket and enqueue datagrams until stopped."""
        _sock = cls._socket
        _cfg = cls.server_config
        while cls._running and _sock is not None:
            _received = _sock.receive(msg_size=_cfg.msg_size, timeout=_cfg.receive_timeout)
            if _received is None:
                continue
            try:
                cls._received_queue.put_nowait(_received)
            except Full:
                DHCPStats.increment(key="dropped_queue_full")
                dhcp_logger.warning("Queue full.")

    @classmethod
    def _processor(cls):
        """Worker loop, one datagram at a time."""
        while cls._running:
            try:
                _raw, _addr = cls._received_queue.get(timeout=cls.server_config.worker_get_timeout)
            except Empty:
                continue

            try:
                cls.process_datagram(_raw, _addr)
            except Exception as err:
                dhcp_logger.exception("%s processing %s.", current_thread().name, err)
            finally:
                cls._received_queue.task_done()

    @classmethod
    def process_datagram(cls, raw: bytes, addr: tuple[str, int]) -> Message | None:
        """Decode, negotiate and answer one datagram.

        Returns:
            Message | None: the reply that was sent, None when dropped or
                when the message type has no reply.
        """
        DHCPStats.increment(key="received_total")

        try:
            _dhcp_msg = Message.decode(raw)
        except MalformedMessage as err:
            DHCPStats.increment(key="received_malformed")
            dhcp_logger.warning("Dropping malformed datagram from %s: %s", addr, err)
            return None

        if cls._is_duplicate(_dhcp_msg):
            DHCPStats.increment(key="dropped_duplicate")
            dhcp_logger.debug("Duplicate XID=%s MAC=%s dropped.", _dhcp_msg.xid, _dhcp_msg.mac)
            return None

        try:
            _reply = DHCPMessageHandler.handle_message(_dhcp_msg)
        except MissingTypeOption as err:
            DHCPStats.increment(key="received_malformed")
            dhcp_logger.warning("Dropping message from %s: %s", addr, err)
            return None

        if _reply is not None:
            cls._send_response(_reply, addr)
        return _reply

    @classmethod
    def _is_duplicate(cls, dhcp_msg: Message) -> bool:
        if cls._dedup_cache is None:
            return False
        with cls._dedup_lock:
            if dhcp_msg.dedup_key in cls._dedup_cache:
                return True
            cls._dedup_cache[dhcp_msg.dedup_key] = True
            return False

    @classmethod
    def _send_response(cls, reply: Message, addr: tuple[str, int]):
        """Encode and send a reply to the datagram source, errors are logged."""
        _type = type_name(reply.message_type)
        try:
            _sock = cls._socket
            if _sock is None:
                raise RuntimeError("Socket closed.")
            _sock.send(reply.encode(min_size=cls.server_config.min_reply_size), addr)
            DHCPStats.increment(key="sent_total")
            DHCPStats.increment(key=f"sent_{_type}")
            dhcp_logger.debug(
                "Send TYPE:%s, XID:%s, CHADDR:%s, YIADDR:%s to %s.",
                _type,
                reply.xid,
                reply.mac,
                reply.yiaddr,
                addr,
            )
        except (OSError, RuntimeError) as err:
            dhcp_logger.error("Failed to send DHCP %s to %s: %s", _type, addr, err)
