from logging import Logger
from signal import SIGINT, SIGQUIT, SIGTERM, signal
from threading import Event

from dhcpd.services.dhcp.server import DHCPServer
from dhcpd.services.dhcp.stats import DHCPStats
from dhcpd.services.logger.logger import MainLogger

logger: Logger = MainLogger.get_logger(service_name="MAIN")
shutdown_event = Event()


def shutdown_handler(signum: int, frame):
    """Handles app shutdown calls.

    Args:
        signum (int): The signal number received.
        frame (frame object): Current stack frame.

    """
    logger.debug("Received %s.", signum)
    shutdown_event.set()


def register_shutdowns():
    """Registers shutdown handler for common interrupt signals"""
    signal(SIGINT, shutdown_handler)
    signal(SIGTERM, shutdown_handler)
    signal(SIGQUIT, shutdown_handler)


def main() -> int:
    logger.info("Starting DHCP server")
    register_shutdowns()

    DHCPServer.init()
    try:
        DHCPServer.start()
    except OSError:
        return 1

    logger.info("DHCP server started")
    shutdown_event.wait()
    logger.info("Stopping DHCP server.")

    DHCPServer.stop()
    logger.info("Shutdown complete, stats %s.", DHCPStats.snapshot())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
