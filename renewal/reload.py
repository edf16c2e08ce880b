"""
Reverse-proxy reload after a certificate change.

Finds the proxy container through the Docker CLI (python-on-whales) and sends
it SIGHUP, or restarts it when RELOAD_MODE=restart.  Callers treat every
failure here as best effort: the certificate is already on disk.
"""
from __future__ import annotations

import logging
from typing import Optional

from python_on_whales import DockerClient
from python_on_whales.exceptions import DockerException

from errors import NotFoundError, NotRunningError, TransportError

logger = logging.getLogger(__name__)

RESTART_TIMEOUT_SECONDS = 30


class ContainerReloader:
    def __init__(
        self,
        client: Optional[DockerClient] = None,
        mode: str = "signal",
        signal: str = "SIGHUP",
        docker_host: Optional[str] = None,
    ) -> None:
        if mode not in ("signal", "restart"):
            raise ValueError(f"unknown reload mode {mode!r}")
        self.client = client if client is not None else DockerClient(host=docker_host)
        self.mode = mode
        self.signal = signal

    def find(self, name: str):
        """Return the container named *name* (or "/name"); NotFoundError otherwise."""
        try:
            containers = self.client.container.list(all=True)
        except DockerException as exc:
            raise TransportError(f"failed to list containers: {exc}") from exc

        for container in containers:
            if container.name in (name, "/" + name):
                return container
        raise NotFoundError(f"container {name} not found")

    def reload(self, name: str) -> None:
        """Signal or restart the running container *name*."""
        container = self.find(name)
        if not container.state.running:
            raise NotRunningError(
                f"container {name} is not running (state: {container.state.status})"
            )

        try:
            if self.mode == "restart":
                logger.info("Restarting container %s", name)
                self.client.container.restart(container, time=RESTART_TIMEOUT_SECONDS)
            else:
                logger.info("Sending %s to container %s", self.signal, name)
                self.client.container.kill(container, signal=self.signal)
        except DockerException as exc:
            raise TransportError(f"failed to reload container {name}: {exc}") from exc

        logger.info("Reloaded container %s", name)


def make_reloader(settings) -> Optional[ContainerReloader]:
    """ContainerReloader for the configured target, or None when reload is disabled."""
    if not settings.reload_enabled:
        logger.info("Container reload disabled, no container name configured")
        return None
    reloader = ContainerReloader(
        mode=settings.RELOAD_MODE,
        signal=settings.RELOAD_SIGNAL,
        docker_host=settings.DOCKER_HOST,
    )
    logger.info("Docker client initialized for container %s", settings.IPSSL_CONTAINER_NAME)
    return reloader
