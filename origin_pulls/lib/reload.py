"""Web server reload signals."""

import logging
import subprocess
from typing import Protocol

from origin_pulls.lib.errors import ReloadError

logger = logging.getLogger(__name__)


class ReloadSignal(Protocol):
    def notify_reload(self) -> None: ...


class ServiceReloader:
    """Restart or reload a service through its init system."""

    def __init__(
        self,
        service: str = "nginx",
        action: str = "restart",
        command_prefix: tuple[str, ...] = ("systemctl",),
        timeout: float = 60.0,
    ) -> None:
        self.service = service
        self.action = action
        self.command_prefix = command_prefix
        self.timeout = timeout

    @property
    def command(self) -> list[str]:
        return [*self.command_prefix, self.action, self.service]

    def notify_reload(self) -> None:
        """Run the reload command.

        Raises:
            ReloadError: If the command is missing, times out or exits non-zero
        """
        logger.info("Running %s", " ".join(self.command))
        try:
            subprocess.run(
                self.command, check=True, capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.CalledProcessError as e:
            raise ReloadError(
                f"{' '.join(self.command)} exited {e.returncode}: {e.stderr.strip()}"
            ) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ReloadError(f"{' '.join(self.command)} failed: {e}") from e


class NullReloader:
    """Counts reload requests without acting on them."""

    def __init__(self) -> None:
        self.calls = 0

    def notify_reload(self) -> None:
        self.calls += 1
        logger.info("Reload requested (skipped)")
