"""Atomic installation of certificate material and DH parameters."""

import errno
import grp
import logging
import os
import pwd
import shutil
import stat
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import NoReturn

from origin_pulls.lib.cert_utils import (
    compute_fingerprint,
    dh_parameter_bits,
    generate_dh_parameters,
)
from origin_pulls.lib.errors import (
    DiskFullError,
    MalformedCertificateError,
    PartialWriteError,
    PermissionDeniedError,
)
from origin_pulls.lib.models import CertificateBundle, InstalledState, InstallResult

logger = logging.getLogger(__name__)

_DISK_FULL_ERRNOS = {errno.ENOSPC, errno.EDQUOT}

# Slot content and permission bits as found before an install
PreviousSlots = dict[Path, tuple[bytes, int] | None]


def _raise_os_error(e: OSError, path: Path) -> NoReturn:
    """Re-raise an OSError as the matching provisioning error where one exists."""
    if isinstance(e, PermissionError):
        raise PermissionDeniedError(path) from e
    if e.errno in _DISK_FULL_ERRNOS:
        raise DiskFullError(path) from e
    raise e


def _fsync_dir(directory: Path) -> None:
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class Installer:
    """Writes material through temp files and renames, reporting whether anything changed.

    Each file is staged next to its target with final permissions set, then
    renamed into place. Readers see either the old or the new file, never a
    truncated one.
    """

    def __init__(self, dh_generator: Callable[[int], bytes] = generate_dh_parameters) -> None:
        """Initialize installer.

        Args:
            dh_generator: Callable returning PEM DH parameters of the given size
        """
        self.dh_generator = dh_generator

    def install(self, bundle: CertificateBundle, state: InstalledState) -> InstallResult:
        """Install the bundle unless the same fingerprint is already on disk.

        Files are committed in order CA cert, origin cert, origin key, so the
        key never lands without its certificate. Identical content with
        drifted mode or ownership is repaired in place and reported as a change.

        Args:
            bundle: Validated certificate material
            state: Target slots and permissions

        Returns:
            InstallResult.CHANGED if files were replaced or repaired, UNCHANGED otherwise

        Raises:
            PermissionDeniedError: If a target directory is not writable
            DiskFullError: If staging ran out of space
            PartialWriteError: If a rename failed (committed slots rolled back)
        """
        previous = self._read_previous(state)
        blobs = [entry[0] if entry is not None else None for entry in previous.values()]
        if all(blob is not None for blob in blobs):
            if compute_fingerprint(*blobs) == bundle.fingerprint:
                if self._repair_attributes(state.certificate_slots(), state):
                    return InstallResult.CHANGED
                logger.info("Certificate material unchanged (%s)", bundle.fingerprint[:16])
                return InstallResult.UNCHANGED

        contents = [bundle.ca_certificate, bundle.origin_certificate, bundle.origin_private_key]
        staged: list[tuple[Path, Path]] = []
        try:
            for (path, mode), data in zip(state.certificate_slots(), contents, strict=True):
                staged.append((self._stage(path, data, mode, state), path))
            self._mark_reload_pending(state)
        except BaseException:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            raise

        self._commit(staged, previous, state)
        logger.info("Installed certificate material (%s)", bundle.fingerprint[:16])
        return InstallResult.CHANGED

    def ensure_dh_params(
        self, bits: int, state: InstalledState, regenerate: bool = False
    ) -> InstallResult:
        """Generate DH parameters only when missing, too small or explicitly requested.

        Args:
            bits: Minimum prime size
            state: Target slots and permissions
            regenerate: Force generation even if existing parameters suffice

        Returns:
            InstallResult.CHANGED if parameters were (re)generated or their mode repaired
        """
        path = state.dh_params_path
        if not regenerate and path.exists():
            try:
                existing_bits = dh_parameter_bits(path.read_bytes())
            except MalformedCertificateError as e:
                logger.warning("Existing DH parameters unusable, regenerating: %s", e)
            else:
                if existing_bits >= bits:
                    if self._repair_attributes([(path, state.dh_mode)], state):
                        return InstallResult.CHANGED
                    return InstallResult.UNCHANGED
                logger.info("Existing DH parameters are %d bits, need %d", existing_bits, bits)

        logger.info("Generating %d-bit DH parameters", bits)
        pem = self.dh_generator(bits)
        tmp = self._stage(path, pem, state.dh_mode, state)
        try:
            self._mark_reload_pending(state)
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise PartialWriteError(path, committed=[]) from e
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        _fsync_dir(path.parent)
        return InstallResult.CHANGED

    def _read_previous(self, state: InstalledState) -> PreviousSlots:
        """Capture current slot contents and modes, in install order."""
        previous: PreviousSlots = {}
        for path, _ in state.certificate_slots():
            try:
                with path.open("rb") as fh:
                    previous[path] = (fh.read(), stat.S_IMODE(os.fstat(fh.fileno()).st_mode))
            except FileNotFoundError:
                previous[path] = None
            except OSError as e:
                _raise_os_error(e, path)
        return previous

    def _attributes_drifted(self, path: Path, mode: int, state: InstalledState) -> bool:
        try:
            st = path.stat()
        except OSError as e:
            _raise_os_error(e, path)
        if stat.S_IMODE(st.st_mode) != mode:
            return True
        if state.owner is not None and st.st_uid != pwd.getpwnam(state.owner).pw_uid:
            return True
        if state.group is not None and st.st_gid != grp.getgrnam(state.group).gr_gid:
            return True
        return False

    def _repair_attributes(self, slots: list[tuple[Path, int]], state: InstalledState) -> bool:
        """Reapply mode and ownership to slots whose content is already current.

        Returns:
            True if any slot needed repair
        """
        drifted = [
            (path, mode) for path, mode in slots if self._attributes_drifted(path, mode, state)
        ]
        if not drifted:
            return False

        self._mark_reload_pending(state)
        for path, mode in drifted:
            try:
                os.chmod(path, mode)
                if state.owner is not None or state.group is not None:
                    shutil.chown(path, user=state.owner, group=state.group)
            except OSError as e:
                _raise_os_error(e, path)
            logger.warning("Restored mode %o and ownership of %s", mode, path)
        return True

    def _mark_reload_pending(self, state: InstalledState) -> None:
        """Record that a change is about to land, cleared once the reload went through."""
        marker = state.reload_marker_path
        try:
            marker.parent.mkdir(parents=True, exist_ok=True)
            marker.touch()
            _fsync_dir(marker.parent)
        except OSError as e:
            _raise_os_error(e, marker)

    def _stage(self, path: Path, data: bytes, mode: int, state: InstalledState) -> Path:
        """Write data to a temp file beside path with final mode and ownership."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        except OSError as e:
            _raise_os_error(e, path)

        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                os.fchmod(fh.fileno(), mode)
                if state.owner is not None or state.group is not None:
                    shutil.chown(tmp, user=state.owner, group=state.group)
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
        except OSError as e:
            tmp.unlink(missing_ok=True)
            _raise_os_error(e, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return tmp

    def _commit(
        self,
        staged: list[tuple[Path, Path]],
        previous: PreviousSlots,
        state: InstalledState,
    ) -> None:
        committed: list[Path] = []
        for index, (tmp, path) in enumerate(staged):
            try:
                os.replace(tmp, path)
            except OSError as e:
                for leftover, _ in staged[index:]:
                    leftover.unlink(missing_ok=True)
                self._rollback(committed, previous, state)
                raise PartialWriteError(path, committed=committed) from e
            committed.append(path)

        for directory in {path.parent for _, path in staged}:
            _fsync_dir(directory)

    def _rollback(
        self,
        committed: list[Path],
        previous: PreviousSlots,
        state: InstalledState,
    ) -> None:
        """Restore committed slots to their previous content and mode."""
        for path in reversed(committed):
            old = previous.get(path)
            try:
                if old is None:
                    path.unlink(missing_ok=True)
                else:
                    data, mode = old
                    os.replace(self._stage(path, data, mode, state), path)
            except (OSError, PermissionDeniedError, DiskFullError) as e:
                logger.error("Rollback of %s failed: %s", path, e)
            else:
                logger.warning("Rolled back %s", path)
