"""
Secret extraction -- decrypted entries become files on disk.

Each entry lands at ``<secrets_dir>/<name>``. Unchanged content is left
alone: no write, no hook. Changed content is replaced atomically and,
if the entry names an on-changed command, that command runs with
``CONFIG_FILE`` pointing at the updated file.

Hook failures are logged and never stop the remaining entries.
Filesystem failures abort the whole pass.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from .atomic import atomic_write
from .models import ConfigEntry

logger = logging.getLogger("skconfig.extract")

SECRET_MODE = 0o640


@dataclass
class ExtractReport:
    """What one extraction pass did.

    Attributes:
        updated: Names whose files were (re)written.
        unchanged: Names whose files already held the right content.
        failed_hooks: Names whose on-changed command failed.
    """

    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed_hooks: list[str] = field(default_factory=list)


def update_secret(path: Path, content: bytes) -> bool:
    """Write *content* to *path* unless it is already there.

    Args:
        path: Secret file location.
        content: Desired file content.

    Returns:
        True if the file was written, False if it already matched.
    """
    try:
        if path.read_bytes() == content:
            return False
    except FileNotFoundError:
        pass
    atomic_write(path, content, mode=SECRET_MODE)
    return True


def run_on_changed(command: Sequence[str], config_file: Path) -> bool:
    """Run an entry's on-changed command for *config_file*.

    The child inherits our stdout/stderr and environment, plus
    ``CONFIG_FILE``. It gets no stdin.

    Args:
        command: argv of the hook.
        config_file: The secret file that changed.

    Returns:
        True if the command ran and exited 0.
    """
    env = dict(os.environ)
    env["CONFIG_FILE"] = str(config_file)
    try:
        result = subprocess.run(
            list(command), env=env, stdin=subprocess.DEVNULL, check=False
        )
    except OSError as exc:
        logger.error("Unable to run command %s: %s", list(command), exc)
        return False
    if result.returncode != 0:
        logger.error(
            "Command %s exited with status %d", list(command), result.returncode
        )
        return False
    return True


def extract(entries: Mapping[str, ConfigEntry], secrets_dir: Path) -> ExtractReport:
    """Materialise every entry as a file under *secrets_dir*.

    Args:
        entries: Decrypted ``name -> ConfigEntry`` mapping.
        secrets_dir: Existing directory to write secrets into.

    Returns:
        ExtractReport describing the pass.

    Raises:
        FileNotFoundError: *secrets_dir* does not exist.
        OSError: A secret could not be read or written.
    """
    secrets_dir = Path(secrets_dir)
    if not secrets_dir.is_dir():
        raise FileNotFoundError(f"Secrets directory does not exist: {secrets_dir}")

    report = ExtractReport()
    for name, entry in entries.items():
        logger.info("Extracting %s", name)
        dest = (secrets_dir / name).absolute()
        if not update_secret(dest, entry.value):
            report.unchanged.append(name)
            continue
        report.updated.append(name)

        if entry.on_changed:
            logger.info("Running on-change command for %s: %s", name, entry.on_changed)
            if not run_on_changed(entry.on_changed, dest):
                report.failed_hooks.append(name)

    return report
