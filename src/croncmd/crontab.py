"""Instruction sources - crontab files and command-line argument pairs.

Both sources yield an ordered list of ``Instruction`` values; nothing here
parses the schedule expressions themselves, that happens at registration.

Crontab line format::

    # comment
    */5 * * * *  [user]  command args...      five-field spec
    @daily       [user]  command args...      descriptor
    @every 1h30m [user]  command args...      interval with its duration
    CRON_TZ=UTC 0 9 * * * [user] command...  expression pinned to a zone

The user column is only present in the system crontab (``/etc/crontab``)
and is dropped. Lines with too few fields (``SHELL=/bin/sh`` and the like)
are ignored.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path

from croncmd.core.errors import CrontabError
from croncmd.core.logging import get_logger
from croncmd.core.scheduling.job import Instruction

logger = get_logger(__name__)

SYSTEM_CRONTAB = Path("/etc/crontab")

_TZ_PREFIXES = ("TZ=", "CRON_TZ=")


def parse_lines(lines: Iterable[str], with_users: bool = False) -> list[Instruction]:
    """Parse crontab lines into instructions, in file order."""
    instructions: list[Instruction] = []
    skip_user = 1 if with_users else 0

    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        fields = line.split()
        # A leading TZ=/CRON_TZ= zone belongs to the expression
        zoned = 1 if fields[0].startswith(_TZ_PREFIXES) else 0
        head = fields[zoned] if len(fields) > zoned else ""
        if head.startswith("@"):
            spec_width = 2 if head.lower() == "@every" else 1
        else:
            spec_width = 5
        spec_width += zoned

        if len(fields) <= spec_width + skip_user:
            logger.debug("crontab_line_ignored", lineno=lineno, line=line)
            continue

        instructions.append(
            Instruction(
                cron_spec=" ".join(fields[:spec_width]),
                command=" ".join(fields[spec_width + skip_user :]),
            )
        )
    return instructions


def parse_crontab(path: str | Path, with_users: bool | None = None) -> list[Instruction]:
    """Read a crontab file.

    Args:
        path: Crontab file to read
        with_users: Whether lines carry a user column; defaults to True
            only for the system crontab

    Raises:
        CrontabError: The file cannot be read
    """
    path = Path(path)
    if with_users is None:
        with_users = path == SYSTEM_CRONTAB

    try:
        with path.open(encoding="utf-8") as fh:
            instructions = parse_lines(fh, with_users=with_users)
    except (OSError, UnicodeDecodeError) as e:
        raise CrontabError(f"cannot read crontab {str(path)!r}: {e}", path=str(path), cause=e) from e

    logger.debug("crontab_parsed", path=str(path), instructions=len(instructions), with_users=with_users)
    return instructions


def instructions_from_args(args: Sequence[str]) -> list[Instruction]:
    """Pair ``SPEC COMMAND [SPEC COMMAND ...]`` arguments into instructions.

    Raises:
        CrontabError: The number of arguments is odd
    """
    if len(args) % 2 != 0:
        raise CrontabError(
            "arguments must be pairs of cron spec and command",
            arguments=len(args),
        )

    instructions: list[Instruction] = []
    for i in range(0, len(args), 2):
        spec, command = args[i].strip(), args[i + 1].strip()
        if not spec or not command:
            logger.warning("empty_instruction_skipped", position=i // 2 + 1, spec=spec, command=command)
            continue
        instructions.append(Instruction(cron_spec=spec, command=command))
    return instructions
