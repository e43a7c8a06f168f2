"""Helpers for inspecting and controlling apps through ``ps`` and ``am``."""

from typing import Union


def _text(output: Union[bytes, str, None]) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", "replace")
    return output


def is_legacy_ps(output: Union[bytes, str, None]) -> bool:
    """Check whether ``ps -A`` was rejected by an old toolbox ``ps``.

    Old devices either complain about the pid or ignore ``-A`` and print
    only the header.
    """
    text = _text(output).strip()
    return text.startswith("bad pid '-A'") or text.endswith("NAME")


def find_pid(ps_output: Union[bytes, str, None], app_id: str) -> int:
    """Return the pid of ``app_id`` from ``ps`` output, or 0 if not running."""
    for line in _text(ps_output).split("\n"):
        columns = line.strip().split()
        if len(columns) < 2 or columns[-1] != app_id:
            continue
        try:
            return int(columns[1])
        except ValueError:
            continue
    return 0


def start_command(app_id: str, activity: str) -> str:
    """Build the ``am start`` command that launches an app like the launcher does.

    ``-f 0x10200000`` is FLAG_ACTIVITY_NEW_TASK | FLAG_ACTIVITY_RESET_TASK_IF_NEEDED.
    """
    if activity.startswith("."):
        activity = activity[1:]
    return (
        f"am start -n {app_id}/.{activity} "
        "-a android.intent.action.MAIN "
        "-c android.intent.category.LAUNCHER "
        "-f 0x10200000"
    )


def force_stop_command(app_id: str) -> str:
    return f"am force-stop {app_id}"


def force_stop_unsupported(output: Union[bytes, str, None]) -> bool:
    return "Unknown command: force-stop" in _text(output)
