import os
from dataclasses import dataclass


_TRUE_VALUES = {"1", "true", "y", "yes", "on"}
_FALSE_VALUES = {"0", "false", "n", "no", "off"}
_DEFAULT_SESSIONS_DIRNAME = ".sessions"
_DEFAULT_SAVE_DELAY_SECONDS = 2.0
DEFAULT_EDITOR_URL = "https://www.photopea.com"
DEFAULT_EDITOR_ORIGIN = "photopea.com"


@dataclass(frozen=True)
class PlaygroundConfig:
    sessions_dir: str
    save_delay_seconds: float = _DEFAULT_SAVE_DELAY_SECONDS
    editor_url: str = DEFAULT_EDITOR_URL
    editor_origin: str = DEFAULT_EDITOR_ORIGIN
    autosave: bool = True


def load_config(root_dir: str | None = None) -> PlaygroundConfig:
    """
    Build the playground settings from `PHOTOPEA_PLAYGROUND_*` environment variables.

    Unparseable values fall back to their defaults instead of failing the server start.
    The sessions directory defaults to `.sessions` under `root_dir` (or the cwd).
    """
    sessions_dir = (os.environ.get("PHOTOPEA_PLAYGROUND_SESSIONS_DIR", "") or "").strip()
    if not sessions_dir:
        sessions_dir = os.path.join(root_dir or os.getcwd(), _DEFAULT_SESSIONS_DIRNAME)

    editor_url = (os.environ.get("PHOTOPEA_PLAYGROUND_EDITOR_URL", "") or "").strip()
    editor_origin = (os.environ.get("PHOTOPEA_PLAYGROUND_EDITOR_ORIGIN", "") or "").strip().lower()

    return PlaygroundConfig(
        sessions_dir=os.path.expanduser(sessions_dir),
        save_delay_seconds=_as_positive_float(
            os.environ.get("PHOTOPEA_PLAYGROUND_SAVE_DELAY_SECONDS"), _DEFAULT_SAVE_DELAY_SECONDS
        ),
        editor_url=editor_url.rstrip("/") or DEFAULT_EDITOR_URL,
        editor_origin=editor_origin or DEFAULT_EDITOR_ORIGIN,
        autosave=_as_bool(os.environ.get("PHOTOPEA_PLAYGROUND_AUTOSAVE"), default=True),
    )


def default_sessions_dir() -> str:
    return load_config().sessions_dir


def _as_bool(raw_value: str | None, default: bool) -> bool:
    if raw_value is None:
        return default
    value = raw_value.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


def _as_positive_float(raw_value: str | None, default: float) -> float:
    if raw_value is None:
        return default
    try:
        parsed = float(raw_value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default
