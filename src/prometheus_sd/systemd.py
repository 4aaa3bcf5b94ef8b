"""systemd unit generation for running `prometheus-sd discover` as a service."""

import shutil
import sys
from pathlib import Path
from typing import Optional

from jinja2 import Environment, PackageLoader

from .config import ENV_REDIS_TIMEOUT, ENV_REDIS_URL, SDConfig

DEFAULT_ENV_FILE = "/etc/prometheus-sd/prometheus-sd.conf"
DEFAULT_OUTPUT = "/etc/prometheus/sd/prometheus-sd.json"


def _get_template_env() -> Environment:
    return Environment(
        loader=PackageLoader("prometheus_sd", "templates"),
        keep_trailing_newline=True,
    )


def _resolve_executable() -> str:
    """Path of the installed console script, falling back to `python -m`."""
    found = shutil.which("prometheus-sd")
    if found:
        return found
    return f"{sys.executable} -m prometheus_sd"


def render_unit(
    config: SDConfig,
    env_file: str = DEFAULT_ENV_FILE,
    executable: Optional[str] = None,
) -> str:
    """Render the systemd service unit for the discovery daemon."""
    template = _get_template_env().get_template("prometheus-sd.service.j2")
    return template.render(
        executable=executable or _resolve_executable(),
        env_file=env_file,
        output=config.output or DEFAULT_OUTPUT,
        log_level=config.log_level,
    )


def render_env_file(config: SDConfig) -> str:
    """Render the environment file read by the unit."""
    template = _get_template_env().get_template("prometheus-sd.conf.j2")
    return template.render(
        url_var=ENV_REDIS_URL,
        timeout_var=ENV_REDIS_TIMEOUT,
        config=config,
    )


def write_file(path: str | Path, content: str) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    print(f"Wrote {path}", file=sys.stderr)
