from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class RenderConfig:
    backend: str | None = "egl"
    gl_version: int = 330
    thread_name: str = "LutRenderThread"
    lut_intensity: float = 1.0


@dataclass
class LoaderConfig:
    strict_rows: bool = False


@dataclass
class StillConfig:
    workers: int = 1


@dataclass
class ParityConfig:
    tolerance: int = 2


@dataclass
class AppConfig:
    render: RenderConfig = field(default_factory=RenderConfig)
    loader: LoaderConfig = field(default_factory=LoaderConfig)
    still: StillConfig = field(default_factory=StillConfig)
    parity: ParityConfig = field(default_factory=ParityConfig)
    log_level: str = "INFO"
    log_file: Path | None = None


def _expand_path(value: str | None, base: Path) -> Path | None:
    if value in (None, ""):
        return None
    path = Path(value)
    if not path.is_absolute():
        path = (base / path).resolve()
    return path


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"config section {key} must be a mapping")
    return value


def _optional_str(value: Any) -> str | None:
    if value in (None, "", "default"):
        return None
    return str(value)


def _build_render(raw: dict[str, Any]) -> RenderConfig:
    intensity = float(raw.get("lut_intensity", 1.0))
    if not 0.0 <= intensity <= 1.0:
        raise ValueError(f"render.lut_intensity must be within [0, 1], got {intensity}")
    gl_version = int(raw.get("gl_version", 330))
    if gl_version < 330:
        raise ValueError(f"render.gl_version must be >= 330, got {gl_version}")
    return RenderConfig(
        backend=_optional_str(raw.get("backend", "egl")),
        gl_version=gl_version,
        thread_name=str(raw.get("thread_name", "LutRenderThread")),
        lut_intensity=intensity,
    )


def load_config(path: str | Path) -> AppConfig:
    try:
        import yaml  # type: ignore
    except Exception as exc:
        raise RuntimeError("PyYAML is required for config loading. Install with: pip install PyYAML") from exc

    cfg_path = Path(path).expanduser().resolve()
    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"config root must be a mapping: {cfg_path}")

    base = cfg_path.parent
    loader_raw = _section(raw, "loader")
    still_raw = _section(raw, "still")
    parity_raw = _section(raw, "parity")

    workers = int(still_raw.get("workers", 1))
    if workers < 1:
        raise ValueError(f"still.workers must be >= 1, got {workers}")
    tolerance = int(parity_raw.get("tolerance", 2))
    if tolerance < 0:
        raise ValueError(f"parity.tolerance must be >= 0, got {tolerance}")

    app = AppConfig(
        render=_build_render(_section(raw, "render")),
        loader=LoaderConfig(strict_rows=bool(loader_raw.get("strict_rows", False))),
        still=StillConfig(workers=workers),
        parity=ParityConfig(tolerance=tolerance),
        log_level=str(raw.get("log_level", "INFO")),
        log_file=_expand_path(raw.get("log_file"), base),
    )

    ensure_dirs(app)
    return app


def ensure_dirs(config: AppConfig) -> None:
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
