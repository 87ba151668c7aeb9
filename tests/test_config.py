from __future__ import annotations

from pathlib import Path

import pytest

from lutcam.config import AppConfig, load_config


def test_load_config_creates_log_dir(tmp_path: Path) -> None:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(
        """
render:
  backend: default
  lut_intensity: 0.5
loader:
  strict_rows: true
still:
  workers: 3
parity:
  tolerance: 1
log_level: DEBUG
log_file: ./logs/lutcam.log
""",
        encoding="utf-8",
    )

    cfg = load_config(cfg_file)
    assert cfg.render.backend is None
    assert cfg.render.lut_intensity == pytest.approx(0.5)
    assert cfg.render.gl_version == 330
    assert cfg.loader.strict_rows is True
    assert cfg.still.workers == 3
    assert cfg.parity.tolerance == 1
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file == (tmp_path / "logs" / "lutcam.log").resolve()
    assert cfg.log_file.parent.exists()


def test_empty_config_uses_defaults(tmp_path: Path) -> None:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text("", encoding="utf-8")

    cfg = load_config(cfg_file)
    defaults = AppConfig()
    assert cfg.render == defaults.render
    assert cfg.loader == defaults.loader
    assert cfg.still.workers == 1
    assert cfg.parity.tolerance == 2
    assert cfg.log_file is None


@pytest.mark.parametrize(
    "body, message",
    [
        ("render:\n  lut_intensity: 1.5\n", "lut_intensity"),
        ("render:\n  gl_version: 300\n", "gl_version"),
        ("still:\n  workers: 0\n", "workers"),
        ("parity:\n  tolerance: -1\n", "tolerance"),
        ("render: [1, 2]\n", "mapping"),
        ("- just\n- a list\n", "mapping"),
    ],
)
def test_invalid_config_is_rejected(tmp_path: Path, body: str, message: str) -> None:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(body, encoding="utf-8")
    with pytest.raises(ValueError, match=message):
        load_config(cfg_file)
