from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np
import pytest

from conftest import DeviceLog, FakeGraphicsContext, FakeProgramSet, random_frame
from lutcam import cli, parity
from lutcam.render.processor import LutSurfaceProcessor
from lutcam.utils.image_io import read_image, write_image


def _write_invert_cube(path: Path) -> Path:
    rows = [f"{1 - i % 2} {1 - (i // 2) % 2} {1 - i // 4}" for i in range(8)]
    path.write_text('TITLE "invert"\nLUT_3D_SIZE 2\n' + "\n".join(rows) + "\n", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fake_pipeline(monkeypatch: pytest.MonkeyPatch) -> DeviceLog:
    log = DeviceLog()

    def build(config) -> LutSurfaceProcessor:
        return LutSurfaceProcessor(
            config,
            context_factory=lambda cfg: FakeGraphicsContext(cfg, log),
            programs_factory=lambda ctx, intensity: FakeProgramSet(ctx, intensity),
        )

    monkeypatch.setattr(parity, "LutSurfaceProcessor", build)
    return log


def test_inspect_json(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    lut = _write_invert_cube(tmp_path / "invert.cube")
    assert cli.main(["inspect", str(lut), "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["title"] == "invert"
    assert payload["size"] == 2
    assert payload["entries"] == 8
    assert payload["min"] == [0.0, 0.0, 0.0]
    assert payload["max"] == [1.0, 1.0, 1.0]
    assert len(payload["fingerprint"]) == 16


def test_inspect_bad_lut_returns_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    lut = tmp_path / "broken.cube"
    lut.write_text("LUT_3D_SIZE 2\n0 0 0\n", encoding="utf-8")
    assert cli.main(["inspect", str(lut)]) == 1
    assert "invalid LUT size" in capsys.readouterr().err


def test_apply_writes_graded_image(tmp_path: Path) -> None:
    lut = _write_invert_cube(tmp_path / "invert.cube")
    src = tmp_path / "in.png"
    dst = tmp_path / "graded" / "out.png"
    image = random_frame(9, 5, seed=3, channels=3)
    write_image(src, image)

    assert cli.main(["apply", str(lut), str(src), str(dst), "--workers", "2"]) == 0

    out = read_image(dst)
    assert int(np.abs(out.astype(np.int16) - (255 - image.astype(np.int16))).max()) <= 1


def test_apply_uses_config_file(tmp_path: Path) -> None:
    lut = _write_invert_cube(tmp_path / "invert.cube")
    cfg = tmp_path / "config.yaml"
    cfg.write_text("still:\n  workers: 2\nlog_file: ./logs/run.log\n", encoding="utf-8")
    src = tmp_path / "in.png"
    write_image(src, random_frame(4, 4, channels=3))

    assert cli.main(["apply", str(lut), str(src), str(tmp_path / "out.png"), "--config", str(cfg)]) == 0
    assert (tmp_path / "logs").is_dir()


def test_render_fans_out_to_numbered_files(tmp_path: Path, fake_pipeline: DeviceLog) -> None:
    lut = _write_invert_cube(tmp_path / "invert.cube")
    src = tmp_path / "in.png"
    image = random_frame(6, 4, seed=7, channels=3)
    write_image(src, image)

    assert cli.main(["render", str(lut), str(src), str(tmp_path / "out.png"), "--outputs", "3"]) == 0

    written = [tmp_path / "out.png", tmp_path / "out_2.png", tmp_path / "out_3.png"]
    frames = [read_image(p) for p in written]
    assert frames[0].shape == (4, 6, 3)
    for frame in frames[1:]:
        assert np.array_equal(frame, frames[0])
    assert fake_pipeline.threads == {"LutRenderThread"}


def test_render_rejects_zero_outputs(tmp_path: Path, fake_pipeline: DeviceLog) -> None:
    lut = _write_invert_cube(tmp_path / "invert.cube")
    src = tmp_path / "in.png"
    write_image(src, random_frame(2, 2, channels=3))
    assert cli.main(["render", str(lut), str(src), str(tmp_path / "o.png"), "--outputs", "0"]) == 1


def test_parity_json_passes(tmp_path: Path, fake_pipeline: DeviceLog, capsys: pytest.CaptureFixture[str]) -> None:
    lut = _write_invert_cube(tmp_path / "invert.cube")
    assert cli.main(["parity", str(lut), "--width", "8", "--height", "4", "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["passed"] is True
    assert payload["width"] == 8
    assert payload["tolerance"] == 2


def test_parity_failure_exit_code(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    lut = _write_invert_cube(tmp_path / "invert.cube")
    log = DeviceLog()

    class _HalvedOutput(FakeProgramSet):
        def draw(self, input_texture, tex_matrix, width, height) -> None:
            super().draw(input_texture, tex_matrix, width, height)
            self.context.bound.buffer = self.context.bound.buffer // 2

    monkeypatch.setattr(
        parity,
        "LutSurfaceProcessor",
        lambda config: LutSurfaceProcessor(
            config,
            context_factory=lambda cfg: FakeGraphicsContext(cfg, log),
            programs_factory=lambda ctx, intensity: _HalvedOutput(ctx, intensity),
        ),
    )

    assert cli.main(["parity", str(lut), "--tolerance", "0"]) == 3
    assert "FAIL" in capsys.readouterr().out
