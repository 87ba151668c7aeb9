from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

import numpy as np

from lutcam.config import AppConfig, load_config
from lutcam.utils.logging_utils import configure_logging


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lutcam")
    sub = parser.add_subparsers(dest="command", required=True)

    def common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default=None, help="Optional path to YAML config")
        p.add_argument("--log-level", default=None, help="Override config log level")

    inspect = sub.add_parser("inspect", help="Parse a .cube LUT and report its lattice")
    inspect.add_argument("lut", help="Path to .cube file")
    inspect.add_argument("--strict", action="store_true", help="Reject malformed data rows")
    inspect.add_argument("--json", action="store_true", help="Emit machine-readable JSON")
    common(inspect)

    apply = sub.add_parser("apply", help="Apply a LUT to a still image on the CPU")
    apply.add_argument("lut", help="Path to .cube file")
    apply.add_argument("input", help="Input image path")
    apply.add_argument("output", help="Output image path")
    apply.add_argument("--workers", type=int, default=None, help="Row-band worker threads")
    common(apply)

    render = sub.add_parser("render", help="Push a still image through the GPU pipeline")
    render.add_argument("lut", help="Path to .cube file")
    render.add_argument("input", help="Input image path")
    render.add_argument("output", help="Output image path (extra outputs get _2, _3 suffixes)")
    render.add_argument("--outputs", type=int, default=1, help="Number of output targets to fan out to")
    common(render)

    parity = sub.add_parser("parity", help="Compare GPU and CPU LUT results")
    parity.add_argument("lut", help="Path to .cube file")
    parity.add_argument("--width", type=int, default=64)
    parity.add_argument("--height", type=int, default=64)
    parity.add_argument("--tolerance", type=int, default=None, help="Max accepted 8-bit difference")
    parity.add_argument("--json", action="store_true", help="Emit machine-readable JSON")
    common(parity)

    return parser


def _setup(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config) if args.config else AppConfig()
    level = args.log_level or config.log_level
    configure_logging(level, config.log_file)
    return config


def _load_table(path: str, strict: bool):
    from lutcam.color import load_cube

    return load_cube(Path(path).expanduser().resolve(), strict_rows=strict)


def _cmd_inspect(args: argparse.Namespace) -> int:
    config = _setup(args)
    table = _load_table(args.lut, strict=args.strict or config.loader.strict_rows)
    payload = {
        "path": str(Path(args.lut).expanduser().resolve()),
        "title": table.title,
        "size": table.size,
        "entries": int(table.data.shape[0]),
        "domain_min": list(table.domain_min),
        "domain_max": list(table.domain_max),
        "min": [float(v) for v in table.data.min(axis=0)],
        "max": [float(v) for v in table.data.max(axis=0)],
        "fingerprint": table.fingerprint(),
    }
    if args.json:
        print(json.dumps(payload, indent=2))
        return 0

    print(f"LUT: {payload['path']}")
    if table.title:
        print(f"Title: {table.title}")
    print(f"Size: {table.size} ({payload['entries']} entries)")
    print(f"Output range: min={payload['min']} max={payload['max']}")
    print(f"Fingerprint: {payload['fingerprint']}")
    return 0


def _cmd_apply(args: argparse.Namespace) -> int:
    from lutcam.color import apply_color_table_to_file

    config = _setup(args)
    table = _load_table(args.lut, strict=config.loader.strict_rows)
    workers = int(args.workers) if args.workers is not None else config.still.workers
    out = apply_color_table_to_file(
        Path(args.input).expanduser().resolve(),
        Path(args.output).expanduser().resolve(),
        table,
        workers=workers,
    )
    print(str(out))
    return 0


def _output_paths(output: Path, count: int) -> list[Path]:
    paths = [output]
    for idx in range(2, count + 1):
        paths.append(output.with_name(f"{output.stem}_{idx}{output.suffix}"))
    return paths


def _cmd_render(args: argparse.Namespace) -> int:
    from lutcam.parity import render_through_pipeline
    from lutcam.utils.image_io import read_image, write_image

    config = _setup(args)
    if args.outputs < 1:
        raise ValueError("--outputs must be >= 1")
    table = _load_table(args.lut, strict=config.loader.strict_rows)
    image = read_image(Path(args.input).expanduser().resolve())
    frames = render_through_pipeline(image, table, outputs=int(args.outputs), config=config.render)

    keep_alpha = image.shape[2] == 4
    for path, frame in zip(_output_paths(Path(args.output).expanduser().resolve(), len(frames)), frames):
        write_image(path, frame if keep_alpha else np.ascontiguousarray(frame[..., :3]))
        print(str(path))
    return 0


def _cmd_parity(args: argparse.Namespace) -> int:
    from lutcam.parity import run_parity_check

    config = _setup(args)
    table = _load_table(args.lut, strict=config.loader.strict_rows)
    tolerance = int(args.tolerance) if args.tolerance is not None else config.parity.tolerance
    report = run_parity_check(
        table,
        width=int(args.width),
        height=int(args.height),
        tolerance=tolerance,
        config=config.render,
    )

    if args.json:
        print(json.dumps(report.to_json_dict(), indent=2))
    else:
        print(f"LUT size {report.table_size} ({report.table_fingerprint}) on {report.width}x{report.height}")
        print(f"Max abs diff: {report.max_abs_diff} (tolerance {report.tolerance})")
        print(f"Mean abs diff: {report.mean_abs_diff:.4f}")
        print(f"Pixels over tolerance: {report.mismatched_pixels}")
        print("PASS" if report.passed else "FAIL")
    return 0 if report.passed else 3


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "inspect":
            return _cmd_inspect(args)
        if args.command == "apply":
            return _cmd_apply(args)
        if args.command == "render":
            return _cmd_render(args)
        if args.command == "parity":
            return _cmd_parity(args)

        parser.error(f"unknown command: {args.command}")
        return 2
    except Exception as exc:
        logger.exception("fatal error")
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
