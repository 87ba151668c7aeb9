from .cpu_processor import apply_color_table, apply_color_table_to_file, sample_trilinear
from .lut_cube import ColorTable, load_cube, parse_cube

__all__ = [
    "ColorTable",
    "apply_color_table",
    "apply_color_table_to_file",
    "load_cube",
    "parse_cube",
    "sample_trilinear",
]
