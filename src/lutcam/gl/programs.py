from __future__ import annotations

import logging

import moderngl
import numpy as np

from lutcam.color.lut_cube import ColorTable
from lutcam.errors import ResourceInitializationError, TransientFrameError

from .context import GraphicsContext


logger = logging.getLogger(__name__)

PASSTHROUGH = "passthrough"
LUT_APPLY = "lut-apply"

VERTEX_SHADER = """
#version 330 core
in vec2 aPosition;
in vec2 aTextureCoord;
uniform mat4 uTexMatrix;
out vec2 vTextureCoord;
void main() {
    gl_Position = vec4(aPosition, 0.0, 1.0);
    vTextureCoord = (uTexMatrix * vec4(aTextureCoord, 0.0, 1.0)).xy;
}
"""

FRAGMENT_SHADER_PASSTHROUGH = """
#version 330 core
in vec2 vTextureCoord;
out vec4 outColor;
uniform sampler2D sInputTexture;
void main() {
    outColor = texture(sInputTexture, vTextureCoord);
}
"""

# Lattice coordinates are remapped onto texel centers so the hardware filter
# interpolates between the same eight lattice points as the CPU path.
FRAGMENT_SHADER_LUT = """
#version 330 core
in vec2 vTextureCoord;
out vec4 outColor;
uniform sampler2D sInputTexture;
uniform sampler3D sLutTexture;
uniform float uLutSize;
uniform float uLutIntensity;
void main() {
    vec4 src = texture(sInputTexture, vTextureCoord);
    vec3 coord = (src.rgb * (uLutSize - 1.0) + 0.5) / uLutSize;
    vec3 lutColor = texture(sLutTexture, coord).rgb;
    outColor = vec4(mix(src.rgb, lutColor, uLutIntensity), src.a);
}
"""

# Triangle strip: bottom-left, bottom-right, top-left, top-right.
FULL_QUAD = np.array(
    [
        -1.0, -1.0, 0.0, 0.0,
        1.0, -1.0, 1.0, 0.0,
        -1.0, 1.0, 0.0, 1.0,
        1.0, 1.0, 1.0, 1.0,
    ],
    dtype="f4",
)


class ShaderProgramSet:
    def __init__(self, context: GraphicsContext, intensity: float = 1.0) -> None:
        self._context = context
        self.intensity = float(np.clip(intensity, 0.0, 1.0))
        self._lattice: moderngl.Texture3D | None = None
        self._lattice_size = 0
        self._released = False

        ctx = context.gl
        try:
            self._passthrough = ctx.program(vertex_shader=VERTEX_SHADER, fragment_shader=FRAGMENT_SHADER_PASSTHROUGH)
            self._lut = ctx.program(vertex_shader=VERTEX_SHADER, fragment_shader=FRAGMENT_SHADER_LUT)
        except moderngl.Error as exc:
            raise ResourceInitializationError(f"shader program build failed: {exc}") from exc

        self._quad = ctx.buffer(FULL_QUAD.tobytes())
        self._vaos = {
            PASSTHROUGH: ctx.vertex_array(self._passthrough, [(self._quad, "2f 2f", "aPosition", "aTextureCoord")]),
            LUT_APPLY: ctx.vertex_array(self._lut, [(self._quad, "2f 2f", "aPosition", "aTextureCoord")]),
        }
        self._passthrough["sInputTexture"].value = 0
        self._lut["sInputTexture"].value = 0
        self._lut["sLutTexture"].value = 1
        ctx.disable(moderngl.BLEND)
        logger.debug("compiled %s and %s programs", PASSTHROUGH, LUT_APPLY)

    @property
    def has_lattice(self) -> bool:
        return self._lattice is not None

    @property
    def program_name(self) -> str:
        return LUT_APPLY if self.has_lattice else PASSTHROUGH

    def apply_table_update(self, table: ColorTable | None) -> None:
        """Swap the bound lattice texture; ``None`` unbinds it."""
        if self._lattice is not None:
            self._lattice.release()
            self._lattice = None
            self._lattice_size = 0
        if table is None:
            logger.info("LUT cleared; rendering passthrough")
            return

        tex = self._context.gl.texture3d((table.size, table.size, table.size), 3, table.data.tobytes(), dtype="f4")
        tex.filter = (moderngl.LINEAR, moderngl.LINEAR)
        tex.repeat_x = False
        tex.repeat_y = False
        tex.repeat_z = False
        self._lattice = tex
        self._lattice_size = table.size
        logger.info("uploaded LUT lattice size=%s fingerprint=%s", table.size, table.fingerprint())

    def create_input_texture(self, resolution: tuple[int, int]) -> moderngl.Texture:
        width, height = resolution
        tex = self._context.gl.texture((width, height), 4)
        tex.filter = (moderngl.LINEAR, moderngl.LINEAR)
        tex.repeat_x = False
        tex.repeat_y = False
        return tex

    def write_input(self, texture: moderngl.Texture, frame: np.ndarray) -> None:
        height, width = frame.shape[:2]
        if (width, height) != tuple(texture.size):
            raise TransientFrameError(f"frame {width}x{height} does not match canvas {texture.size[0]}x{texture.size[1]}")
        if frame.shape[2] == 3:
            alpha = np.full((height, width, 1), 255, dtype=np.uint8)
            frame = np.concatenate([frame, alpha], axis=2)
        texture.write(np.ascontiguousarray(frame, dtype=np.uint8).tobytes())

    def release_texture(self, texture: moderngl.Texture) -> None:
        texture.release()

    def draw(self, input_texture: moderngl.Texture, tex_matrix: np.ndarray, width: int, height: int) -> None:
        ctx = self._context.gl
        ctx.viewport = (0, 0, width, height)
        name = self.program_name
        program = self._lut if name == LUT_APPLY else self._passthrough

        input_texture.use(location=0)
        if self._lattice is not None:
            self._lattice.use(location=1)
            program["uLutSize"].value = float(self._lattice_size)
            program["uLutIntensity"].value = self.intensity

        matrix = np.asarray(tex_matrix, dtype=np.float32)
        program["uTexMatrix"].write(matrix.T.tobytes())
        self._vaos[name].render(mode=moderngl.TRIANGLE_STRIP, vertices=4)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._lattice is not None:
            self._lattice.release()
            self._lattice = None
        for vao in self._vaos.values():
            vao.release()
        self._vaos.clear()
        self._quad.release()
        self._passthrough.release()
        self._lut.release()
