"""Named 3x3 kernels for the convolution pipeline.

The module constants are read-only arrays; ``get_kernel`` hands out
writable copies.
"""
import typing as t

import numpy as np


def _frozen(rows) -> np.ndarray:
    kernel = np.array(rows, dtype=float)
    kernel.setflags(write=False)
    return kernel


TOP_SOBEL = _frozen([[1, 2, 1], [0, 0, 0], [-1, -2, -1]])
BOTTOM_SOBEL = _frozen([[-1, -2, -1], [0, 0, 0], [1, 2, 1]])
LEFT_SOBEL = _frozen([[1, 0, -1], [2, 0, -2], [1, 0, -1]])
RIGHT_SOBEL = _frozen([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]])
VERTICAL_SOBEL = _frozen([[0, -1, 0], [0, 2, 0], [0, -1, 0]])
HORIZONTAL_SOBEL = _frozen([[0, 0, 0], [-1, 2, -1], [0, 0, 0]])

SHARPEN = _frozen([[0, -1, 0], [-1, 5, -1], [0, -1, 0]])
OUTLINE = _frozen([[-1, -1, -1], [-1, 2, -1], [-1, -1, -1]])

TOP_LEFT_EMBOSS = _frozen([[2, 1, 0], [1, 1, -1], [0, -1, -2]])
TOP_RIGHT_EMBOSS = _frozen([[0, 1, 2], [-1, 1, 1], [-2, -1, 0]])
BOTTOM_LEFT_EMBOSS = _frozen([[0, -1, -2], [1, 1, -1], [2, 1, 0]])
BOTTOM_RIGHT_EMBOSS = _frozen([[-2, -1, 0], [-1, 1, 1], [0, 1, 2]])

# Kirsch compass masks: N, NW, W, SW, S, SE, E, NE
KIRSCH_G1 = _frozen([[5, 5, 5], [-3, 0, -3], [-3, -3, -3]])
KIRSCH_G2 = _frozen([[5, 5, -3], [5, 0, -3], [-3, -3, -3]])
KIRSCH_G3 = _frozen([[5, -3, -3], [5, 0, -3], [5, -3, -3]])
KIRSCH_G4 = _frozen([[-3, -3, -3], [5, 0, -3], [5, 5, -3]])
KIRSCH_G5 = _frozen([[-3, -3, -3], [-3, 0, -3], [5, 5, 5]])
KIRSCH_G6 = _frozen([[-3, -3, -3], [-3, 0, 5], [-3, 5, 5]])
KIRSCH_G7 = _frozen([[-3, -3, 5], [-3, 0, 5], [-3, -3, 5]])
KIRSCH_G8 = _frozen([[-3, 5, 5], [-3, 0, 5], [-3, -3, -3]])

KERNELS = {
    "top_sobel": TOP_SOBEL,
    "bottom_sobel": BOTTOM_SOBEL,
    "left_sobel": LEFT_SOBEL,
    "right_sobel": RIGHT_SOBEL,
    "vertical_sobel": VERTICAL_SOBEL,
    "horizontal_sobel": HORIZONTAL_SOBEL,
    "sharpen": SHARPEN,
    "outline": OUTLINE,
    "top_left_emboss": TOP_LEFT_EMBOSS,
    "top_right_emboss": TOP_RIGHT_EMBOSS,
    "bottom_left_emboss": BOTTOM_LEFT_EMBOSS,
    "bottom_right_emboss": BOTTOM_RIGHT_EMBOSS,
    "kirsch_g1": KIRSCH_G1,
    "kirsch_g2": KIRSCH_G2,
    "kirsch_g3": KIRSCH_G3,
    "kirsch_g4": KIRSCH_G4,
    "kirsch_g5": KIRSCH_G5,
    "kirsch_g6": KIRSCH_G6,
    "kirsch_g7": KIRSCH_G7,
    "kirsch_g8": KIRSCH_G8,
}

EDGE_DETECTORS = (TOP_SOBEL, BOTTOM_SOBEL, LEFT_SOBEL, RIGHT_SOBEL)
KIRSCH = (
    KIRSCH_G1,
    KIRSCH_G2,
    KIRSCH_G3,
    KIRSCH_G4,
    KIRSCH_G5,
    KIRSCH_G6,
    KIRSCH_G7,
    KIRSCH_G8,
)


def get_kernel(name: str) -> np.ndarray:
    key = name.strip().lower().replace("-", "_").replace(" ", "_")

    try:
        return np.array(KERNELS[key])

    except KeyError as err:
        raise KeyError(
            "Unknown kernel '{}' (available: {}).".format(name, ", ".join(KERNELS))
        ) from err


def get_kernels(*names: str) -> t.List[np.ndarray]:
    return [get_kernel(name) for name in names]
