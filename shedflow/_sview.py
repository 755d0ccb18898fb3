import numpy as np
from numba import njit, prange
from numba.types import float64, UniTuple

@njit(UniTuple(float64[:], 2)(UniTuple(float64, 9), float64[:], float64[:]),
      parallel=True,
      cache=True)
def _affine_map_vec_numba(affine, x, y):
    a, b, c, d, e, f, _, _, _ = affine
    n = x.size
    new_x = np.zeros(n, dtype=np.float64)
    new_y = np.zeros(n, dtype=np.float64)
    for i in prange(n):
        new_x[i] = x[i] * a + y[i] * b + c
        new_y[i] = x[i] * d + y[i] * e + f
    return new_x, new_y

@njit(UniTuple(float64, 2)(UniTuple(float64, 9), float64, float64),
      cache=True)
def _affine_map_scalar_numba(affine, x, y):
    a, b, c, d, e, f, _, _, _ = affine
    new_x = x * a + y * b + c
    new_y = x * d + y * e + f
    return new_x, new_y
