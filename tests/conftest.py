import pytest
import numpy as np
from affine import Affine
from shedflow.grid import Grid
from shedflow.sview import Raster, ViewFinder

dirmap = (64, 128, 1, 2, 4, 8, 16, 32)


def make_raster(data, nodata=-9999., dtype=np.float64):
    data = np.asarray(data, dtype=dtype)
    # Unit cells, upper-left corner at (0, nrows)
    affine = Affine(1., 0., 0., 0., -1., float(data.shape[0]))
    viewfinder = ViewFinder(affine=affine, shape=data.shape,
                            nodata=data.dtype.type(nodata))
    return Raster(data, viewfinder)


@pytest.fixture()
def plane():
    # Tilted plane falling one unit per column towards the east edge
    cols = np.arange(5)
    return make_raster(np.tile(10. - cols, (5, 1)))


@pytest.fixture()
def pitted_plane():
    dem = np.tile(10. - np.arange(5), (5, 1))
    dem[2, 2] = 0.
    return make_raster(dem)


@pytest.fixture()
def holed_plane():
    dem = np.tile(10. - np.arange(5), (5, 1))
    dem[2, 2] = -9999.
    return make_raster(dem)


@pytest.fixture()
def flat():
    return make_raster(np.full((5, 5), 5.))


@pytest.fixture()
def sink():
    # Single deep pit in a plateau, farther than one cell from the edge
    dem = np.full((7, 7), 10.)
    dem[3, 3] = 0.
    return make_raster(dem)


@pytest.fixture()
def trough_cone():
    # Cone rising away from the centre, with a flat-bottomed trough of three
    # equally low cells through it
    rows, cols = np.indices((9, 9))
    dem = 2. + np.hypot(rows - 4, cols - 4)
    dem[4, 3:6] = 1.
    return make_raster(dem)


@pytest.fixture()
def grid(plane):
    return Grid.from_raster(plane)


@pytest.fixture()
def plane_fdir(grid, plane):
    return grid.flowdir(plane, dirmap=dirmap)


@pytest.fixture()
def raster():
    return make_raster
