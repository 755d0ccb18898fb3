import numpy as np
import pytest
import rasterio
import geojson
import shedflow.io
from shedflow.grid import Grid


def test_ascii_round_trip(plane, tmp_path):
    path = str(tmp_path / 'dem.asc')
    grid = Grid.from_raster(plane)
    grid.to_ascii(plane, path)
    dem = shedflow.io.read_ascii(path)
    assert dem.shape == plane.shape
    assert dem.affine == plane.affine
    assert dem.nodata == -9999.
    assert (np.asarray(dem) == np.asarray(plane)).all()
    new_grid = Grid.from_ascii(path)
    assert new_grid.viewfinder.is_congruent_with(grid.viewfinder)


def test_ascii_center_origin(tmp_path):
    path = str(tmp_path / 'centered.asc')
    with open(path, 'w') as f:
        f.write('ncols 2\nnrows 2\nxllcenter 0.5\nyllcenter 0.5\n'
                'cellsize 1\nNODATA_value nan\n1 2\n3 nan\n')
    dem = shedflow.io.read_ascii(path, xll='center', yll='center')
    assert dem.bbox == (0., 0., 2., 2.)
    assert np.isnan(dem.nodata)
    assert np.isnan(dem[1, 1])


def test_raster_round_trip(plane, tmp_path):
    path = str(tmp_path / 'dem.tif')
    shedflow.io.to_raster(plane, path)
    dem = shedflow.io.read_raster(path)
    assert dem.affine == plane.affine
    assert dem.nodata == -9999.
    assert dem.dtype == np.float64
    assert (np.asarray(dem) == np.asarray(plane)).all()
    grid = Grid.from_raster(path)
    assert grid.shape == (5, 5)


def test_raster_window(plane, tmp_path):
    path = str(tmp_path / 'dem.tif')
    shedflow.io.to_raster(plane, path)
    dem = shedflow.io.read_raster(path, window=(0., 3., 2., 5.))
    assert dem.shape == (2, 2)
    assert (np.asarray(dem) == [[10., 9.], [10., 9.]]).all()


def test_boolean_raster(grid, plane_fdir, tmp_path):
    path = str(tmp_path / 'catch.tif')
    catch = grid.catchment(4, 2, plane_fdir, xytype='index')
    shedflow.io.to_raster(catch, path)
    with rasterio.open(path) as f:
        assert f.dtypes[0] == 'uint8'
        assert f.nodata == 0
    catch = shedflow.io.read_raster(path)
    assert catch.sum() == 5


def test_missing_nodata(plane, tmp_path):
    path = str(tmp_path / 'bare.tif')
    profile = dict(driver='GTiff', height=5, width=5, count=1, dtype='float64',
                   crs='epsg:4326', transform=plane.affine)
    with rasterio.open(path, 'w', **profile) as dst:
        dst.write(np.asarray(plane), 1)
    with pytest.warns(UserWarning):
        dem = shedflow.io.read_raster(path)
    assert dem.nodata == 0


def test_geojson_round_trip(tmp_path):
    path = str(tmp_path / 'points.geojson')
    points = geojson.FeatureCollection([geojson.Feature(geometry=geojson.Point((1., 2.)),
                                                        id=0)])
    shedflow.io.to_geojson(points, path)
    obj = shedflow.io.read_geojson(path)
    assert obj['features'][0]['geometry']['coordinates'] == [1., 2.]
