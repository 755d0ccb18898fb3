import logging
import numpy as np
import pytest
import scipy.ndimage
from affine import Affine
from shedflow.grid import Grid
from shedflow.sview import Raster, ViewFinder
from shedflow.sgrid import _check_threshold
from shedflow.errors import (CyclicFlowDirection, GridMismatch, PourPointSnapFailure,
                             ShedflowError)


# Initialize parameters
dirmap = (64, 128, 1, 2, 4, 8, 16, 32)


def test_constructors(plane):
    grid = Grid.from_raster(plane)
    assert grid.shape == (5, 5)
    assert grid.affine == plane.affine
    assert grid.bbox == (0., 0., 5., 5.)
    assert grid.extent == (0., 5., 0., 5.)
    Grid(viewfinder=plane.viewfinder)
    with pytest.raises(TypeError):
        Grid(viewfinder=plane.affine)
    with pytest.raises(TypeError):
        Grid.from_raster(np.asarray(plane))


def test_nearest_cell(grid):
    """
    corner: snaps to nearest top/left
    center: snaps to index of cell that contains the geometry
    """
    col, row = grid.nearest_cell(2.6, 2.4, snap="corner")
    assert (col, row) == (3, 3)
    col, row = grid.nearest_cell(2.6, 2.4, snap="center")
    assert (col, row) == (2, 2)


def test_flowdir(plane_fdir):
    expected = np.ones((5, 5), dtype=np.int64)
    # East edge has no lower neighbor and drains to the first off-grid direction
    expected[:, 4] = 128
    expected[0, 4] = 64
    assert (np.asarray(plane_fdir) == expected).all()
    assert plane_fdir.dtype == np.int64
    assert plane_fdir.metadata['undefined'] == 0
    assert plane_fdir.metadata['dirmap'] == dirmap


def test_flowdir_custom_dirmap(grid, plane):
    fdir = grid.flowdir(plane, dirmap=(1, 2, 3, 4, 5, 6, 7, 8))
    assert (np.asarray(fdir)[:, :4] == 3).all()
    acc = grid.accumulation(fdir, dirmap=(1, 2, 3, 4, 5, 6, 7, 8))
    assert (np.asarray(acc)[:, 4] == 5).all()


def test_flowdir_ties(raster):
    dem = np.full((3, 3), 5.)
    dem[0, 1] = 4.
    dem[1, 2] = 4.
    dem = raster(dem)
    grid = Grid.from_raster(dem)
    fdir = grid.flowdir(dem)
    # North and east are equally steep; north comes first
    assert fdir[1, 1] == 64


def test_flowdir_nodata_outlet(raster):
    dem = np.full((4, 4), 5.)
    dem[1, 1] = -9999.
    dem = raster(dem)
    grid = Grid.from_raster(dem)
    fdir = grid.flowdir(dem)
    assert fdir[1, 1] == 0
    assert fdir[2, 2] == 32
    assert fdir[1, 2] == 16
    assert fdir[2, 1] == 64
    assert fdir.metadata['undefined'] == 0


def test_flowdir_flats_and_pits(flat, raster, caplog):
    grid = Grid.from_raster(flat)
    fdir = grid.flowdir(flat)
    assert (np.asarray(fdir)[1:4, 1:4] == -1).all()
    assert fdir[0, 0] == 64
    assert fdir[4, 4] == 128
    assert fdir[2, 0] == 8
    assert fdir[4, 2] == 2
    assert fdir.metadata['undefined'] == 9
    assert len(grid.undefined_cells(fdir)) == 9
    dem = np.full((5, 5), 10.)
    dem[2, 2] = 0.
    dem = raster(dem)
    with caplog.at_level(logging.WARNING, logger='shedflow.sgrid'):
        fdir = grid.flowdir(dem, pits=-5)
    assert fdir[2, 2] == -5
    assert fdir[1, 1] == 2
    assert (grid.undefined_cells(fdir) == [[2, 2]]).all()
    assert 'no defined flow direction' in caplog.text


def test_flowdir_sentinels(grid, plane):
    with pytest.raises(ValueError):
        grid.flowdir(plane, flats=1)
    with pytest.raises(ValueError):
        grid.flowdir(plane, flats=-2, pits=-2)
    with pytest.raises(ValueError):
        grid.flowdir(plane, dirmap=(1, 2, 3, 4, 5, 6, 7))
    with pytest.raises(ValueError):
        grid.flowdir(plane, dirmap=(1, 1, 3, 4, 5, 6, 7, 8))


def test_grid_mismatch(grid, raster, plane):
    with pytest.raises(GridMismatch):
        grid.flowdir(raster(np.ones((4, 4))))
    shifted = Raster(np.asarray(plane),
                     ViewFinder(affine=Affine(1., 0., 1., 0., -1., 5.), shape=(5, 5),
                                nodata=plane.nodata))
    with pytest.raises(GridMismatch) as excinfo:
        grid.flowdir(shifted)
    assert isinstance(excinfo.value, ShedflowError)
    assert '`dem`' in str(excinfo.value)


def test_detect_pits(pitted_plane, plane):
    grid = Grid.from_raster(pitted_plane)
    pits = grid.detect_pits(pitted_plane)
    assert pits.dtype == np.bool_
    assert pits.sum() == 1
    assert pits[2, 2]
    assert not grid.detect_pits(plane).any()


def test_detect_depressions(pitted_plane, holed_plane):
    grid = Grid.from_raster(pitted_plane)
    depressions = grid.detect_depressions(pitted_plane)
    assert depressions.sum() == 1
    assert depressions[2, 2]
    assert not grid.detect_depressions(holed_plane).any()


def test_detect_flats(flat, plane):
    grid = Grid.from_raster(flat)
    flats = grid.detect_flats(flat)
    assert flats.sum() == 9
    assert flats[1:4, 1:4].all()
    assert not grid.detect_flats(plane).any()


def test_breach_depressions(pitted_plane):
    grid = Grid.from_raster(pitted_plane)
    breached = grid.breach_depressions(pitted_plane)
    assert breached.metadata['unbreached'] == 0
    # Breaching only ever lowers cells
    assert (np.asarray(breached) <= np.asarray(pitted_plane)).all()
    assert not grid.detect_pits(breached).any()
    assert not grid.detect_depressions(breached).any()
    fdir = grid.flowdir(breached)
    assert fdir.metadata['undefined'] == 0
    # Everything still leaves through the east edge
    catch = grid.catchment([4] * 5, list(range(5)), fdir, xytype='index')
    assert catch.all()
    assert grid.accumulation(fdir).max() <= 25


def test_breach_out_of_reach(sink):
    grid = Grid.from_raster(sink)
    breached = grid.breach_depressions(sink, max_distance=1)
    assert breached.metadata['unbreached'] == 1
    assert (np.asarray(breached) == np.asarray(sink)).all()
    with pytest.raises(ValueError):
        grid.breach_depressions(sink, max_distance=0)


def test_breach_flat_trough(trough_cone):
    dem = trough_cone
    grid = Grid.from_raster(dem)
    breached = grid.breach_depressions(dem)
    assert breached.metadata['unbreached'] == 0
    assert (np.asarray(breached) <= np.asarray(dem)).all()
    assert not grid.detect_pits(breached).any()
    assert not grid.detect_depressions(breached).any()
    assert grid.flowdir(breached).metadata['undefined'] == 0
    resolved = grid.resolve_depressions(dem, fill=False)
    assert resolved.metadata['unresolved'].shape == (0, 2)
    assert grid.flowdir(resolved).metadata['undefined'] == 0


@pytest.mark.parametrize('seed', range(8))
def test_breach_random_troughs(raster, seed):
    rng = np.random.default_rng(seed)
    data = rng.uniform(5., 10., (12, 12))
    for _ in range(3):
        row, col = rng.integers(1, 9, size=2)
        length = rng.integers(2, 4)
        data[row, col:col + length] = rng.uniform(1., 2.)
    dem = raster(data)
    grid = Grid.from_raster(dem)
    breached = grid.breach_depressions(dem)
    assert (np.asarray(breached) <= data).all()
    # The search window covers the whole grid, so every pit reaches the edge
    assert breached.metadata['unbreached'] == 0
    assert grid.flowdir(breached).metadata['undefined'] == 0
    resolved = grid.resolve_depressions(dem, fill=False)
    assert resolved.metadata['unresolved'].shape == (0, 2)
    assert grid.flowdir(resolved).metadata['undefined'] == 0


def test_fill_depressions(sink, flat):
    grid = Grid.from_raster(sink)
    filled = grid.fill_depressions(sink)
    assert (np.asarray(filled) == 10.).all()
    grid = Grid.from_raster(flat)
    filled = grid.fill_depressions(flat, epsilon=True)
    assert (np.asarray(filled) >= 5.).all()
    assert (np.asarray(filled)[1:4, 1:4] > 5.).all()
    assert grid.flowdir(filled).metadata['undefined'] == 0


def test_resolve_depressions(sink, pitted_plane, plane):
    grid = Grid.from_raster(sink)
    resolved = grid.resolve_depressions(sink)
    assert resolved.metadata['unresolved'].shape == (0, 2)
    assert grid.flowdir(resolved).metadata['undefined'] == 0
    resolved = grid.resolve_depressions(sink, max_distance=1, fill=False)
    assert (resolved.metadata['unresolved'] == [[3, 3]]).all()
    assert resolved.metadata['max_distance'] == 1
    grid = Grid.from_raster(pitted_plane)
    resolved = grid.resolve_depressions(pitted_plane)
    assert grid.flowdir(resolved).metadata['undefined'] == 0
    # Already drained surfaces are left as they are
    grid = Grid.from_raster(plane)
    resolved = grid.resolve_depressions(plane)
    assert (np.asarray(resolved) == np.asarray(plane)).all()


def test_resolve_keeps_nodata(holed_plane):
    grid = Grid.from_raster(holed_plane)
    resolved = grid.resolve_depressions(holed_plane)
    assert resolved[2, 2] == -9999.
    assert resolved.nodata == -9999.


def test_accumulation(grid, plane_fdir):
    acc = grid.accumulation(plane_fdir)
    expected = np.tile(np.arange(1., 6.), (5, 1))
    assert (np.asarray(acc) == expected).all()
    assert acc.dtype == np.float64


def test_accumulation_weights(grid, plane_fdir, raster):
    weights = raster(np.full((5, 5), 2.))
    acc = grid.accumulation(plane_fdir, weights=weights)
    assert (np.asarray(acc)[:, 4] == 10.).all()


def test_accumulation_nodata(holed_plane):
    grid = Grid.from_raster(holed_plane)
    fdir = grid.flowdir(holed_plane)
    acc = grid.accumulation(fdir)
    assert acc[2, 2] == 0.
    assert (np.asarray(acc)[:, 4] == [5., 7., 2., 5., 5.]).all()


def test_accumulation_cycle(raster):
    fdir = raster([[1, 16]], nodata=0, dtype=np.int64)
    grid = Grid.from_raster(fdir)
    with pytest.raises(CyclicFlowDirection) as excinfo:
        grid.accumulation(fdir)
    assert excinfo.value.cells.shape == (2, 2)


def test_extract_streams(grid, plane_fdir):
    acc = grid.accumulation(plane_fdir)
    streams = grid.extract_streams(acc, 3)
    assert streams.dtype == np.bool_
    assert streams.sum() == 15
    assert streams[:, 2:].all()
    assert streams.metadata['threshold'] == 3
    for threshold in (0, -1, np.nan, np.inf, True, '3'):
        with pytest.raises(ValueError):
            grid.extract_streams(acc, threshold)


def test_check_threshold():
    assert _check_threshold(1) == 1.
    assert _check_threshold(np.float64(0.5)) == 0.5
    assert _check_threshold(np.array(3.)) == 3.
    assert _check_threshold(np.int32(2)) == 2.
    for threshold in (None, np.array([3.]), np.array(True), np.bool_(True), b'3', 1j):
        with pytest.raises(ValueError):
            _check_threshold(threshold)


def test_extract_streams_at_max_accumulation(grid, plane_fdir):
    acc = grid.accumulation(plane_fdir)
    # The outlets on the east edge are the only cells reaching the maximum
    streams = grid.extract_streams(acc, acc.max())
    assert streams.metadata['threshold'] == 5.
    assert streams.sum() == 5
    assert streams[:, 4].all()


def test_extract_river_network(grid, plane_fdir):
    acc = grid.accumulation(plane_fdir)
    streams = grid.extract_streams(acc, 3)
    network = grid.extract_river_network(plane_fdir, streams)
    features = network['features']
    assert len(features) == 5
    coords = features[0]['geometry']['coordinates']
    assert np.allclose(coords, [[2.5, 4.5], [3.5, 4.5], [4.5, 4.5]])


def test_extract_river_network_confluence(raster):
    fdir = raster([[2, 4, 8],
                   [4, 4, 4],
                   [4, 4, 4]], nodata=0, dtype=np.int64)
    streams = raster([[True, False, True],
                      [False, True, False],
                      [False, True, False]], nodata=False, dtype=np.bool_)
    grid = Grid.from_raster(fdir)
    network = grid.extract_river_network(fdir, streams)
    lines = [feature['geometry']['coordinates'] for feature in network['features']]
    assert len(lines) == 3
    assert np.allclose(lines[0], [[0.5, 2.5], [1.5, 1.5]])
    assert np.allclose(lines[1], [[2.5, 2.5], [1.5, 1.5]])
    assert np.allclose(lines[2], [[1.5, 1.5], [1.5, 0.5]])


def test_snap_to_stream(grid, plane_fdir):
    streams = grid.extract_streams(grid.accumulation(plane_fdir), 3)
    xy, dist = grid.snap_to_stream(streams, (0.5, 2.5), 3., return_dist=True)
    assert np.allclose(xy, [[2.5, 2.5]])
    assert np.allclose(dist, [2.])
    # Snapping a snapped point leaves it in place
    xy_again, rowcol = grid.snap_to_stream(streams, xy, 3., return_index=True)
    assert np.allclose(xy_again, xy)
    assert (rowcol == [[2, 2]]).all()
    xy = grid.snap_to_stream(streams, [[0.5, 2.5], [4.2, 0.1]], 3.)
    assert np.allclose(xy, [[2.5, 2.5], [4.5, 0.5]])
    # A stream cell exactly at the snap distance is in reach
    xy = grid.snap_to_stream(streams, (1.5, 2.5), 1.)
    assert np.allclose(xy, [[2.5, 2.5]])


def test_snap_to_stream_errors(grid, plane_fdir):
    streams = grid.extract_streams(grid.accumulation(plane_fdir), 3)
    with pytest.raises(PourPointSnapFailure) as excinfo:
        grid.snap_to_stream(streams, (0.5, 2.5), 1.)
    assert (excinfo.value.cells == [[2, 0]]).all()
    assert np.allclose(excinfo.value.points, [[0.5, 2.5]])
    with pytest.raises(ValueError):
        grid.snap_to_stream(streams, (10., 10.), 3.)
    with pytest.raises(ValueError):
        grid.snap_to_stream(streams, (0.5, 2.5), 0.)


def test_snap_to_mask(grid, plane_fdir):
    streams = grid.extract_streams(grid.accumulation(plane_fdir), 5)
    xy, dist = grid.snap_to_mask(streams, [[0.5, 0.5]], return_dist=True)
    assert np.allclose(xy, [[4.5, 0.5]])
    assert np.allclose(dist, [4.])
    xy = grid.snap_to_mask(streams, [[0.5, 0.5]], max_distance=1.)
    assert np.isnan(xy).all()
    xy, dist = grid.snap_to_mask(streams, [[3.5, 2.5]], max_distance=1., return_dist=True)
    assert np.allclose(xy, [[4.5, 2.5]])
    assert np.allclose(dist, [1.])


def test_catchment(grid, plane_fdir):
    catch = grid.catchment(4, 2, plane_fdir, xytype='index')
    assert catch.dtype == np.bool_
    assert catch.sum() == 5
    assert catch[2].all()
    catch = grid.catchment(4.5, 2.5, plane_fdir)
    assert catch.sum() == 5
    assert catch[2].all()
    catch = grid.catchment(2, 2, plane_fdir, xytype='index')
    assert catch.sum() == 3


def test_catchment_union(grid, plane_fdir):
    catch = grid.catchment([4, 4], [1, 3], plane_fdir, xytype='index')
    assert catch.sum() == 10
    assert catch[1].all() and catch[3].all()
    # Nested pour points add nothing
    catch = grid.catchment([4, 2], [2, 2], plane_fdir, xytype='index')
    assert catch.sum() == 5


def test_catchment_edges(grid, plane_fdir, holed_plane):
    # Points on the far edge of the bounding box belong to the last cell
    catch = grid.catchment(5., 0., plane_fdir)
    assert catch.sum() == 5
    assert catch[4].all()
    with pytest.raises(ValueError):
        grid.catchment(6., 2., plane_fdir)
    with pytest.raises(ValueError):
        grid.catchment(5, 0, plane_fdir, xytype='index')
    with pytest.raises(ValueError):
        grid.catchment(4, 2, plane_fdir, xytype='label')
    holed_grid = Grid.from_raster(holed_plane)
    fdir = holed_grid.flowdir(holed_plane)
    with pytest.raises(ValueError):
        holed_grid.catchment(2, 2, fdir, xytype='index')


def test_hillshade(flat, holed_plane, plane, raster):
    grid = Grid.from_raster(flat)
    shade = grid.hillshade(flat)
    assert np.allclose(shade, np.sin(np.radians(45.)))
    shade = grid.hillshade(flat, altitude=90.)
    assert np.allclose(shade, 1.)
    shade = grid.hillshade(plane)
    assert ((shade >= 0.) & (shade <= 1.)).all()
    assert shade.metadata['azimuth'] == 315.
    grid = Grid.from_raster(holed_plane)
    shade = grid.hillshade(holed_plane)
    assert np.isnan(shade[2, 2])
    assert np.isnan(shade.nodata)
    strip = raster(np.ones((1, 5)))
    with pytest.raises(ValueError):
        Grid.from_raster(strip).hillshade(strip)


@pytest.mark.parametrize('seed', range(4))
def test_bowl_drains_to_single_outlet(raster, seed):
    rng = np.random.default_rng(seed)
    data = np.full((5, 5), 100.)
    data[1:4, 1:4] = rng.uniform(2., 5., (3, 3))
    data[0, 2] = 0.5
    dem = raster(data)
    grid = Grid.from_raster(dem)
    resolved = grid.resolve_depressions(dem)
    fdir = grid.flowdir(resolved)
    assert fdir.metadata['undefined'] == 0
    acc = grid.accumulation(fdir)
    assert acc[0, 2] == 25.
    assert grid.catchment(2, 0, fdir, xytype='index').all()


@pytest.mark.parametrize('seed', range(4))
def test_random_surface_drainage(raster, seed):
    rng = np.random.default_rng(seed)
    dem = raster(rng.uniform(0., 10., (10, 10)))
    grid = Grid.from_raster(dem)
    resolved = grid.resolve_depressions(dem)
    fdir = grid.flowdir(resolved)
    assert fdir.metadata['undefined'] == 0
    # Raises CyclicFlowDirection if any cell fails to reach the edge
    acc = grid.accumulation(fdir)
    row, col = np.unravel_index(np.argmax(acc), acc.shape)
    # Only the cells with the largest accumulation are streams at that threshold
    streams = grid.extract_streams(acc, acc.max())
    assert (np.asarray(streams) == (np.asarray(acc) == acc.max())).all()
    x, y = grid.affine * (col + 0.5, row + 0.5)
    (xs, ys), = grid.snap_to_stream(streams, (x, y), 1.)
    catch = grid.catchment(xs, ys, fdir)
    assert catch[row, col]
    assert catch.sum() == acc[row, col]
    _, num_components = scipy.ndimage.label(np.asarray(catch), structure=np.ones((3, 3)))
    assert num_components == 1
