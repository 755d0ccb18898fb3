import logging
import os
import geojson
import numpy as np

import shedflow.io
from shedflow.sgrid import sGrid, _check_threshold
from shedflow.sview import Raster
from shedflow.errors import UnresolvedDepression, UndefinedFlowDirection

logger = logging.getLogger(__name__)


class PipelineResult():
    """
    Rasters produced by a Pipeline run. Every raster shares the grid of the
    input DEM.

    Attributes
    ==========
    dem : The input DEM (unchanged).
    conditioned : The DEM with depressions resolved.
    fdir : D8 flow directions.
    acc : Flow accumulation.
    streams : Boolean stream mask.
    pour_points : Snapped pour point coordinates, shape (N, 2).
    catchment : Boolean watershed mask.
    """

    def __init__(self, grid, dem, conditioned, fdir, acc, streams, pour_points,
                 catchment):
        self.grid = grid
        self.dem = dem
        self.conditioned = conditioned
        self.fdir = fdir
        self.acc = acc
        self.streams = streams
        self.pour_points = pour_points
        self.catchment = catchment

    @property
    def rasters(self):
        return {
            'dem' : self.dem,
            'conditioned' : self.conditioned,
            'fdir' : self.fdir,
            'acc' : self.acc,
            'streams' : self.streams,
            'catchment' : self.catchment,
        }

    def hillshade(self, **kwargs):
        """Shaded relief of the input DEM. Keyword arguments go to Grid.hillshade."""
        return self.grid.hillshade(self.dem, **kwargs)

    def river_network(self):
        """Stream network as a geojson FeatureCollection of LineStrings."""
        return self.grid.extract_river_network(self.fdir, self.streams,
                                               dirmap=self.fdir.metadata['dirmap'])

    def pour_points_geojson(self):
        features = [geojson.Feature(geometry=geojson.Point((float(x), float(y))), id=i)
                    for i, (x, y) in enumerate(self.pour_points)]
        return geojson.FeatureCollection(features)

    def save(self, directory):
        """
        Write every raster as GeoTIFF and the river network and pour points as
        GeoJSON to `directory` (created if missing).

        Returns
        -------
        paths : dict
                Mapping of product name to the written file path.
        """
        os.makedirs(directory, exist_ok=True)
        paths = {}
        for name, raster in self.rasters.items():
            path = os.path.join(directory, '{}.tif'.format(name))
            # Int64 GeoTIFF needs GDAL 3.5
            dtype = np.int32 if raster.dtype == np.int64 else None
            shedflow.io.to_raster(raster, path, dtype=dtype)
            paths[name] = path
        path = os.path.join(directory, 'river_network.geojson')
        shedflow.io.to_geojson(self.river_network(), path)
        paths['river_network'] = path
        path = os.path.join(directory, 'pour_points.geojson')
        shedflow.io.to_geojson(self.pour_points_geojson(), path)
        paths['pour_points'] = path
        logger.info('Saved %d products to %s', len(paths), directory)
        return paths


class Pipeline():
    """
    Watershed delineation from a DEM and pour points, in order: resolve
    depressions, flow directions, flow accumulation, stream extraction, pour
    point snapping and catchment delineation. The run stops at the first
    stage that leaves the flow field undefined.

    Parameters
    ----------
    threshold : int or float
                Minimum flow accumulation (in cells) of a stream cell.
    max_distance : int
                   Radius (in cells) of the window searched for breach paths.
    snap_distance : float
                    Largest distance (in map units) a pour point may be moved onto a
                    stream. Defaults to five cell widths.
    fill : bool
           Fill depressions left after breaching.
    epsilon : bool
              Give filled areas a minimal gradient so that they drain.
    max_unresolved : int
                     Number of cells allowed to remain in depressions before
                     UnresolvedDepression is raised.
    dirmap : list or tuple (length 8)
             Flow direction codes for [N, NE, E, SE, S, SW, W, NW].
    """

    def __init__(self, threshold, max_distance=20, snap_distance=None, fill=True,
                 epsilon=True, max_unresolved=0, dirmap=(64, 128, 1, 2, 4, 8, 16, 32)):
        _check_threshold(threshold)
        self.threshold = threshold
        self.max_distance = max_distance
        self.snap_distance = snap_distance
        self.fill = fill
        self.epsilon = epsilon
        self.max_unresolved = max_unresolved
        self.dirmap = tuple(dirmap)

    def __repr__(self):
        return ('Pipeline(threshold={!r}, max_distance={!r}, snap_distance={!r}, '
                'fill={!r}, epsilon={!r}, max_unresolved={!r})'
                .format(self.threshold, self.max_distance, self.snap_distance,
                        self.fill, self.epsilon, self.max_unresolved))

    def run(self, dem, pour_points):
        """
        Run every stage on `dem` for the given pour points.

        Parameters
        ----------
        dem : Raster or str
              Digital elevation data, or the path of a raster file.
        pour_points : np.ndarray-like with shape (2,) or (N, 2)
                      Pour point coordinates (x, y) in the DEM's coordinate system.

        Returns
        -------
        result : PipelineResult

        Raises
        ------
        UnresolvedDepression, UndefinedFlowDirection, PourPointSnapFailure
        """
        if isinstance(dem, str):
            dem = shedflow.io.read_raster(dem)
        if not isinstance(dem, Raster):
            raise TypeError('`dem` must be a Raster or a file path.')
        grid = sGrid.from_raster(dem)

        logger.info('Resolving depressions')
        conditioned = grid.resolve_depressions(dem, max_distance=self.max_distance,
                                               fill=self.fill, epsilon=self.epsilon)
        unresolved = conditioned.metadata['unresolved']
        if len(unresolved) > self.max_unresolved:
            raise UnresolvedDepression(unresolved, tolerance=self.max_unresolved)

        logger.info('Computing flow directions')
        fdir = grid.flowdir(conditioned, dirmap=self.dirmap)
        undefined = grid.undefined_cells(fdir)
        if len(undefined):
            raise UndefinedFlowDirection(undefined)

        logger.info('Accumulating flow')
        acc = grid.accumulation(fdir, dirmap=self.dirmap)

        logger.info('Extracting streams')
        streams = grid.extract_streams(acc, self.threshold)

        snap_distance = self.snap_distance
        if snap_distance is None:
            snap_distance = 5 * max(grid.viewfinder.dy_dx)
        logger.info('Snapping pour points within %g', snap_distance)
        pour_points, rowcol = grid.snap_to_stream(streams, pour_points, snap_distance,
                                                  return_index=True)

        logger.info('Delineating catchment')
        catch = grid.catchment(rowcol[:, 1], rowcol[:, 0], fdir, dirmap=self.dirmap,
                               xytype='index')
        return PipelineResult(grid, dem, conditioned, fdir, acc, streams,
                              pour_points, catch)
