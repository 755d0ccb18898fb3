import logging
import numpy as np
import pyproj
import geojson
from affine import Affine
import skimage.morphology

# Import input/output functions
import shedflow.io

# Import viewing functions
from shedflow.sview import Raster
from shedflow.sview import View, ViewFinder

# Import exceptions
from shedflow.errors import CyclicFlowDirection, PourPointSnapFailure

# Import numba functions
import shedflow._sgrid as _self
import shedflow._priority_flood as _priority_flood

logger = logging.getLogger(__name__)

_pyproj_init = 'epsg:4326'

def _check_threshold(threshold):
    # Any real scalar, numpy scalars and 0-d arrays included
    message = '`threshold` must be a positive, finite number; got {!r}.'.format(threshold)
    if np.ndim(threshold) != 0 or np.asarray(threshold).dtype.kind in 'bcSU':
        raise ValueError(message)
    try:
        value = float(threshold)
    except (TypeError, ValueError) as e:
        raise ValueError(message) from e
    if not np.isfinite(value) or value <= 0:
        raise ValueError(message)
    return value

class sGrid():
    """
    Container class for holding and manipulating gridded data. Every dataset passed
    to a Grid method must share the grid's affine transform, shape and coordinate
    reference system; incongruent inputs raise GridMismatch.

    Attributes
    ==========
    viewfinder : ViewFinder holding the grid's `affine`, `shape`, `crs`, `nodata`
                 and `mask`; every other attribute is read from it.
    affine : Cell-to-coordinate transform (affine.Affine).
    shape : (rows, columns) of the grid.
    crs : Coordinate reference system (pyproj.Proj).
    nodata : Fill value for cells without data.
    mask : Boolean array of active cells.
    bbox : Bounds of the grid as (xmin, ymin, xmax, ymax).
    extent : Bounds of the grid as (xmin, xmax, ymin, ymax), for plotting.
    size : Total cell count.

    Methods
    =======
        --------
        File I/O
        --------
        read_ascii : Load an ESRI ascii grid as a Raster.
        read_raster : Load a band of a GDAL-readable raster file as a Raster.
        from_ascii : New grid shaped after an ascii file.
        from_raster : New grid shaped after a Raster or raster file.
        to_ascii : Writes a gridded dataset to an ascii file.
        to_raster : Writes a gridded dataset to a raster image file.
        ----------
        Hydrologic
        ----------
        resolve_depressions : Breach depressions along least-cost paths, then fill
                              whatever breaching could not resolve.
        breach_depressions : Breach depressions along least-cost paths only.
        fill_depressions : Fill depressions with the priority-flood algorithm.
        detect_pits : Mark single cells lower than all their neighbours.
        detect_depressions : Mark every cell a fill would raise.
        detect_flats : Mark level cells with no lower neighbour.
        flowdir : Generate a D8 flow direction grid from a digital elevation dataset.
        undefined_cells : List the cells of a flow direction grid flagged as flats or pits.
        accumulation : Count (or sum the weights of) the cells draining through each cell.
        extract_streams : Threshold a flow accumulation grid into a stream mask.
        extract_river_network : Split a stream mask into geojson line segments.
        snap_to_stream : Snap pour points to the nearest stream cell within a distance.
        catchment : Delineate the watershed for one or more pour points.
        hillshade : Compute a shaded relief grid from a digital elevation dataset.
        ---------------
        Data Processing
        ---------------
        view : Returns a copy of a dataset on the grid's viewfinder.
        nearest_cell : (column, row) of the cell holding, or nearest to, a point.
        snap_to_mask : Snaps a set of points to the nearest nonzero cell in a boolean mask.
    """

    def __init__(self, viewfinder=None):
        if viewfinder is not None:
            if not isinstance(viewfinder, ViewFinder):
                raise TypeError('viewfinder must be an instance of ViewFinder.')
            self._viewfinder = viewfinder
        else:
            self._viewfinder = ViewFinder(**self.defaults)

    def __repr__(self):
        return repr(self.viewfinder)

    @property
    def viewfinder(self):
        return self._viewfinder

    @viewfinder.setter
    def viewfinder(self, new_viewfinder):
        if not isinstance(new_viewfinder, ViewFinder):
            raise TypeError('viewfinder must be an instance of ViewFinder.')
        self._viewfinder = new_viewfinder

    @property
    def defaults(self):
        props = {
            'affine' : Affine(1.,0.,0.,0.,1.,0.),
            'shape' : (1,1),
            'nodata' : 0,
            'crs' : pyproj.Proj(_pyproj_init),
        }
        return props

    @property
    def affine(self):
        return self.viewfinder.affine

    @property
    def shape(self):
        return self.viewfinder.shape

    @property
    def nodata(self):
        return self.viewfinder.nodata

    @property
    def crs(self):
        return self.viewfinder.crs

    @property
    def mask(self):
        return self.viewfinder.mask

    @affine.setter
    def affine(self, new_affine):
        self.viewfinder.affine = new_affine

    @nodata.setter
    def nodata(self, new_nodata):
        self.viewfinder.nodata = new_nodata

    @crs.setter
    def crs(self, new_crs):
        self.viewfinder.crs = new_crs

    @mask.setter
    def mask(self, new_mask):
        self.viewfinder.mask = new_mask

    @property
    def bbox(self):
        return self.viewfinder.bbox

    @property
    def size(self):
        return self.viewfinder.size

    @property
    def extent(self):
        bbox = self.bbox
        extent = (bbox[0], bbox[2], bbox[1], bbox[3])
        return extent

    def read_ascii(self, data, skiprows=6, mask=None,
                   crs=pyproj.Proj(_pyproj_init), xll='lower', yll='lower',
                   metadata={}, **kwargs):
        """
        Load an ascii grid; parameters as for shedflow.io.read_ascii.
        """
        return shedflow.io.read_ascii(data, skiprows=skiprows, mask=mask,
                                      crs=crs, xll=xll, yll=yll, metadata=metadata,
                                      **kwargs)

    def read_raster(self, data, band=1, window=None, nodata=None, metadata={},
                    **kwargs):
        """
        Load one band of a raster file; parameters as for shedflow.io.read_raster.
        """
        return shedflow.io.read_raster(data=data, band=band, window=window,
                                       nodata=nodata, metadata=metadata, **kwargs)

    def to_ascii(self, data, file_name, target_view=None, **kwargs):
        """
        Save `data` to `file_name` as an ascii grid, on `target_view` (the grid's
        own viewfinder unless given). Keyword arguments go to shedflow.io.to_ascii.
        """
        if target_view is None:
            target_view = self.viewfinder
        return shedflow.io.to_ascii(data, file_name, target_view=target_view, **kwargs)

    def to_raster(self, data, file_name, target_view=None, **kwargs):
        """
        Save `data` to `file_name` as a GeoTIFF, on `target_view` (the grid's own
        viewfinder unless given). Keyword arguments go to shedflow.io.to_raster.
        """
        if target_view is None:
            target_view = self.viewfinder
        return shedflow.io.to_raster(data, file_name, target_view=target_view, **kwargs)

    @classmethod
    def from_ascii(cls, data, **kwargs):
        """
        Build a grid whose viewfinder matches the ascii file at path `data`.
        Keyword arguments go to read_ascii.
        """
        newinstance = cls()
        data = newinstance.read_ascii(data, **kwargs)
        newinstance.viewfinder = data.viewfinder
        return newinstance

    @classmethod
    def from_raster(cls, data, **kwargs):
        """
        Build a grid whose viewfinder matches `data`, either a Raster or the path
        of a raster file. For paths, keyword arguments go to read_raster.
        """
        newinstance = cls()
        if isinstance(data, Raster):
            newinstance.viewfinder = data.viewfinder.copy()
            return newinstance
        elif isinstance(data, str):
            data = newinstance.read_raster(data, **kwargs)
            newinstance.viewfinder = data.viewfinder
            return newinstance
        else:
            raise TypeError('`data` must be a Raster or str.')

    def view(self, data, data_view=None, target_view=None, **kwargs):
        """
        Return a copy of a gridded dataset `data` on the grid's viewfinder.

        Parameters
        ----------
        data : Raster
               A Raster object containing the gridded data.
        data_view : ViewFinder
                    The spatial reference system of the data. Defaults to data.viewfinder.
        target_view : ViewFinder
                      The desired spatial reference system. Defaults to self.viewfinder.

        Remaining keyword arguments are passed on to View.view.

        Returns
        -------
        out : Raster
              The data on the target view. Raises GridMismatch if the
              two views are not congruent.
        """
        if data_view is None:
            if not isinstance(data, Raster):
                raise TypeError('`data` must be a Raster instance.')
            data_view = data.viewfinder
        if target_view is None:
            target_view = self.viewfinder
        return View.view(data, target_view, data_view=data_view, **kwargs)

    def nearest_cell(self, x, y, affine=None, snap='center'):
        """
        Column and row of the cell at coordinate(s) (x, y), using self.affine
        unless `affine` is given. With snap='center' this is the cell the point
        falls in; with snap='corner' it is the cell whose top-left corner is
        nearest.
        """
        if not affine:
            affine = self.affine
        return View.nearest_cell(x, y, affine=affine, snap=snap)

    def resolve_depressions(self, dem, max_distance=20, fill=True, epsilon=True,
                            nodata_out=None, **kwargs):
        """
        Resolve depressions in a DEM so that every cell drains to the edge of the
        data. Each pit is first breached along the least-cost path found within
        `max_distance` cells; depressions that breaching leaves behind are then
        filled with the priority-flood algorithm (if `fill` is True).

        Pits are visited in order of increasing elevation. The cost of entering a
        cell on a breach path is the height of the cell above the pit. A path ends
        at the first cell lower than the pit, or at a cell on the edge of the data.
        Cells along the path are lowered (never raised) onto a strictly decreasing
        profile.

        Parameters
        ----------
        dem : Raster
              Digital elevation data.
        max_distance : int
                       Radius (in cells) of the square window searched for a breach path.
        fill : bool
               If True, fill depressions left after breaching. If False, the cells of
               remaining depressions are listed in metadata['unresolved'].
        epsilon : bool
                  If True, filled depressions and flats are given a minimal gradient
                  towards their outlet. If False, they are filled flat.
        nodata_out : int or float
                     Value indicating no data in output raster. Defaults to dem.nodata.

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        conditioned_dem : Raster
                          Digital elevation data with depressions resolved. The
                          metadata entry 'unresolved' is an (N, 2) array of the
                          (row, col) indices of cells still inside depressions.
        """
        input_overrides = {'dtype' : np.float64, 'nodata' : dem.nodata}
        kwargs.update(input_overrides)
        dem = self._input_handler(dem, name='dem', **kwargs)
        nodata_cells = self._get_nodata_cells(dem)
        out = np.asarray(dem).copy()
        out, num_unbreached = self._breach(out, nodata_cells, max_distance)
        if fill:
            out = self._fill(out, nodata_cells, epsilon=epsilon)
            unresolved = np.empty((0, 2), dtype=np.int64)
        else:
            depressions = self._depressions(out, nodata_cells)
            unresolved = np.argwhere(depressions).astype(np.int64)
            if len(unresolved):
                logger.warning('%d cell(s) remain in unresolved depressions',
                               len(unresolved))
        if nodata_out is None:
            nodata_out = dem.nodata
        out[nodata_cells] = nodata_out
        metadata = dict(dem.metadata)
        metadata.update({'unresolved' : unresolved,
                         'max_distance' : max_distance})
        out = self._output_handler(data=out, viewfinder=dem.viewfinder,
                                   metadata=metadata, nodata=nodata_out)
        return out

    def breach_depressions(self, dem, max_distance=20, nodata_out=None, **kwargs):
        """
        Breach depressions in a DEM along least-cost paths, without filling.

        Parameters
        ----------
        dem : Raster
              Digital elevation data.
        max_distance : int
                       Radius (in cells) of the square window searched for a breach path.
        nodata_out : int or float
                     Value indicating no data in output raster. Defaults to dem.nodata.

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        breached_dem : Raster
                       Digital elevation data with breach paths carved. The metadata
                       entry 'unbreached' counts the pits no path was found for.
        """
        input_overrides = {'dtype' : np.float64, 'nodata' : dem.nodata}
        kwargs.update(input_overrides)
        dem = self._input_handler(dem, name='dem', **kwargs)
        nodata_cells = self._get_nodata_cells(dem)
        out = np.asarray(dem).copy()
        out, num_unbreached = self._breach(out, nodata_cells, max_distance)
        if nodata_out is None:
            nodata_out = dem.nodata
        out[nodata_cells] = nodata_out
        metadata = dict(dem.metadata)
        metadata.update({'unbreached' : num_unbreached,
                         'max_distance' : max_distance})
        out = self._output_handler(data=out, viewfinder=dem.viewfinder,
                                   metadata=metadata, nodata=nodata_out)
        return out

    def fill_depressions(self, dem, epsilon=False, nodata_out=None, **kwargs):
        """
        Fill multi-celled depressions in a DEM using the priority-flood algorithm.
        Cells on the edge of the grid or next to no-data cells act as outlets.

        Parameters
        ----------
        dem : Raster
              Digital elevation data
        epsilon : bool
                  If True, raise filled cells by the smallest representable increment
                  so that every cell has a strictly lower neighbor. If False, fill
                  depressions flat to their spill elevation.
        nodata_out : int or float
                     Value indicating no data in output raster. Defaults to dem.nodata.

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        flooded_dem : Raster
                      Elevations with every depression filled to its spill level.
        """
        input_overrides = {'dtype' : np.float64, 'nodata' : dem.nodata}
        kwargs.update(input_overrides)
        dem = self._input_handler(dem, name='dem', **kwargs)
        nodata_cells = self._get_nodata_cells(dem)
        out = self._fill(np.asarray(dem).copy(), nodata_cells, epsilon=epsilon)
        if nodata_out is None:
            nodata_out = dem.nodata
        out[nodata_cells] = nodata_out
        out = self._output_handler(data=out, viewfinder=dem.viewfinder,
                                   metadata=dem.metadata, nodata=nodata_out)
        return out

    def detect_pits(self, dem, **kwargs):
        """
        Detect pits in a digital elevation model: cells away from the edge of the
        data whose neighbors are all at or above the cell, at least one of them
        strictly higher.

        Parameters
        ----------
        dem : Raster
              Digital elevation data.

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        pits : Raster
               True at every pit.
        """
        input_overrides = {'dtype' : np.float64, 'nodata' : dem.nodata}
        kwargs.update(input_overrides)
        dem = self._input_handler(dem, name='dem', **kwargs)
        nodata_cells = self._get_nodata_cells(dem)
        boundary = _self._boundary_cells_numba(nodata_cells)
        pits = _self._find_pits_numba(np.asarray(dem), nodata_cells, boundary)
        pits = self._output_handler(data=pits, viewfinder=dem.viewfinder,
                                    metadata=dem.metadata, nodata=False)
        return pits

    def detect_depressions(self, dem, **kwargs):
        """
        Mark every cell that a depression fill would raise.

        Parameters
        ----------
        dem : Raster
              Digital elevation data

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        depressions : Raster
                      True at every cell inside a depression.
        """
        input_overrides = {'dtype' : np.float64, 'nodata' : dem.nodata}
        kwargs.update(input_overrides)
        dem = self._input_handler(dem, name='dem', **kwargs)
        nodata_cells = self._get_nodata_cells(dem)
        depressions = self._depressions(np.asarray(dem), nodata_cells)
        depressions = self._output_handler(data=depressions,
                                           viewfinder=dem.viewfinder,
                                           metadata=dem.metadata,
                                           nodata=False)
        return depressions

    def detect_flats(self, dem, **kwargs):
        """
        Detect flats in a digital elevation dataset: cells away from the edge of
        the data with no lower neighbor and at least one neighbor of equal height.

        Parameters
        ----------
        dem : Raster
              Digital elevation data

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        flats : Raster
                True at every flat cell.
        """
        input_overrides = {'dtype' : np.float64, 'nodata' : dem.nodata}
        kwargs.update(input_overrides)
        dem = self._input_handler(dem, name='dem', **kwargs)
        nodata_cells = self._get_nodata_cells(dem)
        boundary = _self._boundary_cells_numba(nodata_cells)
        flats = _self._find_flats_numba(np.asarray(dem), nodata_cells, boundary)
        flats = self._output_handler(data=flats, viewfinder=dem.viewfinder,
                                     metadata=dem.metadata, nodata=False)
        return flats

    def flowdir(self, dem, flats=-1, pits=-2, nodata_out=0,
                dirmap=(64, 128, 1, 2, 4, 8, 16, 32), **kwargs):
        """
        Generates a D8 flow direction raster from a DEM grid. Each cell drains to
        the neighbor with the steepest downhill slope; ties go to the first
        neighbor in the order [N, NE, E, SE, S, SW, W, NW]. A cell on the edge
        of the data with no lower neighbor drains off the grid, towards the
        first neighbor (in the same order) that lies off the grid or on a
        no-data cell.

        Parameters
        ----------
        dem : Raster
              Elevations to route over.
        flats : int
                Code written at flat cells.
        pits : int
               Code written at pits.
        nodata_out : int
                     Code written at nodata cells.
        dirmap : list or tuple (length 8)
                 Flow direction codes for [N, NE, E, SE, S, SW, W, NW].

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        fdir : Raster
               Raster indicating flow directions, with dtype int64. The metadata
               entry 'undefined' counts the cells flagged as flats or pits.
        """
        dirmap = self._check_dirmap(dirmap)
        flats, pits, nodata_out = int(flats), int(pits), int(nodata_out)
        sentinels = (flats, pits, nodata_out)
        if len(set(sentinels)) < 3 or set(sentinels) & set(dirmap):
            raise ValueError('`flats`, `pits` and `nodata_out` must be distinct '
                             'and must not appear in `dirmap`.')
        input_overrides = {'dtype' : np.float64, 'nodata' : dem.nodata}
        kwargs.update(input_overrides)
        dem = self._input_handler(dem, name='dem', **kwargs)
        nodata_cells = self._get_nodata_cells(dem)
        # Cell spans for slope denominators
        dx = abs(dem.affine.a)
        dy = abs(dem.affine.e)
        # Steepest descent
        fdir = _self._d8_flowdir_numba(np.asarray(dem), dx, dy, dirmap, nodata_cells,
                                       nodata_out, flats, pits)
        undefined = int(np.count_nonzero((fdir == flats) | (fdir == pits)))
        if undefined:
            logger.warning('%d cell(s) have no defined flow direction', undefined)
        fdir = self._output_handler(data=fdir, viewfinder=dem.viewfinder,
                                    metadata=dem.metadata, nodata=nodata_out)
        fdir.metadata.update({'dirmap' : dirmap, 'flats' : flats, 'pits' : pits,
                              'undefined' : undefined})
        return fdir

    def undefined_cells(self, fdir, flats=None, pits=None):
        """
        Return the (row, col) indices of cells flagged as flats or pits.

        Parameters
        ----------
        fdir : Raster
               Flow direction data.
        flats, pits : int
                      Sentinel values. Default to the values recorded in
                      fdir.metadata (or -1 and -2).

        Returns
        -------
        cells : np.ndarray with shape (N, 2)
        """
        if flats is None:
            flats = fdir.metadata.get('flats', -1)
        if pits is None:
            pits = fdir.metadata.get('pits', -2)
        arr = np.asarray(fdir)
        return np.argwhere((arr == flats) | (arr == pits)).astype(np.int64)

    def accumulation(self, fdir, weights=None, dirmap=(64, 128, 1, 2, 4, 8, 16, 32),
                     nodata_out=0., **kwargs):
        """
        Count the cells draining through each cell, itself included. With
        `weights`, sum their weights instead.

        Parameters
        ----------
        fdir : Raster
               Flow direction data.
        weights : Raster
                  Per-cell contribution. Defaults to one everywhere.
        dirmap : list or tuple (length 8)
                 Flow direction codes for [N, NE, E, SE, S, SW, W, NW].
        nodata_out : int or float
                     Accumulation written to nodata cells.

        Remaining keyword arguments are passed on to self.view.

        Returns
        --------
        acc : Raster
              Float Raster of (weighted) upstream totals.
        """
        dirmap = self._check_dirmap(dirmap)
        fdir_overrides = {'dtype' : np.int64, 'nodata' : fdir.nodata}
        kwargs.update(fdir_overrides)
        fdir = self._input_handler(fdir, name='fdir', **kwargs)
        nodata_cells = self._get_nodata_cells(fdir)
        # Start from the weights, or from one per valid cell
        if weights is not None:
            weights_overrides = {'dtype' : np.float64, 'nodata' : weights.nodata}
            kwargs.update(weights_overrides)
            weights = self._input_handler(weights, name='weights', **kwargs)
            weights_nodata = self._get_nodata_cells(weights)
            acc = np.where(nodata_cells | weights_nodata, 0., np.asarray(weights))
        else:
            acc = (~nodata_cells).astype(np.float64)
        acc = np.ascontiguousarray(acc, dtype=np.float64)
        receivers = _self._d8_receivers_numba(np.asarray(fdir), dirmap, nodata_cells)
        indegree = np.bincount(receivers[receivers >= 0],
                               minlength=fdir.size).astype(np.uint8)
        # Kahn ordering from cells nothing drains into
        startnodes = np.flatnonzero(indegree == 0).astype(np.int64)
        acc = _self._d8_accumulation_iter_numba(acc, receivers, indegree, startnodes)
        # Cells never released belong to (or drain into) a cycle
        if indegree.any():
            cells = np.column_stack(np.unravel_index(np.flatnonzero(indegree),
                                                     fdir.shape))
            raise CyclicFlowDirection(cells)
        acc[nodata_cells] = nodata_out
        acc = self._output_handler(data=acc, viewfinder=fdir.viewfinder,
                                   metadata=fdir.metadata, nodata=nodata_out)
        return acc

    def extract_streams(self, acc, threshold, **kwargs):
        """
        Mark the cells whose accumulation reaches a threshold.

        Parameters
        ----------
        acc : Raster
              Flow accumulation data.
        threshold : int or float
                    Minimum accumulation of a stream cell. Must be positive and finite.

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        streams : Raster
                  Boolean Raster indicating stream cells.
        """
        threshold = _check_threshold(threshold)
        input_overrides = {'dtype' : np.float64, 'nodata' : acc.nodata}
        kwargs.update(input_overrides)
        acc = self._input_handler(acc, name='acc', **kwargs)
        nodata_cells = self._get_nodata_cells(acc)
        streams = (np.asarray(acc) >= threshold) & ~nodata_cells
        logger.info('%d stream cell(s) at threshold %g', np.count_nonzero(streams),
                    threshold)
        metadata = dict(acc.metadata)
        metadata['threshold'] = threshold
        streams = self._output_handler(data=streams, viewfinder=acc.viewfinder,
                                       metadata=metadata, nodata=False)
        return streams

    def extract_river_network(self, fdir, streams, dirmap=(64, 128, 1, 2, 4, 8, 16, 32),
                              **kwargs):
        """
        Generates river segments from flow direction and stream arrays.

        Parameters
        ----------
        fdir : Raster
               Flow direction data.
        streams : Raster
                  True at stream cells.
        dirmap : list or tuple (length 8)
                 Flow direction codes for [N, NE, E, SE, S, SW, W, NW].

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        geo : geojson.FeatureCollection
              A geojson feature collection of river segments, split at confluences.
              Coordinates are cell centers, ordered downstream.
        """
        dirmap = self._check_dirmap(dirmap)
        fdir_overrides = {'dtype' : np.int64, 'nodata' : fdir.nodata}
        kwargs.update(fdir_overrides)
        fdir = self._input_handler(fdir, name='fdir', **kwargs)
        mask_overrides = {'dtype' : np.bool_, 'nodata' : False}
        kwargs.update(mask_overrides)
        streams = self._input_handler(streams, name='streams', **kwargs)
        nodata_cells = self._get_nodata_cells(fdir)
        mask = np.asarray(streams).ravel()
        receivers = _self._d8_receivers_numba(np.asarray(fdir), dirmap, nodata_cells)
        # Only keep links between stream cells
        targets = np.where(receivers >= 0, receivers, 0)
        receivers = np.where(mask & (receivers >= 0) & mask[targets], receivers, -1)
        indegree = np.bincount(receivers[receivers >= 0],
                               minlength=fdir.size).astype(np.uint8)
        orig_indegree = np.copy(indegree)
        startnodes = np.flatnonzero(mask & (indegree == 0)).astype(np.int64)
        profiles = _self._d8_stream_network_iter_numba(receivers, indegree,
                                                       orig_indegree, startnodes)
        featurelist = []
        for index, profile in enumerate(profiles):
            yi, xi = np.unravel_index(list(profile), fdir.shape)
            x, y = View.cell_centers(fdir.affine, yi, xi)
            line = geojson.LineString(np.column_stack([x, y]).tolist())
            featurelist.append(geojson.Feature(geometry=line, id=index))
        geo = geojson.FeatureCollection(featurelist)
        logger.info('Extracted %d river segment(s)', len(featurelist))
        return geo

    def snap_to_stream(self, streams, xy, max_distance, return_dist=False,
                       return_index=False, **kwargs):
        """
        Snap pour points to the centers of the nearest stream cells.

        Parameters
        ----------
        streams : Raster
                  Boolean raster indicating stream cells.
        xy : np.ndarray-like with shape (2,) or (N, 2)
             Pour point coordinates (x, y).
        max_distance : float
                       Largest admissible snapping distance, in map units.
        return_dist : bool
                      If True, also return the snapping distances.
        return_index : bool
                       If True, also return the (row, col) indices of the snapped cells.

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        xy_new : np.ndarray with shape (N, 2)
                 Coordinates of the snapped pour points.
        dist : np.ndarray with shape (N,), (optional)
               Distances from points in xy to xy_new.
        rowcol : np.ndarray with shape (N, 2), (optional)
                 Row and column of the snapped cells.
        """
        if not isinstance(streams, Raster):
            raise TypeError('`streams` must be a Raster instance.')
        if np.isnan(max_distance) or max_distance <= 0:
            raise ValueError('`max_distance` must be positive.')
        xy = np.asarray(xy, dtype=np.float64)
        if xy.ndim == 1:
            xy = xy.reshape(1, -1)
        if xy.ndim != 2 or xy.shape[1] != 2:
            raise ValueError('`xy` must be an (x, y) pair or an array with shape (N, 2).')
        self._check_bounds(xy[:, 0], xy[:, 1])
        mask_overrides = {'dtype' : np.bool_, 'nodata' : False}
        kwargs.update(mask_overrides)
        streams = self._input_handler(streams, name='streams', **kwargs)
        xy_new, dist, rowcol = View.snap_to_mask(streams, xy, affine=streams.affine,
                                                 max_distance=max_distance)
        failed = ~np.isfinite(dist)
        if failed.any():
            cols, rows = self.nearest_cell(xy[failed, 0], xy[failed, 1],
                                           affine=streams.affine, snap='center')
            rows = np.clip(rows, 0, self.shape[0] - 1)
            cols = np.clip(cols, 0, self.shape[1] - 1)
            raise PourPointSnapFailure(xy[failed], np.column_stack([rows, cols]),
                                       max_distance)
        logger.info('Snapped %d pour point(s); largest move %g', len(xy), dist.max())
        out = [xy_new]
        if return_dist:
            out.append(dist)
        if return_index:
            out.append(rowcol)
        if len(out) == 1:
            return xy_new
        return tuple(out)

    def snap_to_mask(self, mask, xy, return_dist=False, max_distance=np.inf, **kwargs):
        """
        Snap a set of coordinates (given by `xy`) to the nearest nonzero cells in a
        boolean raster (given by `mask`). Points with no nonzero cell within
        `max_distance` map to nan.

        Parameters
        ----------
        mask : Raster
               Cells to snap to are nonzero.
        xy : np.ndarray-like with shape (N, 2)
             Point coordinates, such as gauge locations.
        return_dist : bool
                      Also return the distance of each point to its match.
        max_distance : float
                       Matches farther than this are dropped; exactly this far is kept.

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        xy_new : np.ndarray with shape (N, 2)
                 Center of the matched cell for each point.
        dist : np.ndarray with shape (N,), (optional)
               Distance to the match, inf where there is none.
        """
        if not isinstance(mask, Raster):
            raise TypeError('`mask` must be a Raster instance.')
        mask_overrides = {'dtype' : np.bool_, 'nodata' : False}
        kwargs.update(mask_overrides)
        mask = self._input_handler(mask, name='mask', **kwargs)
        xy_new, dist, _ = View.snap_to_mask(mask, xy, affine=mask.affine,
                                            max_distance=max_distance)
        if return_dist:
            return xy_new, dist
        return xy_new

    def catchment(self, x, y, fdir, dirmap=(64, 128, 1, 2, 4, 8, 16, 32),
                  nodata_out=False, xytype='coordinate', snap='center', **kwargs):
        """
        Delineates the watershed draining to one or more pour points (x, y).
        With several pour points the union of their watersheds is returned.

        Parameters
        ----------
        x : float or int, or sequence of them
            Pour point x coordinate(s), or column(s) when xytype='index'.
        y : float or int, or sequence of them
            Pour point y coordinate(s), or row(s) when xytype='index'.
        fdir : Raster
               Flow direction data.
        dirmap : list or tuple (length 8)
                 Flow direction codes for [N, NE, E, SE, S, SW, W, NW].
        nodata_out : bool
                     Value written outside the catchment.
        xytype : str
                 'coordinate' (map coordinates, located with self.nearest_cell)
                 or 'index' (column and row).
        snap : str
               Cell lookup for coordinates, 'center' or 'corner'; see nearest_cell.

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        catch : Raster
                True for every cell draining to a pour point, pour points included.
        """
        dirmap = self._check_dirmap(dirmap)
        input_overrides = {'dtype' : np.int64, 'nodata' : fdir.nodata}
        kwargs.update(input_overrides)
        fdir = self._input_handler(fdir, name='fdir', **kwargs)
        x = np.atleast_1d(np.asarray(x)).ravel()
        y = np.atleast_1d(np.asarray(y)).ravel()
        if x.shape != y.shape:
            raise ValueError('`x` and `y` must have the same length.')
        if xytype == 'coordinate':
            self._check_bounds(x, y)
            cols, rows = self.nearest_cell(x.astype(np.float64), y.astype(np.float64),
                                           affine=fdir.affine, snap=snap)
            # Points on the far edge of the bbox belong to the last row/column
            rows = np.clip(np.atleast_1d(rows), 0, fdir.shape[0] - 1)
            cols = np.clip(np.atleast_1d(cols), 0, fdir.shape[1] - 1)
        elif xytype == 'index':
            cols = x.astype(np.int64)
            rows = y.astype(np.int64)
            out_of_bounds = ((cols < 0) | (rows < 0) | (cols >= fdir.shape[1])
                             | (rows >= fdir.shape[0]))
            if out_of_bounds.any():
                raise ValueError('Pour point(s) {} are out of bounds for dataset with shape {}.'
                                 .format(np.column_stack([cols, rows])[out_of_bounds].tolist(),
                                         fdir.shape))
        else:
            raise ValueError("`xytype` must be one of: 'coordinate', 'index'")
        rows = rows.astype(np.int64)
        cols = cols.astype(np.int64)
        nodata_cells = self._get_nodata_cells(fdir)
        on_nodata = nodata_cells[rows, cols]
        if on_nodata.any():
            raise ValueError('Pour point(s) at (row, col) {} lie on no-data cells.'
                             .format(np.column_stack([rows, cols])[on_nodata].tolist()))
        catch = _self._d8_catchment_iter_numba(np.asarray(fdir), rows, cols, dirmap)
        logger.info('Delineated catchment of %d cell(s) from %d pour point(s)',
                    np.count_nonzero(catch), rows.size)
        catch = self._output_handler(data=catch, viewfinder=fdir.viewfinder,
                                     metadata=fdir.metadata, nodata=nodata_out)
        return catch

    def hillshade(self, dem, azimuth=315., altitude=45., z_factor=1., **kwargs):
        """
        Compute shaded relief from a DEM.

        Parameters
        ----------
        dem : Raster
              Digital elevation data.
        azimuth : float
                  Direction of the light source, in degrees clockwise from north.
        altitude : float
                   Angle of the light source above the horizon, in degrees.
        z_factor : float
                   Vertical exaggeration applied to elevations.

        Remaining keyword arguments are passed on to self.view.

        Returns
        -------
        shade : Raster
                Illumination in [0, 1]; no-data cells (and cells whose gradient
                depends on them) are nan.
        """
        input_overrides = {'dtype' : np.float64, 'nodata' : dem.nodata}
        kwargs.update(input_overrides)
        dem = self._input_handler(dem, name='dem', **kwargs)
        nodata_cells = self._get_nodata_cells(dem)
        elevation = np.where(nodata_cells, np.nan, np.asarray(dem)) * z_factor
        dy, dx = dem.dy_dx
        if min(elevation.shape) < 2:
            raise ValueError('Hillshade needs at least two rows and two columns.')
        x, y = np.gradient(elevation, dy, dx)
        azimuth_rad = np.radians(azimuth)
        altitude_rad = np.radians(altitude)
        slope_rad = np.arctan(np.sqrt(x*x + y*y))
        aspect_rad = np.arctan2(-x, y)
        shaded = np.sin(altitude_rad) * np.cos(slope_rad) + \
                 np.cos(altitude_rad) * np.sin(slope_rad) * \
                 np.cos(azimuth_rad - aspect_rad)
        shaded = np.clip(shaded, 0, 1)
        shaded[nodata_cells] = np.nan
        metadata = {'azimuth' : azimuth, 'altitude' : altitude, 'z_factor' : z_factor}
        shaded = self._output_handler(data=shaded, viewfinder=dem.viewfinder,
                                      metadata=metadata, nodata=np.nan)
        return shaded

    def _breach(self, dem, nodata_cells, max_distance):
        max_distance = int(max_distance)
        if max_distance < 1:
            raise ValueError('`max_distance` must be at least one cell.')
        boundary = _self._boundary_cells_numba(nodata_cells)
        pits = _self._find_pits_numba(dem, nodata_cells, boundary)
        pit_rows, pit_cols = np.nonzero(pits)
        # Lowest pits first
        order = np.argsort(dem[pit_rows, pit_cols], kind='stable')
        pit_rows = pit_rows[order].astype(np.int64)
        pit_cols = pit_cols[order].astype(np.int64)
        # Drop per carved cell, leaving 2**16 representable values between
        # neighbouring cells of a carved path
        valid = dem[~nodata_cells]
        scale = max(float(np.abs(valid).max()), 1.) if valid.size else 1.
        increment = float(np.spacing(scale)) * 2**16
        dem, unbreached = _priority_flood.breach_depressions(dem, nodata_cells, boundary,
                                                             pit_rows, pit_cols,
                                                             max_distance, increment)
        num_unbreached = int(np.count_nonzero(unbreached))
        logger.info('Breached %d of %d pit(s) within %d cell(s)',
                    pit_rows.size - num_unbreached, pit_rows.size, max_distance)
        return dem, num_unbreached

    def _fill(self, dem, nodata_cells, epsilon=False):
        boundary = _self._boundary_cells_numba(nodata_cells)
        if epsilon:
            dem = _priority_flood.fill_depressions_epsilon(dem, nodata_cells, boundary)
        else:
            dem = _priority_flood.fill_depressions(dem, nodata_cells, boundary)
        return dem

    def _depressions(self, dem, nodata_cells):
        depressions = np.zeros(dem.shape, dtype=np.bool_)
        if nodata_cells.all():
            return depressions
        boundary = _self._boundary_cells_numba(nodata_cells)
        # No-data cells act as outlets, below every valid cell
        data = np.where(nodata_cells, dem[~nodata_cells].min() - 1, dem)
        outlets = boundary | nodata_cells
        seed = np.where(outlets, data, data.max())
        filled = skimage.morphology.reconstruction(seed, data, method='erosion')
        depressions[(filled > data) & ~nodata_cells] = True
        return depressions

    def _check_bounds(self, x, y):
        xmin, ymin, xmax, ymax = self.bbox
        outside = (x < xmin) | (x > xmax) | (y < ymin) | (y > ymax)
        if np.any(outside):
            points = np.column_stack([x, y])[outside].tolist()
            raise ValueError('Point(s) {} are out of bounds for dataset with bbox {}.'
                             .format(points, (xmin, ymin, xmax, ymax)))

    def _check_dirmap(self, dirmap):
        dirmap = tuple(int(d) for d in dirmap)
        if len(dirmap) != 8:
            raise ValueError('`dirmap` must contain 8 values.')
        if len(set(dirmap)) != 8:
            raise ValueError('`dirmap` values must be distinct.')
        return dirmap

    def _input_handler(self, data, name='data', **kwargs):
        if not isinstance(data, Raster):
            raise TypeError('`{}` must be a Raster.'.format(name))
        dataset = self.view(data, data_view=data.viewfinder, target_view=self.viewfinder,
                            name=name, **kwargs)
        return dataset

    def _output_handler(self, data, viewfinder, metadata={}, **kwargs):
        new_view = ViewFinder(**viewfinder.properties)
        for param, value in kwargs.items():
            if (value is not None) and (hasattr(new_view, param)):
                setattr(new_view, param, value)
        dataset = Raster(data, new_view, metadata=metadata)
        return dataset

    def _get_nodata_cells(self, data):
        if not isinstance(data, Raster):
            raise TypeError('Data must be a Raster.')
        nodata = data.nodata
        if np.isnan(nodata):
            nodata_cells = np.isnan(data).astype(np.bool_)
        else:
            nodata_cells = (data == nodata).astype(np.bool_)
        return np.asarray(nodata_cells)
