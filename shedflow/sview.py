import numpy as np
import pyproj
import scipy.spatial
from affine import Affine

import shedflow._sview as _self
from shedflow.errors import GridMismatch

_pyproj_init = 'epsg:4326'

class Raster(np.ndarray):
    """
    numpy array tied to a ViewFinder, so every cell has a place on the map.
    Built from any array-like plus a ViewFinder of the same shape; `metadata`
    carries per-dataset extras such as the dirmap of a flow direction grid.

    Attributes
    ==========
    viewfinder : ViewFinder for the array; the spatial attributes below are
                 read from it.
    affine : Cell-to-coordinate transform (affine.Affine).
    shape : (rows, columns).
    crs : Coordinate reference system (pyproj.Proj).
    nodata : Fill value for cells without data.
    mask : Boolean array of active cells.
    metadata : dict of dataset extras, copied along with the array.
    bbox : Bounds as (xmin, ymin, xmax, ymax).
    extent : Bounds as (xmin, xmax, ymin, ymax), for plotting.
    dy_dx : Cell height and width in map units.
    """

    def __new__(cls, input_array, viewfinder=None, metadata=None):
        if isinstance(input_array, Raster):
            if viewfinder is None:
                viewfinder = input_array.viewfinder
            if metadata is None:
                metadata = input_array.metadata
        if metadata is None:
            metadata = {}
        obj = np.asarray(input_array).view(cls)
        # If no viewfinder provided, construct one congruent with the array shape
        if viewfinder is None:
            viewfinder = ViewFinder(shape=obj.shape)
        elif not isinstance(viewfinder, ViewFinder):
            raise ValueError("Must initialize with a ViewFinder.")
        if viewfinder.shape != obj.shape:
            raise ValueError('Viewfinder and array shape must be the same.')
        if (np.issubdtype(obj.dtype, np.object_)
            or np.issubdtype(obj.dtype, np.flexible)):
            raise TypeError('`object` and `flexible` dtypes not allowed.')
        if not np.min_scalar_type(viewfinder.nodata) <= obj.dtype:
            raise TypeError('`nodata` value not representable in dtype of array.')
        # Don't allow original viewfinder and metadata to be modified
        obj._viewfinder = viewfinder.copy()
        obj.metadata = dict(metadata)
        return obj

    def __array_finalize__(self, obj):
        if obj is None:
            return
        self._viewfinder = getattr(obj, '_viewfinder', None)
        self.metadata = getattr(obj, 'metadata', None)

    @property
    def viewfinder(self):
        return self._viewfinder

    @viewfinder.setter
    def viewfinder(self, new_viewfinder):
        if not isinstance(new_viewfinder, ViewFinder):
            raise ValueError("Must be a `ViewFinder` object")
        if new_viewfinder.shape != self.shape:
            raise ValueError('viewfinder and raster array must have the same shape.')
        self._viewfinder = new_viewfinder

    @property
    def affine(self):
        return self.viewfinder.affine

    @property
    def mask(self):
        return self.viewfinder.mask

    @property
    def nodata(self):
        return self.viewfinder.nodata

    @property
    def crs(self):
        return self.viewfinder.crs

    @property
    def bbox(self):
        return self.viewfinder.bbox

    @property
    def extent(self):
        bbox = self.viewfinder.bbox
        return (bbox[0], bbox[2], bbox[1], bbox[3])

    @property
    def properties(self):
        return self.viewfinder.properties

    @property
    def dy_dx(self):
        return (abs(self.affine.e), abs(self.affine.a))

class ViewFinder():
    """
    Placement of a grid on the map: the `affine` transform, the `shape`, the
    `crs`, a boolean `mask` of active cells and the `nodata` fill value. Two
    datasets can be combined only when their viewfinders are congruent.

    Attributes
    ==========
    affine : Cell-to-coordinate transform (affine.Affine).
    shape : (rows, columns).
    crs : Coordinate reference system (pyproj.Proj).
    nodata : Fill value for cells without data.
    mask : Boolean array of active cells. Defaults to all True.
    bbox : Bounds as (xmin, ymin, xmax, ymax).
    size : Total cell count.
    """
    def __init__(self, affine=Affine(1., 0., 0., 0., 1., 0.), shape=(1,1),
                 nodata=0, mask=None, crs=pyproj.Proj(_pyproj_init)):
        self.affine = affine
        self.crs = crs
        self.nodata = nodata
        if mask is None:
            self.mask = np.ones(shape, dtype=np.bool_)
        else:
            self.mask = mask
            if self.mask.shape != tuple(shape):
                raise ValueError('`mask` must have the same shape as the view.')

    def __eq__(self, other):
        if not isinstance(other, ViewFinder):
            return False
        is_eq = self.is_congruent_with(other)
        is_eq &= bool((self.mask == other.mask).all())
        if np.isnan(self.nodata):
            is_eq &= bool(np.isnan(other.nodata))
        else:
            is_eq &= bool(self.nodata == other.nodata)
        return is_eq

    def __repr__(self):
        return '\n'.join([repr(k) + ' : ' + repr(v)
                          for k, v in self.properties.items()])

    @property
    def affine(self):
        return self._affine

    @affine.setter
    def affine(self, new_affine):
        if not isinstance(new_affine, Affine):
            raise TypeError('Affine transformation must be an `Affine` object')
        self._affine = new_affine

    @property
    def shape(self):
        return self.mask.shape

    @property
    def mask(self):
        return self._mask

    @mask.setter
    def mask(self, new_mask):
        new_mask = np.asarray(new_mask)
        if new_mask.dtype != np.bool_:
            raise TypeError('`mask` must be of boolean type')
        self._mask = new_mask

    @property
    def nodata(self):
        return self._nodata

    @nodata.setter
    def nodata(self, new_nodata):
        if np.min_scalar_type(new_nodata) == np.dtype('O'):
            raise TypeError('`nodata` value must be a numeric type.')
        self._nodata = new_nodata

    @property
    def crs(self):
        return self._crs

    @crs.setter
    def crs(self, new_crs):
        if not isinstance(new_crs, pyproj.Proj):
            raise TypeError('`crs` must be a `pyproj.Proj` object.')
        self._crs = new_crs

    @property
    def size(self):
        return int(np.prod(self.shape))

    @property
    def bbox(self):
        shape = self.shape
        x0, y0 = View.affine_transform(self.affine, 0, 0)
        x1, y1 = View.affine_transform(self.affine, shape[1], shape[0])
        return (min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))

    @property
    def dy_dx(self):
        return (abs(self.affine.e), abs(self.affine.a))

    @property
    def properties(self):
        return {
            'affine' : self.affine,
            'shape' : self.shape,
            'nodata' : self.nodata,
            'crs' : self.crs,
            'mask' : self.mask
        }

    def is_congruent_with(self, other):
        if not isinstance(other, ViewFinder):
            return False
        return bool((self.affine == other.affine)
                    and (tuple(self.shape) == tuple(other.shape))
                    and (self.crs.crs == other.crs.crs))

    def copy(self):
        # Proj objects are immutable and shared between copies
        return ViewFinder(affine=self.affine, shape=self.shape, nodata=self.nodata,
                          mask=self.mask.copy(), crs=self.crs)

class View():
    """
    Namespace of classmethods moving between arrays, cells and coordinates.

    Methods
    ==========
    view : Return a copy of a Raster on a congruent ViewFinder.
    affine_transform : Map points through an affine transform.
    nearest_cell : Column and row of the cell at a set of x, y coordinates.
    cell_centers : Geographic coordinates of cell centers.
    snap_to_mask : Snap points to the nearest nonzero cell of a mask.
    """

    def __init__(self):
        raise NotImplementedError('The View class is used for classmethods '
                                  'and is not meant to be instantiated.')

    @classmethod
    def view(cls, data, target_view, data_view=None, apply_input_mask=False,
             apply_output_mask=True, inherit_nodata=True, mask=None, nodata=None,
             dtype=None, inherit_metadata=True, new_metadata=None, name='data'):
        """
        Return a copy of a gridded dataset `data` on the grid defined by `target_view`.
        The two grids must be congruent (same affine, shape and crs); data is never
        resampled.

        Parameters
        ----------
        data : Raster
               Gridded data to copy.
        target_view : ViewFinder
                      Grid to place the copy on.
        data_view : ViewFinder
                    Grid of the data. Defaults to data.viewfinder.
        apply_input_mask : bool
                           Set cells outside data_view.mask to nodata first.
        apply_output_mask : bool
                            Set cells outside the output mask to nodata.
        inherit_nodata : bool
                         Take nodata from data_view (True) or target_view (False).
        mask : np.ndarray or Raster
               Output mask, in place of target_view.mask.
        nodata : int or float
                 Output nodata, in place of the inherited one.
        dtype : numpy datatype
                Output dtype. Defaults to one holding both data and nodata.
        inherit_metadata : bool
                           Copy the metadata of `data` onto the output.
        new_metadata : dict
                       Extra metadata for the output.
        name : str
               Name of the dataset, used in error messages.

        Returns
        -------
        out : Raster
              Copy of the input Raster on the target view.
        """
        if data_view is None:
            if not isinstance(data, Raster):
                raise TypeError('`data` must be a Raster instance.')
            data_view = data.viewfinder
        if not data_view.is_congruent_with(target_view):
            raise GridMismatch(target_view, data_view, name=name)
        if nodata is None:
            nodata = data_view.nodata if inherit_nodata else target_view.nodata
        target_view = target_view.copy()
        target_view.nodata = nodata
        if mask is not None:
            target_view.mask = np.asarray(mask).astype(np.bool_)
        if dtype is None:
            dtype = max(np.min_scalar_type(nodata), data.dtype)
        arr = np.asarray(data)
        if apply_input_mask:
            arr = np.where(data_view.mask, arr, nodata)
        if apply_output_mask:
            arr = np.where(target_view.mask, arr, nodata)
        out = Raster(np.array(arr, dtype=dtype), target_view)
        if inherit_metadata and isinstance(data, Raster):
            out.metadata.update(data.metadata)
        if new_metadata:
            out.metadata.update(new_metadata)
        return out

    @classmethod
    def affine_transform(cls, affine, x, y):
        """
        Map a point, or arrays of points, through `affine`. Scalars give a pair
        of floats and sequences a pair of float arrays.
        """
        if not isinstance(affine, Affine):
            raise TypeError('`affine` must be an Affine instance')
        affine = tuple(float(v) for v in affine)
        if hasattr(x, '__len__'):
            if not hasattr(y, '__len__'):
                raise TypeError('If `x` is a sequence, `y` must also be a sequence')
            x = np.ascontiguousarray(x, dtype=np.float64).ravel()
            y = np.ascontiguousarray(y, dtype=np.float64).ravel()
            return _self._affine_map_vec_numba(affine, x, y)
        return _self._affine_map_scalar_numba(affine, float(x), float(y))

    @classmethod
    def nearest_cell(cls, x, y, affine, snap='center'):
        """
        Column and row of the cell at coordinate(s) (x, y) on the grid of
        `affine`. snap='center' floors the fractional index, giving the cell the
        point falls in; snap='corner' rounds it, giving the cell whose top-left
        corner is nearest.
        """
        if not isinstance(affine, Affine):
            raise TypeError('affine must be an Affine instance.')
        snap_dict = {'corner': np.around, 'center': np.floor}
        if snap not in snap_dict:
            raise ValueError("`snap` must be one of: 'corner', 'center'")
        xi, yi = cls.affine_transform(~affine, x, y)
        col, row = snap_dict[snap]((xi, yi)).astype(np.int64)
        return col, row

    @classmethod
    def cell_centers(cls, affine, rows, cols):
        """
        Geographic coordinates of the centers of the given cells.

        Parameters
        ----------
        affine : affine.Affine
                 Affine transformation of the grid.
        rows, cols : np.ndarray
                     Row and column indices.

        Returns
        -------
        x, y : tuple of np.ndarray
        """
        cols = np.asarray(cols, dtype=np.float64) + 0.5
        rows = np.asarray(rows, dtype=np.float64) + 0.5
        return cls.affine_transform(affine, cols, rows)

    @classmethod
    def snap_to_mask(cls, mask, xy, affine=None, max_distance=np.inf):
        """
        Snap a set of coordinates (given by `xy`) to the centers of the nearest
        nonzero cells in a boolean array (given by `mask`).

        Parameters
        ----------
        mask : Raster or np.ndarray
               Array with nonzero elements indicating cells to match to.
        xy : np.ndarray-like with shape (N, 2)
             Points to match.
        affine : affine.Affine
                 Affine transformation. Defaults to `mask.affine` if mask is a Raster.
        max_distance : float
                       Largest admissible distance between a point and its match.
                       A cell exactly this far away is still matched.

        Returns
        -------
        xy_new : np.ndarray with shape (N, 2)
                 Coordinates of nearest cell centers where mask is nonzero. Rows
                 with no match within `max_distance` are nan.
        dist : np.ndarray with shape (N,)
               Distances from points in xy to xy_new (inf where unmatched).
        rowcol : np.ndarray with shape (N, 2)
                 Row and column of the matched cells (-1 where unmatched).
        """
        if affine is None:
            if not isinstance(mask, Raster):
                raise TypeError('If no affine transform given, mask must be a raster')
            affine = mask.affine
        xy = np.asarray(xy, dtype=np.float64).reshape(-1, 2)
        n = xy.shape[0]
        xy_new = np.full((n, 2), np.nan)
        dist = np.full(n, np.inf)
        rowcol = np.full((n, 2), -1, dtype=np.int64)
        yi, xi = np.nonzero(np.asarray(mask))
        if yi.size == 0:
            return xy_new, dist, rowcol
        x, y = cls.cell_centers(affine, yi, xi)
        tree_xy = np.column_stack([x, y])
        tree = scipy.spatial.cKDTree(tree_xy)
        # cKDTree excludes matches at exactly the upper bound
        bound = np.nextafter(float(max_distance), np.inf)
        dist, ix = tree.query(xy, distance_upper_bound=bound)
        found = np.isfinite(dist)
        xy_new[found] = tree_xy[ix[found]]
        rowcol[found] = np.column_stack([yi[ix[found]], xi[ix[found]]])
        return xy_new, dist, rowcol
