import ast
import logging
import warnings
import numpy as np
import pyproj
import rasterio
import geojson
from affine import Affine
from shedflow.sview import Raster, ViewFinder, View

logger = logging.getLogger(__name__)

_pyproj_init = 'epsg:4326'

def read_ascii(data, skiprows=6, mask=None, crs=pyproj.Proj(_pyproj_init),
               xll='lower', yll='lower', metadata={}, **kwargs):
    """
    Load an ESRI ascii grid. The six header lines give the shape, lower-left
    origin, square cell size and NODATA_value; the body is read with
    numpy.loadtxt, which receives any extra keyword arguments.

    Parameters
    ----------
    data : str
           Path of the ascii file.
    skiprows : int (optional)
               Header lines before the cell values. Defaults to 6.
    mask : np.ndarray or Raster
           Boolean mask of active cells.
    crs : pyproj.Proj
          Coordinate reference system of the grid.
    xll, yll : 'lower' or 'center' (str)
               Whether the header origin is a cell corner (XLLCORNER) or a
               cell center (XLLCENTER).
    metadata : dict
               Extras attached to the Raster, e.g. {'dirmap' : (64, 128, ...)}.

    Returns
    -------
    out : Raster
    """
    with open(data) as header:
        ncols = int(header.readline().split()[1])
        nrows = int(header.readline().split()[1])
        x_ll = ast.literal_eval(header.readline().split()[1])
        y_ll = ast.literal_eval(header.readline().split()[1])
        cellsize = ast.literal_eval(header.readline().split()[1])
        # NODATA_value may be nan, which literal_eval rejects
        nodata = float(header.readline().split()[1])
        shape = (nrows, ncols)
    if xll == 'center':
        x_ll -= cellsize / 2
    if yll == 'center':
        y_ll -= cellsize / 2
    data = np.loadtxt(data, skiprows=skiprows, ndmin=2, **kwargs)
    nodata = data.dtype.type(nodata)
    affine = Affine(cellsize, 0., x_ll, 0., -cellsize, y_ll + nrows * cellsize)
    viewfinder = ViewFinder(affine=affine, shape=shape, mask=mask, nodata=nodata, crs=crs)
    out = Raster(data, viewfinder, metadata=metadata)
    logger.debug('Read %s grid with shape %s', out.dtype, out.shape)
    return out

def read_raster(data, band=1, window=None, nodata=None, metadata={}, **kwargs):
    """
    Load one band of any raster rasterio can open. Extra keyword arguments go
    to rasterio.open.

    Parameters
    ----------
    data : str
           Path of the raster file.
    band : int
           1-based band index.
    window : tuple
             Read only (xmin, ymin, xmax, ymax), in the file's coordinates.
    nodata : int or float
             Fill value for cells without data. Read from the file when None;
             a file without one falls back to 0 with a warning.
    metadata : dict
               Extras attached to the Raster, e.g. {'dirmap' : (64, 128, ...)}.

    Returns
    -------
    out : Raster
    """
    file_name = data
    with rasterio.open(file_name, **kwargs) as f:
        crs = pyproj.Proj(f.crs.to_wkt() if f.crs else _pyproj_init,
                          preserve_units=True)
        if window is None:
            data = np.ma.filled(f.read(band))
            affine = f.transform
        else:
            ix_window = f.window(*window)
            data = np.ma.filled(f.read(band, window=ix_window))
            affine = f.window_transform(ix_window)
        shape = data.shape
        if nodata is None:
            nodata = f.nodatavals[band - 1]
            if nodata is None:
                warnings.warn('No `nodata` value detected. Defaulting to 0.')
                nodata = 0
            else:
                nodata = data.dtype.type(nodata)
    viewfinder = ViewFinder(affine=affine, shape=shape, nodata=nodata, crs=crs)
    out = Raster(data, viewfinder, metadata=metadata)
    logger.debug('Read band %d of %s with shape %s', band, file_name, out.shape)
    return out

def to_ascii(data, file_name, target_view=None, delimiter=' ', fmt=None,
             apply_input_mask=False, apply_output_mask=True, inherit_nodata=True,
             nodata=None, dtype=None, **kwargs):
    """
    Save a Raster as an ESRI ascii grid with a corner-origin header. Cells
    must be square. Extra keyword arguments go to numpy.savetxt.

    Parameters
    ----------
    data : Raster
           Grid to save.
    file_name : str
                Destination path.
    target_view : ViewFinder
                  Congruent viewfinder to write on. Defaults to data.viewfinder.
    delimiter : str
                Column separator. Defaults to one space.
    fmt : str
          numpy.savetxt format. Defaults to '%d' for integer and boolean grids
          and full float precision otherwise.
    apply_input_mask, apply_output_mask, inherit_nodata, nodata, dtype :
          As for View.view.
    """
    if target_view is None:
        target_view = data.viewfinder
    data = View.view(data, target_view, apply_input_mask=apply_input_mask,
                     apply_output_mask=apply_output_mask,
                     inherit_nodata=inherit_nodata, nodata=nodata, dtype=dtype)
    if abs(data.affine.a) != abs(data.affine.e):
        raise ValueError('Raster cells must be square.')
    nodata = data.nodata
    shape = data.shape
    bbox = data.bbox
    cellsize = abs(data.affine.a)
    header_space = 9*' '
    header = (("ncols{0}{1}\nnrows{0}{2}\nxllcorner{0}{3}\n"
                "yllcorner{0}{4}\ncellsize{0}{5}\nNODATA_value{0}{6}")
                .format(header_space,
                        shape[1],
                        shape[0],
                        bbox[0],
                        bbox[1],
                        cellsize,
                        nodata))
    if fmt is None:
        if np.issubdtype(data.dtype, np.integer) or np.issubdtype(data.dtype, np.bool_):
            fmt = '%d'
        else:
            fmt = '%.18e'
    np.savetxt(file_name, np.asarray(data), fmt=fmt, delimiter=delimiter,
               header=header, comments='', **kwargs)
    logger.debug('Wrote ascii grid to %s', file_name)

def to_raster(data, file_name, target_view=None, profile=None, blockxsize=256,
              blockysize=256, apply_input_mask=False, apply_output_mask=True,
              inherit_nodata=True, nodata=None, dtype=None, **kwargs):
    """
    Save a Raster as a single-band tiled GeoTIFF. Boolean grids are stored as
    uint8 with nodata 0. Extra keyword arguments override profile entries.

    Parameters
    ----------
    data : Raster
           Grid to save.
    file_name : str
                Destination path.
    target_view : ViewFinder
                  Congruent viewfinder to write on. Defaults to data.viewfinder.
    profile : dict
              Base rasterio profile, in place of the tiled GeoTIFF default.
    blockxsize, blockysize : int
                             Tile width and height of the default profile.
    apply_input_mask, apply_output_mask, inherit_nodata, nodata, dtype :
          As for View.view.
    """
    if target_view is None:
        target_view = data.viewfinder
    # GeoTIFF has no boolean type
    if (dtype is None) and (data.dtype == np.bool_):
        dtype = np.uint8
        if nodata is None:
            nodata = 0
    data = View.view(data, target_view, apply_input_mask=apply_input_mask,
                     apply_output_mask=apply_output_mask,
                     inherit_nodata=inherit_nodata, nodata=nodata, dtype=dtype)
    height, width = data.shape
    default_profile = {
        'driver' : 'GTiff',
        'blockxsize' : blockxsize,
        'blockysize' : blockysize,
        'count': 1,
        'tiled' : True
    }
    profile = dict(profile) if profile else default_profile
    profile_updates = {
        'crs' : data.crs.srs,
        'transform' : data.affine,
        'dtype' : data.dtype.name,
        'nodata' : data.nodata,
        'height' : height,
        'width' : width
    }
    profile.update(profile_updates)
    profile.update(kwargs)
    with rasterio.open(file_name, 'w', **profile) as dst:
        dst.write(np.asarray(data), 1)
    logger.debug('Wrote %s raster to %s', data.dtype.name, file_name)

def to_geojson(obj, file_name, **kwargs):
    """
    Save a geojson object, such as a river network FeatureCollection.
    Extra keyword arguments go to geojson.dump.
    """
    with open(file_name, 'w') as dst:
        geojson.dump(obj, dst, **kwargs)
    logger.debug('Wrote geojson to %s', file_name)

def read_geojson(file_name):
    """
    Load the geojson object stored at `file_name`.
    """
    with open(file_name) as src:
        return geojson.load(src)
