import numpy as np


class ShedflowError(Exception):
    """
    Base class for conditions that halt a hydrologic computation.

    Attributes
    ==========
    cells : (N, 2) np.ndarray of ints
            Row and column indices of the offending cells (may be empty).
    """

    def __init__(self, message, cells=None):
        super().__init__(message)
        if cells is None:
            cells = np.empty((0, 2), dtype=np.int64)
        self.cells = np.asarray(cells, dtype=np.int64).reshape(-1, 2)

    @staticmethod
    def _describe(cells, limit=5):
        cells = np.asarray(cells, dtype=np.int64).reshape(-1, 2)
        head = ', '.join('({}, {})'.format(r, c) for r, c in cells[:limit])
        if len(cells) > limit:
            head += ', ... ({} more)'.format(len(cells) - limit)
        return head


class UnresolvedDepression(ShedflowError):
    """Depression cells left after breaching (and filling, if enabled)."""

    def __init__(self, cells, tolerance=0):
        cells = np.asarray(cells, dtype=np.int64).reshape(-1, 2)
        message = ('{} cell(s) remain in unresolved depressions (tolerance {}): {}'
                   .format(len(cells), tolerance, self._describe(cells)))
        super().__init__(message, cells=cells)
        self.tolerance = tolerance


class UndefinedFlowDirection(ShedflowError):
    """Flat or pit cells with no descent path."""

    def __init__(self, cells):
        cells = np.asarray(cells, dtype=np.int64).reshape(-1, 2)
        message = ('{} cell(s) have no defined flow direction: {}'
                   .format(len(cells), self._describe(cells)))
        super().__init__(message, cells=cells)


class CyclicFlowDirection(ShedflowError):
    """Flow direction raster contains a cycle, so accumulation is undefined."""

    def __init__(self, cells):
        cells = np.asarray(cells, dtype=np.int64).reshape(-1, 2)
        message = ('Flow directions form a cycle through {} cell(s): {}'
                   .format(len(cells), self._describe(cells)))
        super().__init__(message, cells=cells)


class PourPointSnapFailure(ShedflowError):
    """
    No stream cell lies within the snap distance of a pour point.

    Attributes
    ==========
    points : (N, 2) np.ndarray
             The (x, y) coordinates that could not be snapped.
    cells : (N, 2) np.ndarray
            Row and column of the grid cell containing each failed point.
    max_distance : float
                   The snap distance that was searched.
    """

    def __init__(self, points, cells, max_distance):
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        pts = ', '.join('({:g}, {:g})'.format(x, y) for x, y in points[:5])
        message = ('No stream cell within {:g} of pour point(s) {}'
                   .format(max_distance, pts))
        super().__init__(message, cells=cells)
        self.points = points
        self.max_distance = max_distance


class GridMismatch(ShedflowError):
    """Input rasters do not share dimensions, transform and CRS with the grid."""

    def __init__(self, expected, received, name='data'):
        message = ('`{}` is not congruent with the grid: expected shape {} and '
                   'affine {}, got shape {} and affine {}'
                   .format(name, expected.shape, tuple(expected.affine)[:6],
                           received.shape, tuple(received.affine)[:6]))
        super().__init__(message)
        self.expected = expected
        self.received = received
