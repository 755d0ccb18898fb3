import numpy as np
from numba import njit, prange
from numba.types import float64, int64, uint8, boolean, UniTuple, List

# Functions for boundary and pit detection

@njit(boolean[:,:](boolean[:,:]),
      parallel=True,
      cache=True)
def _boundary_cells_numba(nodata_cells):
    m, n = nodata_cells.shape
    row_offsets = np.array([-1, -1, 0, 1, 1, 1, 0, -1])
    col_offsets = np.array([0, 1, 1, 1, 0, -1, -1, -1])
    boundary = np.zeros((m, n), dtype=np.bool_)
    for i in prange(m):
        for j in range(n):
            if nodata_cells[i, j]:
                continue
            for k in range(8):
                row = i + row_offsets[k]
                col = j + col_offsets[k]
                if (row < 0) or (row >= m) or (col < 0) or (col >= n):
                    boundary[i, j] = True
                    break
                if nodata_cells[row, col]:
                    boundary[i, j] = True
                    break
    return boundary

@njit(boolean[:,:](float64[:,:], boolean[:,:], boolean[:,:]),
      parallel=True,
      cache=True)
def _find_pits_numba(dem, nodata_cells, boundary):
    m, n = dem.shape
    row_offsets = np.array([-1, -1, 0, 1, 1, 1, 0, -1])
    col_offsets = np.array([0, 1, 1, 1, 0, -1, -1, -1])
    pits = np.zeros((m, n), dtype=np.bool_)
    for i in prange(m):
        for j in range(n):
            if nodata_cells[i, j] or boundary[i, j]:
                continue
            elev = dem[i, j]
            is_pit = True
            has_higher = False
            for k in range(8):
                neighbor = dem[i + row_offsets[k], j + col_offsets[k]]
                if neighbor < elev:
                    is_pit = False
                    break
                if neighbor > elev:
                    has_higher = True
            pits[i, j] = is_pit and has_higher
    return pits

@njit(boolean[:,:](float64[:,:], boolean[:,:], boolean[:,:]),
      parallel=True,
      cache=True)
def _find_flats_numba(dem, nodata_cells, boundary):
    m, n = dem.shape
    row_offsets = np.array([-1, -1, 0, 1, 1, 1, 0, -1])
    col_offsets = np.array([0, 1, 1, 1, 0, -1, -1, -1])
    flats = np.zeros((m, n), dtype=np.bool_)
    for i in prange(m):
        for j in range(n):
            if nodata_cells[i, j] or boundary[i, j]:
                continue
            elev = dem[i, j]
            is_flat = False
            for k in range(8):
                neighbor = dem[i + row_offsets[k], j + col_offsets[k]]
                if neighbor < elev:
                    is_flat = False
                    break
                if neighbor == elev:
                    is_flat = True
            flats[i, j] = is_flat
    return flats

# Functions for 'flowdir'

@njit(int64[:,:](float64[:,:], float64, float64, UniTuple(int64, 8), boolean[:,:],
                 int64, int64, int64),
      parallel=True,
      cache=True)
def _d8_flowdir_numba(dem, dx, dy, dirmap, nodata_cells, nodata_out, flat=-1, pit=-2):
    fdir = np.zeros(dem.shape, dtype=np.int64)
    m, n = dem.shape
    dd = np.sqrt(dx**2 + dy**2)
    row_offsets = np.array([-1, -1, 0, 1, 1, 1, 0, -1])
    col_offsets = np.array([0, 1, 1, 1, 0, -1, -1, -1])
    distances = np.array([dy, dd, dx, dd, dy, dd, dx, dd])
    for i in prange(m):
        for j in range(n):
            if nodata_cells[i, j]:
                fdir[i, j] = nodata_out
                continue
            elev = dem[i, j]
            max_slope = -np.inf
            k_max = -1
            # First neighbor that lies off the grid or on a nodata cell
            k_out = -1
            for k in range(8):
                row = i + row_offsets[k]
                col = j + col_offsets[k]
                if (row < 0) or (row >= m) or (col < 0) or (col >= n):
                    if k_out < 0:
                        k_out = k
                    continue
                if nodata_cells[row, col]:
                    if k_out < 0:
                        k_out = k
                    continue
                slope = (elev - dem[row, col]) / distances[k]
                if slope > max_slope:
                    k_max = k
                    max_slope = slope
            if max_slope > 0:
                fdir[i, j] = dirmap[k_max]
            elif k_out >= 0:
                fdir[i, j] = dirmap[k_out]
            elif max_slope == 0:
                fdir[i, j] = flat
            else:
                fdir[i, j] = pit
    return fdir

@njit(int64[:](int64[:,:], UniTuple(int64, 8), boolean[:,:]),
      parallel=True,
      cache=True)
def _d8_receivers_numba(fdir, dirmap, nodata_cells):
    m, n = fdir.shape
    size = fdir.size
    row_offsets = np.array([-1, -1, 0, 1, 1, 1, 0, -1])
    col_offsets = np.array([0, 1, 1, 1, 0, -1, -1, -1])
    receivers = np.full(size, -1, dtype=np.int64)
    for ix in prange(size):
        i = ix // n
        j = ix % n
        if nodata_cells[i, j]:
            continue
        cell_dir = fdir[i, j]
        for k in range(8):
            if cell_dir == dirmap[k]:
                row = i + row_offsets[k]
                col = j + col_offsets[k]
                if (row < 0) or (row >= m) or (col < 0) or (col >= n):
                    break
                if nodata_cells[row, col]:
                    break
                receivers[ix] = row * n + col
                break
    return receivers

# Functions for 'catchment'

@njit(boolean[:,:](int64[:,:], int64[:], int64[:], UniTuple(int64, 8)),
      cache=True)
def _d8_catchment_iter_numba(fdir, rows, cols, dirmap):
    m, n = fdir.shape
    catch = np.zeros((m, n), dtype=np.bool_)
    row_offsets = np.array([-1, -1, 0, 1, 1, 1, 0, -1])
    col_offsets = np.array([0, 1, 1, 1, 0, -1, -1, -1])
    r_dirmap = np.array([dirmap[4], dirmap[5], dirmap[6],
                         dirmap[7], dirmap[0], dirmap[1],
                         dirmap[2], dirmap[3]])
    stack = [0]
    _ = stack.pop()
    for p in range(rows.size):
        ix = rows[p] * n + cols[p]
        if not catch.flat[ix]:
            catch.flat[ix] = True
            stack.append(ix)
    while stack:
        parent = stack.pop()
        i = parent // n
        j = parent % n
        for k in range(8):
            row = i + row_offsets[k]
            col = j + col_offsets[k]
            if (row < 0) or (row >= m) or (col < 0) or (col >= n):
                continue
            if catch[row, col]:
                continue
            points_to = (fdir[row, col] == r_dirmap[k])
            if points_to:
                catch[row, col] = True
                stack.append(row * n + col)
    return catch

# Functions for 'accumulation'

@njit(float64[:,:](float64[:,:], int64[:], uint8[:], int64[:]),
      cache=True)
def _d8_accumulation_iter_numba(acc, receivers, indegree, startnodes):
    n = startnodes.size
    for k in range(n):
        startnode = startnodes[k]
        endnode = receivers[startnode]
        while endnode >= 0:
            acc.flat[endnode] += acc.flat[startnode]
            indegree[endnode] -= 1
            if indegree[endnode] > 0:
                break
            startnode = endnode
            endnode = receivers[startnode]
    return acc

# Functions for 'extract_river_network'

@njit(List(List(int64))(int64[:], uint8[:], uint8[:], int64[:]),
      cache=True)
def _d8_stream_network_iter_numba(receivers, indegree, orig_indegree, startnodes):
    n = startnodes.size
    profiles = [[0]]
    _ = profiles.pop()
    for k in range(n):
        startnode = startnodes[k]
        endnode = receivers[startnode]
        profile = [startnode]
        while endnode >= 0:
            profile.append(endnode)
            indegree[endnode] -= 1
            if (orig_indegree[endnode] > 1):
                profiles.append(profile)
                profile = [endnode]
            if indegree[endnode] > 0:
                break
            startnode = endnode
            endnode = receivers[startnode]
        if (endnode < 0) and (len(profile) > 1):
            profiles.append(profile)
    return profiles
