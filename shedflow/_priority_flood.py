from numba import njit, from_dtype
from numba.typed import typedlist
from numba.types import Tuple, int64

import numpy as np
import math
from heapq import heappop, heappush, heapify
from functools import wraps


def pfwrapper(func):
    # Implemenation detail of priority-flood algorithm
    # Needed to define the types used in priority queue
    @wraps(func)
    def _wrapper(dem, mask, *args):
        # Tuple elements:
        # 0: dem data type (for elevation or path cost priority)
        # 1: int64 for insertion index (to maintain total ordering)
        # 2: int64 for row index
        # 3: int64 for col index
        tuple_type = Tuple([from_dtype(dem.dtype), int64, int64, int64])
        return func(dem, mask, tuple_type, *args)
    return _wrapper


@njit(cache=True)
def count(start=0, step=1):
    # Numba accelerated count() from itertools
    # count(10) --> 10 11 12 13 14 ...
    n = start
    while True:
        yield n
        n += step


@njit(cache=True)
def heapify_boundary(dem, boundary, open_cells, closed_cells, counter):
    # Seed the priority queue with every cell that can drain off the grid
    y, x = dem.shape
    for i in range(y):
        for j in range(x):
            if boundary[i, j]:
                open_cells.append((dem[i, j], next(counter), i, j))
                closed_cells[i, j] = True
    heapify(open_cells)


@njit(cache=True)
def queue_empty(q, pos):
    return pos == len(q)


@pfwrapper
@njit(cache=True)
def fill_depressions(dem, dem_mask, tuple_type, boundary):
    open_cells = typedlist.List.empty_list(tuple_type)  # Priority queue
    pits = typedlist.List.empty_list(tuple_type)  # FIFO queue
    closed_cells = dem_mask.copy()

    counter = count()
    y, x = dem.shape
    heapify_boundary(dem, boundary, open_cells, closed_cells, counter)

    row_offsets = np.array([-1, -1, 0, 1, 1, 1, 0, -1])
    col_offsets = np.array([0, 1, 1, 1, 0, -1, -1, -1])

    pits_pos = 0
    while open_cells or not queue_empty(pits, pits_pos):
        if not queue_empty(pits, pits_pos):
            elv, _, i, j = pits[pits_pos]
            pits_pos += 1
        else:
            elv, _, i, j = heappop(open_cells)

        for n in range(8):
            row = i + row_offsets[n]
            col = j + col_offsets[n]

            if row < 0 or row >= y or col < 0 or col >= x:
                continue

            if closed_cells[row, col]:
                continue

            closed_cells[row, col] = True

            if dem[row, col] <= elv:
                dem[row, col] = elv
                pits.append((elv, 0, row, col))
            else:
                heappush(open_cells, (dem[row, col], next(counter), row, col))

        # pits book-keeping
        if queue_empty(pits, pits_pos) and len(pits) > 1024:
            # Queue is empty, lets clear it out
            pits.clear()
            pits_pos = 0

    return dem


@pfwrapper
@njit(cache=True)
def fill_depressions_epsilon(dem, dem_mask, tuple_type, boundary):
    open_cells = typedlist.List.empty_list(tuple_type)  # Priority queue
    pits = typedlist.List.empty_list(tuple_type)  # FIFO queue
    closed_cells = dem_mask.copy()

    counter = count()
    y, x = dem.shape
    heapify_boundary(dem, boundary, open_cells, closed_cells, counter)

    row_offsets = np.array([-1, -1, 0, 1, 1, 1, 0, -1])
    col_offsets = np.array([0, 1, 1, 1, 0, -1, -1, -1])

    pits_pos = 0
    while open_cells or not queue_empty(pits, pits_pos):
        if not queue_empty(pits, pits_pos):
            _, _, i, j = pits[pits_pos]
            pits_pos += 1
        else:
            _, _, i, j = heappop(open_cells)

        # Each newly reached cell ends up strictly above the cell it was reached from
        # Only using numpy here because math.nextafter not supported
        next_after = np.nextafter(dem[i, j], math.inf)

        for n in range(8):
            row = i + row_offsets[n]
            col = j + col_offsets[n]

            if row < 0 or row >= y or col < 0 or col >= x:
                continue

            if closed_cells[row, col]:
                continue

            closed_cells[row, col] = True

            if dem[row, col] <= next_after:
                dem[row, col] = next_after
                pits.append((next_after, 0, row, col))
            else:
                heappush(open_cells, (dem[row, col], next(counter), row, col))

        # pits book-keeping
        if queue_empty(pits, pits_pos) and len(pits) > 1024:
            # Queue is empty, lets clear it out
            pits.clear()
            pits_pos = 0

    return dem


@njit(cache=True)
def breach_profile(z0, zt, n, lower, increment, profile):
    # Elevations of the cells 1..n steps from a pit along a breach path.
    # Toward a lower terminal the n - 1 cells in between are interpolated and
    # must stay above it; toward a boundary terminal every cell, the terminal
    # included, drops by `increment`.
    last = n - 1 if lower else n
    z_prev = z0
    for s in range(1, last + 1):
        if lower:
            z = z0 - (z0 - zt) * s / n
        else:
            z = z0 - increment * s
        z = min(z, np.nextafter(z_prev, -math.inf))
        profile[s - 1] = z
        z_prev = z
    if lower:
        return z_prev > zt
    return True


@pfwrapper
@njit(cache=True)
def breach_depressions(dem, dem_mask, tuple_type, boundary, pit_rows, pit_cols,
                       max_distance, increment):
    y, x = dem.shape
    row_offsets = np.array([-1, -1, 0, 1, 1, 1, 0, -1])
    col_offsets = np.array([0, 1, 1, 1, 0, -1, -1, -1])

    # Search window around each pit, in local coordinates
    w = 2 * max_distance + 1
    cost = np.empty((w, w), dtype=np.float64)
    parent = np.empty((w, w), dtype=np.int64)
    steps = np.empty((w, w), dtype=np.int64)
    closed_cells = np.empty((w, w), dtype=np.bool_)
    profile = np.empty(w * w + 1, dtype=np.float64)
    center = max_distance * w + max_distance
    unresolved = np.zeros(pit_rows.size, dtype=np.bool_)

    counter = count()
    for p in range(pit_rows.size):
        pi = pit_rows[p]
        pj = pit_cols[p]
        z0 = dem[pi, pj]

        # Skip pits already drained by an earlier breach
        drains = False
        for n in range(8):
            row = pi + row_offsets[n]
            col = pj + col_offsets[n]
            if row < 0 or row >= y or col < 0 or col >= x:
                continue
            if not dem_mask[row, col] and dem[row, col] < z0:
                drains = True
                break
        if drains:
            continue

        r0 = pi - max_distance
        c0 = pj - max_distance
        cost[:] = math.inf
        parent[:] = -1
        steps[:] = 0
        closed_cells[:] = False
        open_cells = typedlist.List.empty_list(tuple_type)  # Priority queue
        cost[max_distance, max_distance] = 0.
        open_cells.append((0., next(counter), pi, pj))

        ti = -1
        tj = -1
        while open_cells:
            c, _, i, j = heappop(open_cells)
            li = i - r0
            lj = j - c0
            if closed_cells[li, lj]:
                continue
            closed_cells[li, lj] = True

            if i != pi or j != pj:
                if dem[i, j] < z0:
                    # A lower cell ends the path only if a strictly decreasing
                    # profile fits above it; it is never expanded
                    if breach_profile(z0, dem[i, j], steps[li, lj], True,
                                      increment, profile):
                        ti = i
                        tj = j
                        break
                    continue
                if boundary[i, j]:
                    ti = i
                    tj = j
                    break

            for n in range(8):
                row = i + row_offsets[n]
                col = j + col_offsets[n]

                if row < 0 or row >= y or col < 0 or col >= x:
                    continue

                lr = row - r0
                lc = col - c0
                if lr < 0 or lr >= w or lc < 0 or lc >= w:
                    continue

                if dem_mask[row, col] or closed_cells[lr, lc]:
                    continue

                new_cost = c + max(0., dem[row, col] - z0)
                if new_cost < cost[lr, lc]:
                    cost[lr, lc] = new_cost
                    parent[lr, lc] = li * w + lj
                    steps[lr, lc] = steps[li, lj] + 1
                    heappush(open_cells, (new_cost, next(counter), row, col))

        if ti < 0:
            unresolved[p] = True
            continue

        # Walk back from the terminal cell to the pit
        path = [(ti - r0) * w + (tj - c0)]
        while path[-1] != center:
            path.append(parent.flat[path[-1]])
        length = len(path)

        # Carve a strictly decreasing profile from the pit to the terminal cell.
        # Cells are only ever lowered and a lower terminal keeps its elevation.
        lower = dem[ti, tj] < z0
        breach_profile(z0, dem[ti, tj], length - 1, lower, increment, profile)
        last = length - 2 if lower else length - 1
        for s in range(1, last + 1):
            k = length - 1 - s
            i = path[k] // w + r0
            j = path[k] % w + c0
            dem[i, j] = min(dem[i, j], profile[s - 1])

        # Every cell from the pit to the terminal must now drop to the next
        z_prev = z0
        for k in range(length - 2, -1, -1):
            z = dem[path[k] // w + r0, path[k] % w + c0]
            if not z < z_prev:
                unresolved[p] = True
                break
            z_prev = z

    return dem, unresolved
