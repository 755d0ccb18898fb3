import logging
import time

import typer
import numpy as np
from typing import Optional, Tuple
from typing_extensions import Annotated


app = typer.Typer(help="D8 watershed delineation from a DEM.")

DirMap = Annotated[
    Tuple[int, int, int, int, int, int, int, int],
    typer.Option(help="8 direction map from N to NW clockwise"),
]
DEFAULT_DIRMAP = (64, 128, 1, 2, 4, 8, 16, 32)


def lazy_import():
    global sGrid, Pipeline, ShedflowError, shedflow
    from shedflow.sgrid import sGrid
    from shedflow.pipeline import Pipeline
    from shedflow.errors import ShedflowError
    import shedflow.io


@app.callback()
def main(
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Log progress of each stage."),
):
    if verbose:
        logging.basicConfig(level=logging.INFO,
                            format='[%(asctime)s] [%(levelname)s] [%(name)s] - %(message)s')


def fail(exc):
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


@app.command()
def condition(
    dem_path: str = typer.Argument(..., help="Path to the input DEM"),
    output_path: str = typer.Argument(..., help="Path to the conditioned DEM"),
    max_distance: int = typer.Option(20, help="Breach search radius, in cells"),
    fill: bool = typer.Option(True, help="Fill depressions left after breaching"),
    epsilon: bool = typer.Option(True, help="Give filled areas a minimal gradient"),
):
    """
    Breaches and fills depressions in the DEM and saves the result.
    """
    start = time.time()
    lazy_import()

    grid: sGrid = sGrid.from_raster(dem_path)
    dem = grid.read_raster(dem_path)

    typer.echo("Resolving depressions ...")
    conditioned = grid.resolve_depressions(dem, max_distance=max_distance,
                                           fill=fill, epsilon=epsilon)
    unresolved = conditioned.metadata['unresolved']
    if len(unresolved):
        typer.echo(f"{len(unresolved)} cell(s) remain in unresolved depressions")

    grid.to_raster(conditioned, output_path)
    typer.echo(f"Wrote conditioned DEM to {output_path}")

    end = time.time() - start
    typer.echo(f"Elapsed time: {end:.3f} seconds")


@app.command()
def flow_directions(
    dem_path: str = typer.Argument(..., help="The input conditioned DEM"),
    output_path: str = typer.Argument(..., help="The output flow directions map"),
    dirmap: DirMap = DEFAULT_DIRMAP,
):
    """
    Compute flow directions from a conditioned DEM using the D8 method.
    """
    start = time.time()
    lazy_import()

    grid: sGrid = sGrid.from_raster(dem_path)
    dem = grid.read_raster(dem_path)

    typer.echo("Computing flow directions ...")
    fdir = grid.flowdir(dem, dirmap=dirmap)
    undefined = fdir.metadata['undefined']
    if undefined:
        typer.echo(f"{undefined} cell(s) have no defined flow direction")

    grid.to_raster(fdir, output_path, dtype=np.int16)
    typer.echo(f"Wrote flow directions map to {output_path}")

    end = time.time() - start
    typer.echo(f"Elapsed time: {end:.3f} seconds")


@app.command()
def accumulation(
    fdir_path: str = typer.Argument(..., help="The flow directions map"),
    output_path: str = typer.Argument(
        ..., help="Path where the resulting accumulation raster will be saved."
    ),
    weights_path: Optional[str] = typer.Option(None, help="Optional raster of cell weights"),
    dirmap: DirMap = DEFAULT_DIRMAP,
):
    """
    Calculates the contributing area (accumulation map) from a flow direction raster
    and writes the result to an output raster file.
    """
    start = time.time()
    lazy_import()

    grid: sGrid = sGrid.from_raster(fdir_path)
    fdir = grid.read_raster(fdir_path)
    weights = grid.read_raster(weights_path) if weights_path else None

    try:
        acc = grid.accumulation(fdir, weights=weights, dirmap=dirmap)
    except ShedflowError as exc:
        fail(exc)

    grid.to_raster(acc, output_path)
    typer.echo(f"Accumulation map written to {output_path}")

    end = time.time() - start
    typer.echo(f"Elapsed time: {end:.3f} seconds")


@app.command()
def streams(
    acc_path: str = typer.Argument(..., help="The input accumulation raster map"),
    output_path: str = typer.Argument(..., help="The output stream raster map"),
    threshold: float = typer.Option(
        ..., "-t", "--threshold",
        help="Minimum accumulation of a stream cell.",
    ),
    fdir_path: Optional[str] = typer.Option(
        None, help="Flow directions map; if given, also write the network as GeoJSON."
    ),
    network_path: Optional[str] = typer.Option(
        None, help="Output GeoJSON path for the vectorized network (requires --fdir-path)."
    ),
):
    """
    Extracts the stream network from an accumulation map and saves it.
    """
    start = time.time()
    lazy_import()

    grid: sGrid = sGrid.from_raster(acc_path)
    acc = grid.read_raster(acc_path)

    try:
        stream_mask = grid.extract_streams(acc, threshold)
    except ValueError as exc:
        fail(exc)
    grid.to_raster(stream_mask, output_path)
    typer.echo(f"Stream map written to {output_path}")

    if network_path:
        if not fdir_path:
            fail("--network-path requires --fdir-path")
        fdir = grid.read_raster(fdir_path)
        network = grid.extract_river_network(fdir, stream_mask)
        shedflow.io.to_geojson(network, network_path)
        typer.echo(f"Stream network written to {network_path}")

    end = time.time() - start
    typer.echo(f"Elapsed time: {end:.3f} seconds")


@app.command()
def snap(
    streams_path: str = typer.Argument(..., help="Path to the stream raster."),
    x: float = typer.Argument(..., help="X-coordinate of the pour point."),
    y: float = typer.Argument(..., help="Y-coordinate of the pour point."),
    max_distance: float = typer.Option(..., help="Largest snapping distance, in map units."),
):
    """
    Snaps a pour point to the nearest stream cell and prints the new coordinates.
    """
    start = time.time()
    lazy_import()

    grid: sGrid = sGrid.from_raster(streams_path)
    stream_mask = grid.read_raster(streams_path).astype(np.bool_)

    try:
        xy, dist = grid.snap_to_stream(stream_mask, (x, y), max_distance,
                                       return_dist=True)
    except (ShedflowError, ValueError) as exc:
        fail(exc)

    typer.echo(f"{xy[0, 0]} {xy[0, 1]}")
    typer.echo(f"Moved by {dist[0]:.3f}")

    end = time.time() - start
    typer.echo(f"Elapsed time: {end:.3f} seconds")


@app.command()
def catchment(
    x: float = typer.Argument(..., help="X-coordinate of the pour point."),
    y: float = typer.Argument(..., help="Y-coordinate of the pour point."),
    fdir_path: str = typer.Argument(..., help="Path to the flow direction raster."),
    output_path: str = typer.Argument(..., help="The output raster mask."),
    snap: str = typer.Option(
        "center",
        help="Method used to map the point to a cell. "
        "Choose either 'center' or 'corner'.",
    ),
    dirmap: DirMap = DEFAULT_DIRMAP,
):
    """
    Calculates the catchment area for a given point (x, y) using a flow direction raster
    and saves the result as an output raster.
    """
    start = time.time()
    lazy_import()

    grid: sGrid = sGrid.from_raster(fdir_path)
    fdir = grid.read_raster(fdir_path)

    try:
        catchment_area = grid.catchment(x=x, y=y, fdir=fdir, dirmap=dirmap,
                                        xytype="coordinate", snap=snap)
    except ValueError as exc:
        fail(exc)

    grid.to_raster(catchment_area, output_path)
    typer.echo(f"Catchment of {int(catchment_area.sum())} cells saved to {output_path}")

    end = time.time() - start
    typer.echo(f"Elapsed time: {end:.3f} seconds")


@app.command()
def hillshade(
    dem_path: str = typer.Argument(..., help="Path to the input DEM"),
    output_path: str = typer.Argument(..., help="Path to the hillshade raster"),
    azimuth: float = typer.Option(315., help="Light source direction, degrees from north"),
    altitude: float = typer.Option(45., help="Light source angle above the horizon"),
    z_factor: float = typer.Option(1., help="Vertical exaggeration"),
):
    """
    Computes shaded relief from the DEM and saves it.
    """
    start = time.time()
    lazy_import()

    grid: sGrid = sGrid.from_raster(dem_path)
    dem = grid.read_raster(dem_path)

    shade = grid.hillshade(dem, azimuth=azimuth, altitude=altitude, z_factor=z_factor)
    grid.to_raster(shade, output_path)
    typer.echo(f"Wrote hillshade to {output_path}")

    end = time.time() - start
    typer.echo(f"Elapsed time: {end:.3f} seconds")


@app.command()
def delineate(
    dem_path: str = typer.Argument(..., help="Path to the input DEM"),
    x: float = typer.Argument(..., help="X-coordinate of the pour point."),
    y: float = typer.Argument(..., help="Y-coordinate of the pour point."),
    output_dir: str = typer.Argument(..., help="Directory for all products"),
    threshold: float = typer.Option(
        ..., "-t", "--threshold", help="Minimum accumulation of a stream cell."
    ),
    max_distance: int = typer.Option(20, help="Breach search radius, in cells"),
    snap_distance: Optional[float] = typer.Option(
        None, help="Largest snapping distance, in map units (default: 5 cells)"
    ),
    fill: bool = typer.Option(True, help="Fill depressions left after breaching"),
    epsilon: bool = typer.Option(True, help="Give filled areas a minimal gradient"),
    max_unresolved: int = typer.Option(0, help="Unresolved depression cells tolerated"),
    dirmap: DirMap = DEFAULT_DIRMAP,
):
    """
    Runs the whole delineation pipeline and saves every product to a directory.
    """
    start = time.time()
    lazy_import()

    try:
        pipeline = Pipeline(threshold, max_distance=max_distance,
                            snap_distance=snap_distance, fill=fill, epsilon=epsilon,
                            max_unresolved=max_unresolved, dirmap=dirmap)
        result = pipeline.run(dem_path, (x, y))
    except (ShedflowError, ValueError) as exc:
        fail(exc)

    paths = result.save(output_dir)
    x_new, y_new = result.pour_points[0]
    typer.echo(f"Pour point snapped to ({x_new}, {y_new})")
    typer.echo(f"Catchment of {int(result.catchment.sum())} cells")
    for name, path in paths.items():
        typer.echo(f"  {name}: {path}")

    end = time.time() - start
    typer.echo(f"Elapsed time: {end:.3f} seconds")


if __name__ == "__main__":
    app()
