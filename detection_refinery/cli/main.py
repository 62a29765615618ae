"""Command-line interface for Detection-Refinery.

Provides CLI commands to detect cells among segmented candidates, to
quantify cell detections and to validate project configuration files.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
import yaml

from detection_refinery import __version__


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    # run logs may lower the package level; the console keeps the requested one
    for handler in logging.getLogger().handlers:
        handler.setLevel(level)
    return logging.getLogger("detection_refinery")


@click.group()
@click.version_option(version=__version__, prog_name="detection-refinery")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """Detection-Refinery: cell detection bookkeeping for annotated images.

    Detects cells by channel, groups and classifies them and counts them
    per annotation.

    Examples:

        # Detect the configured channels among segmented cells
        detection-refinery detect -i annotations.geojson --cells cells.geojson -o results/ -c detections.yml

        # Count detections of every configured channel
        detection-refinery quantify -i objects.geojson -o results/ -c detections.yml

        # Count a single channel, accepting all of its detections
        detection-refinery quantify -i objects.geojson -o results/ --channel AF568

        # Validate a configuration file
        detection-refinery check-config -c detections.yml
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


def _load_config(config: Optional[str]):
    from detection_refinery.config import ProjectConfig

    try:
        return ProjectConfig.from_yaml(Path(config)) if config else ProjectConfig.default()
    except ValueError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="GeoJSON file with annotations and detections")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(file_okay=False),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False),
              help="Project configuration file (YAML)")
@click.option("--classifiers-dir", "classifiers_dirs", multiple=True, type=click.Path(exists=True, file_okay=False),
              help="Where to search classifier files (repeatable)")
@click.option("--channel", "channels", multiple=True,
              help="Only quantify these channels (repeatable)")
@click.pass_context
def quantify(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    classifiers_dirs: Tuple[str, ...],
    channels: Tuple[str, ...],
) -> None:
    """Group, classify and count pre-computed detections.

    Writes detection_counts.csv, detection_summary.json, the updated
    objects as objects.geojson and the configuration used in the output
    directory.
    """
    logger = ctx.obj["logger"]

    # Import here to avoid slow startup
    from detection_refinery.config import ChannelDetectionsConfig
    from detection_refinery.core.detections import (
        ChannelDetections,
        DetectionGroup,
        OverlappingDetections,
        count_detections,
        export_counts,
        overlaps_container_name,
        summarize_groups,
    )
    from detection_refinery.core.errors import NoContainersFound
    from detection_refinery.io import get_logger, log_json, log_yaml, read_geojson, write_geojson

    cfg = _load_config(config)
    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    _, log_path = get_logger("detection_refinery", out_dir / "quantify.log")
    logger.info(f"Input: {input_path}")
    logger.info(f"Output: {output_path}")

    channel_configs: List[ChannelDetectionsConfig] = list(cfg.channel_detections)
    if channels:
        configured = {c.name: c for c in channel_configs}
        channel_configs = [configured.get(name) or ChannelDetectionsConfig(name=name) for name in channels]
    if not channel_configs:
        raise click.ClickException("No channel to quantify: pass --config or --channel")

    search_dirs = [Path(d) for d in classifiers_dirs]
    if config:
        search_dirs.append(Path(config).parent)
    search_dirs.append(Path(input_path).parent)

    hierarchy = read_geojson(input_path)
    max_depth = cfg.spatial_index.max_depth

    groups: Dict[str, DetectionGroup] = {}
    outcomes = {}
    for channel_cfg in channel_configs:
        try:
            detections = ChannelDetections(channel_cfg.name, hierarchy, max_depth)
        except NoContainersFound as e:
            logger.warning(f"Skipping channel '{channel_cfg.name}': {e.message}")
            continue
        if channel_cfg.classifiers:
            try:
                partials = channel_cfg.partial_classifiers(hierarchy, search_dirs)
            except (FileNotFoundError, ValueError) as e:
                raise click.ClickException(str(e)) from e
            outcome = detections.apply_classifiers(partials)
            outcomes[channel_cfg.name] = outcome.summary_dict()
        groups[channel_cfg.name] = detections
        logger.info(f"{channel_cfg.name}: {len(detections)} detections")

    control = cfg.control_channel()
    empty_overlaps: List[str] = []
    if control is not None and control in groups and len(groups) > 1:
        others = [g for name, g in groups.items() if name != control]
        try:
            overlaps = OverlappingDetections(groups[control], others, hierarchy, compute=True, max_depth=max_depth)
        except NoContainersFound:
            logger.warning(f"No {control} detection overlaps {[g.id for g in others]}: reporting zero overlaps")
            empty_overlaps.append(overlaps_container_name(control))
        else:
            groups[overlaps.containers_name] = overlaps
            logger.info(f"{overlaps.containers_name}: {len(overlaps)} detections")
    elif control is not None:
        logger.warning(f"Control channel '{control}' or the other channels have no detections: skipping overlaps")

    df = count_detections(list(groups.values()), hierarchy)
    for column in empty_overlaps:
        df[column] = 0
    summary = {
        "input": str(input_path),
        "groups": summarize_groups(list(groups.values())),
        "classification": outcomes,
    }
    paths = export_counts(df, out_dir, summary)
    paths["objects"] = write_geojson(hierarchy, out_dir / "objects.geojson")
    log_json(out_dir / "runs.jsonl", {"command": "quantify", **summary, "log": str(log_path)})
    log_yaml(out_dir / "config_used.yaml", cfg.to_dict())

    click.echo(f"Quantified {len(groups)} detection groups in {len(df)} annotations")
    for name, path in paths.items():
        click.echo(f"  {name}: {path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="GeoJSON file with the annotations to detect cells in")
@click.option("--cells", "cells_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="GeoJSON file with segmented candidate cells and their measurements")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(file_okay=False),
              help="Output directory")
@click.option("--config", "-c", required=True, type=click.Path(exists=True, dir_okay=False),
              help="Project configuration file (YAML)")
@click.option("--histograms-dir", type=click.Path(exists=True, file_okay=False),
              help="Where '<channel>_level<N>.txt' histograms for automatic thresholds are")
@click.option("--pixel-size", type=float, default=1.0, show_default=True,
              help="Image pixel size in microns")
@click.option("--image-size", nargs=2, type=float, default=None,
              help="Image width and height, needed to detect on the whole image")
@click.pass_context
def detect(
    ctx: click.Context,
    input_path: str,
    cells_path: str,
    output_path: str,
    config: str,
    histograms_dir: Optional[str],
    pixel_size: float,
    image_size: Optional[Tuple[float, float]],
) -> None:
    """Detect the cells of every configured channel among segmented candidates.

    Cells are detected inside the annotations classified as
    class_for_detections, or on the whole image. Writes the annotations and
    their new detection containers as objects.geojson, ready for quantify.
    """
    logger = ctx.obj["logger"]

    # Import here to avoid slow startup
    from detection_refinery.core.detections import CandidateCellDetector, ChannelDetections
    from detection_refinery.core.errors import DetectionError, NoContainersFound
    from detection_refinery.core.histogram import ChannelHistogram
    from detection_refinery.io import get_logger, log_json, read_geojson, write_geojson

    cfg = _load_config(config)
    if not cfg.channel_detections:
        raise click.ClickException(f"No channel_detections configured in {config}")
    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    _, log_path = get_logger("detection_refinery", out_dir / "detect.log")

    width, height = image_size if image_size else (None, None)
    hierarchy = read_geojson(input_path, width, height)
    detector = CandidateCellDetector(read_geojson(cells_path).detections(), pixel_size_microns=pixel_size)
    logger.info(f"{len(detector.candidates)} candidate cells read from {cells_path}")

    annotations = cfg.annotations_for_detections(hierarchy)
    if annotations is not None and not annotations:
        raise click.ClickException(f"No annotation classified as '{cfg.class_for_detections}' in {input_path}")

    thresholds: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    for channel_cfg in cfg.channel_detections:
        name = channel_cfg.name
        histogram = None
        auto = channel_cfg.parameters.histogram_threshold
        if auto is not None:
            if histograms_dir is None:
                raise click.ClickException(f"Channel '{name}' uses an automatic threshold: pass --histograms-dir")
            try:
                histogram = ChannelHistogram.from_file(auto.histogram_path(Path(histograms_dir), name), channel=name)
            except (FileNotFoundError, ValueError) as e:
                raise click.ClickException(str(e)) from e
        try:
            params = channel_cfg.parameters.to_parameters(name, histogram)
            thresholds[name] = params["threshold"]
            detections = ChannelDetections.compute(
                name, detector, hierarchy, annotations, params, cfg.spatial_index.max_depth
            )
        except NoContainersFound:
            logger.warning(f"No {name} cell detected")
            counts[name] = 0
            continue
        except (DetectionError, ValueError) as e:
            raise click.ClickException(str(e)) from e
        counts[name] = len(detections)
        logger.info(f"{name}: {counts[name]} detections (threshold {thresholds[name]})")

    objects_path = write_geojson(hierarchy, out_dir / "objects.geojson")
    log_json(
        out_dir / "runs.jsonl",
        {
            "command": "detect",
            "input": str(input_path),
            "cells": str(cells_path),
            "thresholds": thresholds,
            "detections": counts,
            "log": str(log_path),
        },
    )

    click.echo(f"Detected cells of {len(counts)} channels")
    for name, count in counts.items():
        click.echo(f"  {name}: {count} (threshold {thresholds[name]:g})")
    click.echo(f"  objects: {objects_path}")


@cli.command("check-config")
@click.option("--config", "-c", required=True, type=click.Path(exists=True, dir_okay=False),
              help="Project configuration file (YAML)")
@click.pass_context
def check_config(ctx: click.Context, config: str) -> None:
    """Validate a configuration file and print it with defaults filled in."""
    cfg = _load_config(config)
    control = cfg.control_channel()
    click.echo(yaml.safe_dump(cfg.to_dict(), sort_keys=False).rstrip("\n"))
    click.echo(f"# {len(cfg.channel_detections)} channels, control channel: {control or 'none'}")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
