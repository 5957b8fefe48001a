#!/usr/bin/env python3
"""
run_simulation.py - Command line driver for the synthsky engine

Builds an engine from a YAML configuration, optionally slews to a target,
runs one exposure in virtual time and writes the image as FITS (and
optionally a PNG preview and the generated star catalog as CSV).

Usage:
    PYTHONPATH=src python run_simulation.py --help
    PYTHONPATH=src python run_simulation.py --exposure 5 --output m42.fits
    PYTHONPATH=src python run_simulation.py --config config/default_config.yaml --ra 10.68 --dec 41.27
"""

import argparse
import logging
import sys
import time
from pathlib import Path

import numpy as np
from astropy.io import fits

from synthsky import ConfigurationError, SimulationEngine, SimulationError, load_config
from synthsky.engine.commands import (
    AdvanceTime,
    SetCloudCoverage,
    SetRotatorPosition,
    SetSeeingCondition,
    SlewTo,
    StartExposure,
)
from synthsky.imaging.exposure import ExposureResult

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path(__file__).parent / "config" / "default_config.yaml"


def write_fits(result: ExposureResult, path: Path, temperature: float):
    """Write the exposure as a primary HDU with the usual acquisition keywords."""
    hdu = fits.PrimaryHDU(result.image)
    header = hdu.header
    header["EXPTIME"] = (result.exposure_time, "Exposure time [s]")
    header["RA"] = (result.metadata["ra"], "Pointing right ascension [deg]")
    header["DEC"] = (result.metadata["dec"], "Pointing declination [deg]")
    header["XBINNING"] = (result.binning, "Binning factor in x")
    header["YBINNING"] = (result.binning, "Binning factor in y")
    header["GAIN"] = (result.metadata["gain"], "Gain [e-/ADU]")
    header["CCD-TEMP"] = (temperature, "Sensor temperature [C]")
    header["ROTATANG"] = (result.metadata["rotator_angle"], "Rotator angle [deg]")
    header["SEEING"] = (result.metadata["seeing"], "Seeing FWHM [arcsec]")
    header["NSUBFRM"] = (result.subframe_count, "Number of subframes")
    hdu.writeto(path, overwrite=True)
    logger.info(f"Image written to {path}")


def write_preview(result: ExposureResult, path: Path):
    """PNG preview with a percentile stretch."""
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    image = result.image.astype(float)
    low, high = np.percentile(image, [1.0, 99.7])
    fig, ax = plt.subplots(figsize=(10, 10 * result.height / result.width))
    ax.imshow(image, cmap="gray", origin="upper", vmin=low, vmax=high)
    ax.set_title(f"{result.exposure_time:.1f}s  RA {result.metadata['ra']:.3f}  "
                 f"Dec {result.metadata['dec']:.3f}")
    ax.set_axis_off()
    fig.savefig(path, dpi=100, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Preview written to {path}")


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Synthetic astronomical sensor simulator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --exposure 2                       # 2 s exposure at the configured pointing
  %(prog)s --ra 83.82 --dec -5.39 --binning 2 # Slew first, bin 2x2
  %(prog)s --clouds 0.4 --seeing 3.0          # Poor conditions
  %(prog)s --png preview.png                  # Also write a PNG preview
        """
    )

    parser.add_argument(
        '--config', '-c',
        type=Path,
        default=DEFAULT_CONFIG,
        help='Path to simulation configuration YAML file'
    )

    parser.add_argument(
        '--exposure', '-e',
        type=float,
        help='Exposure time in seconds (default: camera.exposure_time)'
    )

    parser.add_argument('--ra', type=float, help='Slew to this right ascension [deg] before exposing')
    parser.add_argument('--dec', type=float, help='Slew to this declination [deg] before exposing')
    parser.add_argument('--binning', '-b', type=int, help='Output binning factor')
    parser.add_argument('--rotator', type=float, help='Rotator angle [deg]')
    parser.add_argument('--seeing', type=float, help='Seeing FWHM [arcsec]')
    parser.add_argument('--clouds', type=float, help='Cloud coverage 0..1')
    parser.add_argument('--seed', type=int, help='Random seed (overrides the configuration)')
    parser.add_argument('--workers', type=int, help='Parallel subframe render workers')

    parser.add_argument(
        '--satellite-trail',
        action='store_true',
        help='Add a satellite trail to the exposure'
    )

    parser.add_argument(
        '--output', '-o',
        type=Path,
        default=Path('synthsky_image.fits'),
        help='Output FITS file'
    )

    parser.add_argument('--png', type=Path, help='Optional PNG preview (requires matplotlib)')
    parser.add_argument('--catalog-csv', type=Path, help='Write the generated star catalog as CSV')

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    return parser.parse_args()


def main():
    """Simulation entry point."""
    args = parse_arguments()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if (args.ra is None) != (args.dec is None):
        logger.error("--ra and --dec must be given together")
        return 1

    try:
        config = load_config(args.config)
        if args.seed is not None:
            config.seed = args.seed
        if args.workers is not None:
            config.parallel_workers = args.workers
        exposure = args.exposure if args.exposure is not None else config.camera.exposure_time

        logger.info("=" * 60)
        logger.info("SYNTHSKY SENSOR SIMULATION")
        logger.info("=" * 60)
        logger.info(f"Configuration: {args.config}")
        logger.info(f"Sensor: {config.camera.width}x{config.camera.height} {config.camera.sensor_type}, "
                    f"focal length {config.mount.focal_length:.0f} mm")

        start = time.time()
        engine = SimulationEngine(config)

        if args.ra is not None:
            engine.process(SlewTo(ra=args.ra, dec=args.dec))
            while engine.mount.slew is not None:
                engine.process(AdvanceTime(seconds=1.0))
        if args.rotator is not None:
            engine.process(SetRotatorPosition(angle=args.rotator))
        if args.seeing is not None:
            engine.process(SetSeeingCondition(seeing=args.seeing))
        if args.clouds is not None:
            engine.process(SetCloudCoverage(coverage=args.clouds))

        engine.process(StartExposure(duration=exposure, binning=args.binning,
                                     satellite_trail=args.satellite_trail))
        engine.process(AdvanceTime(seconds=exposure))
        result = engine.last_image
    except (ConfigurationError, SimulationError) as e:
        logger.error(f"Simulation failed: {e}")
        return 1

    logger.info(f"Exposure rendered in {time.time() - start:.1f}s wall time: "
                f"{result.width}x{result.height}, {len(engine.catalog)} catalog stars")

    write_fits(result, args.output, engine.sensor.temperature)
    if args.png:
        write_preview(result, args.png)
    if args.catalog_csv:
        engine.catalog.to_frame().to_csv(args.catalog_csv, index=False)
        logger.info(f"Catalog written to {args.catalog_csv}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
