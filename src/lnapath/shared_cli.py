"""
An internal module to share common CLI elements. Defines the overall cli group, the
config files argument, the options overriding config settings, and the parsing of
config files into a single confuse configuration.
"""

__all__ = []


import pathlib
from typing import Any

import click
import confuse

from .logging import get_script_logger


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Linear Noise Approximation path simulation (lnapath) Command Line Interface"""
    pass


# click argument for the configuration file(s), later files must not repeat keys
config_files_argument = click.Argument(
    ["config_files"],
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=pathlib.Path),
)

# n.b., the help for these options will be presented in the order defined here
config_file_options = {
    "max_attempts": click.Option(
        ["--max-attempts", "max_attempts"],
        envvar="LNAPATH_MAX_ATTEMPTS",
        type=click.IntRange(min=1),
        default=None,
        help="Override lna::max_attempts, the number of draws tried per path.",
    ),
    "method": click.Option(
        ["-m", "--method"],
        type=click.Choice(["LSODA", "RK45", "RK23", "DOP853", "Radau", "BDF"]),
        default=None,
        help="Override lna::method, the ODE integration method.",
    ),
}
output_options = {
    "seed": click.Option(
        ["--seed"],
        envvar="LNAPATH_SEED",
        type=click.INT,
        default=None,
        help="Seed for the draws, omit for a fresh seed.",
    ),
    "output_dir": click.Option(
        ["-o", "--output-dir", "output_dir"],
        type=click.Path(file_okay=False, path_type=pathlib.Path),
        default=pathlib.Path("."),
        show_default=True,
        help="Directory to write the incidence and prevalence files to.",
    ),
    "output_format": click.Option(
        ["--format", "output_format"],
        type=click.Choice(["csv", "parquet"]),
        default="csv",
        show_default=True,
        help="File format of the written paths.",
    ),
}
verbosity_options = {
    "verbosity": click.Option(
        param_decls=["-v", "--verbose", "verbosity"],
        count=True,
        help="The verbosity level to use for this command.",
    ),
}


def parse_config_files(
    config_files: list[pathlib.Path] | tuple[pathlib.Path, ...],
    max_attempts: int | None = None,
    method: str | None = None,
) -> confuse.Configuration:
    """
    Merge configuration files and apply command line overrides.

    Args:
        config_files: The YAML files to merge, their top level keys must not overlap.
        max_attempts: If given, overrides `lna::max_attempts`.
        method: If given, overrides `lna::method`.

    Returns:
        A confuse configuration holding the merged settings, with the source files
        recorded under `config_src`.

    Raises:
        ValueError: If no files are given or two files share a top level key.
    """
    if not config_files:
        raise ValueError("At least one configuration file must be provided.")
    cfg_data: dict[str, Any] = {}
    for config_file in config_files:
        tmp = confuse.Configuration("tmp", read=False)
        tmp.set_file(config_file)
        if intersect := set(tmp.keys()) & set(cfg_data.keys()):
            raise ValueError(
                "Configuration files contain overlapping keys, "
                f"{', '.join(sorted(intersect))}, introduced by {config_file}."
            )
        for k in tmp.keys():
            cfg_data[k] = tmp[k].get()
    lna_overrides = {"max_attempts": max_attempts, "method": method}
    if lna_overrides := {k: v for k, v in lna_overrides.items() if v is not None}:
        cfg_data["lna"] = {**(cfg_data.get("lna") or {}), **lna_overrides}
    cfg_data["config_src"] = [str(f) for f in config_files]
    cfg = confuse.Configuration("lnapath", read=False)
    cfg.set(cfg_data)
    return cfg


def log_cli_inputs(kwargs: dict[str, Any], verbosity: int | None = None) -> None:
    """
    Log CLI inputs for user debugging, only visible at the debug level.

    Args:
        kwargs: The CLI arguments given as a dictionary of key word arguments.
        verbosity: The verbosity level of the CLI tool being used or `None` to infer
            from the given `kwargs`.
    """
    verbosity = kwargs.get("verbosity", 0) if verbosity is None else verbosity
    logger = get_script_logger(__name__, verbosity)
    logger.debug("CLI was given %u arguments:", len(kwargs))
    longest_key = max((len(k) for k in kwargs), default=0)
    for k, v in kwargs.items():
        logger.debug("%s = %s", k.ljust(longest_key, " "), v)
