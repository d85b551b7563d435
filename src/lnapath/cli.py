"""
The `lnapath` command line interface.

Commands are registered on the shared `cli` group, `simulate` simulates one LNA path
of a configured model and writes its incidence and prevalence.
"""

import pathlib
from typing import Literal

import click
import numpy as np

from .errors import PathFailure
from .logging import get_script_logger, log_path_result
from .model import LNAModel, ModelConfig
from .shared_cli import (
    cli,
    config_file_options,
    config_files_argument,
    log_cli_inputs,
    output_options,
    parse_config_files,
    verbosity_options,
)
from .utils import Timer, write_df


@cli.command(
    params=[config_files_argument]
    + list(config_file_options.values())
    + list(output_options.values())
    + list(verbosity_options.values()),
    context_settings=dict(help_option_names=["-h", "--help"]),
)
@click.pass_context
def simulate(
    ctx: click.Context,
    config_files: tuple[pathlib.Path, ...],
    max_attempts: int | None,
    method: str | None,
    seed: int | None,
    output_dir: pathlib.Path,
    output_format: Literal["csv", "parquet"],
    verbosity: int,
) -> None:
    """
    Simulate an LNA path of the model described by CONFIG_FILES.

    The configuration files are merged, draws are sampled from a generator seeded
    with `--seed`, and up to `lna::max_attempts` sets of draws are tried. The path is
    written to `<name>.incidence.<format>` and `<name>.prevalence.<format>` in the
    output directory. The command fails if every attempt failed.
    """
    log_cli_inputs(ctx.params, verbosity)
    logger = get_script_logger("lnapath", verbosity)
    try:
        cfg = parse_config_files(config_files, max_attempts=max_attempts, method=method)
        model = LNAModel(ModelConfig.from_confuse(cfg))
    except ValueError as e:
        raise click.UsageError(f"Invalid configuration: {e}") from e
    logger.info("Loaded %s", model)

    with Timer(f"simulate {model.config.name}"):
        result = model.simulate(rng=np.random.default_rng(seed))
    log_path_result(logger, result, model.config.name)
    if isinstance(result, PathFailure):
        raise click.ClickException(
            f"All {model.config.lna.max_attempts} attempt(s) failed, last with {result}"
        )

    output_dir.mkdir(parents=True, exist_ok=True)
    incidence, prevalence = result.to_dataframes(
        compartments=model.compartments, events=model.events
    )
    for kind, df in (("incidence", incidence), ("prevalence", prevalence)):
        path = write_df(
            output_dir / f"{model.config.name}.{kind}", df, extension=output_format
        )
        logger.info("Wrote %s to %s", kind, path)


if __name__ == "__main__":
    cli()
