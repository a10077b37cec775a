"""Main CLI application for phylomix."""

import typer
from pathlib import Path
from typing import Optional
from enum import Enum

app = typer.Typer(
    name="phylomix",
    help="Maximum likelihood fitting of tree mixture models",
    no_args_is_help=True,
)


class OutputFormat(str, Enum):
    """Output format."""
    TEXT = "text"
    JSON = "json"
    TSV = "tsv"


class WeightMethod(str, Enum):
    """Tree weight optimizer."""
    BFGS = "bfgs"
    EM = "em"


@app.command()
def fit(
    model: str = typer.Option(
        ...,
        "--model", "-m",
        help="Tree mixture model, e.g. 'GTR+G4+T2' or 'MIX{GTR,HKY}+T2'",
    ),
    alignment: Path = typer.Option(
        ...,
        "--alignment", "-s",
        help="DNA alignment file (FASTA or PHYLIP)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    trees: Path = typer.Option(
        ...,
        "--trees", "-t",
        help="Newick file with one tree per mixture component",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    max_steps: int = typer.Option(
        100,
        "--max-steps",
        help="Maximum number of optimization rounds (-1: no limit)",
        min=-1,
    ),
    epsilon: float = typer.Option(
        1e-4,
        "--epsilon",
        help="Log-likelihood improvement regarded as convergence",
        min=0.0,
    ),
    weights: WeightMethod = typer.Option(
        WeightMethod.BFGS,
        "--weights",
        help="Tree weight optimizer",
    ),
    threads: int = typer.Option(
        1,
        "--threads",
        help="Number of threads for per-tree computations",
        min=1,
    ),
    checkpoint: Optional[Path] = typer.Option(
        None,
        "--checkpoint",
        help="Checkpoint file to resume from and update after every round",
        dir_okay=False,
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Output file (default: stdout)",
    ),
    format: OutputFormat = typer.Option(
        OutputFormat.TEXT,
        "--format",
        help="Output format",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show optimization progress",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Minimal output",
    ),
):
    """
    Fit a tree mixture model to an alignment and a set of trees.

    Example:
        phylomix fit -m GTR+G4+T2 -s alignment.phy -t trees.nwk
        phylomix fit -m "MIX{GTR,HKY}+T2" -s alignment.fasta -t trees.nwk --format json
    """
    from .commands.fit import run_fit

    run_fit(
        model=model,
        alignment=alignment,
        trees=trees,
        max_steps=max_steps,
        epsilon=epsilon,
        weight_method=weights.value,
        threads=threads,
        checkpoint=checkpoint,
        output=output,
        format=format.value,
        verbose=verbose,
        quiet=quiet,
    )


@app.command(name="check-model")
def check_model(
    model: str = typer.Argument(..., help="Tree mixture model string"),
):
    """
    Show how a tree mixture model string is assigned to the trees.

    Example:
        phylomix check-model "GTR+MIX{G4,E}+T2"
    """
    from .commands.fit import run_check_model

    run_check_model(model)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
