"""Fit command implementation."""

import sys
from contextlib import redirect_stdout
from pathlib import Path
from typing import Optional

from phylomix import fit_tree_mixture
from phylomix.api import _load_alignment
from phylomix.io.trees import read_trees
from phylomix.models.spec import ModelSpecError, parse_model_spec


def run_fit(
    model: str,
    alignment: Path,
    trees: Path,
    max_steps: int,
    epsilon: float,
    weight_method: str,
    threads: int,
    checkpoint: Optional[Path],
    output: Optional[Path],
    format: str,
    verbose: bool,
    quiet: bool,
):
    """Fit a tree mixture model."""
    try:
        spec = parse_model_spec(model)
    except ModelSpecError as e:
        print(f"Error: Invalid model '{model}'", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    # Load data
    try:
        aln = _load_alignment(alignment)
    except (OSError, ValueError) as e:
        print(f"Error: Could not load alignment from {alignment}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        tree_list = read_trees(trees)
    except (OSError, ValueError) as e:
        print(f"Error: Could not load trees from {trees}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    if not quiet:
        print(f"Fitting Tree Mixture: {spec.model_string}", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Alignment: {alignment} ({aln.n_species} sequences, {aln.n_sites} sites)",
              file=sys.stderr)
        print(f"Trees:     {trees} ({len(tree_list)} trees)", file=sys.stderr)
        print(file=sys.stderr)

    # Progress goes to stderr so stdout only carries results
    try:
        with redirect_stdout(sys.stderr):
            result = fit_tree_mixture(
                spec.model_string,
                aln,
                tree_list,
                max_steps=max_steps,
                epsilon=epsilon,
                weight_method=weight_method,
                n_threads=threads,
                checkpoint=checkpoint,
                verbose=verbose,
            )
    except (ValueError, FloatingPointError) as e:
        print("Error: Tree mixture fitting failed", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    # Format output
    if format == "json":
        output_text = result.to_json()
    elif format == "tsv":
        output_text = result.to_dataframe().to_csv(sep="\t", index=False)
    else:  # text
        output_text = result.summary()

    # Write output
    if output:
        with open(output, 'w') as f:
            f.write(output_text)
        if not quiet:
            print(f"\nResults written to {output}", file=sys.stderr)
    else:
        print(output_text)


def run_check_model(model: str):
    """Print the per-tree model assignment of a tree mixture model string."""
    try:
        spec = parse_model_spec(model)
    except ModelSpecError as e:
        print(f"Error: Invalid model '{model}'", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Model: {spec.model_string}")
    print(f"Trees: {spec.n_trees}")
    print(f"Substitution models: {'linked' if spec.is_model_linked else 'unlinked'}")
    if spec.has_rate:
        print(f"Rate models:         {'linked' if spec.is_rate_linked else 'unlinked'}")
    for i in range(spec.n_trees):
        print(f"  Tree{i + 1}: {spec.tree_model_name(i)}")
