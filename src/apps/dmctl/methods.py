"""List the analyses dmctl can submit."""

from __future__ import annotations

import typer

from datamonkey.analysis.methods import METHOD_DESCRIPTIONS, TREE_ONLY_METHODS, MethodType

app = typer.Typer(name="methods", help="Describe available HyPhy methods.")


@app.command("list")
def list_methods() -> None:
    """Print every method with a one line description."""

    width = max(len(method.value) for method in MethodType)
    for method in MethodType:
        suffix = " (tree only)" if method in TREE_ONLY_METHODS else ""
        typer.secho(f"{method.value:<{width}}", fg=typer.colors.CYAN, nl=False)
        typer.echo(f"  {METHOD_DESCRIPTIONS[method]}{suffix}")


__all__ = ["app"]
