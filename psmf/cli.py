#!filepath: psmf/cli.py
from typing import Optional

import typer
from rich import print
from rich.markup import escape
from rich.table import Table

from psmf import __version__
from psmf.utils.errors import UserInputError

app = typer.Typer(help="psmf: matrix factorization on a parameter server")


@app.command()
def version():
    print(f"v{__version__}")


@app.command()
def train(
        ratings_path: str,
        config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config"),
        policy: Optional[str] = typer.Option(None, help="per_rating | per_item"),
        iterations: Optional[int] = typer.Option(None, help="training passes"),
        factors: Optional[int] = typer.Option(None, help="latent dimensionality"),
        show: int = typer.Option(5, help="user vectors to print"),
):
    """
    在 ratings 文件上训练（CSV / TSV / parquet，列 user_id,item_id,rating）
    """
    from psmf.config.app_config import AppConfig
    from psmf.config.training_config import MFConfig
    from psmf.dataloader.ratings_loader import load_ratings
    from psmf.observability.instrumentation import Instrumentation
    from psmf.utils.logger import init_logging
    from psmf.workflows.offline_mf import ps_offline_mf

    cfg = AppConfig.load(config)
    init_logging(cfg.log)

    overrides = {
        k: v for k, v in
        {"policy": policy, "iterations": iterations, "num_factors": factors}.items()
        if v is not None
    }
    training = MFConfig.model_validate({**cfg.training.model_dump(), **overrides})

    try:
        ratings = load_ratings(ratings_path)
    except UserInputError as e:
        print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=2)

    print(
        f"[green]Training on {len(ratings)} ratings "
        f"({training.policy}, {training.iterations} iterations)[/green]"
    )

    result = ps_offline_mf(ratings, training, inst=Instrumentation())

    table = Table(title="psmf result")
    table.add_column("metric")
    table.add_column("value", justify="right")
    table.add_row("users", str(len(result.user_vectors)))
    table.add_row("items", str(len(result.item_vectors)))
    table.add_row("records", str(len(result.records)))
    table.add_row("train rmse", f"{result.rmse(ratings):.4f}")
    table.add_row("drained", str(result.drained))
    print(table)

    for user_id in sorted(result.user_vectors)[:show]:
        vec = result.user_vectors[user_id]
        print(f"u;{user_id};[{','.join(f'{x:.4f}' for x in vec)}]")

    if not result.drained:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

# python -m psmf.cli train ratings.csv --policy per_item
