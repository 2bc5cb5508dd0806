"""Common CLI options for the CLI."""

import typer

BackendOpt = typer.Option(
    "bigquery",
    "--backend",
    "-b",
    help="Warehouse backend: bigquery or databricks",
)

ProjectOpt = typer.Option(
    None,
    "--project",
    help="Google Cloud project (BigQuery backend)",
)

LocationOpt = typer.Option(
    None,
    "--location",
    help="BigQuery job location, e.g. US or EU",
)

ProfileOpt = typer.Option(
    None,
    "--profile",
    "-p",
    help="Databricks CLI profile (from ~/.databrickscfg)",
)

WarehouseOpt = typer.Option(
    None,
    "--warehouse-id",
    envvar="WHOPS_WAREHOUSE_ID",
    help="Databricks SQL warehouse id (Databricks backend)",
)

CatalogOpt = typer.Option(
    None,
    "--catalog",
    help="Databricks catalog that holds the dataset schema",
)

DatasetOpt = typer.Option(
    None,
    "--dataset",
    "-d",
    help="Dataset that holds created views and models (or WHOPS_DATASET)",
)

WorkflowFileOpt = typer.Option(
    None,
    "--workflow",
    "-f",
    help="JSON workflow file (defaults to the built-in purchase-prediction tutorial)",
)

ModelTypeOpt = typer.Option(
    None,
    "--model-type",
    "-m",
    help="Model type for the built-in tutorial: logistic_reg, automl_classifier, dnn_classifier",
)

PollIntervalOpt = typer.Option(
    None,
    "--poll-interval",
    help="Seconds between training status checks (or WHOPS_POLL_INTERVAL)",
)

MaxWaitOpt = typer.Option(
    None,
    "--max-wait",
    help="Maximum seconds to wait for a training job (or WHOPS_MAX_WAIT)",
)

SampleFractionOpt = typer.Option(
    None,
    "--sample-fraction",
    help="Fraction of sessions used for training, in (0, 1] (or WHOPS_SAMPLE_FRACTION)",
)

RetriesOpt = typer.Option(
    None,
    "--retries",
    help="Retries for transient failures of non-training statements",
)

VerboseOpt = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Log step transitions and poll iterations",
)

NameOpt = typer.Option(
    None,
    "--name",
    help="Regex on step name",
)

KindOpt = typer.Option(
    [],
    "--kind",
    help="Step kind selector (e.g. train_model). This is reusable.",
    show_default=False,
)

UseOrOpt = typer.Option(
    False,
    "--or",
    help="Use OR instead of AND between selectors",
)

SelectOpt = typer.Option(
    False,
    "--select",
    "-s",
    help="Pick the steps to run interactively",
)

ParallelOpt = typer.Option(
    1,
    "--parallel",
    "-n",
    help="Number of independent steps to run in parallel",
)

ConfirmOpt = typer.Option(
    True,
    "--confirm/--no-confirm",
    help="Ask for confirmation before submitting statements",
)

DryRunOpt = typer.Option(
    False,
    "--dry-run",
    help="Print the SQL that would be submitted, but don't submit anything",
)

CreateDatasetOpt = typer.Option(
    False,
    "--create-dataset",
    help="Create the dataset first if it does not exist",
)
