"""Workflow definitions.

`tutorial_workflow` registers the purchase-prediction tutorial: build a
training view from the public Google Analytics sample sessions, train a
binary classifier on it, evaluate the model on the following month, and
predict purchases per country and per visitor.

`load_workflow` registers steps from a JSON file with the same structure:

    {"steps": [{"name": "...", "kind": "create_view", "sql": "...",
                "depends_on": [...], "model_type": "logistic_reg"}]}

Steps are registered in file order, so a step can only depend on steps
listed before it.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from whops.core.driver import WorkflowDriver
from whops.core.resources import ModelType
from whops.core.steps import StepKind

GA_SESSIONS = "`bigquery-public-data.google_analytics_sample.ga_sessions_*`"

TRAINING_DATA_SQL = f"""
CREATE OR REPLACE VIEW {{name}} AS
SELECT
  IF(totals.transactions IS NULL, 0, 1) AS label,
  IFNULL(device.operatingSystem, "") AS os,
  device.isMobile AS is_mobile,
  IFNULL(geoNetwork.country, "") AS country,
  IFNULL(totals.pageviews, 0) AS pageviews
FROM {GA_SESSIONS}
WHERE _TABLE_SUFFIX BETWEEN '20160801' AND '20170630'
  AND RAND() < {{sample_fraction}}
""".strip()

INFERENCE_DATA_SQL = f"""
CREATE OR REPLACE VIEW {{name}} AS
SELECT
  IF(totals.transactions IS NULL, 0, 1) AS label,
  IFNULL(device.operatingSystem, "") AS os,
  device.isMobile AS is_mobile,
  IFNULL(geoNetwork.country, "") AS country,
  IFNULL(totals.pageviews, 0) AS pageviews,
  fullVisitorId
FROM {GA_SESSIONS}
WHERE _TABLE_SUFFIX BETWEEN '20170701' AND '20170801'
""".strip()

SAMPLE_MODEL_SQL = """
CREATE OR REPLACE MODEL {name}
OPTIONS(model_type='{model_type}', input_label_cols=['label']) AS
SELECT label, os, is_mobile, country, pageviews
FROM {training_data}
""".strip()

MODEL_EVALUATION_SQL = """
SELECT *
FROM ML.EVALUATE(MODEL {sample_model}, (
  SELECT label, os, is_mobile, country, pageviews
  FROM {inference_data}
))
""".strip()

COUNTRY_PREDICTIONS_SQL = """
SELECT country, SUM(predicted_label) AS total_predicted_purchases
FROM ML.PREDICT(MODEL {sample_model}, (
  SELECT os, is_mobile, country, pageviews
  FROM {inference_data}
))
GROUP BY country
ORDER BY total_predicted_purchases DESC
LIMIT 10
""".strip()

VISITOR_PREDICTIONS_SQL = """
SELECT fullVisitorId, SUM(predicted_label) AS total_predicted_purchases
FROM ML.PREDICT(MODEL {sample_model}, (
  SELECT os, is_mobile, country, pageviews, fullVisitorId
  FROM {inference_data}
))
GROUP BY fullVisitorId
ORDER BY total_predicted_purchases DESC
LIMIT 10
""".strip()


def tutorial_workflow(
    driver: WorkflowDriver,
    model_type: ModelType | str = ModelType.LOGISTIC_REG,
) -> WorkflowDriver:
    """Register the purchase-prediction tutorial steps on `driver`."""
    driver.define_step("training_data", StepKind.CREATE_VIEW, TRAINING_DATA_SQL)
    driver.define_step("inference_data", StepKind.CREATE_VIEW, INFERENCE_DATA_SQL)
    driver.define_step(
        "sample_model",
        StepKind.TRAIN_MODEL,
        SAMPLE_MODEL_SQL,
        ["training_data"],
        model_type=model_type,
    )
    driver.define_step(
        "model_evaluation",
        StepKind.EVALUATE,
        MODEL_EVALUATION_SQL,
        ["sample_model", "inference_data"],
    )
    driver.define_step(
        "country_predictions",
        StepKind.PREDICT,
        COUNTRY_PREDICTIONS_SQL,
        ["sample_model", "inference_data"],
    )
    driver.define_step(
        "visitor_predictions",
        StepKind.PREDICT,
        VISITOR_PREDICTIONS_SQL,
        ["sample_model", "inference_data"],
    )
    return driver


def load_workflow(path: str | Path, driver: WorkflowDriver) -> WorkflowDriver:
    """
    Register the steps defined in a JSON workflow file on `driver`.

    `sql` may be a string or a list of lines. Errors raised by
    `WorkflowDriver.define_step` propagate unchanged.

    Raises:
        ValueError: If the file is not valid JSON or a step entry is malformed.
    """
    path = Path(path)
    try:
        payload = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: invalid JSON ({exc})") from exc

    steps = payload.get("steps") if isinstance(payload, dict) else None
    if not isinstance(steps, list):
        raise ValueError(f"{path}: expected an object with a 'steps' list")

    for index, item in enumerate(steps):
        driver.define_step(**_step_kwargs(item, where=f"{path}: steps[{index}]"))
    return driver


def _step_kwargs(item: Any, *, where: str) -> dict[str, Any]:
    """Validate one JSON step entry and convert it to define_step kwargs."""
    if not isinstance(item, dict):
        raise ValueError(f"{where}: expected an object")
    try:
        name = str(item["name"])
        kind = str(item["kind"])
        sql = item["sql"]
    except KeyError as exc:
        raise ValueError(f"{where}: missing key {exc}") from exc

    if isinstance(sql, list):
        sql = "\n".join(str(line) for line in sql)
    if not isinstance(sql, str) or not sql.strip():
        raise ValueError(f"{where}: 'sql' must be a non-empty string or list of lines")

    depends_on = item.get("depends_on") or []
    if not isinstance(depends_on, list):
        raise ValueError(f"{where}: 'depends_on' must be a list")

    return {
        "name": name,
        "kind": kind,
        "sql_template": sql,
        "depends_on": [str(d) for d in depends_on],
        "model_type": item.get("model_type"),
    }
