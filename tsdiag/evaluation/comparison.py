"""Side-by-side SSE comparison of fitted models.

SSE here is the raw, unweighted sum of squared residuals. Models that
lose observations (differencing, smoothing start-up) are summed over
fewer residuals and no parameter penalty is applied, so the table is
descriptive only. Use the information criteria in ``FittedModel.extra``
for order selection.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from tsdiag.models.base import FittedModel

logger = logging.getLogger(__name__)


def compare_models(
    models: list[FittedModel],
    output_dir: Path | None = None,
) -> pd.DataFrame:
    """Tabulate model kind, residual count, and SSE.

    Args:
        models: Fitted models, typically one per variant for one series.
        output_dir: If given, ``comparison_table.csv`` and
            ``comparison_summary.txt`` are written there.

    Returns:
        DataFrame indexed by model name with columns
        ``kind``, ``n_residuals``, ``sse``.
    """
    rows: list[dict[str, str | int | float]] = []
    for model in models:
        rows.append({
            "Model": model.name,
            "kind": model.kind,
            "n_residuals": model.n_residuals,
            "sse": model.sse,
        })

    df = pd.DataFrame(rows, columns=["Model", "kind", "n_residuals", "sse"])
    df = df.set_index("Model")

    if output_dir is not None and not df.empty:
        output_dir.mkdir(parents=True, exist_ok=True)
        csv_path = output_dir / "comparison_table.csv"
        df.to_csv(csv_path)

        summary_path = output_dir / "comparison_summary.txt"
        with open(summary_path, "w", encoding="utf-8") as f:
            f.write("MODEL COMPARISON SUMMARY (raw SSE, not adjusted for residual count)\n")
            f.write("=" * 70 + "\n\n")
            best = df["sse"].idxmin()
            f.write(f"Lowest SSE: {best} ({df.loc[best, 'sse']:.4f}, "
                    f"{df.loc[best, 'n_residuals']} residuals)\n")
            f.write(f"\nFull table:\n{df.to_string(float_format=lambda x: f'{x:.4f}')}\n")
        logger.info(f"Comparison table saved to: {csv_path}")

    return df


def compare_case_studies(
    tables: dict[str, pd.DataFrame],
    statuses: dict[str, str] | None = None,
    output_dir: Path | None = None,
) -> pd.DataFrame:
    """Stack per-case-study comparison tables into one long table.

    Args:
        tables: Case-study name -> table from ``compare_models``.
        statuses: Case-study name -> "ok" / "failed: ..."; failed case
            studies appear as a single row without model columns.
        output_dir: If given, ``case_study_table.csv`` is written there.

    Returns:
        DataFrame with columns ``CaseStudy``, ``Model``, ``kind``,
        ``n_residuals``, ``sse``, ``status``.
    """
    statuses = statuses or {}
    rows: list[dict] = []
    for case, table in tables.items():
        status = statuses.get(case, "ok")
        for model_name, row in table.iterrows():
            rows.append({"CaseStudy": case, "Model": model_name, **row.to_dict(), "status": status})
    for case, status in statuses.items():
        if case not in tables:
            rows.append({"CaseStudy": case, "Model": None, "kind": None,
                         "n_residuals": None, "sse": None, "status": status})

    df = pd.DataFrame(rows, columns=["CaseStudy", "Model", "kind", "n_residuals", "sse", "status"])

    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)
        csv_path = output_dir / "case_study_table.csv"
        df.to_csv(csv_path, index=False)
        logger.info(f"Case-study table saved to: {csv_path}")

    return df
