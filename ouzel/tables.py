"""
Markdown tables for the slides.
"""

from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd

from .metrics import METRICS, NULL_MODELS, ConfusionMatrix

HEADERS = {"mcc": "MCC", "ppv": "PPV", "npv": "NPV", "dor": "DOR", "accuracy": "Accuracy"}


def _row(label: str, matrices: list[ConfusionMatrix]) -> dict:
    row = {"Model": label}
    for metric in METRICS:
        values = [getattr(cm, metric)() for cm in matrices]
        finite = [v for v in values if np.isfinite(v)]
        row[HEADERS[metric]] = np.mean(finite) if finite else np.nan
    return row


def performance_table(labels, rows: Optional[dict[str, list[ConfusionMatrix]]] = None) -> pd.DataFrame:
    """
    Skill of the null classifiers followed by averaged cross-validation results.

    Args:
        labels: Training labels, or a model
        rows: Row label mapped to the confusion matrices to average
            (e.g. {"Validation": cv.validation, "Training": cv.training})
    """
    records = [_row(name, [null(labels)]) for name, null in NULL_MODELS.items()]
    for label, matrices in (rows or {}).items():
        records.append(_row(label, matrices))
    return pd.DataFrame.from_records(records)


def importance_table(
    names: list[str],
    importance: np.ndarray,
    shapley: Optional[np.ndarray] = None,
) -> pd.DataFrame:
    """Variable importance, sorted by Shapley importance when given."""
    table = pd.DataFrame({"Variable": names, "Import.": importance})
    key = "Import."
    if shapley is not None:
        table["Shap. imp."] = shapley
        key = "Shap. imp."
    return table.sort_values(key, ascending=False).reset_index(drop=True)


def to_markdown(table: pd.DataFrame, path: Optional[Union[str, Path]] = None) -> str:
    text = table.to_markdown(index=False, floatfmt=".3f")
    if path is not None:
        Path(path).write_text(text + "\n")
    return text
