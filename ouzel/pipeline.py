"""
The two scripts of the lecture: data preparation and the modelling walk-through.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from . import config, figures, tables
from .boundary import load_boundary, points_within
from .explain import (
    explain,
    explain_layers,
    most_important,
    partial_response,
    partial_response_2d,
    partial_response_layer,
    shapley_importance,
)
from .gbif import fetch_presences
from .layers import LayerStack, download_layers, stack_layers
from .model import SDM, Bagging
from .predict import classify_points, predict_layer, save_prediction
from .training import (
    generate_pseudoabsences,
    prepare_training_data,
    presence_layer,
    save_occurrence_layers,
    transfer_points,
)
from .validation import (
    best_threshold,
    crossvalidate,
    forwardselection,
    kfold,
    threshold_sweep,
    variable_importance,
)

logger = logging.getLogger(__name__)


def write_presences(path: Path, points: list[tuple[float, float]]) -> Path:
    """Tab-separated longitude and latitude, no header."""
    pd.DataFrame(points, columns=["longitude", "latitude"]).to_csv(path, sep="\t", header=False, index=False)
    return path


def read_presences(path: Path) -> list[tuple[float, float]]:
    table = pd.read_csv(path, sep="\t", header=None, names=["longitude", "latitude"])
    return list(zip(table["longitude"].astype(float), table["latitude"].astype(float)))


def write_layer_names(path: Path, names: list[str]) -> Path:
    """One layer name per line, in band order."""
    pd.Series(names).to_csv(path, header=False, index=False)
    return path


def prepare_data(
    output_dir: Path,
    bbox: tuple[float, float, float, float] = config.BBOX,
    country: str = config.COUNTRY,
    species_name: str = config.SPECIES_NAME,
    dataset_key: Optional[str] = config.DATASET_KEY,
    buffer_km: float = config.BUFFER_KM,
    ratio: float = config.ABSENCE_RATIO,
    seed: int = config.SEED,
) -> dict[str, Path]:
    """
    Download the predictors and occurrences and write the lecture data files.

    Writes layers.tiff (BioClim then land cover, one band each),
    occurrences.tiff (presences, pseudo-absences), presences.csv and
    layernames.csv.

    Returns:
        Dictionary mapping file role to path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info(f"Preparing data for: {species_name} ({country})")
    logger.info("=" * 60)

    logger.info("[1/4] Loading boundary and layers...")
    boundary = load_boundary(country)
    bioclim = download_layers("chelsa", bbox, boundary)
    landcover = download_layers("earthenv", bbox, boundary)
    stack = stack_layers(bioclim + landcover)
    logger.info(f"  Stack: {len(stack)} layers of {stack.grid_shape}")

    paths = {"layers": output_dir / config.LAYERS_FILE}
    stack.save(paths["layers"])

    logger.info("[2/4] Fetching GBIF occurrences...")
    points = fetch_presences(species_name, stack.bounds, dataset_key=dataset_key, limit=config.PAGE_SIZE)
    points = points_within(points, boundary)
    logger.info(f"  {len(points)} occurrences inside {country}")

    logger.info("[3/4] Generating pseudo-absences...")
    presence = presence_layer(stack, points)
    absence = generate_pseudoabsences(stack, presence, buffer_km, ratio=ratio, seed=seed)

    logger.info("[4/4] Writing files...")
    paths["presences"] = write_presences(output_dir / config.PRESENCES_FILE, points)
    paths["layernames"] = write_layer_names(output_dir / config.LAYERNAMES_FILE, stack.names)
    paths["occurrences"] = save_occurrence_layers(output_dir / config.OCCURRENCES_FILE, presence, absence, stack)

    for role, path in paths.items():
        logger.info(f"  {role}: {path}")
    return paths


def paired_variable(names: list[str], variables: list[int], v: int, partner: str = "BIO10") -> int:
    """
    Second variable of the 2-D partial response.

    The partner layer when the stack has it, else the next selected
    variable, else the next column.
    """
    if partner in names and names.index(partner) != v:
        return names.index(partner)
    others = [u for u in variables if u != v]
    if others:
        return others[0]
    return (v + 1) % len(names)


def _cv_rows(**cvs) -> dict:
    rows = {}
    for label, cv in cvs.items():
        rows[f"{label} (validation)"] = cv.validation
        rows[f"{label} (training)"] = cv.training
    return rows


def run_lecture(
    output_dir: Path,
    layers_path: Optional[Path] = None,
    presences_path: Optional[Path] = None,
    country: str = config.COUNTRY,
    species_name: str = config.SPECIES_NAME,
    dataset_key: Optional[str] = config.DATASET_KEY,
    buffer_km: float = config.LECTURE_BUFFER_KM,
    seed: int = config.SEED,
    n_folds: int = config.N_FOLDS,
    n_thresholds: int = config.N_THRESHOLDS,
    n_bags: int = config.N_BAGS,
    n_inflated: int = config.N_INFLATED,
    boundary=None,
    landcover: bool = True,
) -> dict:
    """
    Build, evaluate and explain the naive Bayes model, writing every figure and table.

    Args:
        output_dir: Directory receiving figures/, tables/ and summary.json
        layers_path: Stack written by prepare_data (default: download the layers)
        presences_path: presences.csv written by prepare_data (default: query GBIF)
        country: ISO code of the study country
        species_name: Scientific name of the species
        dataset_key: GBIF dataset the occurrences come from
        buffer_km: Exclusion distance around presences
        seed: Random seed
        n_folds: Number of cross-validation folds
        n_thresholds: Number of thresholds in the sweep
        n_bags: Number of trees in the bagged ensemble
        n_inflated: Number of inflated partial responses
        boundary: Country outline (default: downloaded from GADM)
        landcover: Finish with the land-cover decision tree and its ensemble

    Returns:
        Dictionary with results and statistics
    """
    output_dir = Path(output_dir)
    fig_dir = output_dir / "figures"
    tbl_dir = output_dir / "tables"
    tbl_dir.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(seed)

    def figure(fig, name):
        return figures.save_figure(fig, fig_dir / f"{name}.png")

    def table(df, name):
        text = tables.to_markdown(df, tbl_dir / f"{name}.md")
        logger.info(f"\n{text}")

    results = {"species": species_name, "country": country}

    # Data
    logger.info("[1/8] Loading predictors and occurrences...")
    if boundary is None:
        boundary = load_boundary(country)
    if layers_path is not None:
        stack = LayerStack.load(layers_path)
    else:
        layers = download_layers("chelsa", config.BBOX, boundary)
        if landcover:
            layers += download_layers("earthenv", config.BBOX, boundary)
        stack = stack_layers(layers)
    bioclim_names = [n for n in stack.names if n in config.BIOCLIM_NAMES] or stack.names
    predictors = stack.subset(bioclim_names)

    if presences_path is not None:
        points = read_presences(presences_path)
    else:
        points = fetch_presences(species_name, predictors.bounds, dataset_key=dataset_key, limit=config.PAGE_SIZE)
    points = points_within(points, boundary)
    figure(figures.occurrence_map(points, boundary), "occurrences")

    presence = presence_layer(predictors, points)
    absence = generate_pseudoabsences(predictors, presence, buffer_km, ratio=config.ABSENCE_RATIO, seed=seed)
    figure(figures.pseudoabsence_map(predictors, presence, absence, boundary), "pseudoabsences")

    X, y, _ = prepare_training_data(predictors, presence, absence)
    results["n_presences"] = int(y.sum())
    results["n_absences"] = int(len(y) - y.sum())

    # Model and first validation
    logger.info("[2/8] Cross-validating the naive Bayes classifier...")
    sdm = SDM(X, y, model_type="nbc", names=predictors.names, random_state=seed)
    table(tables.performance_table(sdm), "null_models")

    folds = kfold(sdm, k=n_folds, seed=seed)
    cv = crossvalidate(sdm, folds, threshold=False)
    table(tables.performance_table(sdm, {"Validation": cv.validation, "Training": cv.training}), "crossvalidation")
    results["cv_mcc"] = cv.mean("mcc")

    def maps(prefix):
        probability = predict_layer(sdm, predictors, threshold=False)
        current_range = predict_layer(sdm, predictors, threshold=True)
        figure(figures.layer_map(probability, predictors, boundary, contour=current_range), f"{prefix}_probability")
        classified = classify_points(current_range, presence, absence)
        figure(figures.range_map(current_range, predictors, classified, boundary), f"{prefix}_range")
        return probability, current_range

    sdm.train(threshold=False)
    maps("initial")

    # Variable selection
    logger.info("[3/8] Forward variable selection...")
    forwardselection(sdm, folds, included=[0])
    results["variables"] = sdm.variable_names

    # Threshold
    logger.info("[4/8] Sweeping thresholds...")
    thresholds = np.linspace(0.0, 1.0, n_thresholds)
    sweep = threshold_sweep(sdm, folds, thresholds)
    best = best_threshold(sweep)
    results["best_threshold"] = float(thresholds[best])
    figure(figures.threshold_curve(thresholds, sweep, best), "threshold_mcc")
    figure(figures.roc_curve(sweep, best), "roc")
    figure(figures.pr_curve(sweep, best), "precision_recall")

    cv2 = crossvalidate(sdm, folds, threshold=True)
    table(
        tables.performance_table(sdm, {
            "Previous": cv.validation,
            "Validation": cv2.validation,
            "Training": cv2.training,
        }),
        "crossvalidation_tuned",
    )
    results["tuned_cv_mcc"] = cv2.mean("mcc")

    sdm.train()
    results["threshold"] = sdm.threshold
    probability, current_range = maps("tuned")
    save_prediction(output_dir / "probability.tif", probability, predictors)
    sdm.save(output_dir / "sdm.joblib")

    # Variable importance
    logger.info("[5/8] Variable importance...")
    var_imp = variable_importance(sdm, folds, seed=seed)
    table(tables.importance_table(sdm.variable_names, var_imp), "variable_importance")

    # Partial responses
    logger.info("[6/8] Partial responses...")
    v = sdm.variables[0]
    name = sdm.names[v]
    figure(figures.partial_response_plot(*partial_response(sdm, v), name=name), "partial_response")

    v2 = paired_variable(sdm.names, sdm.variables, v)
    x2, y2, z2 = partial_response_2d(sdm, v, v2)
    figure(figures.partial_response_2d_plot(x2, y2, z2, (name, sdm.names[v2])), "partial_response_2d")

    for thr in (False, True):
        partial = partial_response_layer(sdm, predictors, v, threshold=thr)
        suffix = "range" if thr else "probability"
        figure(
            figures.layer_map(partial, predictors, boundary, contour=current_range, cmap=figures.PARTIAL_CMAP),
            f"partial_response_map_{suffix}",
        )

    curves = [partial_response(sdm, v, inflated=True, rng=rng) for _ in range(n_inflated)]
    figure(figures.inflated_response_plot(curves, partial_response(sdm, v), name=name), "inflated_responses")

    # Shapley values
    logger.info("[7/8] Shapley values...")
    shap_train = explain(sdm, v, seed=seed)
    figure(figures.shapley_plot(sdm.features(v), shap_train, name=name), "shapley_training")

    shap_maps = explain_layers(sdm, predictors, seed=seed)
    figure(
        figures.layer_map(
            shap_maps[0], predictors, boundary, contour=current_range,
            cmap=figures.SHAPLEY_CMAP, vrange=(-0.2, 0.2),
        ),
        "shapley_map",
    )
    shap_imp = shapley_importance(shap_maps)
    table(tables.importance_table(sdm.variable_names, var_imp, shap_imp), "shapley_importance")
    figure(
        figures.layer_map(
            most_important(shap_maps), predictors, boundary, contour=current_range,
            cmap=figures.CATEGORY_CMAP, vrange=(0, 19), colorbar=False,
        ),
        "most_important_variable",
    )
    results["shapley_importance"] = dict(zip(sdm.variable_names, map(float, shap_imp)))

    # Land cover
    if landcover:
        logger.info("[8/8] Land-cover decision tree and bagging...")
        results["landcover"] = run_landcover(stack, predictors, presence, absence, folds=n_folds,
                                             n_bags=n_bags, seed=seed, tbl_dir=tbl_dir)

    results_path = output_dir / "summary.json"
    with open(results_path, "w") as f:
        json.dump(results, f, indent=2)
    logger.info(f"Saved results summary to {results_path}")

    return results


def run_landcover(
    stack: LayerStack,
    predictors: LayerStack,
    presence: np.ndarray,
    absence: np.ndarray,
    folds: int = config.N_FOLDS,
    n_bags: int = config.N_BAGS,
    seed: int = config.SEED,
    tbl_dir: Optional[Path] = None,
) -> dict:
    """Train a decision tree and its bagged ensemble on the land-cover layers."""
    names = [n for n in stack.names if n in config.LANDCOVER_NAMES]
    if not names:
        raise ValueError("The stack does not hold any land-cover layer")
    cover = stack.subset(names)

    pres = transfer_points(presence, predictors, cover)
    absc = transfer_points(absence, predictors, cover) & ~pres
    X, y, _ = prepare_training_data(cover, pres, absc)

    tree = SDM(X, y, model_type="dt", names=cover.names, random_state=seed)
    forest = Bagging(tree, n_estimators=n_bags)
    splits = kfold(tree, k=folds, seed=seed)

    tree_cv = crossvalidate(tree, splits)
    forest_cv = crossvalidate(forest, splits)
    tree.train()
    forest.train()

    if tbl_dir is not None:
        df = tables.performance_table(tree, _cv_rows(Tree=tree_cv, Bagging=forest_cv))
        tables.to_markdown(df, Path(tbl_dir) / "landcover.md")

    logger.info(f"Tree validation MCC: {tree_cv.mean('mcc'):.3f}, bagging: {forest_cv.mean('mcc'):.3f}")
    return {
        "tree_cv_mcc": tree_cv.mean("mcc"),
        "bagging_cv_mcc": forest_cv.mean("mcc"),
        "member_variables": [[cover.names[v] for v in m] for m in forest.member_variables()],
    }
