"""
Species distribution models: a classifier, its predictors and its threshold.
"""

import copy
import logging
import math
from pathlib import Path
from typing import Literal, Optional, Sequence

import joblib
import numpy as np
from sklearn.decomposition import PCA
from sklearn.ensemble import BaggingClassifier
from sklearn.naive_bayes import GaussianNB
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeClassifier

from .metrics import ConfusionMatrix

logger = logging.getLogger(__name__)


ModelType = Literal["nbc", "dt"]


class SDM:
    """
    A classifier trained on presences and pseudo-absences.

    The model keeps the full feature matrix; only the columns listed in
    `variables` are used for training and prediction. Predictions are
    probabilities, turned into a range with `threshold`.
    """

    MODELS = {
        "nbc": lambda seed: Pipeline([
            ("scaler", StandardScaler()),
            ("pca", PCA()),
            ("nbc", GaussianNB()),
        ]),
        "dt": lambda seed: Pipeline([
            ("scaler", StandardScaler()),
            ("pca", PCA()),
            ("dt", DecisionTreeClassifier(max_depth=7, max_leaf_nodes=12, random_state=seed)),
        ]),
    }

    def __init__(
        self,
        X: np.ndarray,
        y: np.ndarray,
        model_type: ModelType = "nbc",
        variables: Optional[Sequence[int]] = None,
        names: Optional[list[str]] = None,
        random_state: int = 42,
    ):
        """
        Initialize the model.

        Args:
            X: Feature matrix of shape (n_samples, n_variables)
            y: Labels (True for presences)
            model_type: Type of model to use ("nbc", "dt")
            variables: Indices of the columns of X used by the model (default: all)
            names: Names of the columns of X
            random_state: Random seed
        """
        if model_type not in self.MODELS:
            raise ValueError(f"Unknown model type: {model_type}. Choose from {list(self.MODELS.keys())}")

        self.X = np.asarray(X, dtype=np.float64)
        self.y = np.asarray(y, dtype=bool)
        if self.X.ndim != 2 or len(self.X) != len(self.y):
            raise ValueError(f"Features {self.X.shape} do not match labels {self.y.shape}")

        self.model_type = model_type
        self.names = list(names) if names is not None else [f"var_{i + 1}" for i in range(self.X.shape[1])]
        self.variables = list(variables) if variables is not None else list(range(self.X.shape[1]))
        self.random_state = random_state
        self.threshold = 0.5
        self.model = self._make_estimator()
        self.is_trained = False

    def __repr__(self) -> str:
        return (f"{type(self).__name__}({self.model_type}, {len(self.y)} samples, "
                f"{len(self.variables)} variables, threshold={self.threshold:.3f})")

    def _make_estimator(self):
        return self.MODELS[self.model_type](self.random_state)

    @property
    def variable_names(self) -> list[str]:
        return [self.names[v] for v in self.variables]

    def features(self, v: Optional[int] = None) -> np.ndarray:
        """Training values of one variable, or of every selected variable."""
        if v is None:
            return self.X[:, self.variables]
        return self.X[:, v]

    def labels(self) -> np.ndarray:
        return self.y

    def train(self, training: Optional[np.ndarray] = None, threshold: bool = True) -> "SDM":
        """
        Fit the classifier.

        Args:
            training: Indices of the training instances (default: all)
            threshold: Tune the threshold to maximize the MCC on the training data

        Returns:
            The model itself
        """
        idx = np.arange(len(self.y)) if training is None else np.asarray(training)
        X = self.X[np.ix_(idx, self.variables)]
        y = self.y[idx]

        self.model = self._make_estimator()
        self.model.fit(X, y)
        self.is_trained = True

        if threshold:
            self.threshold = self._optimal_threshold(self._probability(X), y)
        logger.debug(f"Trained {self!r}")
        return self

    def _probability(self, X: np.ndarray) -> np.ndarray:
        column = list(self.model.classes_).index(True)
        return self.model.predict_proba(X)[:, column]

    @staticmethod
    def _optimal_threshold(probability: np.ndarray, y: np.ndarray, n: int = 200) -> float:
        thresholds = np.linspace(probability.min(), probability.max(), n)
        scores = [cm.mcc() for cm in ConfusionMatrix.sweep(probability, y, thresholds)]
        return float(thresholds[np.nanargmax(np.nan_to_num(scores, nan=-1.0))])

    def predict(self, X: Optional[np.ndarray] = None, threshold: bool = True) -> np.ndarray:
        """
        Predict presence probabilities or the range.

        Args:
            X: Feature matrix with every column of the training matrix
                (default: the training matrix)
            threshold: Return booleans (probability >= threshold) instead of probabilities

        Returns:
            Array of probabilities or booleans
        """
        if not self.is_trained:
            raise RuntimeError("Model has not been trained yet")
        X = self.X if X is None else np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)

        probability = self._probability(X[:, self.variables])
        if threshold:
            return probability >= self.threshold
        return probability

    def copy(self) -> "SDM":
        """Shallow copy sharing the data, with its own variables and fitted classifier."""
        other = copy.copy(self)
        other.variables = list(self.variables)
        return other

    def save(self, path: str | Path) -> None:
        """Save the trained model to disk."""
        if not self.is_trained:
            raise RuntimeError("Model has not been trained yet")
        joblib.dump(self, path)

    @classmethod
    def load(cls, path: str | Path) -> "SDM":
        """Load a trained model from disk."""
        model = joblib.load(path)
        if not isinstance(model, SDM):
            raise ValueError(f"{path} does not hold a species distribution model")
        return model


class Bagging(SDM):
    """
    Bootstrap ensemble of a model.

    Every member is trained on a bootstrap sample of the instances and,
    when bagfeatures is set, on ceil(sqrt(n)) of the n selected variables.
    The ensemble probability is the mean of the member probabilities.
    """

    def __init__(self, sdm: SDM, n_estimators: int = 10, bagfeatures: bool = True):
        if n_estimators < 1:
            raise ValueError(f"Need at least one member, got {n_estimators}")
        self.n_estimators = n_estimators
        self.bagfeatures = bagfeatures
        super().__init__(
            sdm.X, sdm.y,
            model_type=sdm.model_type,
            variables=sdm.variables,
            names=sdm.names,
            random_state=sdm.random_state,
        )
        self.threshold = sdm.threshold

    def _make_estimator(self):
        n_variables = len(self.variables)
        max_features = math.ceil(math.sqrt(n_variables)) if self.bagfeatures else n_variables
        return BaggingClassifier(
            estimator=super()._make_estimator(),
            n_estimators=self.n_estimators,
            bootstrap=True,
            max_features=max_features,
            random_state=self.random_state,
        )

    def member_variables(self) -> list[list[int]]:
        """Variables (columns of X) used by each member."""
        if not self.is_trained:
            raise RuntimeError("Model has not been trained yet")
        return [[self.variables[i] for i in features] for features in self.model.estimators_features_]
