"""
Learner collaborators used to fit the full and reduced regressions.

The estimators only rely on the :class:`Learner` protocol: a callable that
trains on one set of rows and returns fitted values for another. Any
regression backend can be substituted; :class:`SklearnLearner` adapts a
scikit-learn estimator and :func:`make_learner` builds the default choices:
- 'linear': ordinary least squares
- 'logistic': logistic regression (probabilities of class 1)
- 'random_forest': random forest regressor or classifier
- 'lasso': cross-validated Lasso
"""

from typing import Literal, Optional, Protocol, runtime_checkable

import numpy as np
from sklearn.base import clone, is_classifier
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.linear_model import LassoCV, LinearRegression, LogisticRegression


@runtime_checkable
class Learner(Protocol):
    """
    Fit on training rows and predict on held-out rows.

    Implementations must be deterministic given their own seed and return
    one real value (or class-1 probability) per held-out row.
    """

    def __call__(
        self,
        y_train: np.ndarray,
        X_train: np.ndarray,
        X_test: np.ndarray
    ) -> np.ndarray:
        ...


class SklearnLearner:
    """
    Learner backed by a scikit-learn estimator.

    The estimator is cloned for every call so that folds never share a
    fitted instance.

    Parameters
    ----------
    estimator : estimator
        Unfitted scikit-learn estimator with fit() and predict()
    name : str, optional
        Display name; defaults to the estimator class name

    Examples
    --------
    >>> from sklearn.linear_model import LinearRegression
    >>> learner = SklearnLearner(LinearRegression())
    >>> preds = learner(y_train, X_train, X_test)
    """

    def __init__(self, estimator, name: Optional[str] = None):
        if not hasattr(estimator, 'fit'):
            raise TypeError(
                f"estimator must implement fit(), got {type(estimator).__name__}"
            )
        self.estimator = estimator
        self.name = name or type(estimator).__name__

    def __call__(self, y_train, X_train, X_test) -> np.ndarray:
        model = clone(self.estimator)
        model.fit(X_train, y_train)

        if is_classifier(model) and hasattr(model, 'predict_proba'):
            proba = model.predict_proba(X_test)
            # Probability of class 1 for binary outcomes, full matrix otherwise
            if proba.shape[1] == 2:
                return proba[:, 1]
            return proba
        return np.asarray(model.predict(X_test), dtype=float)

    def __repr__(self) -> str:
        return f"SklearnLearner({self.name})"


def make_learner(
    kind: Literal['linear', 'logistic', 'random_forest', 'lasso'] = 'linear',
    task: Literal['regression', 'classification'] = 'regression',
    random_state: int = 42
) -> SklearnLearner:
    """
    Build one of the default learners.

    Parameters
    ----------
    kind : {'linear', 'logistic', 'random_forest', 'lasso'}, default='linear'
        Model family
    task : {'regression', 'classification'}, default='regression'
        Only used by 'random_forest' to choose regressor or classifier
    random_state : int, default=42
        Random seed for stochastic learners

    Returns
    -------
    learner : SklearnLearner
    """
    if kind == 'linear':
        estimator = LinearRegression()
    elif kind == 'logistic':
        estimator = LogisticRegression(max_iter=1000)
    elif kind == 'random_forest':
        if task == 'classification':
            estimator = RandomForestClassifier(
                n_estimators=100, min_samples_leaf=5, random_state=random_state
            )
        else:
            estimator = RandomForestRegressor(
                n_estimators=100, min_samples_leaf=5, random_state=random_state
            )
    elif kind == 'lasso':
        estimator = LassoCV(cv=5, random_state=random_state)
    else:
        raise ValueError(
            f"kind must be 'linear', 'logistic', 'random_forest', or 'lasso', "
            f"got {kind}"
        )
    return SklearnLearner(estimator, name=kind)


def learner_name(learner) -> str:
    """Readable name of a learner for reporting."""
    name = getattr(learner, 'name', None)
    if name:
        return str(name)
    return getattr(learner, '__name__', type(learner).__name__)
