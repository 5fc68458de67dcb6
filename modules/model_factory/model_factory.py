import inspect
import logging
from typing import Dict, Any, List, Optional
from sklearn.ensemble import (
    ExtraTreesRegressor,
    RandomForestRegressor,
    GradientBoostingRegressor,
    HistGradientBoostingRegressor,
    ExtraTreesClassifier,
    RandomForestClassifier,
    GradientBoostingClassifier,
    HistGradientBoostingClassifier,
)
from sklearn.neighbors import KNeighborsRegressor, KNeighborsClassifier
from sklearn.linear_model import (
    LinearRegression,
    Ridge,
    Lasso,
    ElasticNet,
    HuberRegressor,
    LogisticRegression,
)
from sklearn.svm import SVR, SVC
from sklearn.tree import DecisionTreeRegressor, DecisionTreeClassifier
from sklearn.neural_network import MLPRegressor, MLPClassifier
from sklearn.kernel_ridge import KernelRidge
from sklearn.naive_bayes import GaussianNB
from sklearn.preprocessing import StandardScaler, MinMaxScaler, RobustScaler, PolynomialFeatures
from sklearn.decomposition import PCA
from sklearn.impute import SimpleImputer
from sklearn.feature_selection import VarianceThreshold

logger = logging.getLogger(__name__)


class ModelFactory:
    """
    Factory for creating scikit-learn estimators and transformers by name.
    Used by the config-driven entry point to turn workflow declarations into
    model/preprocessor collaborators.
    """

    REGRESSORS = {
        # Ensembles (Trees)
        'ExtraTreesRegressor': ExtraTreesRegressor,
        'RandomForestRegressor': RandomForestRegressor,
        'GradientBoostingRegressor': GradientBoostingRegressor,
        'HistGradientBoostingRegressor': HistGradientBoostingRegressor,
        'DecisionTreeRegressor': DecisionTreeRegressor,

        # Nearest Neighbors
        'KNeighborsRegressor': KNeighborsRegressor,

        # Neural Networks
        'MLPRegressor': MLPRegressor,

        # Linear / Kernel
        'LinearRegression': LinearRegression,
        'Ridge': Ridge,
        'Lasso': Lasso,
        'ElasticNet': ElasticNet,
        'HuberRegressor': HuberRegressor,
        'KernelRidge': KernelRidge,
        'SVR': SVR,
    }

    CLASSIFIERS = {
        'ExtraTreesClassifier': ExtraTreesClassifier,
        'RandomForestClassifier': RandomForestClassifier,
        'GradientBoostingClassifier': GradientBoostingClassifier,
        'HistGradientBoostingClassifier': HistGradientBoostingClassifier,
        'DecisionTreeClassifier': DecisionTreeClassifier,
        'KNeighborsClassifier': KNeighborsClassifier,
        'MLPClassifier': MLPClassifier,
        'LogisticRegression': LogisticRegression,
        'SVC': SVC,
        'GaussianNB': GaussianNB,
    }

    PREPROCESSORS = {
        'StandardScaler': StandardScaler,
        'MinMaxScaler': MinMaxScaler,
        'RobustScaler': RobustScaler,
        'PolynomialFeatures': PolynomialFeatures,
        'PCA': PCA,
        'SimpleImputer': SimpleImputer,
        'VarianceThreshold': VarianceThreshold,
    }

    @classmethod
    def create(cls, model_name: str, params: Dict[str, Any] = None) -> Any:
        """
        Create and return an instantiated estimator.
        """
        if params is None:
            params = {}

        model_class = cls.REGRESSORS.get(model_name) or cls.CLASSIFIERS.get(model_name)
        if model_class is None:
            raise ValueError(f"Unknown model name: {model_name}. Available: {cls.get_available_models()}")

        valid_params = cls._filter_params(model_class, params)
        return model_class(**valid_params)

    @classmethod
    def create_preprocessor(cls, name: str, params: Dict[str, Any] = None) -> Any:
        """Create and return an instantiated transformer."""
        if name not in cls.PREPROCESSORS:
            raise ValueError(f"Unknown preprocessor name: {name}. Available: {list(cls.PREPROCESSORS)}")
        transformer_class = cls.PREPROCESSORS[name]
        return transformer_class(**cls._filter_params(transformer_class, params or {}))

    @classmethod
    def get_available_models(cls) -> List[str]:
        """Return list of all supported model names."""
        return list(cls.REGRESSORS.keys()) + list(cls.CLASSIFIERS.keys())

    @classmethod
    def is_classifier(cls, model_name: str) -> bool:
        return model_name in cls.CLASSIFIERS

    @staticmethod
    def _filter_params(model_class, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Remove parameters from `params` that are not accepted by `model_class` constructor.
        """
        sig = inspect.signature(model_class.__init__)

        valid_keys = [
            p.name for p in sig.parameters.values()
            if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
        ]

        # Always allow **kwargs if the model supports it
        has_kwargs = any(p.kind == p.VAR_KEYWORD for p in sig.parameters.values())

        if has_kwargs:
            return params

        dropped = sorted(k for k in params if k not in valid_keys)
        if dropped:
            logger.warning(f"{model_class.__name__} does not accept {dropped}; ignoring them.")
        return {k: v for k, v in params.items() if k in valid_keys}
