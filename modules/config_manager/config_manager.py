import json
import os
import hashlib
import sys
import logging
import jsonschema
import psutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from modules.model_factory import ModelFactory
from modules.parameter_space import ParameterSpace
from modules.workflow import WorkflowOptions
from utils.exceptions import ConfigurationError
from utils import constants

# Keys of the 'tuning' section that are per-workflow execution options
TUNING_OPTION_KEYS = tuple(
    k for k in WorkflowOptions.field_names() if k not in ('n_jobs', 'seed')
)


class ConfigurationManager:
    """
    Manages configuration loading, validation, and access for a racing run.
    Acts as the single source of truth and safety guard for the pipeline.

    Validation happens in layers: JSON schema (structure), logical rules
    (bounds, known names), then resource guardrails (total evaluation count,
    CPU count).
    """

    DEFAULT_MAX_EVALUATIONS = constants.DEFAULT_MAX_EVALUATIONS

    def __init__(self, config_path: str = "config/config.json",
                 schema_path: str = "config/schema.json"):
        """
        Initialize the ConfigurationManager.

        Args:
            config_path (str): Path to the user configuration JSON.
            schema_path (str): Path to the JSON schema definition.
        """
        self.config_path = config_path
        self.schema_path = schema_path
        self.config: Dict[str, Any] = {}
        self.schema: Dict[str, Any] = {}
        self.run_id: Optional[str] = None
        self.logger = logging.getLogger("config_manager")

    def load_and_validate(self) -> Dict[str, Any]:
        """
        Main entry point. Loads config, validates schema/logic/resources
        and propagates seeds.

        Returns:
            Dict[str, Any]: The validated configuration.

        Raises:
            ConfigurationError: If any validation step fails.
        """
        # 1. Load Files
        self.config = self._load_json(self.config_path)
        self.schema = self._load_json(self.schema_path)

        # 2. Structural Validation (Schema)
        self._validate_schema()

        # 3. Logical Validation (Business Rules & Bounds)
        self._validate_logic()

        # 4. Resource Validation
        self._validate_resources()

        # 5. Internal Seed Propagation (Reproducibility)
        self._propagate_seeds()

        return self.config

    def generate_run_id(self) -> str:
        """Generate or retrieve a timestamp-based run identifier."""
        if not self.run_id:
            self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.run_id

    def common_options(self) -> Dict[str, Any]:
        """
        Options shared by every workflow: the 'tuning' section plus
        execution.n_jobs and the propagated grid seed.
        """
        tuning = self.config.get('tuning', {})
        options = {k: tuning[k] for k in TUNING_OPTION_KEYS if k in tuning}
        options['n_jobs'] = self.config.get('execution', {}).get('n_jobs', constants.DEFAULT_N_JOBS)
        options['seed'] = tuning.get('seed', self.config.get('_internal_seeds', {}).get('grid', constants.DEFAULT_SEED))
        return options

    def save_artifacts(self, output_dir: str) -> None:
        """
        Save configuration artifacts to the run directory for reproducibility.

        Saves:
        1. config_used.json: The exact config object in memory.
        2. config_hash.txt: SHA256 hash for versioning.
        3. run_metadata.json: Environment details (Python version, platform, ...).
        """
        config_dir = Path(output_dir) / constants.CONFIG_DIR
        config_dir.mkdir(parents=True, exist_ok=True)

        # 1. Save Config
        with open(config_dir / constants.CONFIG_USED_FILE, 'w') as f:
            json.dump(self.config, f, indent=2)

        # 2. Calculate and Save Hash
        config_str = json.dumps(self.config, sort_keys=True)
        config_hash = hashlib.sha256(config_str.encode()).hexdigest()

        with open(config_dir / constants.CONFIG_HASH_FILE, 'w') as f:
            f.write(config_hash)

        # 3. Save Metadata (Environment Capture)
        metadata = {
            'run_id': self.run_id,
            'start_time': datetime.now().isoformat(),
            'python_version': sys.version,
            'platform': sys.platform,
            'cpu_count': psutil.cpu_count(logical=True),
            'config_hash': config_hash,
            'working_directory': os.getcwd()
        }

        with open(config_dir / constants.RUN_METADATA_FILE, 'w') as f:
            json.dump(metadata, f, indent=2)

    def _load_json(self, path: str) -> Dict[str, Any]:
        """Safely load a JSON file."""
        if not os.path.exists(path):
            raise ConfigurationError(f"File not found: {path}")
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {str(e)}")

    def _validate_schema(self) -> None:
        """Validate config structure against JSON schema."""
        try:
            jsonschema.validate(instance=self.config, schema=self.schema)
        except jsonschema.ValidationError as e:
            raise ConfigurationError(f"Schema validation failed: {e.message}")

    def _validate_logic(self) -> None:
        """Logical validation beyond what the schema expresses."""
        # --- Data Section ---
        data = self.config.get('data', {})
        for key in ['file_path', 'target']:
            if not data.get(key):
                raise ConfigurationError(f"Data '{key}' must be specified and non-empty.")

        # --- Resampling Section ---
        resampling = self.config.get('resampling', {})
        method = resampling.get('method', 'kfold')
        if method not in constants.RESAMPLING_METHODS:
            raise ConfigurationError(f"resampling.method must be one of {constants.RESAMPLING_METHODS}, got {method!r}")
        if resampling.get('n_folds', 10) < 2:
            raise ConfigurationError(f"resampling.n_folds must be >= 2, got {resampling.get('n_folds')}.")
        if resampling.get('n_repeats', 1) < 1:
            raise ConfigurationError(f"resampling.n_repeats must be >= 1, got {resampling.get('n_repeats')}.")
        if resampling.get('seed', constants.DEFAULT_SEED) < 0:
            raise ConfigurationError("Resampling seed must be non-negative.")

        # --- Tuning Section ---
        tuning = self.config.get('tuning', {})
        strategy = tuning.get('strategy', 'race')
        if strategy not in constants.STRATEGIES:
            raise ConfigurationError(f"tuning.strategy must be one of {constants.STRATEGIES}, got {strategy!r}")
        schedule = tuning.get('schedule', 'workflow')
        if schedule not in constants.SCHEDULES:
            raise ConfigurationError(f"tuning.schedule must be one of {constants.SCHEDULES}, got {schedule!r}")

        # Option values share one validator with the programmatic API
        try:
            base = WorkflowOptions.from_dict({k: tuning[k] for k in TUNING_OPTION_KEYS if k in tuning})
        except TypeError as e:
            raise ConfigurationError(f"Invalid tuning options: {e}")
        total_folds = resampling.get('n_folds', 10) * resampling.get('n_repeats', 1)
        if strategy == 'race' and base.burn_in >= total_folds:
            self.logger.warning(
                f"burn_in ({base.burn_in}) >= number of folds ({total_folds}); racing will eliminate nothing before the last fold."
            )

        # --- Workflows Section ---
        workflows = self.config.get('workflows', {})
        models = workflows.get('models', {})
        if not models:
            raise ConfigurationError("workflows.models cannot be empty.")
        for name, spec in models.items():
            estimator = spec.get('estimator')
            if estimator not in ModelFactory.get_available_models():
                raise ConfigurationError(
                    f"Model '{name}': unknown estimator '{estimator}'. Available: {ModelFactory.get_available_models()}"
                )
            ParameterSpace.from_dict(spec.get('space'))

        for name, steps in workflows.get('preprocessors', {}).items():
            for step in steps:
                step_name = step if isinstance(step, str) else step.get('name')
                if step_name not in ModelFactory.PREPROCESSORS:
                    raise ConfigurationError(
                        f"Preprocessor '{name}': unknown step '{step_name}'. Available: {list(ModelFactory.PREPROCESSORS)}"
                    )

        for wflow_id, overrides in workflows.get('options', {}).items():
            try:
                base.merged(overrides)
            except TypeError as e:
                raise ConfigurationError(f"Invalid options for workflow '{wflow_id}': {e}")

        # --- Execution Section ---
        execution = self.config.get('execution', {})
        if 'n_jobs' in execution:
            n_jobs = execution['n_jobs']
            if n_jobs == 0 or n_jobs < -1:
                raise ConfigurationError(f"execution.n_jobs must be -1 (all cores) or a positive integer, got {n_jobs}")

    def _validate_resources(self) -> None:
        """
        Guard against evaluation explosions. The worst case is every candidate
        of every workflow scored on every fold (full grid, no elimination).
        """
        resources = self.config.get('resources', {})
        workflows = self.config.get('workflows', {})
        tuning = self.config.get('tuning', {})
        resampling = self.config.get('resampling', {})

        n_preps = max(1, len(workflows.get('preprocessors', {})))
        n_models = len(workflows.get('models', {}))
        n_workflows = n_preps * n_models if workflows.get('cross', True) else n_models
        n_folds = resampling.get('n_folds', 10) * resampling.get('n_repeats', 1)
        grid_size = tuning.get('grid_size', constants.DEFAULT_GRID_SIZE)

        per_workflow = {
            wflow_id: overrides.get('grid_size', grid_size)
            for wflow_id, overrides in workflows.get('options', {}).items()
        }
        total_candidates = sum(per_workflow.values()) + grid_size * max(0, n_workflows - len(per_workflow))
        total_evaluations = total_candidates * n_folds

        max_evaluations = resources.get('max_evaluations', self.DEFAULT_MAX_EVALUATIONS)
        if total_evaluations > max_evaluations:
            raise ConfigurationError(
                f"Evaluation budget exceeded: up to {total_evaluations} fits "
                f"({n_workflows} workflows x ~{grid_size} candidates x {n_folds} folds) "
                f"exceeds resources.max_evaluations ({max_evaluations})."
            )
        self.logger.info(f"Evaluation budget validated: at most {total_evaluations} fits (limit: {max_evaluations})")

        # CPU check for joblib workers
        n_jobs = self.config.get('execution', {}).get('n_jobs', constants.DEFAULT_N_JOBS)
        cpu_count = psutil.cpu_count(logical=True) or 1
        if n_jobs > cpu_count:
            self.logger.warning(
                f"execution.n_jobs ({n_jobs}) exceeds available CPUs ({cpu_count}). "
                "Workers will oversubscribe the machine."
            )

    def _propagate_seeds(self) -> None:
        """
        Derive component seeds from the master resampling seed with
        non-overlapping offsets.
        """
        master_seed = self.config.get('resampling', {}).get('seed', constants.DEFAULT_SEED)

        self.config['_internal_seeds'] = {
            'resample': master_seed,
            'grid': master_seed + 1000,
        }
        self.logger.debug(f"Seeds propagated from master ({master_seed}): {self.config['_internal_seeds']}")
