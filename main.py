#!/usr/bin/env python
"""
Workflow Racing Pipeline - Main Entry Point
Screens preprocessing x model x hyperparameter combinations over resampled
data, pruning clearly inferior candidates early, and reports the best ones.
"""
import sys
import logging
import argparse
import traceback
from pathlib import Path

from sklearn.model_selection import KFold, StratifiedKFold, RepeatedKFold, RepeatedStratifiedKFold

# Core Infrastructure
from modules.config_manager import ConfigurationManager
from modules.logging_config import LoggingConfigurator
from modules.model_factory import IdentityPreprocessor, SklearnModel, SklearnPreprocessor
from modules.reporting_engine import ReportingEngine
from modules.resampling import ResamplePlan
from modules.tuners import get_tuner
from modules.workflow_set import WorkflowSet
from utils.exceptions import RacingException, ConfigurationError
from utils.file_io import read_dataframe


def parse_arguments(argv=None):
    """
    Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Workflow Racing Pipeline - racing / grid tuning of model workflows",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--config",
        type=str,
        default="config/config.json",
        help="Path to the configuration JSON file"
    )

    parser.add_argument(
        "--schema",
        type=str,
        default="config/schema.json",
        help="Path to the configuration JSON schema"
    )

    parser.add_argument(
        "--strategy",
        choices=["race", "grid"],
        default=None,
        help="Override tuning.strategy"
    )

    parser.add_argument(
        "--schedule",
        choices=["workflow", "global"],
        default=None,
        help="Override tuning.schedule"
    )

    parser.add_argument(
        "--run-id",
        type=str,
        default=None,
        help="Optional run identifier appended to the results directory"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging and progress bars"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and data without running the evaluation"
    )

    return parser.parse_args(argv)


def load_data(config: dict, logger: logging.Logger):
    """Read the dataset and split it into predictors and outcome."""
    data_cfg = config['data']
    path = Path(data_cfg['file_path'])
    if not path.exists():
        raise ConfigurationError(f"Data file not found: {path}")

    df = read_dataframe(path)
    target = data_cfg['target']
    if target not in df.columns:
        raise ConfigurationError(f"Target column '{target}' not found in {path}")

    features = data_cfg.get('features') or [c for c in df.columns if c != target]
    missing = sorted(set(features) - set(df.columns))
    if missing:
        raise ConfigurationError(f"Feature columns not found in {path}: {missing}")

    df = df[features + [target]]
    if data_cfg.get('drop_na', True):
        before = len(df)
        df = df.dropna().reset_index(drop=True)
        if len(df) < before:
            logger.warning(f"Dropped {before - len(df)} rows with missing values.")

    logger.info(f"Data loaded: {len(df)} rows, {len(features)} predictors, target '{target}'")
    return df[features], df[target]


def build_resample_plan(config: dict, X, y, logger: logging.Logger) -> ResamplePlan:
    """Materialize the configured scikit-learn splitter into a ResamplePlan."""
    cfg = config.get('resampling', {})
    method = cfg.get('method', 'kfold')
    n_folds = cfg.get('n_folds', 10)
    n_repeats = cfg.get('n_repeats', 1)
    seed = config['_internal_seeds']['resample']
    shuffle = cfg.get('shuffle', True)

    if method == 'kfold':
        splitter = KFold(n_splits=n_folds, shuffle=shuffle, random_state=seed if shuffle else None)
    elif method == 'stratified':
        splitter = StratifiedKFold(n_splits=n_folds, shuffle=shuffle, random_state=seed if shuffle else None)
    elif method == 'repeated':
        splitter = RepeatedKFold(n_splits=n_folds, n_repeats=n_repeats, random_state=seed)
    else:
        splitter = RepeatedStratifiedKFold(n_splits=n_folds, n_repeats=n_repeats, random_state=seed)

    plan = ResamplePlan.from_splitter(splitter, X, y)
    logger.info(f"Resample plan: {plan}")
    return plan


def build_workflow_set(config: dict, logger: logging.Logger) -> WorkflowSet:
    """Cross the configured preprocessors with the configured models."""
    wf_cfg = config['workflows']

    preprocessors = {}
    for name, steps in (wf_cfg.get('preprocessors') or {'plain': []}).items():
        if not steps:
            preprocessors[name] = IdentityPreprocessor()
        else:
            resolved = [s if isinstance(s, str) else (s['name'], s.get('params', {})) for s in steps]
            preprocessors[name] = SklearnPreprocessor(resolved, name=name)

    models = {
        name: (SklearnModel(spec['estimator'], spec.get('params'), name=name), spec.get('space'))
        for name, spec in wf_cfg['models'].items()
    }

    workflow_set = WorkflowSet.from_cross(preprocessors, models, cross=wf_cfg.get('cross', True), logger=logger)
    for wflow_id, options in wf_cfg.get('options', {}).items():
        workflow_set.set_options(wflow_id, **options)

    logger.info(f"Workflow set: {len(workflow_set)} workflows {workflow_set.ids}")
    return workflow_set


def setup_run_directory(config: dict, run_id: str, logger: logging.Logger) -> Path:
    base_results_dir = config.get('outputs', {}).get('base_results_dir', 'results')
    run_dir = Path(f"{base_results_dir}_{run_id}" if run_id else base_results_dir).absolute()
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Run directory: {run_dir}")
    return run_dir


def main(argv=None):
    """
    Main pipeline orchestration function.

    Returns:
        int: Exit code (0 on completion, even with failed workflows; 1 on errors)
    """
    logger = None

    try:
        args = parse_arguments(argv)

        print("\n" + "=" * 80)
        print("    WORKFLOW RACING PIPELINE")
        print("=" * 80 + "\n")

        # ---------------------------------------------------------------
        # PHASE 0: INITIALIZATION & VALIDATION
        # ---------------------------------------------------------------
        config_manager = ConfigurationManager(config_path=args.config, schema_path=args.schema)
        config = config_manager.load_and_validate()

        if args.verbose:
            config.setdefault('logging', {})['level'] = 'DEBUG'
        tuning = config.setdefault('tuning', {})
        if args.strategy:
            tuning['strategy'] = args.strategy
        if args.schedule:
            tuning['schedule'] = args.schedule

        logging_configurator = LoggingConfigurator(config)
        logging_configurator.setup()
        logger = logging_configurator.get_logger('pipeline')

        logger.info(f"Configuration loaded from: {args.config}")

        run_id = args.run_id or config_manager.generate_run_id()
        config_manager.run_id = run_id
        run_dir = setup_run_directory(config, args.run_id, logger)
        config.setdefault('outputs', {})['base_results_dir'] = str(run_dir)
        config_manager.save_artifacts(str(run_dir))

        # ---------------------------------------------------------------
        # PHASE 1: DATA & RESAMPLING
        # ---------------------------------------------------------------
        logger.info("=" * 60)
        logger.info("PHASE 1: DATA & RESAMPLING")
        logger.info("=" * 60)

        X, y = load_data(config, logger)
        plan = build_resample_plan(config, X, y, logger)
        workflow_set = build_workflow_set(config, logger)

        if args.dry_run:
            logger.info("Dry run mode: validation complete. Exiting without evaluation.")
            print("\n[SUCCESS] Configuration validated successfully.")
            return 0

        # ---------------------------------------------------------------
        # PHASE 2: TUNING
        # ---------------------------------------------------------------
        logger.info("=" * 60)
        logger.info(f"PHASE 2: TUNING ({tuning.get('strategy', 'race').upper()})")
        logger.info("=" * 60)

        tuner = get_tuner(tuning.get('strategy', 'race'), logger=logging.getLogger('tuning'))
        workflow_set.evaluate(
            tuner,
            plan,
            common_options=config_manager.common_options(),
            schedule=tuning.get('schedule', 'workflow'),
            verbose=args.verbose,
        )

        # ---------------------------------------------------------------
        # PHASE 3: REPORTING
        # ---------------------------------------------------------------
        logger.info("=" * 60)
        logger.info("PHASE 3: REPORTING")
        logger.info("=" * 60)

        reporting = ReportingEngine(config, logger)
        reporting.execute(workflow_set, metric=tuning.get('race_metric'))

        statuses = workflow_set.statuses()
        n_failed = int((statuses['status'] == 'failed').sum())
        logger.info("-" * 60)
        logger.info(f"PIPELINE COMPLETED: {len(statuses) - n_failed} workflows completed, {n_failed} failed")
        logger.info(f"Output Directory: {run_dir}")
        logger.info("-" * 60)

        print(f"\n[SUCCESS] Pipeline completed. Results saved to: {run_dir}")
        return 0

    except RacingException as e:
        msg = f"Pipeline Error: {str(e)}"
        print(f"\n[ERROR] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1

    except KeyboardInterrupt:
        print("\n[INTERRUPTED] Pipeline interrupted by user.")
        if logger:
            logger.warning("Pipeline interrupted by user (Ctrl+C)")
        return 130

    except Exception as e:
        msg = f"Unexpected Error: {str(e)}"
        print(f"\n[CRITICAL] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
