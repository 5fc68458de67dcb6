# utils/constants.py

# --- Top-Level Result Directories ---
# Sequentially numbered for proper sorting with clear, self-explanatory names

CONFIG_DIR = "01_RunConfiguration"       # Run config, metadata, seeds
TUNING_RESULTS_DIR = "02_TuningResults"  # Score, summary and ranking tables

TOP_LEVEL_RESULT_DIRS = [
    CONFIG_DIR,
    TUNING_RESULTS_DIR,
]

# --- Result Artifacts ---
SCORES_FILE = "scores.parquet"
SUMMARY_FILE = "summary.parquet"
RANKING_FILE = "ranking.parquet"
WORKFLOW_STATUS_FILE = "workflow_status.parquet"
RACE_LOG_FILE = "race_log.parquet"
BEST_CONFIGURATIONS_FILE = "best_configurations.json"

CONFIG_USED_FILE = "config_used.json"
CONFIG_HASH_FILE = "config_hash.txt"
RUN_METADATA_FILE = "run_metadata.json"

# --- Execution Defaults ---
DEFAULT_SEED = 42
DEFAULT_GRID_SIZE = 25
DEFAULT_GRID_LEVELS = 3
DEFAULT_BURN_IN = 3
DEFAULT_ALPHA = 0.05
DEFAULT_MAX_FAILURES = 2
DEFAULT_NUM_TIES = 10
DEFAULT_N_JOBS = 1
DEFAULT_METRICS = ("rmse",)

# Extra Latin hypercube rounds drawn when duplicates collapse the design
MAX_GRID_DRAW_ROUNDS = 10

# Safety limit on (candidates x folds) across the whole set
DEFAULT_MAX_EVALUATIONS = 100000

# --- Enumerations (string values used in config files) ---
GRID_TYPES = ("space_filling", "regular")
ELIMINATION_POLICIES = ("anova", "paired_t")
ADJUST_METHODS = ("none", "bonferroni")
SOLE_SURVIVOR_MODES = ("continue", "stop")
SCHEDULES = ("workflow", "global")
STRATEGIES = ("race", "grid")
RESAMPLING_METHODS = ("kfold", "stratified", "repeated", "repeated_stratified")

# --- Data-dependent parameter bounds ---
BOUND_N_PREDICTORS = "n_predictors"
BOUND_N_ROWS = "n_rows"
DATA_DEPENDENT_BOUNDS = (BOUND_N_PREDICTORS, BOUND_N_ROWS)

# --- Elimination Reasons ---
REASON_STATISTICAL = "statistical"
REASON_MEAN_COMPARISON = "mean_comparison"
REASON_FIT_FAILURE = "fit_failure"
REASON_TIE_BREAK = "tie_break"
