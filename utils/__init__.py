"""
Utility package setup.

Enables pandas Copy-on-Write globally so the score and summary tables can be
sliced freely without defensive copies.
"""

import pandas as pd

# Reduce implicit copies across the pipeline.
pd.options.mode.copy_on_write = True
