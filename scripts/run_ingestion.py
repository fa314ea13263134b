"""
Script to run the FDC ingestion without installing the package.

Same verbs as the `fdc-ingest` console script:

    python scripts/run_ingestion.py run
    python scripts/run_ingestion.py status
"""

import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from ingestion.cli import cli


if __name__ == "__main__":
    cli()
