"""Multi-tenant transaction monitoring: rules, watchlists, alerts and notifications."""

import os

__version__ = "0.1.0"

# Reported by /health; override to tag a deployment build.
ENGINE_VERSION = os.environ.get("TXN_ENGINE_VERSION") or __version__
