"""
esupgrade CLI - Command Line Interface for model upgrades

Provides terminal commands for:
- Showing the deployment's model version state
- Running pending upgrades
- Listing classified indices
- Setting up the default Kibana index
"""

from .main import cli, main

__all__ = ["cli", "main"]
