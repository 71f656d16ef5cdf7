"""
secdigest - Daily digest of security-related PRs merged into a GitHub repository.

A CLI tool that:
1. Finds PRs merged within a lookback window
2. Scores each one against a YAML rule set (labels, keywords, paths, guide tags)
3. Renders the adopted PRs, with the reasons they were picked, as markdown

Usage:
    secdigest init          # Write sample settings and rules
    secdigest check         # Validate the rule file
    secdigest score FILE    # Score PRs from a local fixture
    secdigest generate      # Fetch, score and render the digest
"""

__version__ = "0.1.0"
__author__ = "secdigest"
