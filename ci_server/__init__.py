"""CI Server - Pull request verification for a single shared checkout.

This package receives GitHub pull request webhooks, serializes builds
against one working tree, runs the verification steps and reports each
step's outcome to the GitHub statuses API.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
