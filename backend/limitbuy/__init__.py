"""limitbuy: budget-capped limit purchases on a web trading venue."""

__version__ = "0.1.0"
