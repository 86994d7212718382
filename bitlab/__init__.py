"""bitlab: budget-constrained strategy execution over bit strings, with job scheduling."""

__version__ = "1.0.0"
