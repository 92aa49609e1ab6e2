"""viralyze - bulk AI enrichment of short-form video backlogs."""

__version__ = "0.1.0"
