"""RepoWiki: repository documentation pipeline."""

__version__ = "0.1.0"
