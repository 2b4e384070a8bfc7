"""HTTP API for RepoWiki."""
