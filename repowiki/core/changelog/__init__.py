from .generator import ChangelogEntry, ChangelogGenerator, parse_changelog

__all__ = ["ChangelogEntry", "ChangelogGenerator", "parse_changelog"]
