"""Commit-based changelog generation.

Commits newer than the warehouse's latest DocumentCommitRecord are
summarized by the model into ``{date, title, description}`` entries. Each
entry becomes one append-only DocumentCommitRecord.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..constants import DEFAULT_LLM_TIMEOUT_SECONDS, LLM_MAX_ATTEMPTS, LLM_RETRY_FACTOR_SECONDS
from ..db import DatabaseManager
from ..db.models import DocumentCommitRecord
from ..exceptions import LLMOutputParseError
from ..git import GitService
from ..git.models import CommitInfo
from ..utils import call_with_llm_retry, parse_json_block, stream_text
from .prompts import TIME_FORMAT, build_changelog_prompt

logger = logging.getLogger(__name__)

CHANGELOG_TAG = "changelog"


@dataclass
class ChangelogEntry:
    date: datetime
    title: str
    description: str


def _parse_date(value, newest_commit_at: datetime) -> datetime:
    """Parse a model-supplied date.

    Dates after the newest commit are clamped to it, so a hallucinated
    future date cannot push the next "since" cutoff past unseen commits.
    Entries dated on the newest commit's day are stamped no earlier than
    that commit, so the next cutoff does not pick it up again.
    Unparseable dates fall back to the newest commit time.
    """
    parsed = None
    if isinstance(value, str) and value.strip():
        text = value.strip().replace("T", " ").rstrip("Z")
        for fmt in (TIME_FORMAT, "%Y-%m-%d %H:%M", "%Y-%m-%d"):
            try:
                parsed = datetime.strptime(text[:19] if fmt == TIME_FORMAT else text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return newest_commit_at
    if parsed > newest_commit_at:
        return newest_commit_at
    if parsed.date() == newest_commit_at.date() and parsed < newest_commit_at:
        return newest_commit_at
    return parsed


def parse_changelog(raw_output: str, newest_commit_at: datetime) -> List[ChangelogEntry]:
    """Decode the model's changelog array, raising LLMOutputParseError on bad shape."""
    parsed = parse_json_block(raw_output, tag=CHANGELOG_TAG)
    if isinstance(parsed, dict):
        parsed = parsed.get("changelog") or parsed.get("items")
    if not isinstance(parsed, list):
        raise LLMOutputParseError("Changelog must be a JSON array", raw_output)

    entries = []
    for index, item in enumerate(parsed):
        if not isinstance(item, dict):
            raise LLMOutputParseError(f"Changelog entry {index} must be an object", raw_output)
        title = str(item.get("title") or "").strip()
        description = str(item.get("description") or "").strip()
        if not title and not description:
            continue
        entries.append(ChangelogEntry(
            date=_parse_date(item.get("date"), newest_commit_at),
            title=title,
            description=description,
        ))
    return entries


class ChangelogGenerator:
    """Summarizes unrecorded commits into changelog entries."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        git_service: GitService,
        llm=None,
        llm_timeout: float = DEFAULT_LLM_TIMEOUT_SECONDS,
        max_attempts: int = LLM_MAX_ATTEMPTS,
        retry_factor: float = LLM_RETRY_FACTOR_SECONDS,
    ):
        self._db = db_manager
        self._git = git_service
        self._llm = llm
        self.llm_timeout = llm_timeout
        self.max_attempts = max_attempts
        self.retry_factor = retry_factor

    def last_recorded_at(self, warehouse_id: str) -> Optional[datetime]:
        with self._db.get_session() as session:
            return session.query(func.max(DocumentCommitRecord.last_update)).filter(
                DocumentCommitRecord.warehouse_id == warehouse_id
            ).scalar()

    def pending_commits(self, warehouse_id: str, repo_path: str) -> List[CommitInfo]:
        return self._git.log(repo_path, since=self.last_recorded_at(warehouse_id))

    def generate(
        self,
        warehouse_id: str,
        repo_path: str,
        repository_url: str = "",
        branch: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ChangelogEntry]:
        """Return changelog entries for commits not yet covered. No commits, no LLM call."""
        commits = self.pending_commits(warehouse_id, repo_path)
        return self.summarize(warehouse_id, commits, repository_url, branch, cancel_event)

    def summarize(
        self,
        warehouse_id: str,
        commits: List[CommitInfo],
        repository_url: str = "",
        branch: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ChangelogEntry]:
        """Ask the model to summarize ``commits`` under the LLM retry policy."""
        if not commits:
            logger.info(f"No unrecorded commits for warehouse {warehouse_id}")
            return []

        newest = max(c.committed_at for c in commits)
        prompt = build_changelog_prompt(repository_url, branch, commits)

        def _call_and_parse() -> List[ChangelogEntry]:
            raw = stream_text(
                self._llm, prompt, cancel_event=cancel_event,
                timeout=self.llm_timeout, purpose="changelog",
            )
            return parse_changelog(raw, newest)

        entries = call_with_llm_retry(
            _call_and_parse,
            label=f"changelog[{warehouse_id}]",
            max_tries=self.max_attempts,
            factor=self.retry_factor,
        )
        logger.info(f"Generated {len(entries)} changelog entries from {len(commits)} commits")
        return entries

    @staticmethod
    def add_records(
        session: Session,
        warehouse_id: str,
        entries: List[ChangelogEntry],
        commit_id: str = "",
    ) -> List[DocumentCommitRecord]:
        """Append one DocumentCommitRecord per entry in the caller's transaction."""
        records = [
            DocumentCommitRecord(
                warehouse_id=warehouse_id,
                commit_id=commit_id,
                author="",
                title=entry.title,
                commit_message=entry.description,
                last_update=entry.date,
            )
            for entry in entries
        ]
        session.add_all(records)
        return records
