"""Tests for sync/engine.py -- upstream sync runs.

Covers:
- push runs from the payload and from the bookmarked commit
- untracked paths ignored, removals and renames
- per-path error isolation and bookmark advancement
- full entity refreshes
"""

import pytest

from docsflow_sync.core.repository import FileChange
from docsflow_sync.errors import NotFoundError
from docsflow_sync.sync.models import DocumentStatus, SyncAction, SyncBookmark
from docsflow_sync.sync.webhook import PushEvent


def _event(repo, after, *changes):
    return PushEvent(
        before=repo.root,
        after=after,
        changes=[FileChange(path=p, status=s) for p, s in changes],
        pusher="carol",
    )


def _actions(report):
    return {r.path: r.action for r in report.results}


class TestHandlePush:
    """Webhook pushes applied to the store."""

    def test_payload_changes_applied(self, upstream, drafts, store, repo):
        """Files listed in the push are refreshed from the new commit."""
        drafts.fetch("docs/intro.md")
        after = repo.push({"docs/intro.md": "A\nB2\n", "README.md": "# New\n"})

        report = upstream.handle_push(
            _event(repo, after, ("README.md", "modified"), ("docs/intro.md", "modified"))
        )
        assert _actions(report) == {"docs/intro.md": SyncAction.UPDATED}
        document = store.find_by_id("docs/intro.md")
        assert document.remote_content == "A\nB2\n"
        assert document.commit.commit_id == after
        assert [t.path for t in report.trees] == ["docs"]
        assert report.bookmark_advanced is True
        assert store.get_bookmark("upstream-sync").commit_id == after

    def test_bookmark_covers_every_commit_since(self, upstream, drafts, store, repo):
        """Files changed by earlier missed commits are refreshed too."""
        drafts.fetch("docs/intro.md")
        store.save_bookmark(
            SyncBookmark(key="upstream-sync", commit_id=repo.root, timestamp="t")
        )
        repo.push({"docs/intro.md": "A\nB2\n"})
        after = repo.push({"docs/faq.md": "Q\n"})

        report = upstream.handle_push(_event(repo, after, ("docs/faq.md", "added")))
        assert _actions(report) == {
            "docs/faq.md": SyncAction.CREATED,
            "docs/intro.md": SyncAction.UPDATED,
        }
        assert "compare_commits" in repo.calls

    def test_draft_kept_on_upstream_change(self, upstream, drafts, store, repo):
        """A modified document keeps its draft across a push."""
        drafts.save_draft("docs/intro.md", "mine\n", "bob")
        after = repo.push({"docs/intro.md": "theirs\n"})

        upstream.handle_push(_event(repo, after, ("docs/intro.md", "modified")))
        document = store.find_by_id("docs/intro.md")
        assert document.status == DocumentStatus.MODIFIED
        assert document.draft_content == "mine\n"
        assert document.remote_content == "theirs\n"

    def test_removal(self, upstream, drafts, store, repo):
        drafts.fetch("docs/guide.md")
        after = repo.push({"docs/guide.md": None})

        report = upstream.handle_push(_event(repo, after, ("docs/guide.md", "removed")))
        assert report.by_action(SyncAction.REMOVED)[0].path == "docs/guide.md"
        assert store.find_by_id("docs/guide.md") is None

    def test_rename_is_removal_plus_refresh(self, upstream, drafts, store, repo):
        """A rename removes the old path and refreshes the new one."""
        drafts.fetch("docs/guide.md")
        after = repo.push({"docs/guide.md": None, "docs/howto.md": "# Guide\n\nStep one.\n"})
        event = PushEvent(
            after=after,
            changes=[
                FileChange(
                    path="docs/howto.md", status="renamed", previous_path="docs/guide.md"
                )
            ],
        )

        report = upstream.handle_push(event)
        assert _actions(report) == {
            "docs/guide.md": SyncAction.REMOVED,
            "docs/howto.md": SyncAction.CREATED,
        }
        assert store.find_by_id("docs/howto.md").remote_content.startswith("# Guide")

    def test_failed_path_blocks_bookmark(self, upstream, store, repo):
        """The bookmark does not advance past a failed path."""
        after = repo.push({"docs/intro.md": "A\nB2\n"})
        repo.fail_on.add("get_file_content")

        report = upstream.handle_push(_event(repo, after, ("docs/intro.md", "modified")))
        assert report.bookmark_advanced is False
        assert [r.path for r in report.errors] == ["docs/intro.md"]
        assert store.get_bookmark("upstream-sync") is None

    def test_failed_compare_falls_back_to_payload(self, upstream, store, repo):
        """Without a compare the payload file list is used."""
        store.save_bookmark(
            SyncBookmark(key="upstream-sync", commit_id=repo.root, timestamp="t")
        )
        after = repo.push({"docs/faq.md": "Q\n"})
        repo.fail_on.add("compare_commits")

        report = upstream.handle_push(_event(repo, after, ("docs/faq.md", "added")))
        assert _actions(report) == {"docs/faq.md": SyncAction.CREATED}
        assert report.errors == []
        assert report.bookmark_advanced is False
        assert store.get_bookmark("upstream-sync").commit_id == repo.root

    def test_failed_tree_sync_reported(self, upstream, store, repo):
        after = repo.push({"docs/faq.md": "Q\n"})
        repo.fail_on.add("get_tree")

        report = upstream.handle_push(_event(repo, after, ("docs/faq.md", "added")))
        assert [r.path for r in report.errors] == ["docs"]
        assert report.bookmark_advanced is False

    def test_untracked_only_push(self, upstream, store, repo):
        """A push touching no entity changes nothing."""
        after = repo.push({"README.md": "# New\n"})
        report = upstream.handle_push(_event(repo, after, ("README.md", "modified")))
        assert report.results == []
        assert report.trees == []
        assert report.bookmark_advanced is True


class TestRefreshPath:
    """Single-path refreshes."""

    def test_missing_file_applies_removal(self, upstream, drafts, store, repo):
        drafts.fetch("docs/guide.md")
        repo.push({"docs/guide.md": None})
        assert upstream.refresh_path("docs/guide.md") == SyncAction.REMOVED


class TestSyncEntity:
    """Full refresh of one entity directory."""

    def test_refreshes_changed_and_new_files(self, upstream, drafts, store, repo):
        """Files whose blob id moved or that are new are fetched."""
        drafts.fetch("docs/intro.md")
        drafts.fetch("docs/guide.md")
        repo.push({"docs/intro.md": "A\nB2\n", "docs/faq.md": "Q\n"})

        report = upstream.sync_entity("docs")
        assert report.trigger == "entity"
        assert _actions(report) == {
            "docs/faq.md": SyncAction.CREATED,
            "docs/intro.md": SyncAction.UPDATED,
        }
        assert store.find_by_id("docs/intro.md").remote_content == "A\nB2\n"

    def test_up_to_date_documents_skipped(self, upstream, drafts, repo):
        """Matching blob ids are not fetched again."""
        drafts.fetch("docs/intro.md")
        drafts.fetch("docs/guide.md")
        report = upstream.sync_entity("docs")
        assert report.results == []
        assert repo.calls.count("get_file_content") == 2

    def test_ghosts_reported(self, upstream, drafts, repo):
        """Drafts whose file vanished upstream are reported as ghosts."""
        drafts.fetch("docs/guide.md")
        drafts.save_draft("docs/intro.md", "mine\n", "bob")
        repo.push({"docs/intro.md": None})

        report = upstream.sync_entity("docs")
        assert report.by_action(SyncAction.GHOSTED)[0].path == "docs/intro.md"

    def test_unknown_entity(self, upstream):
        with pytest.raises(NotFoundError):
            upstream.sync_entity("wiki")
