"""Shared test fixtures for micopy."""

import pytest


def write_tree(root, files):
    """Create *files* (relative path -> text) under *root*."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


class RecordingReporter:
    """Reporter stand-in that remembers every call."""

    def __init__(self):
        self.updates = []
        self.summaries = []

    def update(self, completed, total):
        self.updates.append((completed, total))

    def finish(self, total, elapsed):
        self.summaries.append((total, elapsed))


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def source_tree(tmp_path):
    """Small project tree with docs, nested sources and build output."""
    return write_tree(
        tmp_path / "src",
        {
            "docs/readme.txt": "read me",
            "build/out.bin": "binary-ish",
            "a/b/c.txt": "deep",
            "top.log": "log line",
            "notes.md": "# notes",
        },
    )
