import pytest


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's SKILLPATCH_* environment out of every test."""
    for key in (
        "SKILLPATCH_SKILLS_DIR",
        "SKILLPATCH_MERGE_MEMORY",
        "SKILLPATCH_MERGE_TIMEOUT",
        "SKILLPATCH_TEST_TIMEOUT",
        "SKILLPATCH_INSTALL_TIMEOUT",
        "SKILLPATCH_INSTALL_COMMAND",
        "SKILLPATCH_LOCK_STALE_AFTER",
    ):
        monkeypatch.delenv(key, raising=False)
