import pytest

from cancellation import CancellationToken
from job_registry import JobAlreadyRunning


def test_register_lookup_unregister(registry):
    token = CancellationToken()
    registry.register("s1", token)
    assert registry.lookup("s1") is token
    assert "s1" in registry
    assert registry.active_ids() == ["s1"]
    assert registry.unregister("s1") is token
    assert registry.lookup("s1") is None
    assert len(registry) == 0


def test_second_register_for_same_scene_is_rejected(registry):
    first = CancellationToken()
    registry.register("s1", first)
    with pytest.raises(JobAlreadyRunning):
        registry.register("s1", CancellationToken())
    assert registry.lookup("s1") is first


def test_stop_cancels_and_removes(registry):
    token = CancellationToken()
    registry.register("s1", token)
    assert registry.stop("s1", "Stopped by user") is True
    assert token.is_cancelled()
    assert token.reason == "Stopped by user"
    assert "s1" not in registry


def test_stop_twice_or_unknown_is_noop(registry):
    token = CancellationToken()
    registry.register("s1", token)
    registry.stop("s1")
    assert registry.stop("s1") is False
    assert registry.stop("never-registered") is False


def test_unregister_with_foreign_token_keeps_entry(registry):
    old, new = CancellationToken(), CancellationToken()
    registry.register("s1", new)
    assert registry.unregister("s1", old) is None
    assert registry.lookup("s1") is new
    assert registry.unregister("s1", new) is new


def test_registry_does_not_dispose_tokens(registry):
    token = CancellationToken(timeout=60)
    registry.register("s1", token)
    registry.unregister("s1")
    # still owned by its creator: cancelling works until the owner disposes it
    assert token.cancel() is True
    token.dispose()
