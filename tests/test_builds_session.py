"""Tests for the checkout session state machine."""

import pytest

from imagestack.builds.session import CheckoutSession
from imagestack.errors import AlreadyCheckedOutError, NotCheckedOutError
from imagestack.storage.vfs import VfsBackend
from imagestack.types import AbortOutcome, SessionState


@pytest.fixture
def backend(settings, tag_store, umoci) -> VfsBackend:
    tag_store.layers["base"] = ["l1"]
    return VfsBackend(settings, tag_store, umoci)


class TestCheckoutSession:
    """Tests for CheckoutSession transitions."""

    def test_starts_idle(self, backend):
        session = CheckoutSession(backend)
        assert session.state == SessionState.IDLE
        with pytest.raises(NotCheckedOutError):
            session.rootfs

    def test_checkout_then_commit(self, backend, umoci):
        session = CheckoutSession(backend)
        session.checkout("base")
        assert session.state == SessionState.CHECKED_OUT
        assert session.rootfs == backend.rootfs

        session.set_entrypoint("/bin/app")
        digest = session.commit("next")

        assert digest == "layer-next"
        assert session.state == SessionState.COMMITTED
        assert umoci.calls_for("config") == [("config", "next", "/bin/app")]

    def test_double_checkout(self, backend, umoci):
        session = CheckoutSession(backend)
        session.checkout("base")

        with pytest.raises(AlreadyCheckedOutError):
            session.checkout("base")
        assert len(umoci.calls_for("unpack")) == 1

    def test_commit_requires_checkout(self, backend):
        with pytest.raises(NotCheckedOutError):
            CheckoutSession(backend).commit("next")

    def test_new_checkout_after_commit(self, backend):
        """COMMITTED behaves like IDLE."""
        session = CheckoutSession(backend)
        session.checkout("base")
        session.commit("next")

        session.checkout("next")

        assert session.state == SessionState.CHECKED_OUT
        assert session.source == "next"

    def test_declined_abort_keeps_state(self, backend):
        session = CheckoutSession(backend)
        session.checkout("base")

        outcome = session.abort(confirm=lambda message: False)

        assert outcome == AbortOutcome.DECLINED
        assert session.state == SessionState.CHECKED_OUT

    def test_abort(self, backend):
        session = CheckoutSession(backend)
        session.checkout("base")

        assert session.abort(force=True) == AbortOutcome.ABORTED
        assert session.state == SessionState.ABORTED

    def test_resumes_recorded_checkout(self, backend):
        """A new session picks up a checkout left by an earlier process."""
        CheckoutSession(backend).checkout("base")

        resumed = CheckoutSession(backend)

        assert resumed.state == SessionState.CHECKED_OUT
        assert resumed.source == "base"
