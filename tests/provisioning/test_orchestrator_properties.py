"""Property-based tests for the orchestrator's input boundary.

Feature: provisioning, Property: No Side Effects On Rejected Input

*For any* input that is not an absolute http(s) URL, a provisioning run
SHALL fail with ValidationError without starting a process or creating
a workspace, and SHALL emit exactly one STAGE event and one RESULT event.
"""

import asyncio
import tempfile
import uuid
from pathlib import Path

from hypothesis import given, settings, strategies as st

from fakes import RecordingRunner, RecordingSink
from src.provisioning.config import ProvisioningSettings
from src.provisioning.events.models import EventType
from src.provisioning.orchestrator import ProvisioningOrchestrator

WORKSPACE_ROOT = Path(tempfile.gettempdir()) / f"provision-prop-{uuid.uuid4().hex}"


def run_async(coro):
    return asyncio.run(coro)


# =============================================================================
# Hypothesis Strategies
# =============================================================================


non_http_input = st.one_of(
    st.text(alphabet=st.characters(blacklist_characters=":"), max_size=40),
    st.builds(
        lambda scheme, rest: f"{scheme}://{rest}",
        st.sampled_from(["ftp", "file", "ssh", "git", "data"]),
        st.text(max_size=20),
    ),
)


# =============================================================================
# Property Tests
# =============================================================================


class TestRejectedInput:
    @given(value=non_http_input)
    @settings(max_examples=100, deadline=None)
    def test_no_process_and_no_workspace(self, value: str):
        runner = RecordingRunner()
        sink = RecordingSink()
        orchestrator = ProvisioningOrchestrator(
            event_sink=sink,
            settings=ProvisioningSettings(temp_root=str(WORKSPACE_ROOT)),
            runner=runner,
        )

        result = run_async(orchestrator.provision(value))

        assert result.success is False
        assert result.error_type == "ValidationError"
        assert runner.calls == []
        assert not WORKSPACE_ROOT.exists()
        assert [e.event_type for e in sink.events] == [EventType.STAGE, EventType.RESULT]
