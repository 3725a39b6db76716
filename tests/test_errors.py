"""Tests for tukcron error classes.

Tests cover:
- Classification parents (transient vs permanent vs guard)
- Attributes carried by Rejected, SlotOccupied and PipelineHalted
"""

import pytest

from tukcron.errors import (
    AlreadyDelegated,
    AuthorityMismatch,
    IdempotencyGuard,
    InvalidSeed,
    NotFound,
    PermanentError,
    PipelineHalted,
    Rejected,
    SlotOccupied,
    TransientError,
    TukcronError,
)
from tukcron.schemas import ProvisioningReport


class TestHierarchy:

    @pytest.mark.parametrize("error_cls", [InvalidSeed, Rejected, NotFound, AuthorityMismatch, PipelineHalted])
    def test_permanent(self, error_cls):
        assert issubclass(error_cls, PermanentError)
        assert not issubclass(error_cls, TransientError)

    @pytest.mark.parametrize("error_cls", [SlotOccupied, AlreadyDelegated])
    def test_guards_are_not_failures(self, error_cls):
        assert issubclass(error_cls, IdempotencyGuard)
        assert not issubclass(error_cls, PermanentError)

    def test_all_catchable_as_base(self):
        with pytest.raises(TukcronError):
            raise TransientError("rate limited")


class TestAttributes:

    def test_rejected_reason(self):
        error = Rejected("insufficient funds")
        assert error.reason == "insufficient funds"
        assert str(error) == "insufficient funds"

    def test_slot_occupied_index(self):
        assert SlotOccupied("taken", index=0).index == 0
        assert SlotOccupied("taken").index is None

    def test_pipeline_halted_report(self):
        report = ProvisioningReport(halted=True, error="boom")
        error = PipelineHalted("Pipeline halted: boom", report)
        assert error.report is report
