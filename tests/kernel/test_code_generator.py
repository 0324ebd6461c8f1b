"""
Document code generation.

Codes come from locked counter rows, so they are unique and gap-free per
(prefix, year) within committed transactions, and restart every year.
"""

from datetime import UTC, datetime

import pytest

from backoffice_kernel.db.engine import session_scope
from backoffice_kernel.domain.clock import DeterministicClock
from backoffice_kernel.services.code_generator import CodeGenerator, counter_name, format_code
from backoffice_kernel.services.sequence_service import SequenceService


class TestFormatting:

    def test_format_pads_to_width(self):
        assert format_code("CA", 2025, 7) == "CA-2025-0007"

    def test_format_never_truncates(self):
        assert format_code("CA", 2025, 123456) == "CA-2025-123456"

    def test_counter_name(self):
        assert counter_name("POI", 2025) == "POI-2025"


class TestGenerate:

    def test_sequential_codes(self, session_factory, deterministic_clock):
        with session_scope(session_factory) as session:
            codes = CodeGenerator(session, deterministic_clock)
            assert codes.generate("CA") == "CA-2025-0001"
            assert codes.generate("CA") == "CA-2025-0002"
            assert codes.generate("REIM") == "REIM-2025-0001"

    def test_counter_survives_across_transactions(self, session_factory, deterministic_clock):
        with session_scope(session_factory) as session:
            CodeGenerator(session, deterministic_clock).generate("SO")
        with session_scope(session_factory) as session:
            assert CodeGenerator(session, deterministic_clock).generate("SO") == "SO-2025-0002"

    def test_rolled_back_number_is_reused(self, session_factory, deterministic_clock):
        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as session:
                CodeGenerator(session, deterministic_clock).generate("PO")
                raise RuntimeError("abort")
        with session_scope(session_factory) as session:
            assert CodeGenerator(session, deterministic_clock).generate("PO") == "PO-2025-0001"

    def test_year_comes_from_clock(self, session_factory):
        clock = DeterministicClock(datetime(2025, 12, 31, 23, 59, tzinfo=UTC))
        with session_scope(session_factory) as session:
            codes = CodeGenerator(session, clock)
            assert codes.generate("DO") == "DO-2025-0001"
            clock.set_time(datetime(2026, 1, 1, 0, 0, tzinfo=UTC))
            assert codes.generate("DO") == "DO-2026-0001"

    def test_configured_width(self, session_factory, deterministic_clock):
        with session_scope(session_factory) as session:
            assert CodeGenerator(session, deterministic_clock, width=6).generate("AP") == "AP-2025-000001"

    def test_one_counter_per_prefix_and_year(self, session_factory, deterministic_clock):
        with session_scope(session_factory) as session:
            codes = CodeGenerator(session, deterministic_clock)
            generated = [codes.generate("POI") for _ in range(3)]
            assert generated == ["POI-2025-0001", "POI-2025-0002", "POI-2025-0003"]
            assert SequenceService(session).current_value("POI-2025") == 3

    @pytest.mark.parametrize("prefix", ["", "ca", "C-A", "1CA"])
    def test_invalid_prefix(self, session_factory, deterministic_clock, prefix):
        with session_scope(session_factory) as session:
            with pytest.raises(ValueError, match="Invalid code prefix"):
                CodeGenerator(session, deterministic_clock).generate(prefix)
