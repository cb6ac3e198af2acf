"""
Tests for the engine tracer decorator and input fingerprinting.
"""

import logging

from casework_engines.tracer import compute_input_fingerprint, traced_engine
from casework_kernel.domain.roles import UserRole


class TestFingerprint:
    def test_is_16_hex_chars(self):
        fp = compute_input_fingerprint(("a",), {"a": 1})
        assert len(fp) == 16
        int(fp, 16)

    def test_set_order_does_not_matter(self):
        a = compute_input_fingerprint(
            ("roles",), {"roles": {UserRole.SUPER_ADMIN, UserRole.ACCOUNTS_TEAM}},
        )
        b = compute_input_fingerprint(
            ("roles",), {"roles": frozenset([UserRole.ACCOUNTS_TEAM, UserRole.SUPER_ADMIN])},
        )
        assert a == b

    def test_dict_key_order_does_not_matter(self):
        a = compute_input_fingerprint(("d",), {"d": {"x": 1, "y": 2}})
        b = compute_input_fingerprint(("d",), {"d": {"y": 2, "x": 1}})
        assert a == b

    def test_list_order_matters(self):
        a = compute_input_fingerprint(("l",), {"l": [1, 2]})
        b = compute_input_fingerprint(("l",), {"l": [2, 1]})
        assert a != b

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("a",), {}) == compute_input_fingerprint(
            ("a",), {"a": None},
        )


class TestTracedEngine:
    def test_emits_trace_and_returns_result(self, captured_logs):
        @traced_engine("doubler", "2.1", fingerprint_fields=("x",))
        def double(*, x):
            return x * 2

        assert double(x=21) == 42

        traces = [r for r in captured_logs() if r["message"] == "CASEWORK_ENGINE_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["engine_name"] == "doubler"
        assert trace["engine_version"] == "2.1"
        assert trace["input_fingerprint"] == compute_input_fingerprint(("x",), {"x": 21})
        assert trace["logger"] == "casework.engines.tracer"
        assert trace["level"] == "DEBUG"
        assert trace["duration_ms"] >= 0

    def test_exception_propagates_without_trace(self, captured_logs):
        @traced_engine("boom", "1.0")
        def boom():
            raise ValueError("bad")

        try:
            boom()
        except ValueError:
            pass
        assert not [r for r in captured_logs() if r.get("engine_name") == "boom"]

    def test_preserves_function_metadata(self):
        @traced_engine("named", "1.0")
        def named_engine():
            """Doc."""

        assert named_engine.__name__ == "named_engine"
        assert named_engine.__doc__ == "Doc."
        assert logging.getLogger("casework.engines.tracer").isEnabledFor(logging.DEBUG)
