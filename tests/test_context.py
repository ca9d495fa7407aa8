"""Tests for the ambient current-observation store."""

from __future__ import annotations

import contextvars
import re

from observekit.context import current_observation, current_trace_ids, new_span_id, new_trace_id
from observekit.observation import Observation


class TestIds:
    def test_trace_id_is_32_hex(self):
        assert re.fullmatch(r"[0-9a-f]{32}", new_trace_id())

    def test_span_id_is_16_hex(self):
        assert re.fullmatch(r"[0-9a-f]{16}", new_span_id())


class TestCurrentTraceIds:
    """Tests for current_trace_ids()."""

    def test_none_outside_scope(self):
        assert current_observation() is None
        assert current_trace_ids() == (None, None)

    def test_ids_of_current_observation(self, registry):
        obs = Observation.create("x", registry)
        trace_id, span_id = obs.run(current_trace_ids)
        assert trace_id == obs.context.trace_id
        assert span_id == obs.context.span_id

    def test_nested_shares_trace_id(self, registry):
        def outer():
            outer_ids = current_trace_ids()
            inner_ids = Observation.create("inner", registry).run(current_trace_ids)
            return outer_ids, inner_ids

        (outer_trace, outer_span), (inner_trace, inner_span) = Observation.create("outer", registry).run(outer)
        assert inner_trace == outer_trace
        assert inner_span != outer_span


class TestContextIsolation:
    """Copied contexts do not leak scopes back to the caller."""

    def test_scope_in_copied_context_does_not_leak(self, registry):
        obs = Observation.create("x", registry)
        ctx = contextvars.copy_context()
        seen = ctx.run(obs.run, current_observation)
        assert seen is obs
        assert current_observation() is None
