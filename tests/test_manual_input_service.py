"""
Tests for the manual input data/actions service.

Uses the in-memory backend and recording notifier from conftest.py.

Run tests:
    pytest tests/test_manual_input_service.py -v
"""

import asyncio

import pytest

from api.backend_client import BackendError
from api.manual_input_service import (
    InvalidInputError,
    NothingToSaveError,
    SaveInProgressError,
)
from websocket.manager import MessageType

BASE = "2024-01-01T08:00"


def _run(coro):
    return asyncio.run(coro)


class TestGrid:

    def test_load_grid_groups_and_prefills(self, service, fake_backend):
        fake_backend.existing = {
            "T1_2024-01-01 08:40:00": {"tag_no": "T1", "value": 7, "date_rec": "2024-01-01 08:40:00"},
            "P1_2024-01-01 10:00:00": {"tag_no": "P1", "value": None, "date_rec": "2024-01-01 10:00:00"},
        }

        grid = _run(service.load_grid(42, BASE, m_input=2))

        assert fake_backend.fetches == [(BASE, 42, 2)]
        assert [g.jm for g in grid.groups] == [4, 6]
        group4, group6 = grid.groups
        assert group4.headers == ["08:00", "08:40", "09:20", "10:00"]
        assert group4.slots[1] == "2024-01-01 08:40:00"
        assert [row["row_key"] for row in group4.tags] == ["T1", "T2"]
        assert group4.values == {"T1_1": "7"}
        assert group6.values == {"P1_5": "NaN"}
        assert grid.tag_count == 3
        assert not grid.no_data

    def test_no_tags_means_no_data(self, service, fake_backend):
        fake_backend.tags = []
        grid = _run(service.load_grid(42, BASE))
        assert grid.no_data
        assert grid.to_dict()["groups"] == []

    def test_rows_without_tag_number_get_placeholder_keys(self, service):
        grid = service.build_grid([{"tag_no": "", "jm_input": 1}, {"tag_no": "A", "jm_input": 1}], {}, BASE)
        assert [row["row_key"] for row in grid.groups[0].tags] == ["empty-tag-0", "A"]

    def test_get_performance(self, service):
        assert _run(service.get_performance(42)).description == "Baseline"
        assert _run(service.get_performance(99)) is None


class TestSave:

    def test_save_submits_and_refreshes(self, service, fake_backend, notifier):
        outcome = _run(service.save(
            42, BASE, fake_backend.tags,
            {"4": {"T1_1": "7", "T2_0": "NaN", "T2_1": " "}},
            m_input=2,
        ))

        assert [(r.tag_no, r.value, r.date_rec) for r in outcome.records] == [
            ("T1", 7.0, "2024-01-01 08:40:00"),
            ("T2", None, "2024-01-01 08:00:00"),
        ]
        assert all(r.perf_id == 42 for r in outcome.records)
        assert outcome.message == "Successfully saved 2 records!"

        # refreshed grid comes from the backend after the save
        assert fake_backend.fetches == [(BASE, 42, 2)]
        assert outcome.grid.groups[0].values == {"T1_1": "7", "T2_0": "NaN"}

        assert len(notifier.messages) == 1
        message = notifier.messages[0]
        assert message.type == MessageType.MANUAL_INPUT_SAVED
        assert message.channel == "perf:42"
        assert message.data["records_saved"] == 2
        assert not service.is_saving(42)

    def test_nothing_to_save(self, service, fake_backend, notifier):
        with pytest.raises(NothingToSaveError):
            _run(service.save(42, BASE, fake_backend.tags, {4: {"T1_0": "", "T1_1": "abc"}}))
        assert fake_backend.saved == []
        assert notifier.messages == []

    def test_invalid_values_are_reported_but_saved(self, service, fake_backend):
        outcome = _run(service.save(42, BASE, fake_backend.tags, {4: {"T1_0": "-5"}}))
        assert [r.value for r in outcome.records] == [-5.0]
        assert [c.key for c in outcome.invalid_cells] == ["T1_0"]

    def test_block_invalid(self, service, fake_backend):
        with pytest.raises(InvalidInputError) as exc_info:
            _run(service.save(42, BASE, fake_backend.tags, {4: {"T1_0": "-5"}}, block_invalid=True))
        assert exc_info.value.invalid_cells[0].error == "Value cannot be negative"
        assert fake_backend.saved == []

    def test_backend_failure_notifies_and_reraises(self, service, fake_backend, notifier):
        fake_backend.save_error = BackendError("Database error", status_code=500)

        with pytest.raises(BackendError):
            _run(service.save(42, BASE, fake_backend.tags, {4: {"T1_0": "1"}}))

        assert [m.type for m in notifier.messages] == [MessageType.MANUAL_INPUT_SAVE_FAILED]
        assert notifier.messages[0].data["message"] == "Failed to save data. Please try again."
        assert fake_backend.fetches == []
        assert not service.is_saving(42)

    def test_refresh_failure_keeps_save_result(self, service, fake_backend):
        fake_backend.fetch_error = BackendError("timeout")
        outcome = _run(service.save(42, BASE, fake_backend.tags, {4: {"T1_0": "1"}}))
        assert len(fake_backend.saved) == 1
        assert outcome.grid is None

    def test_notifier_failure_does_not_fail_save(self, service, fake_backend, notifier):
        async def broken(message):
            raise RuntimeError("socket closed")

        notifier.notify = broken
        outcome = _run(service.save(42, BASE, fake_backend.tags, {4: {"T1_0": "1"}}))
        assert len(outcome.records) == 1

    def test_concurrent_save_for_same_perf_is_rejected(self, service, fake_backend):
        values = {4: {"T1_0": "1"}}

        async def scenario():
            fake_backend.save_gate = asyncio.Event()
            first = asyncio.create_task(service.save(42, BASE, fake_backend.tags, values))
            await asyncio.sleep(0)
            assert service.is_saving(42)

            with pytest.raises(SaveInProgressError):
                await service.save(42, BASE, fake_backend.tags, values)

            # other performance tests are not blocked
            other = asyncio.create_task(service.save(43, BASE, fake_backend.tags, values))
            fake_backend.save_gate.set()
            await asyncio.gather(first, other)

        _run(scenario())
        assert len(fake_backend.saved) == 2
        assert not service.is_saving(42)


class TestReplaceBackend:

    def test_idle_service_closes_old_client_at_once(self, service, fake_backend, replacement_backend):
        _run(service.replace_backend(replacement_backend))
        assert service.backend is replacement_backend
        assert fake_backend.closed

    def test_running_save_keeps_old_client_open_until_done(self, service, fake_backend, replacement_backend):
        values = {4: {"T1_0": "1"}}
        replacement = replacement_backend

        async def scenario():
            fake_backend.save_gate = asyncio.Event()
            running = asyncio.create_task(service.save(42, BASE, fake_backend.tags, values))
            await asyncio.sleep(0)

            await service.replace_backend(replacement)
            assert service.is_saving(42)
            assert not fake_backend.closed

            with pytest.raises(SaveInProgressError):
                await service.save(42, BASE, fake_backend.tags, values)

            fake_backend.save_gate.set()
            return await running

        outcome = _run(scenario())
        assert len(fake_backend.saved) == 1
        assert replacement.saved == []
        assert fake_backend.closed
        assert not replacement.closed
        # the grid refresh after the save already goes through the new client
        assert replacement.fetches == [(BASE, 42, None)]
        assert outcome.grid is not None
