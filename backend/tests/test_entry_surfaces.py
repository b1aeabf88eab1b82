"""
Tests for the grid renderer registry, entry surfaces and session lifecycle.

The renderer library is always a test double here; the engine must behave
the same with or without one.
"""

import asyncio
from datetime import timedelta
from unittest.mock import Mock

import pytest
from orderentry.core.exceptions import GridRendererError, NotFoundError, ValidationError
from orderentry.models.entry_schemas import GeneralTemplate, TemplateField
from orderentry.services.entry_sessions import EntrySessionManager
from orderentry.services.entry_surfaces import GeneralEntrySurface, GridEntrySurface, build_surface
from orderentry.services.grid_renderer import GridRendererRegistry, InMemoryGridLibrary


class SlowLibrary(InMemoryGridLibrary):
    """Becomes ready after a number of polls."""

    def __init__(self, polls_until_ready=2):
        self.polls = 0
        self.polls_until_ready = polls_until_ready

    def ready(self):
        self.polls += 1
        return self.polls > self.polls_until_ready


@pytest.fixture
def registry():
    return GridRendererRegistry(max_retries=3, retry_delay=0.001)


@pytest.fixture
def general_template():
    return GeneralTemplate(id=2, name="Site Request", fields=[
        TemplateField(id="1", field_name="siteManager", label="Site Manager", required=True),
        TemplateField(id="2", field_name="budget", label="Budget", field_type="number"),
        TemplateField(id="3", field_name="neededBy", label="Needed By", field_type="date"),
        TemplateField(id="4", field_name="urgency", label="Urgency", field_type="select",
                      options=["Normal", "Urgent"]),
    ])


class TestRendererRegistry:
    @pytest.mark.asyncio
    async def test_waits_for_readiness(self):
        registry = GridRendererRegistry(factory=lambda: SlowLibrary(2), max_retries=5, retry_delay=0.001)

        library = await registry.acquire()

        assert library.polls == 3

    @pytest.mark.asyncio
    async def test_concurrent_acquires_build_one_library(self):
        factory = Mock(side_effect=lambda: SlowLibrary(1))
        registry = GridRendererRegistry(factory=factory, max_retries=5, retry_delay=0.001)

        first, second = await asyncio.gather(registry.acquire(), registry.acquire())

        assert first is second
        assert factory.call_count == 1

    @pytest.mark.asyncio
    async def test_never_ready_raises(self):
        registry = GridRendererRegistry(factory=lambda: SlowLibrary(100), max_retries=2, retry_delay=0.001)

        with pytest.raises(GridRendererError):
            await registry.acquire()

    @pytest.mark.asyncio
    async def test_factory_failure_raises(self):
        registry = GridRendererRegistry(factory=Mock(side_effect=ImportError("no grid")), max_retries=0)

        with pytest.raises(GridRendererError) as exc_info:
            await registry.acquire()

        assert "no grid" in exc_info.value.message
        assert exc_info.value.status_code == 502


class TestGridSurface:
    @pytest.mark.asyncio
    async def test_engine_writes_are_mirrored(self, grid_template, registry):
        surface = await build_surface(grid_template, registry)

        surface.set_cells([(0, "quantity", 5), (0, "unitPrice", 1000)])
        surface.engine.flush()

        renderer = surface.renderer
        assert renderer.get_cell(0, 4) == 5
        assert renderer.get_cell(0, 6) == 5000
        assert renderer.get_cell(10, 6) == 5000

    @pytest.mark.asyncio
    async def test_renderer_input_goes_through_engine(self, grid_template, registry):
        surface = await build_surface(grid_template, registry)
        renderer = surface.renderer

        renderer.user_edit(0, 4, "3")
        renderer.user_edit(0, 5, "oops")

        assert surface.engine.get_cell(0, "quantity") == 3
        assert surface.engine.get_cell(0, "unitPrice") == 0
        assert renderer.get_cell(0, 5) == 0

    @pytest.mark.asyncio
    async def test_insert_row_reloads_renderer(self, grid_template, registry):
        surface = await build_surface(grid_template, registry)

        index = surface.insert_row()

        assert index == 10
        assert len(surface.renderer.data) == 12
        assert surface.renderer.get_cell(11, 0) == "TOTAL"

    @pytest.mark.asyncio
    async def test_renderer_failure_falls_back_to_preview(self, grid_template, caplog):
        registry = GridRendererRegistry(factory=Mock(side_effect=RuntimeError("boom")), max_retries=0)

        surface = await build_surface(grid_template, registry)

        assert isinstance(surface, GridEntrySurface)
        assert surface.degraded
        snapshot = surface.snapshot()
        assert snapshot["degraded"] is True
        assert snapshot["preview"]["degraded"] is True
        assert len(snapshot["preview"]["rows"]) == 10
        assert "falling back to read-only preview" in caplog.text

        with pytest.raises(ValidationError):
            surface.set_cells([(0, "quantity", 1)])

    @pytest.mark.asyncio
    async def test_renderer_create_failure_falls_back(self, grid_template):
        library = Mock()
        library.ready.return_value = True
        library.create.side_effect = ValueError("bad headers")
        registry = GridRendererRegistry(factory=lambda: library, max_retries=0)

        surface = await build_surface(grid_template, registry)

        assert surface.degraded

    @pytest.mark.asyncio
    async def test_destroy_tears_down_renderer(self, grid_template, registry):
        surface = await build_surface(grid_template, registry)
        renderer = surface.renderer

        surface.destroy()

        assert renderer.destroyed
        assert surface.destroyed


class TestGeneralSurface:
    def test_field_values_are_normalized(self, general_template):
        surface = GeneralEntrySurface(general_template)

        errors = surface.set_field_values({
            "siteManager": "Kim",
            "budget": "2,500",
            "neededBy": "2024-05-01",
            "urgency": "Whenever",
            "unknown": 1,
        })

        assert surface.state.field_values["budget"] == 2500
        assert surface.state.field_values["neededBy"] == "2024-05-01"
        assert "unknown" not in surface.state.field_values
        assert errors == ["Urgency: 'Whenever' is not one of the options"]

    def test_bad_values_are_kept_and_reported(self, general_template):
        surface = GeneralEntrySurface(general_template)

        errors = surface.set_field_values({"budget": "a lot"})

        assert surface.state.field_values["budget"] == "a lot"
        assert errors == ["Budget: enter a number"]

    def test_required_and_custom_fields(self, general_template):
        surface = GeneralEntrySurface(general_template)
        surface.set_field_values({"budget": 10})

        assert surface.missing_required() == ["Site Manager"]
        assert surface.custom_fields() == {"budget": 10}

    def test_snapshot_groups_sections(self, general_template):
        snapshot = GeneralEntrySurface(general_template).snapshot()

        assert snapshot["kind"] == "general"
        assert list(snapshot["sections"]) == ["Basic Info"]
        assert [f["fieldName"] for f in snapshot["sections"]["Basic Info"]] == [
            "siteManager", "budget", "neededBy", "urgency"
        ]

    def test_closed_surface_rejects_input(self, general_template):
        surface = GeneralEntrySurface(general_template)
        surface.destroy()

        with pytest.raises(ValidationError):
            surface.set_field_values({"budget": 1})


class TestSessionManager:
    @pytest.mark.asyncio
    async def test_mount_and_get(self, grid_template, registry):
        manager = EntrySessionManager(registry)

        session = await manager.mount(grid_template)

        assert manager.get(session.id) is session
        assert len(manager) == 1
        assert session.snapshot()["grid"]["totalRowIndex"] == 10

    @pytest.mark.asyncio
    async def test_switch_discards_old_state(self, grid_template, general_template, registry):
        manager = EntrySessionManager(registry)
        session = await manager.mount(grid_template)
        old_surface = session.surface
        old_surface.set_cells([(0, "itemName", "Bolt"), (0, "quantity", 2)])

        await manager.switch(session.id, general_template)

        assert old_surface.destroyed
        assert not old_surface.engine.pending_recompute
        assert isinstance(session.surface, GeneralEntrySurface)
        assert session.surface.line_items() == []

        await manager.switch(session.id, grid_template)
        assert session.surface.engine.get_cell(0, "itemName") == ""

    @pytest.mark.asyncio
    async def test_unmount_cancels_pending_recompute(self, grid_template, registry):
        manager = EntrySessionManager(registry)
        session = await manager.mount(grid_template)
        session.surface.set_cells([(0, "quantity", 2), (0, "unitPrice", 3)])
        assert session.surface.engine.pending_recompute

        manager.unmount(session.id)
        await asyncio.sleep(0.1)

        assert session.surface.engine.total_row()["amount"] == 0
        with pytest.raises(NotFoundError):
            manager.get(session.id)

    def test_unknown_session(self, registry):
        with pytest.raises(NotFoundError):
            EntrySessionManager(registry).unmount("missing")

    @pytest.mark.asyncio
    async def test_idle_sessions_expire(self, grid_template, registry):
        manager = EntrySessionManager(registry, ttl_seconds=60)
        stale = await manager.mount(grid_template)
        fresh = await manager.mount(grid_template)
        stale.updated_at -= timedelta(seconds=61)

        assert manager.session_ids() == [fresh.id]
        assert stale.surface.destroyed
        with pytest.raises(NotFoundError):
            manager.get(stale.id)
        assert manager.get(fresh.id) is fresh

    @pytest.mark.asyncio
    async def test_full_registry_evicts_least_recent(self, grid_template, registry):
        manager = EntrySessionManager(registry, max_sessions=2)
        first = await manager.mount(grid_template)
        second = await manager.mount(grid_template)
        first.updated_at += timedelta(seconds=1)

        third = await manager.mount(grid_template)

        assert len(manager) == 2
        assert second.surface.destroyed
        assert not first.surface.destroyed
        assert set(manager.session_ids()) == {first.id, third.id}
