from __future__ import annotations

import pytest

from crystal_mcp.service import CrystalService
from crystal_mcp.tools import ToolDispatchError, ToolRegistry


async def _alpha(_: dict[str, object]) -> dict[str, object]:
    return {"tool": "alpha"}


async def _echo(payload: dict[str, object]) -> dict[str, object]:
    return {"payload": payload}


def test_registry_keeps_registration_order() -> None:
    registry = ToolRegistry()
    registry.register("crystal.alpha", _alpha)
    registry.register("crystal.echo", _echo)

    assert registry.names() == ("crystal.alpha", "crystal.echo")


@pytest.mark.asyncio
async def test_registry_dispatches_registered_tool() -> None:
    registry = ToolRegistry()
    registry.register("crystal.echo", _echo)

    assert await registry.dispatch("crystal.echo", {"k": "v"}) == {"payload": {"k": "v"}}


@pytest.mark.asyncio
async def test_unknown_tool_raises_dispatch_error() -> None:
    registry = ToolRegistry()

    with pytest.raises(ToolDispatchError) as error:
        await registry.dispatch("crystal.missing", {})

    assert error.value.code == "UNKNOWN_TOOL"


def test_service_registers_every_crystal_tool() -> None:
    assert CrystalService().tool_names() == (
        "crystal.initialize",
        "crystal.next_item",
        "crystal.mark_processed",
        "crystal.progress",
        "crystal.detect_changes",
        "crystal.cleanup",
        "crystal.update",
        "crystal.update_status",
        "crystal.clear_session",
        "crystal.freshness",
        "crystal.status",
    )
