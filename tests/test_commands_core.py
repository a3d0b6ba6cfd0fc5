from __future__ import annotations

import pytest

from drill_trainer.commands import (
    CHECKPOINTS,
    DEFAULT_CATALOG,
    Command,
    CommandCatalog,
    DrillOp,
    normalize_key,
)


def test_default_catalog_is_thirty_commands_in_canonical_order() -> None:
    assert len(DEFAULT_CATALOG) == 30
    assert [c.id for c in DEFAULT_CATALOG] == list(range(30))
    assert DEFAULT_CATALOG.lookup(0).name == "Fall In"
    assert DEFAULT_CATALOG.lookup(29).name == "Flight, Halt"
    assert DEFAULT_CATALOG.scored_count == 30


def test_lookup_missing_ids_return_none() -> None:
    assert DEFAULT_CATALOG.lookup(-1) is None
    assert DEFAULT_CATALOG.lookup(30) is None
    assert DEFAULT_CATALOG.lookup(True) is None


def test_lookup_by_key_returns_all_ids_in_order() -> None:
    assert DEFAULT_CATALOG.lookup_by_key("ArrowUp") == (10, 14, 18, 22, 25)
    assert DEFAULT_CATALOG.lookup_by_key("j") == (13, 17, 21, 24)
    assert DEFAULT_CATALOG.lookup_by_key("ArrowDown") == (26, 29)
    assert DEFAULT_CATALOG.lookup_by_key("q") == ()


def test_single_character_keys_are_case_insensitive() -> None:
    assert normalize_key("F") == "f"
    assert normalize_key("ArrowUp") == "ArrowUp"
    assert DEFAULT_CATALOG.lookup_by_key("F") == (0,)


def test_forward_march_halt_class_depends_on_position_in_script() -> None:
    first = DEFAULT_CATALOG.lookup(10)
    later = DEFAULT_CATALOG.lookup(14)
    assert first.is_halt_command is True
    assert first.initiates_movement is True
    assert later.is_halt_command is False
    assert first.op is later.op is DrillOp.FORWARD_MARCH


def test_display_key_labels_named_keys() -> None:
    assert DEFAULT_CATALOG.lookup(10).display_key == "Up"
    assert DEFAULT_CATALOG.lookup(0).display_key == "F"


def test_catalog_rejects_gaps_and_duplicates() -> None:
    a = Command(0, "Fall In", "f", True, DrillOp.FALL_IN)
    b = Command(2, "Halt", "ArrowDown", False, DrillOp.HALT)
    with pytest.raises(ValueError):
        CommandCatalog([a, b])
    with pytest.raises(ValueError):
        CommandCatalog([a, a])
    with pytest.raises(ValueError):
        CommandCatalog([])


def test_checkpoints_refer_to_forward_and_halt_commands() -> None:
    ids = [cp.command_id for cp in CHECKPOINTS]
    assert ids == [14, 26]
    assert DEFAULT_CATALOG.lookup(14).op is DrillOp.FORWARD_MARCH
    assert DEFAULT_CATALOG.lookup(26).op is DrillOp.HALT
    assert all(cp.tolerance == 1.0 for cp in CHECKPOINTS)
