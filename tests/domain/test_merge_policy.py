"""Tests for in-file deduplication, the priority table and merge planning."""

import pytest

from feedsync.domain.deduplicator import Deduplicator
from feedsync.domain.models import TransformedRow
from feedsync.domain.priority import (
    CURRENT_PRIORITY_TABLE,
    PORTAL_TAG,
    MergeAction,
    SourcePriorityTable,
    plan_merge,
)

COLUMNS = ("tipo_id", "id", "nombres", "telefono", "estado")
KEY = ("tipo_id", "id")


def roster_row(id_, **values):
    base = {"tipo_id": "CC", "id": id_, "nombres": "", "telefono": "", "estado": "ACTIVO"}
    base.update(values)
    return TransformedRow(key=("CC", id_), values=base)


class TestDeduplicator:
    def test_last_write_wins_and_keeps_first_position(self):
        dedup = Deduplicator()
        dedup.add(roster_row("1", nombres="ANA"))
        dedup.add(roster_row("2", nombres="LUIS"))
        dedup.add(roster_row("1", nombres="ANA MARIA"))

        rows = dedup.rows()
        assert [r.key for r in rows] == [("CC", "1"), ("CC", "2")]
        assert rows[0].get("nombres") == "ANA MARIA"
        assert dedup.duplicates == 1
        assert dedup.duplicates == dedup.added - len(dedup)

    def test_add_reports_new_keys(self):
        dedup = Deduplicator()
        assert dedup.add(roster_row("1")) is True
        assert dedup.add(roster_row("1")) is False


class TestPriorityTable:
    def test_higher_ranked_owner_is_only_complemented(self):
        assert CURRENT_PRIORITY_TABLE.decide("BD_ST_CERETE", "BD_NEPS") is MergeAction.COMPLEMENT

    def test_equal_or_lower_owner_is_updated(self):
        assert CURRENT_PRIORITY_TABLE.decide("BD_ST_PGP", "BD_SIGIRES_NEPS") is MergeAction.UPDATE
        assert CURRENT_PRIORITY_TABLE.decide("BD_NEPS", "BD_ST_CERETE") is MergeAction.UPDATE

    def test_portal_rows_are_reclaimed_by_any_feed(self):
        assert CURRENT_PRIORITY_TABLE.decide(PORTAL_TAG, "BD_SIGIRES_NEPS") is MergeAction.UPDATE

    def test_unknown_tags_rank_zero(self):
        assert CURRENT_PRIORITY_TABLE.rank("NUEVA_FUENTE") == 0
        assert CURRENT_PRIORITY_TABLE.decide("BD_NEPS", "NUEVA_FUENTE") is MergeAction.COMPLEMENT

    def test_ranks_are_read_only(self):
        table = SourcePriorityTable(version=9, ranks={"A": 1})
        with pytest.raises(TypeError):
            table.ranks["A"] = 5


class TestPlanMerge:
    def test_every_row_lands_in_exactly_one_action(self):
        rows = [roster_row("1"), roster_row("2"), roster_row("3")]
        existing = {
            ("CC", "2"): {"source_tag": "BD_SIGIRES_NEPS"},
            ("CC", "3"): {"source_tag": "BD_ST_CERETE"},
        }

        plan = plan_merge(rows, existing, "BD_NEPS", COLUMNS, KEY)

        assert [r.key for r in plan.inserts] == [("CC", "1")]
        assert [r.key for r in plan.updates] == [("CC", "2")]
        assert [k for k, _ in plan.complements] == [("CC", "3")]
        assert plan.outcome.total == 3

    def test_complement_fills_only_blank_fields(self):
        existing = {
            ("CC", "1"): {
                "source_tag": "BD_ST_CERETE",
                "tipo_id": "CC",
                "id": "1",
                "nombres": "ANA",
                "telefono": None,
                "estado": "  ",
            }
        }
        incoming = roster_row("1", nombres="OTRO NOMBRE", telefono="3001234567", estado="RETIRADO")

        plan = plan_merge([incoming], existing, "BD_NEPS", COLUMNS, KEY)

        key, fills = plan.complements[0]
        assert key == ("CC", "1")
        assert fills == {"telefono": "3001234567", "estado": "RETIRADO"}

    def test_complement_with_nothing_to_fill_is_still_counted(self):
        existing = {("CC", "1"): {"source_tag": "BD_ST_CERETE", "nombres": "ANA", "estado": "ACTIVO"}}
        plan = plan_merge([roster_row("1")], existing, "BD_NEPS", COLUMNS, KEY)
        assert plan.complements == [(("CC", "1"), {})]
        assert plan.outcome.complemented == 1

    def test_missing_owner_tag_is_updated(self):
        existing = {("CC", "1"): {"source_tag": None}}
        plan = plan_merge([roster_row("1")], existing, "CITAS", COLUMNS, KEY)
        assert len(plan.updates) == 1
