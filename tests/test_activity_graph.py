"""
Activity graph store: programme shells, activity queries, relationships,
milestone curation and the network summary.
"""

import pytest

from contractflow.core.exceptions import NotFoundError, ValidationError
from contractflow.models import db
from contractflow.models.programme import Activity, ProgrammeMilestone
from contractflow.services import activity_graph
from contractflow.services.schedule_parser import ScheduleParser


@pytest.fixture()
def imported(programme, load_fixture):
    result = ScheduleParser().parse(load_fixture("simple_programme.xml"), programme.id)
    assert result.success
    return programme


def _by_ext(programme_id, ext):
    return Activity.query.filter_by(programme_id=programme_id, external_id=ext).one()


class TestProgrammes:
    def test_create(self, project):
        prog = activity_graph.create_programme(project.id, {"name": " Rev B ", "version": 2})
        assert prog.id is not None
        assert prog.name == "Rev B"
        assert prog.version == "2"
        assert prog.status == "draft"

    def test_create_requires_name(self, project):
        with pytest.raises(ValidationError):
            activity_graph.create_programme(project.id, {})

    def test_create_rejects_bad_status(self, project):
        with pytest.raises(ValidationError):
            activity_graph.create_programme(project.id, {"name": "X", "status": "final"})

    def test_create_unknown_project(self):
        with pytest.raises(NotFoundError):
            activity_graph.create_programme(404, {"name": "X"})

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            activity_graph.get_programme(12345)


class TestActivities:
    def test_list_all(self, imported):
        assert len(activity_graph.list_activities(imported.id)) == 7

    def test_list_children(self, imported):
        parent = _by_ext(imported.id, "1")
        names = [a.name for a in activity_graph.list_activities(imported.id, parent_id=parent.id)]
        assert names == ["Mobilise", "Foundations", "Foundations complete"]

    def test_list_critical_only(self, imported):
        names = {a.name for a in activity_graph.list_activities(imported.id, critical_only=True)}
        assert names == {"Mobilise", "Foundations", "Foundations complete"}

    def test_relationships(self, imported):
        foundations = _by_ext(imported.id, "3")
        data = activity_graph.get_relationships(foundations.id)
        assert data["activity"]["name"] == "Foundations"
        assert [r["predecessor_id"] for r in data["predecessors"]] == [_by_ext(imported.id, "2").id]
        assert [r["successor_id"] for r in data["successors"]] == [_by_ext(imported.id, "4").id]

    def test_relationships_missing_activity(self):
        with pytest.raises(NotFoundError):
            activity_graph.get_relationships(999)


class TestMilestones:
    def test_list(self, imported):
        names = [m.name for m in activity_graph.list_milestones(imported.id)]
        assert names == ["Foundations complete", "Handover"]

    def test_key_dates_only(self, imported):
        assert activity_graph.list_milestones(imported.id, key_dates_only=True) == []
        handover = ProgrammeMilestone.query.filter_by(name="Handover").one()
        activity_graph.update_milestone(handover.id, {"is_key_date": True})
        names = [m.name for m in activity_graph.list_milestones(imported.id, key_dates_only=True)]
        assert names == ["Handover"]

    def test_update_fields(self, imported):
        milestone = ProgrammeMilestone.query.filter_by(name="Foundations complete").one()
        updated = activity_graph.update_milestone(milestone.id, {
            "status": "At Risk",
            "forecast_date": "2026-03-27",
            "description": "Ground conditions",
        })
        assert updated.status == "At Risk"
        assert updated.description == "Ground conditions"
        assert updated.forecast_date.isoformat().startswith("2026-03-27")

    def test_update_bad_status(self, imported):
        milestone = ProgrammeMilestone.query.first()
        with pytest.raises(ValidationError):
            activity_graph.update_milestone(milestone.id, {"status": "Done"})

    def test_update_bad_date(self, imported):
        milestone = ProgrammeMilestone.query.first()
        with pytest.raises(ValidationError):
            activity_graph.update_milestone(milestone.id, {"actual_date": "yesterday"})

    @pytest.mark.parametrize("body", [{"is_key_date": "false"}, {"affects_completion_date": 1}])
    def test_update_flags_must_be_boolean(self, imported, body):
        milestone = ProgrammeMilestone.query.filter_by(name="Handover").one()
        with pytest.raises(ValidationError):
            activity_graph.update_milestone(milestone.id, body)
        db.session.refresh(milestone)
        assert milestone.is_key_date is False

    def test_update_missing(self):
        with pytest.raises(NotFoundError):
            activity_graph.update_milestone(77, {"status": "Completed"})


class TestNetworkSummary:
    def test_imported_programme(self, imported):
        summary = activity_graph.network_summary(imported.id)
        assert summary["activity_count"] == 7
        assert summary["relationship_count"] == 4
        assert summary["milestone_count"] == 2
        assert summary["critical_activity_count"] == 3
        # summaries 1 & 5 are unlinked; 2 has no predecessor, 7 no successor
        assert summary["activities_without_predecessors"] == 3
        assert summary["activities_without_successors"] == 3
        assert summary["quality_score"] == 70 - round(6 / 14 * 30)
        assert summary["schedule_risk"] == "medium"
        assert summary["nec4_compliance"]["clause31"] is True
        assert summary["nec4_compliance"]["issues"] == []
        assert summary["planned_completion_date"].startswith("2026-06-26T17:00:00")

    def test_empty_programme(self, programme):
        summary = activity_graph.network_summary(programme.id)
        assert summary["activity_count"] == 0
        assert summary["quality_score"] == 50
        assert summary["schedule_risk"] == "medium"
        assert summary["nec4_compliance"]["clause31"] is False
        assert len(summary["nec4_compliance"]["issues"]) == 1

    def test_no_critical_path_is_high_risk(self, programme):
        for ext in ("a", "b"):
            db.session.add(Activity(programme_id=programme.id, external_id=ext, name=ext))
        db.session.commit()
        summary = activity_graph.network_summary(programme.id)
        # both activities are open at both ends: 70 - 30 - 20
        assert summary["quality_score"] == 20
        assert summary["schedule_risk"] == "high"
