"""
Unit tests for core/traversal.py - RelevanceTraversal

Tests the relevance traversal engine including:
- Reachability from entry services
- State precedence: SATISFIED > LOCKED > HIDDEN_GATED > nations > rules
- Question ordering for NEEDS_INFO
- Multiple life events and triggered_by
- Journey phases, summary counts, contact pass-through
"""
from datetime import timedelta

import pytest

from core.ontology import NodeState, DeadlineStatus
from core.catalog import UnknownLifeEventError
from core.session import Snapshot
from core.traversal import RelevanceTraversal, evaluate_life_event, GATEWAY_PHASE_LABEL
from infrastructure.config import EngineConfig


BABY_ORDER = [
    "gro-register-birth",
    "hmrc-smp",
    "dwp-maternity-allowance",
    "dwp-sure-start-grant",
    "hmrc-child-benefit",
    "hmrc-free-childcare-15",
    "hmrc-spl",
    "hmrc-tax-free-childcare",
    "hmrc-free-childcare-30",
]

PROBATE_FACTS = {"estate_has_sole_assets": True, "estate_value": 200000}


@pytest.fixture
def engine(catalog):
    return RelevanceTraversal(catalog)


# =============================================================================
# REACHABILITY
# =============================================================================

class TestReachability:

    def test_birth_registration_reaches_benefits_not_divorce(self, engine):
        reached = engine.reachable_from(["gro-register-birth"])
        assert "hmrc-child-benefit" in reached
        assert "dwp-sure-start-grant" in reached
        assert "hmcts-divorce" not in reached

    def test_scope_is_breadth_first_and_unique(self, engine):
        scope = engine.scope("baby")
        assert list(scope.order) == BABY_ORDER
        assert len(set(scope.order)) == len(scope.order)

    def test_edge_cycle_terminates(self, make_catalog, make_snapshot):
        catalog = make_catalog(
            [{"id": "a"}, {"id": "b"}, {"id": "c"}],
            [("a", "b", "ENABLES"), ("b", "c", "ENABLES"), ("c", "a", "ENABLES")],
            [{"id": "loop", "entry_nodes": ["a"]}],
        )
        report = RelevanceTraversal(catalog).traverse("loop", make_snapshot())
        assert list(report.services) == ["a", "b", "c"]

    def test_unknown_life_event(self, engine, make_snapshot):
        with pytest.raises(UnknownLifeEventError):
            engine.traverse(["baby", "lottery-win"], make_snapshot())


# =============================================================================
# STATE PRECEDENCE
# =============================================================================

class TestStates:

    def test_empty_snapshot_baby(self, engine, make_snapshot):
        report = engine.traverse("baby", make_snapshot())
        assert report.state_of("gro-register-birth") is NodeState.NEEDS_INFO
        assert report.state_of("dwp-sure-start-grant") is NodeState.NEEDS_INFO
        assert sorted(report.ids_in_state(NodeState.HIDDEN_GATED)) == [
            "hmrc-free-childcare-15", "hmrc-free-childcare-30", "hmrc-spl",
        ]

    def test_completed_is_satisfied_before_anything_else(self, engine, make_snapshot):
        snap = make_snapshot(statuses={"hmcts-probate": "completed"})
        report = engine.traverse("bereavement", snap)
        assert report.state_of("hmcts-probate") is NodeState.SATISFIED

    def test_requires_predecessor_not_completed_locks(self, engine, make_snapshot):
        snap = make_snapshot(PROBATE_FACTS)
        report = engine.traverse("bereavement", snap)
        assert report.state_of("hmcts-probate") is NodeState.LOCKED

    def test_unlocked_once_prerequisite_completed(self, engine, make_snapshot):
        snap = make_snapshot(PROBATE_FACTS, statuses={"gro-death-certificate": "completed"})
        report = engine.traverse("bereavement", snap)
        assert report.state_of("hmcts-probate") is NodeState.ACTIONABLE
        assert report.state_of("gro-death-certificate") is NodeState.SATISFIED

    def test_receiving_prerequisite_still_locks(self, engine, make_snapshot):
        snap = make_snapshot(PROBATE_FACTS, statuses={"gro-death-certificate": "receiving"})
        assert engine.traverse("bereavement", snap).state_of("hmcts-probate") is NodeState.LOCKED

    def test_gated_visible_through_satisfied_predecessor(self, engine, make_snapshot):
        for status in ("receiving", "completed"):
            snap = make_snapshot(statuses={"gro-register-birth": status})
            report = engine.traverse("baby", snap)
            assert report.state_of("hmrc-free-childcare-15") is NodeState.NEEDS_INFO
            # still hidden one hop further on
            assert report.state_of("hmrc-free-childcare-30") is NodeState.HIDDEN_GATED

    def test_gated_entry_node_is_not_hidden(self, engine, make_snapshot):
        report = engine.traverse("baby", make_snapshot())
        assert report.state_of("dwp-sure-start-grant") is not NodeState.HIDDEN_GATED

    def test_gated_reached_through_completed_prerequisite(self, make_catalog, make_snapshot):
        catalog = make_catalog(
            [{"id": "licence"}, {"id": "renewal", "gated": True}],
            [("licence", "renewal", "REQUIRES")],
            [{"id": "e", "entry_nodes": ["licence"]}],
        )
        snap = make_snapshot(statuses={"licence": "completed"})
        report = RelevanceTraversal(catalog).traverse("e", snap)
        assert report.state_of("renewal") is NodeState.ACTIONABLE

    def test_rules_true_false(self, engine, make_snapshot):
        eligible = make_snapshot({"has_children": True, "is_uk_resident": True})
        ineligible = make_snapshot({"has_children": False})
        assert engine.traverse("baby", eligible).state_of("hmrc-child-benefit") is NodeState.ACTIONABLE
        assert engine.traverse("baby", ineligible).state_of("hmrc-child-benefit") is NodeState.INELIGIBLE

    def test_empty_rule_set_is_actionable(self, engine, make_snapshot):
        report = engine.traverse("bereavement", make_snapshot())
        assert report.state_of("gro-death-certificate") is NodeState.ACTIONABLE


class TestNations:

    def test_outside_listed_nations_is_ineligible(self, engine, make_snapshot):
        snap = make_snapshot({"nation": "scotland", "custom.receives_income_support": True})
        assert engine.traverse("baby", snap).state_of("dwp-sure-start-grant") is NodeState.INELIGIBLE

    def test_listed_nation_falls_through_to_rules(self, engine, make_snapshot, today):
        snap = make_snapshot({
            "nation": "wales",
            "custom.receives_income_support": True,
            "trigger_dates.birth": today - timedelta(days=20),
        })
        assert engine.traverse("baby", snap).state_of("dwp-sure-start-grant") is NodeState.ACTIONABLE

    def test_unknown_nation_never_blocks(self, engine, make_snapshot):
        snap = make_snapshot(PROBATE_FACTS, statuses={"gro-death-certificate": "completed"})
        assert engine.traverse("bereavement", snap).state_of("hmcts-probate") is NodeState.ACTIONABLE


# =============================================================================
# QUESTIONS
# =============================================================================

class TestQuestions:

    def test_key_questions_first_then_schema_prompts(self, engine, make_snapshot):
        result = engine.traverse("baby", make_snapshot()).services["dwp-sure-start-grant"]
        assert result.questions == (
            "Are you receiving Universal Credit, Income Support, or Pension Credit?",
            "How old is the baby?",
            "How old are you?",
            "Do you normally live in the UK?",
            "How much do you have in savings?",
        )
        assert result.missing == (
            "age",
            "custom.receives_income_support",
            "is_uk_resident",
            "savings",
            "status:dwp-universal-credit",
            "trigger_dates.birth",
        )

    def test_only_unresolved_key_questions(self, engine, make_snapshot):
        snap = make_snapshot({"has_children": True})
        result = engine.traverse("baby", snap).services["hmrc-child-benefit"]
        assert result.questions == ("Do you normally live in the UK?",)
        assert result.missing == ("is_uk_resident",)

    def test_status_and_trigger_date_phrasing(self, engine, make_snapshot):
        result = engine.traverse("bereavement", make_snapshot()).services["dwp-tell-us-once"]
        assert result.questions == (
            "Are you receiving, or have you completed, Register a death?",
            "What is the date of death?",
        )

    def test_configured_template_for_unprompted_fact(self, catalog, make_snapshot):
        config = EngineConfig(fact_question_template="Tell us about: {field}")
        report = RelevanceTraversal(catalog, config).traverse("divorce", make_snapshot())
        assert report.services["la-council-tax-single-discount"].questions == (
            "Tell us about: lives alone",
        )

    def test_conclusive_nodes_have_no_questions(self, engine, make_snapshot):
        snap = make_snapshot({"has_children": False})
        result = engine.traverse("baby", snap).services["hmrc-child-benefit"]
        assert result.questions == ()
        assert result.missing == ()


# =============================================================================
# MULTIPLE LIFE EVENTS
# =============================================================================

def test_life_events_union_and_triggered_by(engine, make_snapshot):
    report = engine.traverse(["divorce", "job-loss"], make_snapshot())
    assert report.life_events == ("divorce", "job-loss")
    assert report.services["dwp-universal-credit"].triggered_by == ("divorce", "job-loss")
    assert report.services["hmrc-p45"].triggered_by == ("job-loss",)
    assert report.services["hmcts-legal-aid"].triggered_by == ("divorce",)
    assert len(report.services) == len(set(report.services))


def test_single_life_event_string(engine, make_snapshot):
    report = engine.traverse("marriage", make_snapshot())
    assert list(report.services) == ["gro-give-notice", "gro-marriage-cert", "hmrc-marriage-allowance"]
    assert all(r.triggered_by == ("marriage",) for r in report.services.values())


# =============================================================================
# PHASES, SUMMARY, PASS-THROUGH
# =============================================================================

class TestReportShape:

    def test_phases_follow_requires_edges(self, engine, make_snapshot):
        report = engine.traverse("bereavement", make_snapshot())
        assert [p.phase for p in report.phases] == [1, 2]
        assert report.phases[0].label == GATEWAY_PHASE_LABEL
        assert report.phases[1].services == ("hmcts-probate",)
        assert "hmcts-probate" not in report.phases[0].services

    def test_requires_cycle_lands_in_final_phase(self, make_catalog, make_snapshot):
        catalog = make_catalog(
            [{"id": "a"}, {"id": "b"}, {"id": "c"}],
            [("a", "b", "REQUIRES"), ("b", "a", "REQUIRES")],
            [{"id": "e", "entry_nodes": ["a", "c"]}],
        )
        report = RelevanceTraversal(catalog).traverse("e", make_snapshot())
        assert [p.services for p in report.phases] == [("c",), ("a", "b")]
        assert report.state_of("a") is NodeState.LOCKED
        assert report.state_of("b") is NodeState.LOCKED

    def test_service_behind_requires_cycle_joins_final_phase(self, make_catalog, make_snapshot):
        catalog = make_catalog(
            [{"id": "a"}, {"id": "b"}, {"id": "c"}, {"id": "d"}],
            [("a", "b", "REQUIRES"), ("b", "a", "REQUIRES"), ("b", "d", "REQUIRES"), ("c", "d", "ENABLES")],
            [{"id": "e", "entry_nodes": ["c", "a"]}],
        )
        report = RelevanceTraversal(catalog).traverse("e", make_snapshot())
        assert [p.services for p in report.phases] == [("c",), ("a", "d", "b")]
        assert [p.phase for p in report.phases] == [1, 2]

    def test_summary_counts(self, engine, make_snapshot):
        summary = engine.traverse("baby", make_snapshot()).summary
        assert summary["total"] == 9
        assert summary[NodeState.NEEDS_INFO.value] == 6
        assert summary[NodeState.HIDDEN_GATED.value] == 3
        assert summary[NodeState.LOCKED.value] == 0
        assert summary["departments"] == 3
        assert summary["overdue_deadlines"] == 0

    def test_overdue_deadline(self, engine, make_snapshot, today):
        snap = make_snapshot({"trigger_dates.birth": today - timedelta(days=50)})
        report = engine.traverse("baby", snap)
        birth = report.services["gro-register-birth"]
        assert birth.state is NodeState.INELIGIBLE
        assert birth.deadline_status is DeadlineStatus.OVERDUE
        assert report.services["dwp-sure-start-grant"].deadline_status is DeadlineStatus.OK
        assert report.summary["overdue_deadlines"] == 1

    def test_hidden_nodes_can_be_left_out(self, catalog, make_snapshot):
        config = EngineConfig(include_hidden=False)
        report = RelevanceTraversal(catalog, config).traverse("baby", make_snapshot())
        assert "hmrc-spl" not in report.services
        assert report.summary["total"] == 9

    def test_contact_and_financial_data_pass_through(self, engine, make_snapshot):
        report = engine.traverse("baby", make_snapshot())
        child_benefit = report.services["hmrc-child-benefit"]
        assert child_benefit.contact["phone"] == "0300 200 3100"
        assert child_benefit.financial_data["eldest_child_weekly"] == 26.05
        assert report.services["hmrc-smp"].contact["phone"] == "0300 200 3300"


def test_evaluate_life_event_from_payload(catalog):
    snapshot = Snapshot.from_payload({
        "facts": {"estate_has_sole_assets": True, "estate_value": 200000, "nation": "england"},
        "services": {"gro-death-certificate": "completed"},
        "today": "2026-10-18",
    })
    report = evaluate_life_event(catalog, snapshot, ["bereavement"])
    assert report.state_of("hmcts-probate") is NodeState.ACTIONABLE
    assert report.state_of("hmrc-iht400") is NodeState.HIDDEN_GATED
