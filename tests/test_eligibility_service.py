"""Unit tests for EligibilityFilter."""
import pytest

from stellr.services import eligibility_service as es
from stellr.services.eligibility_service import EligibilityFilter

PHILADELPHIA = {"lat": 39.9526, "lng": -75.1652}


@pytest.fixture
def eligibility():
    return EligibilityFilter()


@pytest.fixture
def viewer(make_profile):
    return make_profile("viewer", gender="male", preferences={"gender_preference": ["female"]})


class TestEligibilityFilter:
    """Hard constraints, checked in both directions where both sides have a preference."""

    def test_compatible_pair_is_eligible(self, eligibility, viewer, make_profile):
        decision = eligibility.evaluate(viewer, make_profile("c1"))
        assert decision.eligible is True
        assert decision.reasons == ()
        assert decision.distance_km == pytest.approx(0.0)

    def test_self_is_never_eligible(self, eligibility, viewer):
        decision = eligibility.evaluate(viewer, viewer)
        assert es.SELF in decision.reasons

    def test_onboarding_incomplete(self, eligibility, viewer, make_profile):
        decision = eligibility.evaluate(viewer, make_profile("c1", onboarding_completed=False))
        assert decision.reasons == (es.ONBOARDING_INCOMPLETE,)

    def test_already_swiped(self, eligibility, viewer, make_profile):
        decision = eligibility.evaluate(viewer, make_profile("c1"), swiped_ids={"c1"})
        assert decision.reasons == (es.ALREADY_SWIPED,)

    def test_blocked(self, eligibility, viewer, make_profile):
        decision = eligibility.evaluate(viewer, make_profile("c1"), blocked_ids={"c1"})
        assert decision.reasons == (es.BLOCKED,)

    def test_candidate_outside_viewer_age_range(self, eligibility, make_profile):
        viewer = make_profile("viewer", preferences={"min_age": 25, "max_age": 35})
        assert eligibility.evaluate(viewer, make_profile("c1", age=40)).reasons == (
            es.AGE_OUTSIDE_VIEWER_RANGE,
        )
        assert eligibility.evaluate(viewer, make_profile("c2", age=35)).eligible is True
        assert eligibility.evaluate(viewer, make_profile("c3", age=24)).eligible is False

    def test_default_viewer_range_starts_at_18(self, eligibility, viewer, make_profile):
        decision = eligibility.evaluate(viewer, make_profile("c1", age=17))
        assert decision.reasons == (es.AGE_OUTSIDE_VIEWER_RANGE,)

    def test_viewer_outside_candidate_age_range(self, eligibility, viewer, make_profile):
        candidate = make_profile("c1", preferences={"max_age": 28})
        assert eligibility.evaluate(viewer, candidate).reasons == (es.AGE_OUTSIDE_CANDIDATE_RANGE,)

    def test_unknown_age_fails_open(self, eligibility, make_profile):
        viewer = make_profile("viewer", age=None, preferences={"min_age": 25, "max_age": 35})
        candidate = make_profile("c1", age=None, preferences={"min_age": 40})
        assert eligibility.evaluate(viewer, candidate).eligible is True

    def test_gender_not_preferred_by_viewer(self, eligibility, viewer, make_profile):
        decision = eligibility.evaluate(viewer, make_profile("c1", gender="male"))
        assert decision.reasons == (es.GENDER_NOT_PREFERRED_BY_VIEWER,)

    def test_gender_not_preferred_by_candidate(self, eligibility, viewer, make_profile):
        candidate = make_profile("c1", preferences={"gender_preference": ["female"]})
        decision = eligibility.evaluate(viewer, candidate)
        assert decision.reasons == (es.GENDER_NOT_PREFERRED_BY_CANDIDATE,)

    @pytest.mark.parametrize("label", ["Males", "men", "Male"])
    def test_plural_and_alias_gender_labels(self, eligibility, viewer, make_profile, label):
        candidate = make_profile("c1", preferences={"gender_preference": [label]})
        assert eligibility.evaluate(viewer, candidate).eligible is True

    @pytest.mark.parametrize("label", ["Both", "Everyone", "any"])
    def test_any_gender_labels(self, eligibility, make_profile, label):
        viewer = make_profile("viewer", preferences={"gender_preference": label})
        candidate = make_profile("c1", gender="non-binary")
        assert eligibility.evaluate(viewer, candidate).eligible is True

    def test_other_maps_to_non_binary(self, eligibility, make_profile):
        viewer = make_profile("viewer", preferences={"gender_preference": ["non-binary"]})
        candidate = make_profile("c1", gender="Other")
        assert eligibility.evaluate(viewer, candidate).eligible is True

    def test_unknown_gender_fails_open(self, eligibility, viewer, make_profile):
        candidate = make_profile("c1", gender=None)
        assert eligibility.evaluate(viewer, candidate).eligible is True

    def test_distance_within_viewer_preference(self, eligibility, make_profile):
        viewer = make_profile("viewer", preferences={"max_distance_km": 150})
        decision = eligibility.evaluate(viewer, make_profile("c1", location=PHILADELPHIA))
        assert decision.eligible is True
        assert 120.0 < decision.distance_km < 140.0

    def test_distance_exceeded(self, eligibility, make_profile):
        viewer = make_profile("viewer", preferences={"max_distance_km": 50})
        decision = eligibility.evaluate(viewer, make_profile("c1", location=PHILADELPHIA))
        assert decision.reasons == (es.DISTANCE_EXCEEDED,)

    def test_request_distance_overrides_preference(self, eligibility, make_profile):
        viewer = make_profile("viewer", preferences={"max_distance_km": 50})
        candidate = make_profile("c1", location=PHILADELPHIA)
        assert eligibility.evaluate(viewer, candidate, max_distance_km=200).eligible is True

        open_viewer = make_profile("viewer2")
        assert eligibility.evaluate(open_viewer, candidate, max_distance_km=100).reasons == (
            es.DISTANCE_EXCEEDED,
        )

    def test_unknown_location_fails_open(self, eligibility, make_profile):
        viewer = make_profile("viewer", preferences={"max_distance_km": 10})
        decision = eligibility.evaluate(viewer, make_profile("c1", location=None))
        assert decision.eligible is True
        assert decision.distance_km is None

    def test_hidden_candidates(self, eligibility, viewer, make_profile):
        hidden = make_profile("c1", preferences={"discovery_enabled": False})
        incognito = make_profile("c2", preferences={"incognito_mode": True})
        assert eligibility.evaluate(viewer, hidden).reasons == (es.DISCOVERY_DISABLED,)
        assert eligibility.evaluate(viewer, incognito).reasons == (es.INCOGNITO,)

    def test_every_violation_is_reported(self, eligibility, viewer, make_profile):
        candidate = make_profile(
            "c1",
            age=16,
            gender="male",
            onboarding_completed=False,
            preferences={"incognito_mode": True},
        )
        decision = eligibility.evaluate(viewer, candidate, swiped_ids={"c1"}, blocked_ids={"c1"})
        assert decision.eligible is False
        assert set(decision.reasons) == {
            es.ONBOARDING_INCOMPLETE,
            es.ALREADY_SWIPED,
            es.BLOCKED,
            es.AGE_OUTSIDE_VIEWER_RANGE,
            es.GENDER_NOT_PREFERRED_BY_VIEWER,
            es.INCOGNITO,
        }

    def test_custom_default_age_bounds(self, viewer, make_profile):
        eligibility = EligibilityFilter(default_min_age=21, default_max_age=60)
        assert eligibility.evaluate(viewer, make_profile("c1", age=20)).eligible is False
        assert eligibility.evaluate(viewer, make_profile("c2", age=61)).eligible is False
