"""Tests for the performance classifier cascade."""

from adpilot.pipeline.classifier import Classifier, classify, count_low_days
from adpilot.skills.schema import Condition, RuleSkill, ThresholdEffect
from adpilot.tuning import ClassifierThresholds, ThresholdOverrides
from adpilot.types import Label

T = ClassifierThresholds()


def _label(make_metrics, days):
    return classify(make_metrics(days=days), T)[0]


def test_severe_loss(make_metrics):
    label, reason = classify(make_metrics(days=[(40.0, 6.0, 1)] * 3), T)
    assert label == Label.LOSS_SEVERE
    assert "for 3 days" in reason


def test_observing_below_spend_floor(make_metrics):
    assert _label(make_metrics, [(5.0, 10.0, 1)] * 3) == Label.OBSERVING


def test_one_bad_day_is_not_severe(make_metrics):
    m = make_metrics(days=[(60.0, 6.0, 0), (3.0, 0.0, 0), (3.0, 0.0, 0)])
    assert count_low_days(m, 0.2, 5.0) == 1
    assert classify(m, T)[0] == Label.STABLE_NORMAL


def test_declining_day_over_day(make_metrics):
    assert _label(make_metrics, [(20.0, 40.0, 1), (20.0, 20.0, 1), (20.0, 30.0, 1)]) == Label.DECLINING


def test_declining_today(make_metrics):
    assert _label(make_metrics, [(20.0, 20.0, 1), (20.0, 40.0, 1), (20.0, 10.0, 1)]) == Label.DECLINING


def test_mild_loss(make_metrics):
    assert _label(make_metrics, [(20.0, 10.0, 1)] * 3) == Label.LOSS_MILD


def test_high_potential(make_metrics):
    assert _label(make_metrics, [(20.0, 60.0, 2)] * 3) == Label.HIGH_POTENTIAL


def test_high_potential_on_uptrend(make_metrics):
    assert _label(make_metrics, [(20.0, 28.0, 1), (20.0, 36.0, 1), (20.0, 32.0, 1)]) == Label.HIGH_POTENTIAL


def test_stable_good(make_metrics):
    assert _label(make_metrics, [(20.0, 40.0, 1)] * 3) == Label.STABLE_GOOD


def test_stable_normal(make_metrics):
    assert _label(make_metrics, [(20.0, 24.0, 1)] * 3) == Label.STABLE_NORMAL


def test_threshold_skill_overrides_defaults(make_metrics):
    rule = RuleSkill(
        name="strict-shoes",
        scope={"products": ["shoes"]},
        effect=ThresholdEffect(thresholds=ThresholdOverrides(loss_severe_roas=0.6)),
    )
    shoes = make_metrics(days=[(20.0, 10.0, 1)] * 3, product="shoes")
    hats = make_metrics("c2", days=[(20.0, 10.0, 1)] * 3, product="hats")

    result = Classifier().classify_one(shoes, [rule])
    assert result.label == Label.LOSS_SEVERE
    assert result.skill_id == rule.id
    assert "(thresholds from strict-shoes)" in result.reason

    assert Classifier().classify_one(hats, [rule]).label == Label.LOSS_MILD


def test_threshold_skill_conditions(make_metrics):
    rule = RuleSkill(
        name="big-spenders",
        conditions=[Condition(field="total_spend_3d", op=">", value=1000.0)],
        effect=ThresholdEffect(thresholds=ThresholdOverrides(loss_severe_roas=0.6)),
    )
    m = make_metrics(days=[(20.0, 10.0, 1)] * 3)
    thresholds, skill = Classifier().thresholds_for(m, [rule])
    assert skill is None
    assert thresholds == T


def test_classify_all(make_metrics):
    results = Classifier().classify_all([
        make_metrics("a", [(40.0, 6.0, 1)] * 3),
        make_metrics("b", [(20.0, 60.0, 2)] * 3),
    ])
    assert [r.label for r in results] == [Label.LOSS_SEVERE, Label.HIGH_POTENTIAL]
