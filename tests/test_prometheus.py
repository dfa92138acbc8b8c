from wells.prometheus import OUTCOME_DELIVERED, OUTCOME_EXPIRED, DeliveryMetrics


def test_delivery_metrics_counters_and_gauge():
    metrics = DeliveryMetrics()

    metrics.inc_submitted()
    metrics.inc_submitted()
    metrics.inc_outcome(OUTCOME_DELIVERED)
    metrics.inc_outcome(OUTCOME_EXPIRED)
    metrics.inc_retry()
    metrics.inc_duplicate()
    metrics.set_pending_retries(3)

    output = metrics.generate_latest()
    assert b"wells_submitted_total 2.0" in output
    assert b'wells_outcomes_total{outcome="delivered"} 1.0' in output
    assert b'wells_outcomes_total{outcome="expired"} 1.0' in output
    assert b"wells_retries_total 1.0" in output
    assert b"wells_duplicates_skipped_total 1.0" in output
    assert b"wells_pending_retries 3.0" in output


def test_registries_are_isolated():
    first = DeliveryMetrics()
    second = DeliveryMetrics()
    first.inc_submitted()

    assert first.registry.get_sample_value("wells_submitted_total") == 1
    assert second.registry.get_sample_value("wells_submitted_total") == 0
