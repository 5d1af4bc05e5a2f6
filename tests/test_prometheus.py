from newsletter_dispatch.prometheus import DispatchMetrics


def test_dispatch_metrics_counters_and_gauge():
    metrics = DispatchMetrics()

    metrics.inc_sent("nl-1")
    metrics.inc_sent("nl-1")
    metrics.inc_failed("")
    metrics.inc_batches("nl-1")
    metrics.run_started()
    metrics.run_started()
    metrics.run_finished("nl-1", "partially_sent")

    output = metrics.generate_latest()
    assert b'nld_sent_total{campaign_id="nl-1"} 2.0' in output
    assert b'nld_failed_total{campaign_id="unknown"} 1.0' in output
    assert b'nld_batches_total{campaign_id="nl-1"} 1.0' in output
    assert b'nld_runs_total{campaign_id="nl-1",status="partially_sent"} 1.0' in output
    assert b"nld_active_runs 1.0" in output


def test_registries_are_independent():
    first = DispatchMetrics()
    second = DispatchMetrics()
    first.inc_sent("nl-1")
    assert b"nld_sent_total{" not in second.generate_latest()
