# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
from mail_scheduler.prometheus import MailMetrics


def test_mail_metrics_counters_and_gauge():
    metrics = MailMetrics()

    metrics.inc_sent("s1")
    metrics.inc_sent("s1")
    metrics.inc_error("")
    metrics.inc_retry("s2")
    metrics.inc_deferred("s2")
    metrics.set_queue_depth({"waiting": 3, "active": 1, "completed": 0, "failed": 2, "delayed": 5})

    output = metrics.generate_latest()
    assert b'msd_sent_total{sender_id="s1"} 2.0' in output
    assert b'msd_errors_total{sender_id="unknown"} 1.0' in output
    assert b'msd_retries_total{sender_id="s2"} 1.0' in output
    assert b'msd_deferred_total{sender_id="s2"} 1.0' in output
    assert b'msd_queue_depth{state="delayed"} 5.0' in output


def test_registries_are_private():
    first, second = MailMetrics(), MailMetrics()
    first.inc_sent("s1")
    assert b'msd_sent_total{sender_id="s1"}' not in second.generate_latest()
