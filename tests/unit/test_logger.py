"""
Unit tests for logger.py
"""

import logging

from config import CONFIG
from logger import LoggerFactory, PerformanceLogger, get_logger


class TestPerformanceTracking:
    def test_track_time_records_elapsed(self):
        perf = PerformanceLogger(logging.getLogger("performance.test"))

        with perf.track_time("fit"):
            pass
        with perf.track_time("fit"):
            pass

        assert len(perf.timings["fit"]) == 2
        assert all(t >= 0 for t in perf.timings["fit"])

    def test_track_time_disabled(self):
        CONFIG.update("logging.log_performance", False)
        perf = PerformanceLogger(logging.getLogger("performance.test"))

        with perf.track_time("fit"):
            pass

        assert perf.timings == {}

    def test_logger_shares_factory_timings(self):
        logger = get_logger("svystudy.test")

        with logger.track_time("shared_stage"):
            pass

        assert "shared_stage" in LoggerFactory.get_performance_logger().timings

    def test_print_summary(self, caplog):
        perf = PerformanceLogger(logging.getLogger("performance.test"))
        with perf.track_time("imputation"):
            pass

        with caplog.at_level(logging.INFO, logger="performance.test"):
            perf.print_summary()

        assert "Performance Summary" in caplog.text
        assert "imputation: avg=" in caplog.text
