"""Background job runner."""

import structlog

import worker


class TestRunJob:
    def test_job_log_lines_carry_job_name(self, monkeypatch):
        seen = []
        monkeypatch.setitem(
            worker.JOBS,
            "sweeper",
            (lambda: seen.append(structlog.contextvars.get_contextvars()), "sweeper_interval_seconds"),
        )

        worker.run_job("sweeper")

        assert [context["job"] for context in seen] == ["sweeper"]
        assert structlog.contextvars.get_contextvars() == {}

    def test_failing_job_is_contained(self, monkeypatch):
        def _boom():
            raise RuntimeError("carrier down")

        monkeypatch.setitem(worker.JOBS, "tracking", (_boom, "tracking_interval_seconds"))

        worker.run_job("tracking")

        assert structlog.contextvars.get_contextvars() == {}
