from relayping.jobs.runner import JobOptions, JobSummary, run_probe_job

__all__ = ["JobOptions", "JobSummary", "run_probe_job"]
