"""ADSCOUT — Ingestion Errors."""


class IngestionError(Exception):
    """Base class for scrape/ingestion precondition failures."""


class NoActiveTargets(IngestionError):
    """The session has no active brands to scrape."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No active brands found for session {session_id}")


class RunNotFound(IngestionError):
    """The scraper provider does not know the run."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class DatasetMissing(IngestionError):
    """A succeeded run carries no dataset id."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Could not determine dataset id for run {run_id}")


class InvalidStatusTransition(IngestionError):
    """A scrape run status would move backwards or leave a terminal state."""

    def __init__(self, run_id: str, current: str, requested: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id}: cannot move from {current} to {requested}")
