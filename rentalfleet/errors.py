class FleetError(Exception):
    pass


class MalformedMessage(FleetError):
    """A frame arrived intact but its envelope or body is unusable."""


class ConnectionClosed(FleetError, ConnectionError):
    """The peer closed the stream before a full frame was read."""


class JobTimeout(FleetError):
    def __init__(self, job_id, timeout):
        super().__init__(f"job {job_id} did not complete within {timeout}s")
        self.job_id = job_id
        self.timeout = timeout


class UnknownWorker(FleetError):
    def __init__(self, worker_id, roster_size):
        super().__init__(f"worker {worker_id} is not in a roster of {roster_size}")
        self.worker_id = worker_id
        self.roster_size = roster_size
