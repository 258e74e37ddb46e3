import os

HOST = os.environ.get("FLEET_HOST", "localhost")
COORDINATOR_PORT = int(os.environ.get("FLEET_PORT", "8080"))
COLLECTOR_PORT = int(os.environ.get("FLEET_COLLECTOR_PORT", "8090"))
WORKER_PORT = int(os.environ.get("FLEET_WORKER_PORT", "8100"))

LOG_LEVEL = os.environ.get("FLEET_LOG_LEVEL", "INFO")
LOG_DIR = os.environ.get("FLEET_LOG_DIR")

DATE_FORMAT = "%d/%m/%Y"
# strptime alone also accepts one-digit days and months
DATE_PATTERN = r"\d{2}/\d{2}/\d{4}"

# None waits forever for a fan-out job; a number bounds the wait in seconds.
JOB_TIMEOUT = None

# finished job ids remembered so that late partials can be recognised
CLOSED_JOB_HISTORY = 1024

LISTEN_BACKLOG = 10
