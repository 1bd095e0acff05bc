"""Application constants."""

USER_AGENT = "district-lookup/1.0 (+civic; contact: configured-email)"
WGS84 = 4326
DEFAULT_STORAGE_SRID = 2272
DEFAULT_BATCH_SIZE = 10
DEFAULT_INTER_BATCH_DELAY = 0.1
DEFAULT_INTER_DATASET_DELAY = 0.5
DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_PRIMARY_GEOCODER_TIMEOUT = 5.0
DEFAULT_SECONDARY_GEOCODER_TIMEOUT = 10.0
COMMANDS = (
    "etl",
    "download",
    "status",
    "lookup",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "dataset",
    "layer",
    "source",
    "event",
    "status",
    "attempt",
    "batch",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "message",
)
