"""Application constants."""

USER_AGENT = "pfas-map/1.0 (+drinking-water research; contact: configured-email)"
DEFAULT_UNIT = "µg/L"
STAGES = (
    "localities",
    "harvest",
    "export",
    "render",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
SOURCE_MEASURED = "HubEau"
SOURCE_NOT_MEASURED = "HubEau (non mesuré)"
SOURCE_ERROR = "HubEau (erreur commune)"
OUTPUT_FIELDS = (
    "commune",
    "code_insee",
    "departement",
    "region",
    "pfas",
    "date_mesure",
    "lat",
    "lon",
    "source",
)
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "locality",
    "source",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "message",
)
