"""Domain errors and failure typing."""


class PipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class ContractError(PipelineError):
    """Raised when the published pfas.json contract is broken."""

    error_code = "CONTRACT_ERROR"


class StageError(PipelineError):
    """Raised for collection-level failures that abort a stage."""

    error_code = "STAGE_ERROR"
