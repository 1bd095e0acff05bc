"""Domain errors and failure typing."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline and lookup failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class StageError(PipelineError):
    """Raised for dataset-scoped failures that should halt in strict mode."""

    error_code = "STAGE_ERROR"


class AcquisitionFailed(StageError):
    """Every locator failed and the dataset declares no placeholder."""

    error_code = "ACQUISITION_FAILED"

    def __init__(self, dataset_key: str, last_error: BaseException | None = None) -> None:
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"All sources failed for dataset {dataset_key}{detail}")
        self.dataset_key = dataset_key
        self.last_error = last_error


class SourceFormatError(StageError):
    """Raised when an acquired file is not a usable GeoJSON FeatureCollection."""

    error_code = "SOURCE_FORMAT_ERROR"


class NormalizationRejected(PipelineError):
    """A single feature could not be mapped to a canonical record."""

    error_code = "NORMALIZATION_REJECTED"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class BatchLoadFailed(StageError):
    """A batch insert failed and was rolled back."""

    error_code = "BATCH_LOAD_FAILED"

    def __init__(self, layer: str, batch_number: int, cause: BaseException) -> None:
        super().__init__(f"Batch {batch_number} of layer {layer} rolled back: {cause}")
        self.layer = layer
        self.batch_number = batch_number
        self.cause = cause


class StorageError(PipelineError):
    """Raised when the spatial store cannot be reached or queried."""

    error_code = "STORAGE_ERROR"


class GeocodingUnavailable(PipelineError):
    """Both geocoding providers failed to produce a match."""

    error_code = "GEOCODING_UNAVAILABLE"
