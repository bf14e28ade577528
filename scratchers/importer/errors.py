"""Error taxonomy for the CSV import pipeline.

Subclasses of ImportPipelineError are structural and abort the run with no
result object. RowWriteError and DownstreamTriggerError never escape the
pipeline: the first is recorded per row, the second is only logged.
"""

from __future__ import annotations


class ImportPipelineError(RuntimeError):
    pass


class StorageFetchError(ImportPipelineError):
    pass


class SourceFetchError(ImportPipelineError):
    pass


class InvalidPayloadError(ImportPipelineError):
    pass


class CSVStructureError(ImportPipelineError):
    pass


class RowWriteError(RuntimeError):
    def __init__(self, row_number: int, message: str):
        super().__init__(message)
        self.row_number = row_number


class DownstreamTriggerError(RuntimeError):
    pass
