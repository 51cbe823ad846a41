class CsvChatError(Exception):
    """Base exception for nl_csvchat."""

class ParseError(CsvChatError):
    pass

class DatasetNotLoadedError(CsvChatError):
    pass

class QueryError(CsvChatError):
    """The store rejected a query. Recoverable through the repair loop."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class GenerationError(CsvChatError):
    pass

class TransformError(CsvChatError):
    pass

class TransformInputError(TransformError):
    pass

class TransformGenerationError(TransformError):
    pass

class TransformExecutionError(TransformError):
    pass

class ChartRenderError(CsvChatError):
    pass
