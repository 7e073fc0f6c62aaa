"""Exception hierarchy for recipe-identifier."""


class RecipeIdentifierError(Exception):
    """Base exception for all recipe-identifier errors."""


class InputFileError(RecipeIdentifierError):
    """Raised when an input file or output folder fails validation."""


class JoinEngineError(RecipeIdentifierError):
    """Raised when pandas fails to parse or join the tables."""


class MetadataExportError(RecipeIdentifierError):
    """Raised when ExifTool cannot export metadata."""


class ExifToolMissingError(RecipeIdentifierError):
    """Raised when the ExifTool executable cannot be found."""


class ExifToolCommandError(RecipeIdentifierError):
    """Raised when the ExifTool process cannot be started."""
