class ConversionError(Exception):
    """
    Base exception for all policy set conversion failures.
    """

    pass


class StructuralError(ConversionError):
    """
    Raised when the document shape is malformed or unrecognized
    (wrong root tag, no policies, missing required attribute).
    """

    pass


class ProgressError(ConversionError):
    """
    Raised when a policy is over the size budget and no content can be
    migrated into a new base fragment.
    """

    pass


class SchemaLookupError(ConversionError):
    """
    Raised when a reference locator is neither an attribute locator
    nor a text-content locator. Indicates a defect in the schema table.
    """

    pass
