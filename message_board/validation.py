"""Input checks applied before any text reaches the store."""

MAX_TEXT_LENGTH = 500


class ValidationError(ValueError):
    kind = "ValidationError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class EmptyText(ValidationError):
    kind = "EmptyText"

    def __init__(self) -> None:
        super().__init__("Text must not be empty")


class TextTooLong(ValidationError):
    kind = "TextTooLong"

    def __init__(self, length: int) -> None:
        super().__init__(
            f"Text must be at most {MAX_TEXT_LENGTH} characters (got {length})"
        )
        self.length = length


def validate(raw_text: str) -> str:
    """
    Return the trimmed text, or raise EmptyText / TextTooLong.
    Pure: no I/O and no shared state.
    """
    text = raw_text.strip()
    if not text:
        raise EmptyText()
    if len(text) > MAX_TEXT_LENGTH:
        raise TextTooLong(len(text))
    return text
