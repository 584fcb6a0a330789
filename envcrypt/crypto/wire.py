"""Wire format for envelope-encrypted values.

A value is rendered as ``{<wrapped data key>}<ciphertext>`` where both segments
are base64url. The base64url alphabet contains neither ``{`` nor ``}``, so the
first closing brace always ends the key segment.
"""
import re
from dataclasses import dataclass

from envcrypt.errors import MalformedCipherText

_WIRE_PATTERN = re.compile(r'\{([^{}]*)\}([^{}]*)')


@dataclass(frozen=True)
class WrappedCipherText:
    wrapped_data_key: str
    ciphertext: str

    def __str__(self):
        return render(self)


def parse(text: str) -> WrappedCipherText:
    """Parse a wire-format string.

    Raises:
        MalformedCipherText: If the text does not have the ``{key}ciphertext`` shape.
    """
    if not isinstance(text, str):
        raise MalformedCipherText("Invalid cipher text format!")
    match = _WIRE_PATTERN.fullmatch(text)
    if match is None:
        raise MalformedCipherText("Invalid cipher text format!")
    return WrappedCipherText(match.group(1), match.group(2))


def render(value: WrappedCipherText) -> str:
    return "{" + value.wrapped_data_key + "}" + value.ciphertext
