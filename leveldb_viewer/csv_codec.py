"""
Delimited-text codec for producer batches.
Decoding is permissive (never raises on bad quoting); encoding is its exact inverse
for newline-free fields so exported rows decode back to the same values.
"""

SEPARATOR = ","
QUOTE = '"'


def decode_line(line: str, separator: str = SEPARATOR, quote: str = QUOTE) -> list[str]:
    """Split one line into fields. A doubled quote is a literal quote; an unmatched
    quote toggles quoted mode, in which the separator is literal."""
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == quote and i + 1 < n and line[i + 1] == quote:
            current.append(quote)
            i += 2
            continue
        if ch == quote:
            in_quotes = not in_quotes
        elif ch == separator and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return fields


def _needs_quotes(value: str, separator: str, quote: str) -> bool:
    if not value:
        return False
    # A field made only of quotes must stay bare: wrapped, its doubled quotes would pair with the wrapper.
    if not value.strip(quote):
        return False
    return separator in value or quote in value or value != value.strip()


def encode_field(value, separator: str = SEPARATOR, quote: str = QUOTE) -> str:
    """Encode one value; booleans become true/false, None becomes empty."""
    if value is None:
        text = ""
    elif isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    escaped = text.replace(quote, quote + quote)
    if not _needs_quotes(text, separator, quote):
        return escaped
    return quote + escaped + quote


def encode_line(values, separator: str = SEPARATOR, quote: str = QUOTE) -> str:
    return separator.join(encode_field(v, separator, quote) for v in values)
