"""SQL dialect details that differ between SQLite and MySQL.

Only the pieces the providers actually vary on live here: identifier quoting,
parameter placeholder style and identifier case sensitivity.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Dialect:
    """Quoting and parameter conventions for one SQL engine.

    Attributes:
        name: Engine name ('sqlite' or 'mysql').
        quote_char: Character used to quote identifiers.
        placeholder: Positional parameter marker understood by the driver.
        case_sensitive_names: Whether column names compare case-sensitively.
    """

    name: str
    quote_char: str
    placeholder: str
    case_sensitive_names: bool

    def quote(self, identifier: str) -> str:
        """Quote an identifier, doubling any embedded quote characters."""
        q = self.quote_char
        escaped = identifier.replace(q, q * 2)
        return f"{q}{escaped}{q}"

    def quote_all(self, identifiers: list[str]) -> str:
        """Quote and comma-join a list of identifiers."""
        return ", ".join(self.quote(name) for name in identifiers)

    def placeholders(self, count: int) -> str:
        """Return ``count`` comma-joined parameter markers."""
        return ", ".join([self.placeholder] * count)


SQLITE = Dialect(name="sqlite", quote_char='"', placeholder="?", case_sensitive_names=True)
MYSQL = Dialect(name="mysql", quote_char="`", placeholder="%s", case_sensitive_names=False)
