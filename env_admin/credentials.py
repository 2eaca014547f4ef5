"""
Credential File Codec

Reads and rewrites line-oriented ``KEY=VALUE`` environment files.

Line grammar::

    line     := blank | comment | entry | other
    comment  := ws* "#" any*
    entry    := ws* KEY ws* "=" ws* value [ws+ "#" any*]
    value    := '"' (escaped char)* '"' | "'" any* "'" | unquoted

Unquoted values stop at the first ``#`` preceded by whitespace. Inside double
quotes, backslash escapes ``\\"`` and ``\\\\``. Lines that are not entries pass
through untouched, as do entries for keys the caller is not touching.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from .catalog import IntegrationCatalog, DEFAULT_CATALOG
from .exceptions import ValidationError

_INLINE_COMMENT = re.compile(r"\s#")

BLANK = "blank"
COMMENT = "comment"
ENTRY = "entry"
OTHER = "other"


@dataclass
class EnvLine:
    """One parsed line of an environment file"""
    kind: str
    raw: str
    key: Optional[str] = None
    value: Optional[str] = None


def _parse_value(text: str) -> str:
    text = text.lstrip()
    if text.startswith('"'):
        chars = []
        i = 1
        while i < len(text):
            ch = text[i]
            if ch == "\\" and i + 1 < len(text) and text[i + 1] in ('"', "\\"):
                chars.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                return "".join(chars)
            chars.append(ch)
            i += 1
        # Unterminated quote: fall through and read it as a bare value
    elif text.startswith("'"):
        end = text.find("'", 1)
        if end != -1:
            return text[1:end]
    match = _INLINE_COMMENT.search(text)
    if match:
        text = text[:match.start()]
    return text.strip()


def parse_line(line: str) -> EnvLine:
    """Classify and parse a single line"""
    stripped = line.strip()
    if not stripped:
        return EnvLine(kind=BLANK, raw=line)
    if stripped.startswith("#"):
        return EnvLine(kind=COMMENT, raw=line)
    if "=" not in stripped:
        return EnvLine(kind=OTHER, raw=line)
    key, _, rest = line.partition("=")
    key = key.strip()
    if not key:
        return EnvLine(kind=OTHER, raw=line)
    return EnvLine(kind=ENTRY, raw=line, key=key, value=_parse_value(rest))


def split_lines(content: str) -> List[str]:
    """Split on newlines, normalising CRLF endings"""
    if content == "":
        return []
    return [line[:-1] if line.endswith("\r") else line for line in content.split("\n")]


def parse_env(content: str) -> Dict[str, str]:
    """All entries of a file as a dict; the first occurrence of a key wins"""
    values: Dict[str, str] = {}
    for line in split_lines(content):
        parsed = parse_line(line)
        if parsed.kind == ENTRY and parsed.key not in values:
            values[parsed.key] = parsed.value
    return values


def format_value(value: str) -> str:
    """Render a value so that parsing it back yields the same string"""
    if "\n" in value or "\r" in value:
        raise ValidationError("Credential values cannot contain line breaks")
    needs_quotes = (
        value != value.strip()
        or value.startswith(('"', "'"))
        or _INLINE_COMMENT.search(value) is not None
    )
    if not needs_quotes:
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class CredentialCodec:
    """Maps an integration's logical login/password onto credential file lines"""
    
    FIELDS = ("login", "password")
    
    def __init__(self, catalog: IntegrationCatalog = DEFAULT_CATALOG):
        self.catalog = catalog
    
    def read(self, content: str, integration_id: str) -> Dict[str, str]:
        """
        Extract ``login``/``password``; absent fields are omitted.

        For each field the first line using the primary key wins, then the first
        line using the alternate key. ``write`` targets the same line.
        """
        keys = self.catalog.require(integration_id).credential_keys
        lines = split_lines(content)
        found: Dict[str, str] = {}
        for field_name in self.FIELDS:
            index, _ = self._locate(lines, keys.candidates(field_name))
            if index is not None:
                found[field_name] = parse_line(lines[index]).value
        return found
    
    def write(self, content: str, integration_id: str,
              login: Optional[str] = None, password: Optional[str] = None) -> str:
        """
        Upsert the supplied fields and return the new file content.
        
        An existing line using the primary key is replaced in place; failing that,
        a line using the alternate key is replaced in place (keeping that key).
        Otherwise a primary-key line is appended.
        """
        integration = self.catalog.require(integration_id)
        updates = {name: value for name, value in (("login", login), ("password", password)) if value}
        if not updates:
            raise ValidationError("Login or password must be provided", code="MISSING_CREDENTIALS")
        
        lines = split_lines(content)
        for field_name, value in updates.items():
            rendered = format_value(value)
            index, key = self._locate(lines, integration.credential_keys.candidates(field_name))
            if index is not None:
                lines[index] = f"{key}={rendered}"
                continue
            new_line = f"{integration.credential_keys.candidates(field_name)[0]}={rendered}"
            if lines and lines[-1] == "":
                # Keep the file's trailing newline after the appended line
                lines.insert(len(lines) - 1, new_line)
            else:
                lines.append(new_line)
        return "\n".join(lines)
    
    def filter(self, content: str, integration_id: str) -> str:
        """Drop lines of a copied config file that belong to other integrations"""
        rules = self.catalog.require(integration_id).filter_rules
        if rules is None:
            return content
        kept = []
        for line in split_lines(content):
            trimmed = line.strip()
            if not trimmed or trimmed.startswith("#"):
                kept.append(line)
            elif trimmed.startswith(rules.keep) and not trimmed.startswith(rules.drop):
                kept.append(line)
        return "\n".join(kept)
    
    @staticmethod
    def _locate(lines: List[str], names):
        # Earlier names in ``names`` take priority over position in the file
        for name in names:
            for index, line in enumerate(lines):
                parsed = parse_line(line)
                if parsed.kind == ENTRY and parsed.key == name:
                    return index, name
        return None, None
