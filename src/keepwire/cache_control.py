"""Cache-Control header parsing."""

import re
from typing import Dict, Optional, Union

_TOKEN = r"[^\x00-\x20()<>@,;:\\\"/\[\]?={}\x7F]+"
_DIRECTIVE = re.compile(
    rf"(?:^|(?:\s*,\s*))({_TOKEN})(?:=(?:({_TOKEN})|(?:\"((?:[^\"\\]|\\.)*)\")))?"
)


def parse_cache_control(value: str) -> Optional[Dict[str, Union[str, int, bool]]]:
    """
    Parse a Cache-Control header.

    Directives without a value map to True, other values are lower-cased;
    ``max-age`` becomes an int. Returns None for malformed headers.

    >>> parse_cache_control('must-revalidate, max-age=3600')
    {'must-revalidate': True, 'max-age': 3600}
    """
    directives: Dict[str, Union[str, int, bool]] = {}

    def collect(match: "re.Match[str]") -> str:
        name, token, quoted = match.groups()
        text = token or quoted
        directives[name] = text.lower() if text else True
        return ""

    residue = _DIRECTIVE.sub(collect, value)
    if residue:
        return None

    if "max-age" in directives:
        max_age = directives["max-age"]
        if not isinstance(max_age, str):
            return None
        try:
            directives["max-age"] = int(max_age)
        except ValueError:
            return None

    return directives
