from typing import Mapping, Optional, Sequence, Union
from urllib.parse import urlencode

from urllib3.exceptions import LocationParseError
from urllib3.util import parse_url

from .errors import BuildError


QueryValues = Mapping[str, Union[str, Sequence[str]]]


class UrlTools:
    @staticmethod
    def join(base_url: str, path: str) -> str:
        """Join base and path with exactly one "/" between them."""
        if not base_url:
            return path
        base = base_url.rstrip("/")
        if not path:
            return base
        return base + "/" + path.lstrip("/")

    @staticmethod
    def encode_values(values: Optional[QueryValues]) -> str:
        if not values:
            return ""
        items = []
        for key in sorted(values):
            value = values[key]
            if isinstance(value, (str, bytes)):
                value = [value]
            items.append((key, list(value)))
        return urlencode(items, doseq=True)

    @staticmethod
    def append_query(url: str, params: Optional[QueryValues]) -> str:
        query = UrlTools.encode_values(params)
        if not query:
            return url
        sep = "&" if "?" in url else "?"
        return f"{url}{sep}{query}"

    @staticmethod
    def validate(url: str) -> str:
        try:
            parsed = parse_url(url)
        except LocationParseError as e:
            raise BuildError(f"malformed URL {url!r}: {e}") from e
        if parsed.scheme not in ("http", "https"):
            raise BuildError(f"unsupported protocol scheme in URL {url!r}")
        if not parsed.host:
            raise BuildError(f"no host in URL {url!r}")
        return url
